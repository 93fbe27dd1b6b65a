"""
Spreadsheet reader: turns an uploaded .xlsx (or .csv) file into rows.

Responsibility: read the FIRST sheet only, keyed by header row.
Output: Sheet(columns, rows) where rows are dicts {header: value},
blanks as None.

Nothing here interprets the columns; that's the normalizer's job.
"""

import io
import logging
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Union

import pandas as pd

from crime_dashboard.exceptions import SpreadsheetFormatError

logger = logging.getLogger(__name__)

Source = Union[bytes, bytearray, str, Path, io.IOBase]


class Sheet(NamedTuple):
    columns: List[str]
    rows: List[Dict[str, Any]]


def _is_csv(source: Source, filename: str = None) -> bool:
    name = filename or (str(source) if isinstance(source, (str, Path)) else "")
    return name.lower().endswith(".csv")


def read_spreadsheet(source: Source, filename: str = None) -> Sheet:
    """
    Read the first sheet of a spreadsheet into header-keyed rows.

    Args:
        source: raw bytes, a path, or a binary file object.
        filename: original upload name, used to tell CSV from XLSX.

    Raises:
        SpreadsheetFormatError: the file can't be parsed at all.
    """
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)

    try:
        if _is_csv(source, filename):
            df = pd.read_csv(source, dtype=object, encoding="utf-8")
        else:
            df = pd.read_excel(source, sheet_name=0, dtype=object, engine="openpyxl")
    except Exception as e:
        logger.error("Could not parse spreadsheet %s: %s", filename or "<upload>", e)
        raise SpreadsheetFormatError(f"Could not read spreadsheet: {e}") from e

    df.columns = [str(c).strip() for c in df.columns]
    # NaN / NaT -> None so downstream code sees plain Python values
    df = df.astype(object).where(pd.notna(df), None)
    rows = df.to_dict(orient="records")

    logger.info("Read %d rows with columns %s", len(rows), list(df.columns))
    return Sheet(columns=list(df.columns), rows=rows)
