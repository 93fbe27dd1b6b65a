"""
incident_normalizer.py
-----------------------
Parse/validate step between the raw spreadsheet and the crimes table.

Header-keyed dicts stop here. Every row comes out either as a typed
IncidentRecord (ready to insert) or as a RowRejection saying why it was
dropped. Rows are dropped, never defaulted, when:
  - the strategic indicator is empty or isn't one of the four categories;
  - the RISP code has no number in it.
Every other blank/unreadable text field becomes the "N/A" sentinel.
"""

import re
import logging
import unicodedata
from dataclasses import dataclass, asdict
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from crime_dashboard.exceptions import SpreadsheetFormatError
from crime_dashboard.reference import SENTINEL, TimeBracket, collapse_whitespace, match_category

logger = logging.getLogger(__name__)


def _header_key(header: str) -> str:
    """Accent/case/whitespace-insensitive form of a column header."""
    stripped = unicodedata.normalize("NFD", str(header))
    stripped = "".join(ch for ch in stripped if not unicodedata.combining(ch))
    return collapse_whitespace(stripped).lower()


# field -> accepted header variants (compared through _header_key).
# The "registro" columns replaced the older "fato" date columns.
COLUMN_VARIANTS: Dict[str, Tuple[str, ...]] = {
    "day": ("Dia do registro", "Dia do fato"),
    "month": ("Mes do registro", "Mês do registro", "Mês do fato", "Mes do fato"),
    "year": ("Ano do registro", "Ano do fato"),
    "ro": ("RO",),
    "strategic_indicator": ("Indicador estratégico",),
    "aisp": ("AISP do fato",),
    "risp": ("RISP do fato",),
    "municipality": ("Município do fato (IBGE)",),
    "neighborhood": ("Bairro",),
    "time_bracket": ("Faixa horária",),
    # optional pass-through columns
    "objectid": ("objectid",),
    "cisp": ("CISP do fato",),
    "offense_title": ("Título do delito",),
    "occurrence_title": ("Título do DO",),
    "release_phase": ("Fase de divulgação",),
    "weekday": ("Dia da semana do fato",),
}

REQUIRED_FIELDS = (
    "day", "month", "year", "ro", "strategic_indicator",
    "aisp", "risp", "municipality", "neighborhood", "time_bracket",
)


class RejectionReason(Enum):
    MISSING_INDICATOR = "missing_indicator"
    UNKNOWN_INDICATOR = "unknown_indicator"
    INVALID_RISP = "invalid_risp"
    MALFORMED_ROW = "malformed_row"


@dataclass(frozen=True)
class RowRejection:
    row_number: int
    reason: RejectionReason
    value: Optional[str] = None


@dataclass(frozen=True)
class IncidentRecord:
    ro: str
    day: str
    month: str
    year: str
    registration_date: Optional[date]
    strategic_indicator: str
    aisp: str
    risp: str
    cisp: str
    municipality: str
    neighborhood: str
    time_bracket: str
    hour: Optional[str]
    offense_title: str
    occurrence_title: str
    release_phase: str
    weekday: str
    objectid: Optional[int] = None

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


NormalizedRow = Union[IncidentRecord, RowRejection]


# ------------------------------
# Field cleaners
# ------------------------------
def _plain(value: Any) -> Optional[str]:
    """Cell value as text; integral floats lose their '.0'."""
    if value is None:
        return None
    if isinstance(value, float):
        if value != value:  # NaN
            return None
        if value.is_integer():
            value = int(value)
    return str(value)


def clean_text(value: Any) -> str:
    text = _plain(value)
    if text is None:
        return SENTINEL
    text = collapse_whitespace(text)
    return text or SENTINEL


def _as_int(value: Any) -> Optional[int]:
    text = _plain(value)
    if text is None:
        return None
    try:
        return int(text.strip())
    except ValueError:
        return None


def normalize_date_parts(day: Any, month: Any, year: Any) -> Tuple[str, str, str, Optional[date]]:
    """
    Zero-pad day and month, keep the year as given.

    Only a combination that forms a real calendar date is kept; anything
    else turns all three parts into the sentinel and the date into None.
    """
    d, m, y = _as_int(day), _as_int(month), _as_int(year)
    if d is None or m is None or y is None:
        return SENTINEL, SENTINEL, SENTINEL, None
    try:
        parsed = date(y, m, d)
    except ValueError:
        return SENTINEL, SENTINEL, SENTINEL, None
    return f"{d:02d}", f"{m:02d}", _plain(year).strip(), parsed


_DIGITS = re.compile(r"(\d+)")


def normalize_unit_code(value: Any, prefix: str) -> Optional[str]:
    """'RISP do fato' = '5a. RISP' / 'risp 5' / 5 -> 'RISP 5'. None when no number."""
    text = _plain(value)
    if text is None:
        return None
    groups = _DIGITS.findall(text)
    if not groups:
        return None
    return f"{prefix} {int(groups[-1])}"


_LEADING_HOUR = re.compile(r"^\s*(\d{1,2})")


def normalize_time_bracket(value: Any) -> Tuple[str, Optional[str]]:
    """Return (bracket label, 'HH:00:00') from the start hour of the range."""
    if isinstance(value, (time, datetime)):
        hour = value.hour
    else:
        text = _plain(value)
        match = _LEADING_HOUR.match(text) if text else None
        if not match:
            return SENTINEL, None
        hour = int(match.group(1))
    try:
        bracket = TimeBracket.for_hour(hour)
    except ValueError:
        return SENTINEL, None
    return bracket.label, f"{hour:02d}:00:00"


# ------------------------------
# Normalizer
# ------------------------------
class IncidentNormalizer:
    """Resolves the header once, then turns rows into records or rejections."""

    def __init__(self, columns: Iterable[str]):
        self.column_map = resolve_columns(columns)

    def _get(self, row: Dict[str, Any], field: str) -> Any:
        header = self.column_map.get(field)
        return row.get(header) if header is not None else None

    def normalize(self, row: Dict[str, Any], row_number: int) -> NormalizedRow:
        raw_indicator = self._get(row, "strategic_indicator")
        indicator_text = clean_text(raw_indicator)
        if indicator_text == SENTINEL:
            return RowRejection(row_number, RejectionReason.MISSING_INDICATOR)

        category = match_category(indicator_text)
        if category is None:
            return RowRejection(row_number, RejectionReason.UNKNOWN_INDICATOR, indicator_text)

        risp = normalize_unit_code(self._get(row, "risp"), "RISP")
        if risp is None:
            return RowRejection(row_number, RejectionReason.INVALID_RISP, _plain(self._get(row, "risp")))

        day, month, year, registration_date = normalize_date_parts(
            self._get(row, "day"), self._get(row, "month"), self._get(row, "year")
        )
        bracket, hour = normalize_time_bracket(self._get(row, "time_bracket"))

        return IncidentRecord(
            ro=clean_text(self._get(row, "ro")),
            day=day,
            month=month,
            year=year,
            registration_date=registration_date,
            strategic_indicator=category.label,
            aisp=normalize_unit_code(self._get(row, "aisp"), "AISP") or SENTINEL,
            risp=risp,
            cisp=clean_text(self._get(row, "cisp")),
            municipality=clean_text(self._get(row, "municipality")),
            neighborhood=clean_text(self._get(row, "neighborhood")),
            time_bracket=bracket,
            hour=hour,
            offense_title=clean_text(self._get(row, "offense_title")),
            occurrence_title=clean_text(self._get(row, "occurrence_title")),
            release_phase=clean_text(self._get(row, "release_phase")),
            weekday=clean_text(self._get(row, "weekday")),
            objectid=_as_int(self._get(row, "objectid")),
        )


def resolve_columns(columns: Iterable[str]) -> Dict[str, str]:
    """
    Map each known field to the actual header used in the file.

    Raises:
        SpreadsheetFormatError: a required field has no matching header.
    """
    by_key = {_header_key(c): c for c in columns}
    resolved: Dict[str, str] = {}
    for field, variants in COLUMN_VARIANTS.items():
        for variant in variants:
            header = by_key.get(_header_key(variant))
            if header is not None:
                resolved[field] = header
                break

    missing = [COLUMN_VARIANTS[f][0] for f in REQUIRED_FIELDS if f not in resolved]
    if missing:
        raise SpreadsheetFormatError("Spreadsheet is missing expected columns: " + ", ".join(missing))
    return resolved


def normalize_rows(columns: Iterable[str], rows: List[Dict[str, Any]]) -> Tuple[List[IncidentRecord], List[RowRejection]]:
    """Split rows into kept records and rejections. Row numbers are 1-based, header excluded."""
    normalizer = IncidentNormalizer(columns)
    records: List[IncidentRecord] = []
    rejections: List[RowRejection] = []

    for idx, row in enumerate(rows, 1):
        try:
            result = normalizer.normalize(row, idx)
        except Exception as e:
            # A single malformed row must not abort the import
            logger.debug("Row %d failed normalization: %s", idx, e)
            rejections.append(RowRejection(idx, RejectionReason.MALFORMED_ROW, str(e)))
            continue

        if isinstance(result, RowRejection):
            logger.debug("Dropping row %d: %s (%r)", idx, result.reason.value, result.value)
            rejections.append(result)
        else:
            records.append(result)

    logger.info("Normalized %d rows: %d kept, %d dropped", len(rows), len(records), len(rejections))
    return records, rejections
