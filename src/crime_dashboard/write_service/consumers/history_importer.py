"""
history_importer.py
--------------------
Appends free-text history entries to existing incidents.

Input: a spreadsheet with the columns "RO" and "Historico". Each row is
matched to an incident by RO and stored as a new history entry.

Unlike the incident import, this flow reports per-row outcomes: a row with
a blank RO/text, an RO that isn't in the crimes table, or a failed insert
counts as an error and the import moves on to the next row.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from crime_dashboard.db.tables import TableSet
from crime_dashboard.exceptions import SpreadsheetFormatError
from crime_dashboard.reference import SENTINEL
from crime_dashboard.write_service.ingestion.spreadsheet_reader import Source, read_spreadsheet
from crime_dashboard.write_service.processing.incident_normalizer import clean_text

logger = logging.getLogger(__name__)

RO_COLUMN = "RO"
TEXT_COLUMN = "Historico"


@dataclass
class HistoryImportResult:
    imported: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.imported > 0

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "imported": self.imported,
                "failed": self.failed, "errors": self.errors}


class HistoryImporter:
    def __init__(self, engine: Engine, tables: TableSet):
        self.engine = engine
        self.tables = tables

    def _record_id_for(self, conn, ro: str) -> Optional[int]:
        crimes = self.tables.crimes
        return conn.execute(
            select(crimes.c.id).where(crimes.c.ro == ro).order_by(crimes.c.id).limit(1)
        ).scalar()

    def import_file(self, source: Source, filename: str = None) -> HistoryImportResult:
        """
        Raises:
            SpreadsheetFormatError: unreadable file, no rows, or columns other
            than exactly RO and Historico.
        """
        sheet = read_spreadsheet(source, filename)
        if not sheet.rows or set(sheet.columns) != {RO_COLUMN, TEXT_COLUMN}:
            raise SpreadsheetFormatError(
                f"Invalid format. The file must have the columns: {RO_COLUMN}, {TEXT_COLUMN}"
            )

        result = HistoryImportResult()

        def fail(row_number, ro, reason):
            result.failed += 1
            result.errors.append({"row": row_number, "ro": ro, "reason": reason})

        for idx, row in enumerate(sheet.rows, 1):
            ro = clean_text(row.get(RO_COLUMN))
            text = row.get(TEXT_COLUMN)
            text = str(text).strip() if text is not None else ""
            if ro == SENTINEL or not text:
                logger.warning("Invalid history row %d: %r", idx, row)
                fail(idx, None if ro == SENTINEL else ro, "missing RO or Historico")
                continue

            try:
                with self.engine.begin() as conn:
                    record_id = self._record_id_for(conn, ro)
                    if record_id is None:
                        logger.warning("RO not found: %s", ro)
                        fail(idx, ro, "RO not found")
                        continue
                    conn.execute(self.tables.history.insert().values(
                        record_id=record_id, ro=ro, text=text
                    ))
                result.imported += 1
            except SQLAlchemyError as e:
                logger.error("Error processing RO %s: %s", ro, e)
                fail(idx, ro, str(e))

        logger.info("History import finished: %d imported, %d errors", result.imported, result.failed)
        return result
