"""
incident_importer.py
---------------------
Spreadsheet -> crimes table, replacing the whole dataset.

Pipeline:
  1) Parse the first sheet and check the header (a malformed file is
     rejected before anything is deleted).
  2) Normalize rows; unrecognized indicators / bad RISP codes are dropped.
  3) Clear: delete every crimes row and every crime_timeseries row.
  4) Insert records in fixed-size batches, one after another.
  5) Rebuild the daily count per unit from the inserted records.
  6) Relink history entries to the new record ids by RO; entries whose
     RO is no longer in the dataset get a null record_id.

Batches are committed one by one. A failing batch aborts the rest of the
import and leaves earlier batches in place; there is no rollback unless
the importer runs in transactional mode, where clear and every insert
share a single transaction.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from crime_dashboard.db.tables import TableSet
from crime_dashboard.exceptions import StorageError
from crime_dashboard.write_service.ingestion.spreadsheet_reader import Source, read_spreadsheet
from crime_dashboard.write_service.processing.incident_normalizer import (
    IncidentRecord, RowRejection, normalize_rows
)
from crime_dashboard.write_service.processing.timeseries import daily_counts_by_unit

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000


@dataclass
class ImportResult:
    success: bool
    rows_read: int = 0
    rows_inserted: int = 0
    rows_dropped: int = 0
    timeseries_rows: int = 0
    rejections: List[RowRejection] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "rows_read": self.rows_read,
            "rows_inserted": self.rows_inserted,
            "rows_dropped": self.rows_dropped,
            "timeseries_rows": self.timeseries_rows,
            "rejections": [
                {"row": r.row_number, "reason": r.reason.value, "value": r.value}
                for r in self.rejections
            ],
        }


def _batches(rows: Sequence[Dict[str, Any]], size: int) -> Iterator[Sequence[Dict[str, Any]]]:
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


class IncidentImporter:
    """Replaces the incident dataset with the contents of one spreadsheet."""

    def __init__(self, engine: Engine, tables: TableSet, batch_size: int = BATCH_SIZE,
                 transactional: bool = False):
        self.engine = engine
        self.tables = tables
        self.batch_size = batch_size
        self.transactional = transactional

    # ------------------------------
    # Storage steps
    # ------------------------------
    @contextmanager
    def _step(self, name: str, shared: Connection = None):
        """
        Yield a connection for one storage step.

        Without a shared connection each step runs in its own transaction
        (committed on exit). Any SQLAlchemyError becomes a StorageError
        tagged with the step name.
        """
        try:
            if shared is not None:
                yield shared
            else:
                with self.engine.begin() as conn:
                    yield conn
        except SQLAlchemyError as e:
            logger.error("Import step '%s' failed: %s", name, e)
            raise StorageError(name, e) from e

    def clear(self, conn: Connection = None) -> None:
        with self._step("clear", conn) as c:
            deleted_series = c.execute(delete(self.tables.timeseries)).rowcount
            deleted = c.execute(delete(self.tables.crimes)).rowcount
        logger.info("Cleared %s incident rows and %s time series rows", deleted, deleted_series)

    def insert_records(self, records: List[IncidentRecord], conn: Connection = None) -> int:
        rows = [r.to_row() for r in records]
        inserted = 0
        for number, batch in enumerate(_batches(rows, self.batch_size), 1):
            with self._step(f"insert batch {number}", conn) as c:
                c.execute(self.tables.crimes.insert(), list(batch))
            inserted += len(batch)
            logger.info("Inserted batch %d (%d rows, %d so far)", number, len(batch), inserted)
        return inserted

    def insert_timeseries(self, records: List[IncidentRecord], conn: Connection = None) -> int:
        series = daily_counts_by_unit(records)
        for number, batch in enumerate(_batches(series, self.batch_size), 1):
            with self._step(f"insert time series batch {number}", conn) as c:
                c.execute(self.tables.timeseries.insert(), list(batch))
        logger.info("Time series rebuilt: %d rows", len(series))
        return len(series)

    def relink_history(self, conn: Connection = None) -> int:
        crimes, history = self.tables.crimes, self.tables.history
        first_match = (
            select(func.min(crimes.c.id))
            .where(crimes.c.ro == history.c.ro)
            .scalar_subquery()
        )
        with self._step("relink history", conn) as c:
            updated = c.execute(update(history).values(record_id=first_match)).rowcount
        logger.info("Relinked %s history entries", updated)
        return updated

    # ------------------------------
    # Entry point
    # ------------------------------
    def import_file(self, source: Source, filename: str = None, with_timeseries: bool = True) -> ImportResult:
        """
        Run the whole import.

        Raises:
            SpreadsheetFormatError: unreadable file or missing columns
                (nothing has been deleted yet).
            StorageError: a clear/insert step failed; the dataset is left
                as that step found it.
        """
        sheet = read_spreadsheet(source, filename)
        records, rejections = normalize_rows(sheet.columns, sheet.rows)

        if self.transactional:
            with self._step("transaction") as conn:
                self.clear(conn)
                inserted = self.insert_records(records, conn)
                series = self.insert_timeseries(records, conn) if with_timeseries else 0
                self.relink_history(conn)
        else:
            self.clear()
            inserted = self.insert_records(records)
            series = self.insert_timeseries(records) if with_timeseries else 0
            self.relink_history()

        logger.info("Import complete | read=%d | inserted=%d | dropped=%d",
                    len(sheet.rows), inserted, len(rejections))
        return ImportResult(
            success=True,
            rows_read=len(sheet.rows),
            rows_inserted=inserted,
            rows_dropped=len(rejections),
            timeseries_rows=series,
            rejections=rejections,
        )
