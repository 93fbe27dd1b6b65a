"""Manual add / edit / delete of history entries."""

import logging
from contextlib import contextmanager
from typing import Any, Dict

from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from crime_dashboard.db.tables import TableSet
from crime_dashboard.exceptions import RecordNotFoundError, StorageError

logger = logging.getLogger(__name__)


class HistoryEditor:
    def __init__(self, engine: Engine, tables: TableSet):
        self.engine = engine
        self.tables = tables

    @contextmanager
    def _write(self, step: str):
        try:
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            logger.error("%s failed: %s", step, e)
            raise StorageError(step, e) from e

    def _get(self, conn, entry_id: int) -> Dict[str, Any]:
        history = self.tables.history
        row = conn.execute(select(history).where(history.c.id == entry_id)).first()
        return dict(row._mapping)

    def add_history(self, ro: str, text: str) -> Dict[str, Any]:
        """
        Append an entry to the incident with this RO.

        Raises:
            ValueError: empty text.
            RecordNotFoundError: no incident carries the RO.
        """
        text = (text or "").strip()
        if not text:
            raise ValueError("History text must not be empty")

        crimes = self.tables.crimes
        with self._write("add history") as conn:
            record_id = conn.execute(
                select(crimes.c.id).where(crimes.c.ro == ro).order_by(crimes.c.id).limit(1)
            ).scalar()
            if record_id is None:
                raise RecordNotFoundError(f"Record {ro} not found")
            result = conn.execute(
                self.tables.history.insert().values(record_id=record_id, ro=ro, text=text)
            )
            entry = self._get(conn, result.inserted_primary_key[0])

        logger.info("History entry %s added to %s", entry["id"], ro)
        return entry

    def update_history(self, entry_id: int, text: str) -> Dict[str, Any]:
        text = (text or "").strip()
        if not text:
            raise ValueError("History text must not be empty")

        history = self.tables.history
        with self._write("update history") as conn:
            result = conn.execute(
                update(history).where(history.c.id == entry_id)
                .values(text=text, updated_at=func.now())
            )
            if result.rowcount == 0:
                raise RecordNotFoundError(f"History entry {entry_id} not found")
            return self._get(conn, entry_id)

    def delete_history(self, entry_id: int) -> None:
        history = self.tables.history
        with self._write("delete history") as conn:
            result = conn.execute(delete(history).where(history.c.id == entry_id))
            if result.rowcount == 0:
                raise RecordNotFoundError(f"History entry {entry_id} not found")
        logger.info("History entry %s deleted", entry_id)
