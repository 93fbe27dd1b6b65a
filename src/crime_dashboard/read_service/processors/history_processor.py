# src/crime_dashboard/read_service/processors/history_processor.py

"""
History processor for read operations.
History entries are listed newest first.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from crime_dashboard.db.tables import TableSet
from crime_dashboard.exceptions import StorageError

logger = logging.getLogger(__name__)


class HistoryProcessor:
    def __init__(self, engine: Engine, tables: TableSet):
        self.engine = engine
        self.tables = tables

    def _fetch(self, *criteria, limit: int = None) -> List[Dict[str, Any]]:
        history = self.tables.history
        query = (
            select(history)
            .where(*criteria)
            .order_by(history.c.created_at.desc(), history.c.id.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        try:
            with self.engine.connect() as conn:
                return [dict(r._mapping) for r in conn.execute(query)]
        except SQLAlchemyError as e:
            logger.error("Failed to fetch history: %s", e)
            raise StorageError("fetch history", e) from e

    def history_by_ro(self, ro: str) -> List[Dict[str, Any]]:
        return self._fetch(self.tables.history.c.ro == ro)

    def history_by_record_id(self, record_id: int) -> List[Dict[str, Any]]:
        return self._fetch(self.tables.history.c.record_id == record_id)

    def latest_for_ro(self, ro: str) -> Optional[Dict[str, Any]]:
        rows = self._fetch(self.tables.history.c.ro == ro, limit=1)
        return rows[0] if rows else None
