"""
target_editor.py
-----------------
Edits on the targets table: seed, inline edit, upsert, and per-unit
bulk-zero with undo.

The undo side keeps, per unit, a snapshot of the rows taken right before
they were zeroed. Snapshots live in memory, carry a timestamp and expire
after a TTL; the buffer also holds at most max_entries units and evicts
the oldest one first.
"""

import time
import logging
import threading
from collections import OrderedDict
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from crime_dashboard.db.tables import TableSet
from crime_dashboard.exceptions import RecordNotFoundError, StorageError, UndoUnavailableError
from crime_dashboard.read_service.processors.target_processor import get_targets
from crime_dashboard.reference import CATEGORIES, COMMAND_UNIT, TARGET_UNITS

logger = logging.getLogger(__name__)

CONFLICT_COLUMNS = ("unit", "year", "semester", "crime_type")
SNAPSHOT_COLUMNS = ("unit", "risp", "year", "semester", "crime_type", "target_value")


class UndoBuffer:
    """Bounded, timestamped {unit: rows} snapshots."""

    def __init__(self, ttl_seconds: Optional[float] = None, max_entries: int = 32,
                 clock: Callable[[], float] = time.monotonic):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.clock = clock
        self._entries: "OrderedDict[str, Tuple[float, List[Dict[str, Any]]]]" = OrderedDict()
        # shared by request threads; _prune runs with the lock held
        self._lock = threading.Lock()

    def _expired(self, stored_at: float) -> bool:
        return self.ttl_seconds is not None and self.clock() - stored_at > self.ttl_seconds

    def _prune(self) -> None:
        for unit in [u for u, (stored_at, _) in self._entries.items() if self._expired(stored_at)]:
            logger.info("Undo snapshot for %s expired", unit)
            del self._entries[unit]

    def put(self, unit: str, rows: List[Dict[str, Any]]) -> None:
        snapshot = [dict(r) for r in rows]
        with self._lock:
            self._prune()
            self._entries.pop(unit, None)
            self._entries[unit] = (self.clock(), snapshot)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.info("Undo buffer full, dropped snapshot for %s", evicted)

    def get(self, unit: str) -> Optional[List[Dict[str, Any]]]:
        with self._lock:
            self._prune()
            entry = self._entries.get(unit)
        return [dict(r) for r in entry[1]] if entry else None

    def pop(self, unit: str) -> None:
        with self._lock:
            self._entries.pop(unit, None)

    def __contains__(self, unit: str) -> bool:
        with self._lock:
            self._prune()
            return unit in self._entries

    def __len__(self) -> int:
        with self._lock:
            self._prune()
            return len(self._entries)


def _upsert_statement(conn: Connection, table, rows: List[Dict[str, Any]], overwrite: bool):
    dialect = conn.dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(table).values(rows)
    elif dialect == "sqlite":
        stmt = sqlite.insert(table).values(rows)
    else:
        return None

    if not overwrite:
        return stmt.on_conflict_do_nothing(index_elements=list(CONFLICT_COLUMNS))
    return stmt.on_conflict_do_update(
        index_elements=list(CONFLICT_COLUMNS),
        set_={
            "target_value": stmt.excluded.target_value,
            "risp": stmt.excluded.risp,
            "updated_at": func.now(),
        },
    )


class TargetEditor:
    def __init__(self, engine: Engine, tables: TableSet, undo_buffer: UndoBuffer = None):
        self.engine = engine
        self.tables = tables
        self.undo_buffer = undo_buffer if undo_buffer is not None else UndoBuffer()

    @contextmanager
    def _write(self, step: str):
        """engine.begin() that turns SQLAlchemyError into StorageError(step)."""
        try:
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            logger.error("%s failed: %s", step, e)
            raise StorageError(step, e) from e

    # ------------------------------
    # Reads
    # ------------------------------
    def list_targets(self, year: int, semester: int) -> List[Dict[str, Any]]:
        return get_targets(self.engine, self.tables, year, semester)

    # ------------------------------
    # Writes
    # ------------------------------
    def update_target(self, target_id: int, value: int) -> Dict[str, Any]:
        """
        Set target_value on one row.

        Raises:
            ValueError: value isn't a non-negative integer.
            RecordNotFoundError: no target with that id.
        """
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError("target_value must be a non-negative integer")

        targets = self.tables.targets
        with self._write("update target") as conn:
            result = conn.execute(
                update(targets)
                .where(targets.c.id == target_id)
                .values(target_value=value, updated_at=func.now())
            )
            if result.rowcount == 0:
                raise RecordNotFoundError(f"Target {target_id} not found")
            row = conn.execute(select(targets).where(targets.c.id == target_id)).first()

        logger.info("Target %s set to %d", target_id, value)
        return dict(row._mapping)

    def _upsert(self, conn: Connection, rows: List[Dict[str, Any]], overwrite: bool = True) -> None:
        targets = self.tables.targets
        stmt = _upsert_statement(conn, targets, rows, overwrite)
        if stmt is not None:
            conn.execute(stmt)
            return

        # No native ON CONFLICT: look each row up and update or insert
        for row in rows:
            match = [targets.c[col] == row[col] for col in CONFLICT_COLUMNS]
            existing = conn.execute(select(targets.c.id).where(*match)).scalar()
            if existing is None:
                conn.execute(targets.insert().values(**row))
            elif overwrite:
                conn.execute(
                    update(targets).where(targets.c.id == existing)
                    .values(target_value=row["target_value"], updated_at=func.now())
                )

    def upsert_targets(self, rows: List[Dict[str, Any]]) -> int:
        """Insert each row, or update its value when (unit, year, semester, crime_type) exists."""
        if not rows:
            return 0
        with self._write("upsert targets") as conn:
            self._upsert(conn, rows)
        logger.info("Upserted %d targets", len(rows))
        return len(rows)

    def ensure_targets_exist(self, year: int, semester: int) -> int:
        """Seed a zero target for every unit/category pair missing in the period."""
        rows = [
            {
                "unit": unit,
                "risp": COMMAND_UNIT,
                "year": year,
                "semester": semester,
                "crime_type": category.target_name,
                "target_value": 0,
            }
            for unit in TARGET_UNITS
            for category in CATEGORIES
        ]
        targets = self.tables.targets
        with self._write("seed targets") as conn:
            before = conn.execute(
                select(func.count()).select_from(targets)
                .where(targets.c.year == year, targets.c.semester == semester)
            ).scalar()
            self._upsert(conn, rows, overwrite=False)
            after = conn.execute(
                select(func.count()).select_from(targets)
                .where(targets.c.year == year, targets.c.semester == semester)
            ).scalar()

        logger.info("Seeded %d targets for %d/S%d", after - before, year, semester)
        return after - before

    # ------------------------------
    # Bulk-zero / undo
    # ------------------------------
    def clear_targets_by_unit(self, unit: str, year: int, semester: int) -> int:
        """
        Snapshot the unit's targets for the period, then set them all to 0.

        Raises:
            RecordNotFoundError: the unit has no targets in that period.
        """
        targets = self.tables.targets
        scope = (targets.c.unit == unit, targets.c.year == year, targets.c.semester == semester)

        with self._write("clear targets") as conn:
            rows = conn.execute(select(targets).where(*scope)).fetchall()
            if not rows:
                raise RecordNotFoundError(f"No targets for {unit} in {year}/S{semester}")
            snapshot = [{c: r._mapping[c] for c in SNAPSHOT_COLUMNS} for r in rows]
            self.undo_buffer.put(unit, snapshot)
            conn.execute(update(targets).where(*scope).values(target_value=0, updated_at=func.now()))

        logger.info("Zeroed %d targets for %s (undo available)", len(snapshot), unit)
        return len(snapshot)

    def undo_clear_targets(self, unit: str) -> int:
        """
        Restore the last snapshot taken for the unit and forget it.

        Raises:
            UndoUnavailableError: no snapshot stored (or it expired).
        """
        snapshot = self.undo_buffer.get(unit)
        if not snapshot:
            raise UndoUnavailableError(f"Nothing to undo for {unit}")

        restored = self.upsert_targets(snapshot)
        self.undo_buffer.pop(unit)
        logger.info("Restored %d targets for %s", restored, unit)
        return restored

    def can_undo(self, unit: str) -> bool:
        return unit in self.undo_buffer
