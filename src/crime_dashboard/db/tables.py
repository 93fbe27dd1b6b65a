"""
tables.py
----------
SQLAlchemy Core definitions of the four logical tables.

Each DataScope gets its own MetaData and its own set of physical table
names (production: crimes, targets, ...; staging: crimes_test, ...).
The TableSet is resolved once at startup and handed to every component
that talks to the backend.
"""

from dataclasses import dataclass
from typing import Dict

from sqlalchemy import (
    MetaData, Table, Column, Integer, String, Text, Date, DateTime,
    ForeignKey, UniqueConstraint, CheckConstraint, func
)
from sqlalchemy.engine import Engine

from crime_dashboard.config import DataScope

# Logical name -> base physical name
CRIMES = "crimes"
TIMESERIES = "crime_timeseries"
TARGETS = "targets"
HISTORY = "crime_history"


@dataclass(frozen=True)
class TableSet:
    scope: DataScope
    metadata: MetaData
    crimes: Table
    timeseries: Table
    targets: Table
    history: Table

    def create_all(self, engine: Engine) -> None:
        """Create any missing tables for this scope."""
        self.metadata.create_all(bind=engine, checkfirst=True)


def table_name(logical: str, scope: DataScope) -> str:
    return f"{logical}{scope.table_suffix}"


def _build(scope: DataScope) -> TableSet:
    metadata = MetaData()
    crimes_name = table_name(CRIMES, scope)

    crimes = Table(
        crimes_name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("objectid", Integer, nullable=True),
        Column("ro", String(64), nullable=False, index=True),
        Column("day", String(8), nullable=False),
        Column("month", String(8), nullable=False),
        Column("year", String(8), nullable=False),
        Column("registration_date", Date, nullable=True, index=True),
        Column("strategic_indicator", String(64), nullable=False),
        Column("aisp", String(32), nullable=False, index=True),
        Column("risp", String(32), nullable=False),
        Column("cisp", String(32), nullable=False),
        Column("municipality", String(128), nullable=False),
        Column("neighborhood", String(128), nullable=False),
        Column("time_bracket", String(32), nullable=False),
        Column("hour", String(8), nullable=True),
        Column("offense_title", String(255), nullable=False),
        Column("occurrence_title", String(255), nullable=False),
        Column("release_phase", String(64), nullable=False),
        Column("weekday", String(32), nullable=False),
        Column("created_at", DateTime, server_default=func.now()),
        # ids are never reused after a re-import clears the table
        sqlite_autoincrement=True,
    )

    timeseries = Table(
        table_name(TIMESERIES, scope),
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("date", Date, nullable=False, index=True),
        Column("unit", String(32), nullable=False, index=True),
        Column("count", Integer, nullable=False),
    )

    targets = Table(
        table_name(TARGETS, scope),
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("unit", String(32), nullable=False),
        Column("risp", String(32), nullable=True),
        Column("year", Integer, nullable=False),
        Column("semester", Integer, nullable=False),
        Column("crime_type", String(64), nullable=False),
        Column("target_value", Integer, nullable=False, default=0),
        Column("created_at", DateTime, server_default=func.now()),
        Column("updated_at", DateTime, server_default=func.now()),
        UniqueConstraint("unit", "year", "semester", "crime_type",
                         name=f"uq_{table_name(TARGETS, scope)}_unit_period_type"),
        CheckConstraint("semester IN (1, 2)", name=f"ck_{table_name(TARGETS, scope)}_semester"),
        CheckConstraint("target_value >= 0", name=f"ck_{table_name(TARGETS, scope)}_value"),
    )

    history = Table(
        table_name(HISTORY, scope),
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("record_id", Integer, ForeignKey(f"{crimes_name}.id", ondelete="SET NULL"), nullable=True),
        Column("ro", String(64), nullable=False, index=True),
        Column("text", Text, nullable=False),
        Column("created_at", DateTime, server_default=func.now(), nullable=False),
        Column("updated_at", DateTime, server_default=func.now(), nullable=False),
    )

    return TableSet(scope=scope, metadata=metadata, crimes=crimes,
                    timeseries=timeseries, targets=targets, history=history)


# Cache of already-built table sets: {scope: TableSet}
_table_cache: Dict[DataScope, TableSet] = {}


def get_tables(scope: DataScope) -> TableSet:
    tables = _table_cache.get(scope)
    if tables is None:
        tables = _build(scope)
        _table_cache[scope] = tables
    return tables
