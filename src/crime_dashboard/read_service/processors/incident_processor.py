# src/crime_dashboard/read_service/processors/incident_processor.py

"""
Incident processor for read operations.
Queries the crimes and crime_timeseries tables for one unit or for the
whole command.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from crime_dashboard.db.tables import TableSet
from crime_dashboard.exceptions import RecordNotFoundError, StorageError
from crime_dashboard.reference import COMMAND_UNITS, UNITS

logger = logging.getLogger(__name__)


def serialize(row: Dict[str, Any]) -> Dict[str, Any]:
    """Row mapping -> JSON-friendly dict (dates as ISO strings)."""
    return {
        key: value.isoformat() if isinstance(value, (date, datetime)) else value
        for key, value in row.items()
    }


def units_for_scope(scope: str) -> List[str]:
    """
    AISPs covered by a scope: the unit itself, or every unit of a command.

    Raises:
        RecordNotFoundError: scope is neither a known unit nor a command.
    """
    if scope in COMMAND_UNITS:
        return list(COMMAND_UNITS[scope])
    if scope in UNITS:
        return [scope]
    raise RecordNotFoundError(f"Unknown unit: {scope}")


def get_records(engine: Engine, tables: TableSet, scope: str, since: Optional[date] = None) -> List[Dict[str, Any]]:
    """
    Retrieve the incident records of a unit (or of every unit in a command).

    Args:
        since: keep only records registered on or after this date.
    """
    crimes = tables.crimes
    query = select(crimes).where(crimes.c.aisp.in_(units_for_scope(scope)))
    if since is not None:
        query = query.where(crimes.c.registration_date >= since)
    query = query.order_by(crimes.c.id)

    try:
        with engine.connect() as conn:
            return [dict(r._mapping) for r in conn.execute(query)]
    except SQLAlchemyError as e:
        logger.error("Failed to fetch records for %s: %s", scope, e)
        raise StorageError("fetch records", e) from e


def get_record_by_ro(engine: Engine, tables: TableSet, ro: str) -> Dict[str, Any]:
    """
    Raises:
        RecordNotFoundError: no incident carries that RO.
    """
    crimes = tables.crimes
    try:
        with engine.connect() as conn:
            row = conn.execute(
                select(crimes).where(crimes.c.ro == ro).order_by(crimes.c.id).limit(1)
            ).first()
    except SQLAlchemyError as e:
        logger.error("Failed to fetch record %s: %s", ro, e)
        raise StorageError("fetch record", e) from e

    if row is None:
        raise RecordNotFoundError(f"Record {ro} not found")
    return dict(row._mapping)


def get_timeseries(engine: Engine, tables: TableSet, scope: str, since: Optional[date] = None) -> List[Dict[str, Any]]:
    """Daily counts for a scope, summed across its units: [{"date", "count"}] by date."""
    series = tables.timeseries
    query = (
        select(series.c.date, func.sum(series.c.count).label("count"))
        .where(series.c.unit.in_(units_for_scope(scope)))
        .group_by(series.c.date)
        .order_by(series.c.date)
    )
    if since is not None:
        query = query.where(series.c.date >= since)

    try:
        with engine.connect() as conn:
            return [{"date": r.date, "count": int(r.count)} for r in conn.execute(query)]
    except SQLAlchemyError as e:
        logger.error("Failed to fetch time series for %s: %s", scope, e)
        raise StorageError("fetch time series", e) from e


def window_start(days: Optional[int], reference: date = None) -> Optional[date]:
    """First day inside a trailing window of `days` days ending on reference (today)."""
    if days is None:
        return None
    reference = reference or date.today()
    return reference - timedelta(days=days - 1)


# Dashboard time filter -> number of days
TIME_RANGES = {"7D": 7, "30D": 30, "90D": 90}


def parse_time_range(value: Optional[str]) -> Optional[int]:
    """'30D' -> 30. Empty/None means no window.

    Raises:
        ValueError: anything other than 7D, 30D or 90D.
    """
    if value is None or not value.strip():
        return None
    key = value.strip().upper()
    if key not in TIME_RANGES:
        raise ValueError(f"range must be one of {', '.join(TIME_RANGES)}")
    return TIME_RANGES[key]
