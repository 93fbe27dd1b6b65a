# src/crime_dashboard/read_service/processors/target_processor.py

"""
Target processor for read operations.
Fetches the targets of one period and serializes them for the API.
"""

import time
import logging
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from crime_dashboard.db.tables import TableSet
from crime_dashboard.exceptions import StorageError
from crime_dashboard.reference import CATEGORIES, TARGET_UNITS, match_category

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 1
NULL_ID_ERROR = 'null value in column "id"'


def _sort_key(row: Dict[str, Any]):
    category = match_category(row["crime_type"])
    cat_idx = CATEGORIES.index(category) if category is not None else len(CATEGORIES)
    unit_idx = TARGET_UNITS.index(row["unit"]) if row["unit"] in TARGET_UNITS else len(TARGET_UNITS)
    return cat_idx, unit_idx, row["unit"]


def serialize_target(row: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(row)
    for key in ("created_at", "updated_at"):
        if out.get(key) is not None:
            out[key] = out[key].isoformat()
    return out


def get_targets(engine: Engine, tables: TableSet, year: int, semester: int) -> List[Dict[str, Any]]:
    """
    Retrieve the targets of (year, semester), ordered by category then unit.

    A freshly seeded table on PostgreSQL can briefly answer with a
    'null value in column "id"' error; that one error is retried up to
    three times, one second apart. Anything else fails right away.

    Raises:
        StorageError: the query failed (after retries, for the null-id error).
    """
    targets = tables.targets
    query = (
        select(targets)
        .where(targets.c.year == year, targets.c.semester == semester)
        .order_by(targets.c.unit)
    )

    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            with engine.connect() as conn:
                rows = [dict(r._mapping) for r in conn.execute(query)]
            break
        except SQLAlchemyError as e:
            if NULL_ID_ERROR in str(e) and attempt < MAX_ATTEMPTS:
                logger.warning("Target fetch attempt %d hit a null id, retrying", attempt)
                time.sleep(RETRY_DELAY_SECONDS)
                continue
            logger.error("Failed to fetch targets: %s", e)
            raise StorageError("fetch targets", e) from e

    return sorted(rows, key=_sort_key)


def targets_by_unit(rows: List[Dict[str, Any]]) -> Dict[str, Dict[str, int]]:
    """{unit: {crime_type: target_value}} lookup used by the delta computation."""
    lookup: Dict[str, Dict[str, int]] = {}
    for row in rows:
        lookup.setdefault(row["unit"], {})[row["crime_type"]] = row["target_value"]
    return lookup
