"""
session.py
-----------
Creates the database engine for the backend configured in Settings.
"""

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from crime_dashboard.config import Settings

logger = logging.getLogger(__name__)


def create_backend_engine(settings: Settings) -> Engine:
    """
    Return a SQLAlchemy engine for settings.backend_url.

    In-memory SQLite (used by the test suite) needs a single shared
    connection, otherwise every checkout would see an empty database.
    """
    url = settings.backend_url
    if url.startswith("sqlite") and ":memory:" in url:
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )
    else:
        engine = create_engine(url, pool_pre_ping=True, future=True)

    logger.info("Connecting: %s", url.split("@")[1] if "@" in url else engine.dialect.name)
    return engine
