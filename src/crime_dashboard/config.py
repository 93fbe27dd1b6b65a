"""
config.py
----------
Settings for both services, read once from the environment (and .env).

Three values are mandatory: the backend URL, the public key used by
read-only clients and the admin key used for imports and target edits.
Any of them missing is a fatal startup error.
"""

import os
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from dotenv import load_dotenv

from crime_dashboard.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class DataScope(Enum):
    """Which of the two parallel table sets the services work against."""
    PRODUCTION = "production"
    STAGING = "staging"

    @property
    def table_suffix(self) -> str:
        return "_test" if self is DataScope.STAGING else ""


REQUIRED_VARS = ("DASHBOARD_BACKEND_URL", "DASHBOARD_PUBLIC_KEY", "DASHBOARD_ADMIN_KEY")


@dataclass(frozen=True)
class Settings:
    backend_url: str
    public_key: str
    admin_key: str
    scope: DataScope = DataScope.PRODUCTION
    import_batch_size: int = 1000
    import_transactional: bool = False
    undo_ttl_seconds: Optional[int] = 86400
    undo_max_entries: int = 32
    default_year: int = 2025
    default_semester: int = 1
    log_level: str = "INFO"


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "t", "yes", "y"}


def _as_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from a mapping (defaults to os.environ after load_dotenv()).

    Raises:
        ConfigurationError: a required variable is missing, or a value
        can't be parsed.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    missing = [name for name in REQUIRED_VARS if not env.get(name)]
    if missing:
        raise ConfigurationError("Missing required environment variables: " + ", ".join(missing))

    scope_raw = env.get("DASHBOARD_SCOPE", DataScope.PRODUCTION.value).strip().lower()
    try:
        scope = DataScope(scope_raw)
    except ValueError:
        raise ConfigurationError(f"DASHBOARD_SCOPE must be 'production' or 'staging', got {scope_raw!r}")

    batch_size = _as_int(env, "IMPORT_BATCH_SIZE", 1000)
    if batch_size < 1:
        raise ConfigurationError("IMPORT_BATCH_SIZE must be positive")

    semester = _as_int(env, "DASHBOARD_SEMESTER", 1)
    if semester not in (1, 2):
        raise ConfigurationError("DASHBOARD_SEMESTER must be 1 or 2")

    # 0 means snapshots never expire
    ttl = _as_int(env, "TARGET_UNDO_TTL_SECONDS", 86400)

    undo_max_entries = _as_int(env, "TARGET_UNDO_MAX_ENTRIES", 32)
    if undo_max_entries < 1:
        raise ConfigurationError("TARGET_UNDO_MAX_ENTRIES must be positive")

    settings = Settings(
        backend_url=env["DASHBOARD_BACKEND_URL"],
        public_key=env["DASHBOARD_PUBLIC_KEY"],
        admin_key=env["DASHBOARD_ADMIN_KEY"],
        scope=scope,
        import_batch_size=batch_size,
        import_transactional=_as_bool(env.get("IMPORT_TRANSACTIONAL", "false")),
        undo_ttl_seconds=ttl if ttl > 0 else None,
        undo_max_entries=undo_max_entries,
        default_year=_as_int(env, "DASHBOARD_YEAR", 2025),
        default_semester=semester,
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )
    logger.info("Loaded settings | scope=%s | batch_size=%d", settings.scope.value, settings.import_batch_size)
    return settings


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=settings.log_level, format="%(asctime)s [%(levelname)s] %(message)s")
