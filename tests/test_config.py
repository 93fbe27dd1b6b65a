import pytest

from crime_dashboard.config import DataScope, load_settings
from crime_dashboard.db.tables import get_tables
from crime_dashboard.exceptions import ConfigurationError


def test_defaults_applied(base_env):
    settings = load_settings(base_env)
    assert settings.scope is DataScope.PRODUCTION
    assert settings.import_batch_size == 1000
    assert settings.import_transactional is False
    assert settings.undo_max_entries == 32
    assert settings.default_year == 2025
    assert settings.default_semester == 1


@pytest.mark.parametrize("missing", ["DASHBOARD_BACKEND_URL", "DASHBOARD_PUBLIC_KEY", "DASHBOARD_ADMIN_KEY"])
def test_missing_required_variable_is_fatal(base_env, missing):
    env = base_env
    del env[missing]
    with pytest.raises(ConfigurationError) as exc:
        load_settings(env)
    assert missing in str(exc.value)


def test_empty_required_variable_is_fatal(base_env):
    env = dict(base_env, DASHBOARD_ADMIN_KEY="")
    with pytest.raises(ConfigurationError):
        load_settings(env)


@pytest.mark.parametrize("name,value", [
    ("DASHBOARD_SCOPE", "qa"),
    ("IMPORT_BATCH_SIZE", "0"),
    ("IMPORT_BATCH_SIZE", "many"),
    ("DASHBOARD_SEMESTER", "3"),
    ("TARGET_UNDO_MAX_ENTRIES", "0"),
    ("TARGET_UNDO_MAX_ENTRIES", "-2"),
])
def test_invalid_values_rejected(base_env, name, value):
    with pytest.raises(ConfigurationError):
        load_settings(dict(base_env, **{name: value}))


def test_zero_ttl_means_no_expiry(base_env):
    settings = load_settings(dict(base_env, TARGET_UNDO_TTL_SECONDS="0"))
    assert settings.undo_ttl_seconds is None


def test_staging_scope_uses_test_tables(base_env):
    settings = load_settings(dict(base_env, DASHBOARD_SCOPE="Staging", IMPORT_TRANSACTIONAL="true"))
    assert settings.scope is DataScope.STAGING
    assert settings.import_transactional is True

    tables = get_tables(settings.scope)
    assert tables.crimes.name == "crimes_test"
    assert tables.targets.name == "targets_test"
    assert get_tables(DataScope.PRODUCTION).crimes.name == "crimes"
