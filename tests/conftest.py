import io

import pandas as pd
import pytest

from crime_dashboard.config import load_settings
from crime_dashboard.db import create_backend_engine, get_tables

PUBLIC_KEY = "public-test-key"
ADMIN_KEY = "admin-test-key"

TEST_ENV = {
    "DASHBOARD_BACKEND_URL": "sqlite+pysqlite:///:memory:",
    "DASHBOARD_PUBLIC_KEY": PUBLIC_KEY,
    "DASHBOARD_ADMIN_KEY": ADMIN_KEY,
    "DASHBOARD_YEAR": "2025",
    "DASHBOARD_SEMESTER": "1",
}


def incident_row(**overrides):
    """One spreadsheet row with every expected header, valid by default."""
    row = {
        "Dia do registro": 5,
        "Mes do registro": 3,
        "Ano do registro": 2025,
        "RO": "001-00001/2025",
        "Título do delito": "Homicídio doloso",
        "Indicador estratégico": "Letalidade Violenta",
        "AISP do fato": "AISP 10",
        "RISP do fato": "5ª RISP",
        "Município do fato (IBGE)": "Vassouras",
        "Bairro": "Centro",
        "Faixa horária": "06h às 11h59",
    }
    row.update(overrides)
    return row


def to_xlsx(rows, columns=None):
    """Rows -> .xlsx bytes (first sheet, header row)."""
    buf = io.BytesIO()
    pd.DataFrame(rows, columns=columns).to_excel(buf, index=False, engine="openpyxl")
    return buf.getvalue()


@pytest.fixture
def settings():
    return load_settings(dict(TEST_ENV))


@pytest.fixture
def engine(settings):
    eng = create_backend_engine(settings)
    yield eng
    eng.dispose()


@pytest.fixture
def tables(settings, engine):
    t = get_tables(settings.scope)
    t.create_all(engine)
    return t


@pytest.fixture
def public_headers():
    return {"X-API-Key": PUBLIC_KEY}


@pytest.fixture
def admin_headers():
    return {"X-API-Key": ADMIN_KEY}


@pytest.fixture
def base_env():
    return dict(TEST_ENV)


@pytest.fixture
def make_row():
    return incident_row


@pytest.fixture
def make_xlsx():
    return to_xlsx


@pytest.fixture
def write_client(settings, engine, tables):
    from crime_dashboard.write_service.app import create_app
    app = create_app(settings, engine)
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


@pytest.fixture
def read_client(settings, engine, tables):
    from crime_dashboard.read_service.app import create_app
    app = create_app(settings, engine)
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c
