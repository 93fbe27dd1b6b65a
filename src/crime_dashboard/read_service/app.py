"""
app.py: Flask application for the read side of the crime dashboard.

This service answers the dashboard screens:
- Command-wide and per-unit totals, target deltas and heat-map buckets.
- Daily time series, the targets of a period, record detail by RO.
- Open API (Swagger) integration for documentation.

Run with: python -m crime_dashboard.read_service.app (starts on port 5001).
Shares the database with write_service; every endpoint except /health
needs the public or admin key in the X-API-Key header.
"""

import os
import logging

from flask import Flask, jsonify
from flask_cors import CORS
from flask_swagger_ui import get_swaggerui_blueprint
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from crime_dashboard.config import configure_logging, load_settings
from crime_dashboard.db import create_backend_engine, get_tables
from crime_dashboard.read_service.api.dashboard import create_dashboard_blueprint
from crime_dashboard.read_service.api.errors import register_error_handlers
from crime_dashboard.read_service.api.records import create_records_blueprint

logger = logging.getLogger(__name__)

# Swagger UI configuration
SWAGGER_URL = '/swagger'  # URL for Swagger UI (e.g., http://localhost:5001/swagger)
API_URL = '/swagger.json'

SWAGGER_CONFIG = {
    'app_name': "Crime Dashboard - Read Service",
    'deepLinking': True,
    'defaultModelsExpandDepth': -1,
}

_RANGE_PARAM = {"name": "range", "in": "query", "required": False,
                "schema": {"type": "string", "enum": ["7D", "30D", "90D"]}}
_PERIOD_PARAMS = [
    {"name": "year", "in": "query", "required": False, "schema": {"type": "integer"}},
    {"name": "semester", "in": "query", "required": False, "schema": {"type": "integer", "enum": [1, 2]}},
]
_UNIT_PARAM = {"name": "unit", "in": "path", "required": True, "schema": {"type": "string"},
               "example": "AISP 10"}
_AUTH = [{"ApiKey": []}]

OPENAPI_SPEC = {
    "openapi": "3.0.0",
    "info": {"title": "Crime Dashboard Read Service", "version": "1.0.0"},
    "components": {
        "securitySchemes": {"ApiKey": {"type": "apiKey", "in": "header", "name": "X-API-Key"}}
    },
    "paths": {
        "/health": {
            "get": {
                "summary": "Health check",
                "responses": {"200": {"description": "OK"}}
            }
        },
        "/api/dashboard": {
            "get": {
                "summary": "Command-wide totals per category and unit, with targets",
                "tags": ["Dashboard"],
                "security": _AUTH,
                "parameters": [_RANGE_PARAM] + _PERIOD_PARAMS,
                "responses": {
                    "200": {
                        "description": "Totals for RISP 5 and each of its units, deltas against "
                                       "the command targets, trend percentages and the unit comparison table.",
                        "content": {
                            "application/json": {
                                "example": {
                                    "unit": "RISP 5",
                                    "command": {"unit": "RISP 5", "letalidade_violenta": 1, "roubo_de_veiculo": 0,
                                                "roubo_de_rua": 1, "roubo_de_carga": 0, "total": 2},
                                    "trend": {"letalidade_violenta": -50.0, "roubo_de_veiculo": 0.0,
                                              "roubo_de_rua": 0.0, "roubo_de_carga": 0.0},
                                    "comparison": [{"unit": "AISP 10", "total": 2, "target": 5,
                                                    "difference": -3, "over_target": False}]
                                }
                            }
                        }
                    },
                    "400": {"description": "Bad range/year/semester"},
                    "401": {"description": "Missing or invalid key"}
                }
            }
        },
        "/api/units/{unit}": {
            "get": {
                "summary": "One unit's totals, target deltas and heat map",
                "tags": ["Dashboard"],
                "security": _AUTH,
                "parameters": [_UNIT_PARAM, _RANGE_PARAM] + _PERIOD_PARAMS,
                "responses": {"200": {"description": "Unit dashboard"}, "404": {"description": "Unknown unit"}}
            }
        },
        "/api/units/{unit}/heatmap": {
            "get": {
                "summary": "Heat-map buckets (city x category) for a unit",
                "tags": ["Dashboard"],
                "security": _AUTH,
                "parameters": [_UNIT_PARAM, _RANGE_PARAM],
                "responses": {"200": {"description": "Buckets with coordinates, counts and neighborhoods"}}
            }
        },
        "/api/units/{unit}/timeseries": {
            "get": {
                "summary": "Daily incident counts for a unit or the command",
                "tags": ["Dashboard"],
                "security": _AUTH,
                "parameters": [_UNIT_PARAM, _RANGE_PARAM],
                "responses": {"200": {"description": "List of {date, count}"}}
            }
        },
        "/api/targets": {
            "get": {
                "summary": "Targets of a period",
                "tags": ["Targets"],
                "security": _AUTH,
                "parameters": _PERIOD_PARAMS,
                "responses": {"200": {"description": "Targets ordered by category, then unit"}}
            }
        },
        "/api/records/{ro}": {
            "get": {
                "summary": "Incident record and its history by report number",
                "tags": ["Records"],
                "security": _AUTH,
                "parameters": [{"name": "ro", "in": "path", "required": True, "schema": {"type": "string"}}],
                "responses": {"200": {"description": "Record plus history"}, "404": {"description": "Unknown RO"}}
            }
        }
    }
}


def create_app(settings=None, engine=None):
    """
    Build the read service.

    Args:
        settings: defaults to load_settings() (environment / .env).
        engine: defaults to an engine for settings.backend_url.
    """
    settings = settings or load_settings()
    configure_logging(settings)
    engine = engine or create_backend_engine(settings)
    tables = get_tables(settings.scope)
    tables.create_all(engine)

    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    app.logger.setLevel(settings.log_level)

    # Use Flask CORS to allow connections from the dashboard front-end
    CORS(app)

    app.register_blueprint(get_swaggerui_blueprint(SWAGGER_URL, API_URL, config=SWAGGER_CONFIG))
    app.register_blueprint(create_dashboard_blueprint(engine, tables))
    app.register_blueprint(create_records_blueprint(engine, tables))
    register_error_handlers(app)

    @app.route('/health', methods=['GET'])
    def health():
        """
        Health check for read_service: verifies the database connection.
        Returns: {"status": "ok", "database": true, "scope": "production"}
        """
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            db_status = True
        except OperationalError as e:
            app.logger.error(f"Database health check failed: {e}")
            db_status = False

        return jsonify({
            "status": "ok" if db_status else "error",
            "service": "read_service",
            "database": db_status,
            "scope": settings.scope.value,
        })

    @app.route('/swagger.json', methods=['GET'])
    def swagger_spec():
        """Open API spec for read_service endpoints."""
        return jsonify(OPENAPI_SPEC)

    logger.info("Read service ready | scope=%s", settings.scope.value)
    return app


if __name__ == '__main__':
    debug_mode = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    create_app().run(host='0.0.0.0', port=5001, debug=debug_mode)
