# src/crime_dashboard/read_service/api/errors.py

"""
Exception -> JSON error response mapping shared by both services.
"""

import logging
from flask import jsonify
from flask_restful import Api

from crime_dashboard.exceptions import (
    AuthorizationError, ConfigurationError, DashboardError, InvalidRequestError,
    RecordNotFoundError, SpreadsheetFormatError, StorageError, UndoUnavailableError
)

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (SpreadsheetFormatError, 400),
    (InvalidRequestError, 400),
    (RecordNotFoundError, 404),
    (UndoUnavailableError, 409),
    (StorageError, 502),
    (ConfigurationError, 500),
)


def error_body(error: DashboardError):
    """(body, status) for a dashboard exception."""
    if isinstance(error, AuthorizationError):
        return {"error": str(error)}, error.status_code

    status = 500
    for exc_type, code in ERROR_STATUS:
        if isinstance(error, exc_type):
            status = code
            break

    body = {"error": str(error)}
    if isinstance(error, StorageError):
        body["step"] = error.step
    if status >= 500:
        logger.error("Request failed: %s", error)
    return body, status


def register_error_handlers(app):
    @app.errorhandler(DashboardError)
    def dashboard_error(error):
        body, status = error_body(error)
        return jsonify(body), status

    # Error handler for 404
    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Endpoint not found"}), 404

    # Error handler for 500
    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({"error": "Internal server error"}), 500


class DashboardApi(Api):
    """flask_restful Api that answers dashboard exceptions with their mapped status."""

    def handle_error(self, e):
        if isinstance(e, DashboardError):
            body, status = error_body(e)
            return self.make_response(body, status)
        return super().handle_error(e)
