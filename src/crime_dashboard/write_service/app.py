"""
app.py: Flask application for the write side of the crime dashboard.

Operator actions that change data:
- Spreadsheet imports (incidents, history).
- Target seeding, inline edits, per-unit bulk-zero and undo.
- Manual history entries.

Run with: python -m crime_dashboard.write_service.app (starts on port 5000).
Every endpoint except /health needs the admin key in the X-API-Key header.
"""

import os
import logging

from flask import Flask, current_app, jsonify, request
from flask_restful import Resource
from jsonschema import ValidationError, validate
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from crime_dashboard.config import configure_logging, load_settings
from crime_dashboard.db import create_backend_engine, get_tables
from crime_dashboard.exceptions import InvalidRequestError
from crime_dashboard.read_service.api.auth import require_key
from crime_dashboard.read_service.api.errors import DashboardApi, register_error_handlers
from crime_dashboard.read_service.processors.target_processor import serialize_target
from crime_dashboard.read_service.processors.incident_processor import serialize
from crime_dashboard.write_service.consumers.history_editor import HistoryEditor
from crime_dashboard.write_service.consumers.history_importer import HistoryImporter
from crime_dashboard.write_service.consumers.incident_importer import IncidentImporter
from crime_dashboard.write_service.consumers.target_editor import TargetEditor, UndoBuffer

logger = logging.getLogger(__name__)

PERIOD_SCHEMA = {
    "type": "object",
    "properties": {
        "year": {"type": "integer", "minimum": 2000},
        "semester": {"type": "integer", "enum": [1, 2]},
    },
}

TARGET_VALUE_SCHEMA = {
    "type": "object",
    "properties": {"target_value": {"type": "integer", "minimum": 0}},
    "required": ["target_value"],
}

HISTORY_SCHEMA = {
    "type": "object",
    "properties": {
        "ro": {"type": "string", "minLength": 1},
        "text": {"type": "string", "minLength": 1},
    },
    "required": ["text"],
}


def _payload(schema):
    """Request JSON validated against schema (an empty body counts as {})."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    try:
        validate(instance=data, schema=schema)
    except ValidationError as error:
        logger.warning("Invalid payload: %s", error.message)
        raise InvalidRequestError(error.message)
    return data


def _period(data):
    settings = current_app.config["SETTINGS"]
    return data.get("year", settings.default_year), data.get("semester", settings.default_semester)


def _upload():
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise InvalidRequestError("Send the spreadsheet as multipart field 'file'")
    return upload.read(), upload.filename


def _service(name):
    return current_app.extensions["crime_dashboard"][name]


class AdminResource(Resource):
    method_decorators = [require_key(admin=True)]


class IncidentImport(AdminResource):
    def post(self):
        content, filename = _upload()
        logger.info("Incident import requested: %s", filename)
        return _service("incident_importer").import_file(content, filename).to_dict(), 200


class HistoryImport(AdminResource):
    def post(self):
        content, filename = _upload()
        logger.info("History import requested: %s", filename)
        return _service("history_importer").import_file(content, filename).to_dict(), 200


class TargetSeed(AdminResource):
    def post(self):
        year, semester = _period(_payload(PERIOD_SCHEMA))
        created = _service("target_editor").ensure_targets_exist(year, semester)
        return {"year": year, "semester": semester, "created": created}, 200


class TargetValue(AdminResource):
    def put(self, target_id):
        data = _payload(TARGET_VALUE_SCHEMA)
        row = _service("target_editor").update_target(target_id, int(data["target_value"]))
        return serialize_target(row), 200


class TargetClear(AdminResource):
    def post(self, unit):
        year, semester = _period(_payload(PERIOD_SCHEMA))
        cleared = _service("target_editor").clear_targets_by_unit(unit, year, semester)
        return {"unit": unit, "cleared": cleared, "can_undo": True}, 200


class TargetUndo(AdminResource):
    def get(self, unit):
        return {"unit": unit, "can_undo": _service("target_editor").can_undo(unit)}, 200

    def post(self, unit):
        restored = _service("target_editor").undo_clear_targets(unit)
        return {"unit": unit, "restored": restored, "can_undo": False}, 200


class HistoryList(AdminResource):
    def post(self):
        data = _payload(dict(HISTORY_SCHEMA, required=["ro", "text"]))
        try:
            entry = _service("history_editor").add_history(data["ro"], data["text"])
        except ValueError as e:
            raise InvalidRequestError(str(e))
        return serialize(entry), 201


class HistoryEntry(AdminResource):
    def put(self, entry_id):
        data = _payload(HISTORY_SCHEMA)
        try:
            entry = _service("history_editor").update_history(entry_id, data["text"])
        except ValueError as e:
            raise InvalidRequestError(str(e))
        return serialize(entry), 200

    def delete(self, entry_id):
        _service("history_editor").delete_history(entry_id)
        return {"deleted": entry_id}, 200


def create_app(settings=None, engine=None):
    """
    Build the write service.

    The undo buffer lives in app.extensions, so snapshots survive between
    requests for as long as the process runs.
    """
    settings = settings or load_settings()
    configure_logging(settings)
    engine = engine or create_backend_engine(settings)
    tables = get_tables(settings.scope)
    tables.create_all(engine)

    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    app.logger.setLevel(settings.log_level)
    app.extensions["crime_dashboard"] = {
        "incident_importer": IncidentImporter(
            engine, tables,
            batch_size=settings.import_batch_size,
            transactional=settings.import_transactional,
        ),
        "history_importer": HistoryImporter(engine, tables),
        "history_editor": HistoryEditor(engine, tables),
        "target_editor": TargetEditor(
            engine, tables,
            UndoBuffer(ttl_seconds=settings.undo_ttl_seconds, max_entries=settings.undo_max_entries),
        ),
    }

    api = DashboardApi(app)
    api.add_resource(IncidentImport, "/import")
    api.add_resource(HistoryImport, "/import/history")
    api.add_resource(TargetSeed, "/targets/seed")
    api.add_resource(TargetValue, "/targets/<int:target_id>")
    api.add_resource(TargetClear, "/targets/<string:unit>/clear")
    api.add_resource(TargetUndo, "/targets/<string:unit>/undo")
    api.add_resource(HistoryList, "/history")
    api.add_resource(HistoryEntry, "/history/<int:entry_id>")
    register_error_handlers(app)

    @app.route('/health', methods=['GET'])
    def health():
        """Health check for write_service: verifies the database connection."""
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            db_status = True
        except OperationalError as e:
            app.logger.error(f"Database health check failed: {e}")
            db_status = False

        return jsonify({
            "status": "ok" if db_status else "error",
            "service": "write_service",
            "database": db_status,
            "scope": settings.scope.value,
        })

    logger.info("Write service ready | scope=%s", settings.scope.value)
    return app


if __name__ == '__main__':
    debug_mode = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    create_app().run(host='0.0.0.0', port=5000, debug=debug_mode)
