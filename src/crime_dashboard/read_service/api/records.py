# src/crime_dashboard/read_service/api/records.py

from flask import Blueprint, jsonify

from crime_dashboard.read_service.api.auth import require_key
from crime_dashboard.read_service.processors.history_processor import HistoryProcessor
from crime_dashboard.read_service.processors.incident_processor import get_record_by_ro, serialize


def create_records_blueprint(engine, tables):
    """
    Factory that creates the record-detail blueprint.

    Endpoint:
        GET /api/records/<ro>

    RO values can contain slashes ("123-00001/2025"), hence the path converter.
    An unknown RO answers 404.
    """
    bp = Blueprint("records", __name__, url_prefix="/api")
    history = HistoryProcessor(engine, tables)

    @bp.route("/records/<path:ro>", methods=["GET"])
    @require_key()
    def record_detail(ro):
        record = get_record_by_ro(engine, tables, ro)
        entries = history.history_by_ro(ro)
        latest = history.latest_for_ro(ro)

        return jsonify({
            "record": serialize(record),
            "latest_history": serialize(latest) if latest else None,
            "history": [serialize(e) for e in entries],
        }), 200

    return bp
