# src/crime_dashboard/read_service/api/dashboard.py

from flask import Blueprint, current_app, jsonify, request

from crime_dashboard.exceptions import InvalidRequestError, RecordNotFoundError
from crime_dashboard.reference import COMMAND_UNIT, UNITS
from crime_dashboard.read_service.api.auth import require_key
from crime_dashboard.read_service.processors.aggregator import (
    aggregate_by_unit, build_command_summary, compute_deltas
)
from crime_dashboard.read_service.processors.heatmap import heatmap_payload
from crime_dashboard.read_service.processors.incident_processor import (
    get_records, get_timeseries, parse_time_range, serialize, window_start
)
from crime_dashboard.read_service.processors.target_processor import (
    get_targets, serialize_target, targets_by_unit
)


def _int_arg(name, default):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidRequestError(f"{name} must be an integer")


def _period():
    """(year, semester) from the query string, defaulting to the configured period."""
    settings = current_app.config["SETTINGS"]
    year = _int_arg("year", settings.default_year)
    semester = _int_arg("semester", settings.default_semester)
    if semester not in (1, 2):
        raise InvalidRequestError("semester must be 1 or 2")
    return year, semester


def _since():
    try:
        days = parse_time_range(request.args.get("range"))
    except ValueError as e:
        raise InvalidRequestError(str(e))
    return window_start(days)


def _require_unit(unit):
    if unit not in UNITS:
        raise RecordNotFoundError(f"Unknown unit: {unit}")


def create_dashboard_blueprint(engine, tables):
    """
    Factory that creates the dashboard blueprint with access to the
    engine and the resolved TableSet.

    Endpoints:
        GET /api/dashboard                 command-wide totals, deltas, comparison
        GET /api/units/<unit>              one unit's totals, deltas and heat map
        GET /api/units/<unit>/heatmap      heat-map buckets only
        GET /api/units/<unit>/timeseries   daily counts
        GET /api/targets                   targets of one period

    Query Parameters:
        range (str, optional): 7D, 30D or 90D. Default = all records.
        year / semester (int, optional): target period. Default = configured period.
    """
    bp = Blueprint("dashboard", __name__, url_prefix="/api")

    @bp.route("/dashboard", methods=["GET"])
    @require_key()
    def command_dashboard():
        since = _since()
        year, semester = _period()
        records = get_records(engine, tables, COMMAND_UNIT, since)
        targets = get_targets(engine, tables, year, semester)
        summary = build_command_summary(records, targets_by_unit(targets))

        return jsonify({
            "unit": COMMAND_UNIT,
            "range": request.args.get("range"),
            "year": year,
            "semester": semester,
            **summary.to_dict(),
        }), 200

    @bp.route("/units/<unit>", methods=["GET"])
    @require_key()
    def unit_dashboard(unit):
        _require_unit(unit)
        since = _since()
        year, semester = _period()
        records = get_records(engine, tables, unit, since)
        totals = aggregate_by_unit(records, [unit])[unit]
        unit_targets = targets_by_unit(get_targets(engine, tables, year, semester)).get(unit)

        return jsonify({
            "unit": unit,
            "range": request.args.get("range"),
            "year": year,
            "semester": semester,
            "totals": totals.to_dict(),
            "deltas": [d.to_dict() for d in compute_deltas(totals, unit_targets)],
            "heatmap": heatmap_payload(unit, records),
        }), 200

    @bp.route("/units/<unit>/heatmap", methods=["GET"])
    @require_key()
    def unit_heatmap(unit):
        _require_unit(unit)
        records = get_records(engine, tables, unit, _since())
        return jsonify(heatmap_payload(unit, records)), 200

    @bp.route("/units/<unit>/timeseries", methods=["GET"])
    @require_key()
    def unit_timeseries(unit):
        series = get_timeseries(engine, tables, unit, _since())
        return jsonify({"unit": unit, "series": [serialize(p) for p in series]}), 200

    @bp.route("/targets", methods=["GET"])
    @require_key()
    def list_targets():
        year, semester = _period()
        rows = get_targets(engine, tables, year, semester)
        return jsonify({
            "year": year,
            "semester": semester,
            "targets": [serialize_target(r) for r in rows],
        }), 200

    return bp
