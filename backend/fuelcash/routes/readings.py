# Overview: Flask API routes for the reading ledger; parses input and returns JSON responses.

# backend/fuelcash/routes/readings.py
"""
Reading Ledger API Routes

- Employees record meter readings
- Reconcilers fetch the unlinked/linked split for a station/date before
  building a settlement
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import reading_service
from ..validation import ValidationError, NotFoundError, parse_date, parse_id
from ..decorators import require_actor, require_role, station_scope_error
from ..time_utils import today


readings_bp = Blueprint("readings", __name__, url_prefix="/api/stations")


@readings_bp.post("/<int:station_id>/readings")
@require_actor
def record_reading_route(station_id: int):
    """
    Record a meter reading.

    Request body:
    {
        "nozzle_id": 3,
        "reading_value": "10450.5",
        "reading_date": "2026-10-17",   (optional, defaults to today)
        "cash_amount": "3000",          (optional)
        "online_amount": "1000",        (optional)
        "credit_amount": "0",           (optional)
        "is_initial_reading": false     (optional)
    }
    """
    scope_error = station_scope_error(station_id)
    if scope_error:
        return scope_error

    try:
        data = request.get_json() or {}
        nozzle_id = data.get("nozzle_id")
        if nozzle_id is None or data.get("reading_value") is None:
            return jsonify({"error": "nozzle_id and reading_value required"}), 400

        reading = reading_service.record_reading(
            station_id,
            parse_id(nozzle_id, "nozzle_id"),
            data.get("reading_value"),
            reading_date=parse_date(data.get("reading_date"), "reading_date", default=today()),
            entered_by_user_id=g.current_user.id,
            cash_amount=data.get("cash_amount", 0),
            online_amount=data.get("online_amount", 0),
            credit_amount=data.get("credit_amount", 0),
            is_initial_reading=bool(data.get("is_initial_reading", False)),
        )
        return jsonify({"reading": reading.to_dict()}), 201

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record reading")
        return jsonify({"error": "Internal server error"}), 500


@readings_bp.get("/<int:station_id>/readings-for-settlement")
@require_actor
@require_role("manager", "owner")
def readings_for_settlement_route(station_id: int):
    """
    Unlinked and linked readings for a station/date with totals.

    Query params: date=YYYY-MM-DD (defaults to today)
    """
    scope_error = station_scope_error(station_id)
    if scope_error:
        return scope_error

    try:
        reading_date = parse_date(request.args.get("date"), "date", default=today())
        view = reading_service.readings_for_settlement(station_id, reading_date)
        return jsonify(view.to_dict()), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
