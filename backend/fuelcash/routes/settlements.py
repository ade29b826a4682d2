# Overview: Flask API routes for daily settlements; parses input and returns JSON responses.

# backend/fuelcash/routes/settlements.py
"""
Settlement API Routes

DESIGN:
- Variance is always computed by the engine; any client-sent variance
  or expected amount is ignored
- 409 responses for readings that another settlement already claimed
  carry the offending ids so the client can refresh and retry
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import settlement_service, reading_service
from ..services.settlement_service import AlreadyLinkedError, FinalizationConflictError
from ..validation import ValidationError, NotFoundError, parse_date, parse_id, parse_id_list
from ..decorators import require_actor, require_role, station_scope_error
from ..time_utils import today


settlements_bp = Blueprint("settlements", __name__, url_prefix="/api")


@settlements_bp.post("/stations/<int:station_id>/settlements")
@require_actor
@require_role("manager", "owner")
def create_settlement_route(station_id: int):
    """
    Record a settlement over selected readings.

    Request body:
    {
        "date": "2026-10-17",
        "reading_ids": [11, 12, 13],
        "actual": {"cash": "3900", "online": "0", "credit": "0"},
        "is_final": true,
        "notes": "Evening count",
        "handover_from_user_id": 7      (optional, opens shift_collection)
    }
    """
    scope_error = station_scope_error(station_id)
    if scope_error:
        return scope_error

    try:
        data = request.get_json() or {}
        settlement_date = parse_date(data.get("date"), "date", default=today())
        reading_ids = parse_id_list(data.get("reading_ids"), "reading_ids")
        actual = data.get("actual")
        if not isinstance(actual, dict):
            return jsonify({"error": "actual must be an object with cash/online/credit"}), 400

        settlement = settlement_service.create_settlement(
            station_id,
            settlement_date,
            reading_ids,
            actual,
            is_final=bool(data.get("is_final", False)),
            actor_id=g.current_user.id,
            notes=data.get("notes"),
            handover_from_user_id=parse_id(
                data.get("handover_from_user_id"), "handover_from_user_id", allow_none=True
            ),
        )
        return jsonify({
            "settlement": settlement.to_dict(),
            "reading_ids": [r.id for r in settlement_service.get_settlement_readings(settlement.id)],
        }), 201

    except AlreadyLinkedError as e:
        return jsonify({"error": str(e), "reading_ids": e.reading_ids}), 409
    except FinalizationConflictError as e:
        return jsonify({"error": str(e)}), 409
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record settlement")
        return jsonify({"error": "Internal server error"}), 500


@settlements_bp.get("/stations/<int:station_id>/settlements")
@require_actor
@require_role("manager", "owner")
def list_settlements_route(station_id: int):
    """Settlements for a station, optionally for one date (?date=YYYY-MM-DD)."""
    scope_error = station_scope_error(station_id)
    if scope_error:
        return scope_error

    try:
        raw_date = request.args.get("date")
        settlement_date = parse_date(raw_date, "date") if raw_date else None
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    settlements = settlement_service.list_settlements(station_id, settlement_date)
    return jsonify({
        "settlements": [s.to_dict() for s in settlements],
        "count": len(settlements),
    }), 200


@settlements_bp.get("/stations/<int:station_id>/settlements/history")
@require_actor
@require_role("manager", "owner")
def settlement_history_route(station_id: int):
    """Per-date summary with main settlement and variance band (?limit=5)."""
    scope_error = station_scope_error(station_id)
    if scope_error:
        return scope_error

    limit = request.args.get("limit", default=5, type=int)
    history = settlement_service.settlement_history(station_id, limit=max(1, min(limit, 90)))
    return jsonify({"history": history, "count": len(history)}), 200


@settlements_bp.get("/settlements/<int:settlement_id>")
@require_actor
@require_role("manager", "owner")
def get_settlement_route(settlement_id: int):
    try:
        settlement = settlement_service.get_settlement(settlement_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    scope_error = station_scope_error(settlement.station_id)
    if scope_error:
        return scope_error

    readings = settlement_service.get_settlement_readings(settlement.id)
    return jsonify({
        "settlement": settlement.to_dict(),
        "readings": [r.to_dict() for r in readings],
        "totals": reading_service.aggregate(readings).to_dict(),
    }), 200
