# Overview: Flask API routes for the cash handover chain; parses input and returns JSON responses.

# backend/fuelcash/routes/handovers.py
"""
Cash Handover API Routes

FLOW:
1. Shift ends -> shift_collection (employee -> manager)
2. employee_to_manager, confirmed by the manager
3. manager_to_owner, confirmed by the owner
4. bank_deposit, recorded and auto-confirmed by the owner

SECURITY:
- Only the designated recipient (or an owner) confirms a handover
- Only owners record bank deposits
"""

from decimal import Decimal

from flask import Blueprint, request, jsonify, g, current_app

from ..services import handover_service
from ..services.handover_service import (
    SequenceViolationError,
    AlreadyConfirmedError,
    AlreadyDisputedError,
    AmountMismatchError,
)
from ..validation import ValidationError, NotFoundError, parse_date, parse_id, money_to_str
from ..decorators import require_actor, require_role, station_scope_error
from ..time_utils import today


handovers_bp = Blueprint("handovers", __name__, url_prefix="/api")


def _optional_date(name: str):
    raw = request.args.get(name)
    return parse_date(raw, name) if raw else None


@handovers_bp.post("/handovers")
@require_actor
@require_role("manager", "owner")
def create_handover_route():
    """
    Create the next custody stage.

    Request body:
    {
        "station_id": 1,
        "handover_type": "employee_to_manager",
        "from_user_id": 7,
        "expected_amount": "4000",   (optional after shift_collection)
        "handover_date": "2026-10-17",
        "notes": "..."
    }

    The recipient and the previous handover are resolved by the server.
    Bank deposits go through /handovers/bank-deposit.
    """
    try:
        data = request.get_json() or {}
        station_id = data.get("station_id")
        handover_type = data.get("handover_type")
        if station_id is None or not handover_type:
            return jsonify({"error": "station_id and handover_type required"}), 400

        station_id = parse_id(station_id, "station_id")
        scope_error = station_scope_error(station_id)
        if scope_error:
            return scope_error

        if handover_type == handover_service.BANK_DEPOSIT:
            if g.current_user.role not in ("owner", "super_admin"):
                return jsonify({"error": "Only owners can record bank deposits"}), 403
            return jsonify({"error": "Use /api/handovers/bank-deposit to record bank deposits"}), 400

        from_user_id = parse_id(data.get("from_user_id"), "from_user_id", allow_none=True)
        handover = handover_service.create_handover(
            station_id,
            handover_type,
            from_user_id if from_user_id is not None else g.current_user.id,
            data.get("expected_amount"),
            g.current_user.id,
            handover_date=parse_date(data.get("handover_date"), "handover_date", default=today()),
            notes=data.get("notes"),
        )
        return jsonify({
            "handover": handover.to_dict(),
            "message": "Handover created, pending confirmation",
        }), 201

    except SequenceViolationError as e:
        return jsonify({"error": str(e), "missing_type": e.missing_type}), 409
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create handover")
        return jsonify({"error": "Internal server error"}), 500


@handovers_bp.post("/handovers/<int:handover_id>/confirm")
@require_actor
def confirm_handover_route(handover_id: int):
    """
    Confirm receipt.

    Request body:
    {"accept_as_is": true}
    or
    {"actual_amount": "3950", "notes": "..."}

    A difference outside tolerance marks the handover disputed (200, not an error).
    """
    try:
        handover = handover_service.get_handover(handover_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    scope_error = station_scope_error(handover.station_id)
    if scope_error:
        return scope_error

    user = g.current_user
    if handover.to_user_id and handover.to_user_id != user.id and user.role not in ("owner", "super_admin"):
        return jsonify({"error": "Only the designated recipient can confirm"}), 403

    try:
        data = request.get_json() or {}
        handover = handover_service.confirm_handover(
            handover_id,
            accept_as_is=bool(data.get("accept_as_is", False)),
            actual_amount=data.get("actual_amount"),
            actor_id=user.id,
            notes=data.get("notes"),
        )
        message = (
            f"Handover confirmed with discrepancy of {handover.variance}"
            if handover.status == "disputed"
            else "Handover confirmed successfully"
        )
        return jsonify({"handover": handover.to_dict(), "message": message}), 200

    except (AlreadyConfirmedError, AlreadyDisputedError) as e:
        return jsonify({"error": str(e)}), 409
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to confirm handover")
        return jsonify({"error": "Internal server error"}), 500


@handovers_bp.post("/handovers/bank-deposit")
@require_actor
@require_role("owner")
def record_bank_deposit_route():
    """
    Record a bank deposit against the owner's confirmed cash.

    Request body:
    {
        "station_id": 1,
        "amount": "3950",
        "bank_name": "...",          (optional)
        "deposit_reference": "...",  (optional)
        "handover_date": "2026-10-17",
        "notes": "..."
    }
    """
    try:
        data = request.get_json() or {}
        station_id = data.get("station_id")
        if station_id is None or data.get("amount") is None:
            return jsonify({"error": "station_id and amount required"}), 400

        station_id = parse_id(station_id, "station_id")
        scope_error = station_scope_error(station_id)
        if scope_error:
            return scope_error

        handover = handover_service.record_bank_deposit(
            station_id,
            data.get("amount"),
            g.current_user.id,
            handover_date=parse_date(data.get("handover_date"), "handover_date", default=today()),
            bank_name=data.get("bank_name"),
            deposit_reference=data.get("deposit_reference"),
            notes=data.get("notes"),
        )
        return jsonify({
            "handover": handover.to_dict(),
            "message": f"Bank deposit of {handover.actual_amount} recorded",
        }), 201

    except AmountMismatchError as e:
        return jsonify({"error": str(e), "variance": e.result.to_dict()}), 409
    except SequenceViolationError as e:
        return jsonify({"error": str(e), "missing_type": e.missing_type}), 409
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except (ValidationError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record bank deposit")
        return jsonify({"error": "Internal server error"}), 500


@handovers_bp.get("/handovers/pending")
@require_actor
def pending_handovers_route():
    """Handovers waiting for the current user to confirm (?station_id=)."""
    station_id = request.args.get("station_id", type=int)
    handovers = handover_service.get_pending_for_user(g.current_user.id, station_id)
    return jsonify({
        "handovers": [h.to_dict() for h in handovers],
        "count": len(handovers),
    }), 200


@handovers_bp.get("/handovers/<int:handover_id>")
@require_actor
def get_handover_route(handover_id: int):
    try:
        handover = handover_service.get_handover(handover_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    scope_error = station_scope_error(handover.station_id)
    if scope_error:
        return scope_error
    return jsonify({"handover": handover.to_dict()}), 200


@handovers_bp.get("/handovers/<int:handover_id>/chain")
@require_actor
def handover_chain_route(handover_id: int):
    """Full custody chain containing the handover, oldest stage first."""
    try:
        chain = handover_service.get_chain(handover_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    scope_error = station_scope_error(chain[0].station_id)
    if scope_error:
        return scope_error
    return jsonify({"chain": [h.to_dict() for h in chain]}), 200


@handovers_bp.get("/stations/<int:station_id>/handovers")
@require_actor
@require_role("manager", "owner")
def station_handovers_route(station_id: int):
    """
    Query params: start_date, end_date, handover_type, status, page, limit
    """
    scope_error = station_scope_error(station_id)
    if scope_error:
        return scope_error

    try:
        page = max(request.args.get("page", default=1, type=int), 1)
        limit = min(max(request.args.get("limit", default=50, type=int), 1), 200)
        rows, total = handover_service.list_station_handovers(
            station_id,
            start_date=_optional_date("start_date"),
            end_date=_optional_date("end_date"),
            handover_type=request.args.get("handover_type"),
            status=request.args.get("status"),
            limit=limit,
            offset=(page - 1) * limit,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({
        "handovers": [h.to_dict() for h in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }), 200


@handovers_bp.get("/stations/<int:station_id>/handovers/summary")
@require_actor
@require_role("manager", "owner")
def cash_flow_summary_route(station_id: int):
    scope_error = station_scope_error(station_id)
    if scope_error:
        return scope_error

    try:
        start_date = _optional_date("start_date")
        end_date = _optional_date("end_date")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    if not start_date or not end_date:
        return jsonify({"error": "start_date and end_date are required"}), 400

    summary = handover_service.get_cash_flow_summary(station_id, start_date, end_date)
    summary["period"] = {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()}
    return jsonify(summary), 200


@handovers_bp.get("/stations/<int:station_id>/handovers/unconfirmed")
@require_actor
@require_role("manager", "owner")
def unconfirmed_handovers_route(station_id: int):
    """Pending handovers in a period (defaults to today) for manager alerts."""
    scope_error = station_scope_error(station_id)
    if scope_error:
        return scope_error

    try:
        start_date = _optional_date("start_date") or today()
        end_date = _optional_date("end_date") or today()
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    unconfirmed = handover_service.get_unconfirmed(station_id, start_date, end_date)
    return jsonify({
        "handovers": [h.to_dict() for h in unconfirmed],
        "count": len(unconfirmed),
        "alert": f"{len(unconfirmed)} handover(s) pending confirmation" if unconfirmed else None,
    }), 200


@handovers_bp.get("/stations/<int:station_id>/handovers/bank-deposits")
@require_actor
@require_role("owner")
def bank_deposits_route(station_id: int):
    scope_error = station_scope_error(station_id)
    if scope_error:
        return scope_error

    try:
        start_date = _optional_date("start_date")
        end_date = _optional_date("end_date")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    if not start_date or not end_date:
        return jsonify({"error": "start_date and end_date are required"}), 400

    deposits = handover_service.get_bank_deposits(station_id, start_date, end_date)
    total = sum((d.actual_amount or 0 for d in deposits), Decimal("0"))
    return jsonify({
        "deposits": [d.to_dict() for d in deposits],
        "summary": {"count": len(deposits), "total_deposited": money_to_str(total)},
    }), 200
