"""
Cash Handover Chain

Tracks physical cash custody from the forecourt to the bank:

    shift_collection -> employee_to_manager -> manager_to_owner -> bank_deposit

DESIGN PRINCIPLES:
- Stages are created strictly in order; each new stage consumes exactly
  one confirmed, not-yet-consumed predecessor of the preceding type
- Recipients are resolved by role, never supplied by the caller
- Variance is recomputed here on confirmation, never taken from input
- Confirmed and disputed handovers are terminal; a dispute halts the chain
  until it is resolved outside this service
- The check-and-claim of a predecessor is serialized by the unique
  constraint on previous_handover_id
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Callable

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased

from ..extensions import db
from ..models import CashHandover
from ..models.handovers import (
    SHIFT_COLLECTION,
    EMPLOYEE_TO_MANAGER,
    MANAGER_TO_OWNER,
    BANK_DEPOSIT,
    HANDOVER_SEQUENCE,
    STATUS_PENDING,
    STATUS_CONFIRMED,
    STATUS_DISPUTED,
)
from ..time_utils import today, utcnow
from ..validation import ConflictError, ValidationError, NotFoundError, parse_amount, quantize_money
from . import audit_service, recipient_service, variance_service
from .concurrency import lock_for_update, run_with_retry
from .variance_service import ToleranceConfig, VarianceResult


PREDECESSOR_TYPE = {
    EMPLOYEE_TO_MANAGER: SHIFT_COLLECTION,
    MANAGER_TO_OWNER: EMPLOYEE_TO_MANAGER,
    BANK_DEPOSIT: MANAGER_TO_OWNER,
}

RecipientResolver = Callable[[int, str], int]


class SequenceViolationError(ConflictError):
    """No confirmed, unconsumed predecessor for the requested stage."""

    def __init__(self, handover_type: str, missing_type: str, message: str | None = None):
        self.handover_type = handover_type
        self.missing_type = missing_type
        super().__init__(
            message
            or f"Cannot create {handover_type}: no confirmed {missing_type} handover available for this station"
        )


class AlreadyConfirmedError(ConflictError):
    """Handover was already confirmed."""


class AlreadyDisputedError(ConflictError):
    """Handover was already marked disputed."""


class AmountMismatchError(ConflictError):
    """Bank deposit amount is outside tolerance of the cash handed to the owner."""

    def __init__(self, expected: Decimal, amount: Decimal, result: VarianceResult):
        self.expected = expected
        self.amount = amount
        self.result = result
        super().__init__(
            f"Deposit amount {amount} differs from owner-confirmed {expected} by {result.variance} "
            f"(tolerance {result.threshold})"
        )


def _validate_type(handover_type: str) -> None:
    if handover_type not in HANDOVER_SEQUENCE:
        raise ValidationError(
            f"handover_type must be one of: {', '.join(HANDOVER_SEQUENCE)}"
        )


# =============================================================================
# CHAIN LOOKUPS
# =============================================================================

def find_unconsumed_predecessor(station_id: int, handover_type: str, *, lock: bool = False) -> CashHandover | None:
    """
    Latest confirmed handover of the stage before handover_type that no
    other handover points back at yet.
    """
    predecessor_type = PREDECESSOR_TYPE[handover_type]
    successor = aliased(CashHandover)
    consumed = (
        db.session.query(successor.id)
        .filter(successor.previous_handover_id == CashHandover.id)
        .exists()
    )
    query = (
        db.session.query(CashHandover)
        .filter(
            CashHandover.station_id == station_id,
            CashHandover.handover_type == predecessor_type,
            CashHandover.status == STATUS_CONFIRMED,
            ~consumed,
        )
        .order_by(CashHandover.confirmed_at.desc(), CashHandover.id.desc())
    )
    if lock:
        query = lock_for_update(query)
    return query.first()


def find_successor(handover_id: int) -> CashHandover | None:
    """The handover that continues the chain from handover_id, if any."""
    return db.session.query(CashHandover).filter_by(previous_handover_id=handover_id).first()


def _flush_claim(handover: CashHandover, missing_type: str) -> None:
    """
    Insert the handover and claim its predecessor.

    A concurrent claim of the same predecessor surfaces as an
    IntegrityError on uq_cash_handovers_previous.
    """
    db.session.add(handover)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise SequenceViolationError(
            handover.handover_type,
            missing_type,
            f"Cannot create {handover.handover_type}: the {missing_type} handover was already handed on",
        )


def _commit_claim(handover_type: str, missing_type: str) -> None:
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise SequenceViolationError(
            handover_type,
            missing_type,
            f"Cannot create {handover_type}: the {missing_type} handover was already handed on",
        )


# =============================================================================
# CREATION
# =============================================================================

def build_shift_collection(
    station_id: int,
    from_user_id: int | None,
    expected_amount: Decimal,
    *,
    actor_id: int | None = None,
    handover_date: date | None = None,
    settlement_id: int | None = None,
    notes: str | None = None,
    resolve_recipient: RecipientResolver | None = None,
) -> CashHandover:
    """
    Add the first custody stage to the current session without committing.

    Used by the settlement engine so that the settlement and its cash
    collection land in one transaction.
    """
    resolve_recipient = resolve_recipient or recipient_service.resolve_recipient
    handover = CashHandover(
        station_id=station_id,
        handover_type=SHIFT_COLLECTION,
        handover_date=handover_date or today(),
        from_user_id=from_user_id,
        to_user_id=resolve_recipient(station_id, SHIFT_COLLECTION),
        expected_amount=expected_amount,
        actual_amount=None,
        status=STATUS_PENDING,
        previous_handover_id=None,
        settlement_id=settlement_id,
        created_by_user_id=actor_id,
        notes=notes,
    )
    db.session.add(handover)
    db.session.flush()
    return handover


def create_handover(
    station_id: int,
    handover_type: str,
    from_user_id: int | None,
    expected_amount=None,
    actor_id: int | None = None,
    *,
    handover_date: date | None = None,
    notes: str | None = None,
    resolve_recipient: RecipientResolver | None = None,
) -> CashHandover:
    """
    Open the next custody stage for a station.

    shift_collection starts a new chain and requires expected_amount.
    Later stages link to the latest confirmed, unconsumed handover of the
    preceding stage; when expected_amount is omitted it defaults to that
    predecessor's confirmed actual amount.

    Raises:
        ValidationError: unknown type, bank_deposit (see record_bank_deposit),
            bad amount, sender not at the station, no recipient for the role
        SequenceViolationError: predecessor missing, disputed or consumed
    """
    _validate_type(handover_type)
    if handover_type == BANK_DEPOSIT:
        raise ValidationError("Bank deposits are recorded with record_bank_deposit")
    amount = parse_amount(expected_amount, "expected_amount", allow_none=handover_type != SHIFT_COLLECTION)
    resolve_recipient = resolve_recipient or recipient_service.resolve_recipient
    recipient_service.get_station(station_id)
    if from_user_id is not None:
        recipient_service.require_station_member(station_id, from_user_id)

    if handover_type == SHIFT_COLLECTION:
        def _create_collection():
            try:
                handover = build_shift_collection(
                    station_id,
                    from_user_id,
                    amount,
                    actor_id=actor_id,
                    handover_date=handover_date,
                    notes=notes,
                    resolve_recipient=resolve_recipient,
                )
            except ValidationError:
                db.session.rollback()
                raise
            db.session.commit()
            return handover

        handover = run_with_retry(_create_collection)
    else:
        missing_type = PREDECESSOR_TYPE[handover_type]

        def _create_next_stage():
            predecessor = find_unconsumed_predecessor(station_id, handover_type, lock=True)
            if predecessor is None:
                db.session.rollback()
                raise SequenceViolationError(handover_type, missing_type)

            stage_amount = amount if amount is not None else quantize_money(Decimal(predecessor.actual_amount))
            try:
                to_user_id = resolve_recipient(station_id, handover_type)
            except ValidationError:
                db.session.rollback()
                raise

            handover = CashHandover(
                station_id=station_id,
                handover_type=handover_type,
                handover_date=handover_date or today(),
                from_user_id=from_user_id,
                to_user_id=to_user_id,
                expected_amount=stage_amount,
                actual_amount=None,
                status=STATUS_PENDING,
                previous_handover_id=predecessor.id,
                created_by_user_id=actor_id,
                notes=notes,
            )
            _flush_claim(handover, missing_type)
            _commit_claim(handover_type, missing_type)
            return handover

        handover = run_with_retry(_create_next_stage)

    audit_service.log_audit_event(
        actor_user_id=actor_id,
        station_id=station_id,
        action="handover.created",
        entity_type="cash_handover",
        entity_id=handover.id,
        new_values=handover.to_dict(),
        category=audit_service.CATEGORY_CASH,
    )
    return handover


def create_shift_collection(
    station_id: int,
    from_user_id: int | None,
    expected_amount,
    *,
    actor_id: int | None = None,
    handover_date: date | None = None,
    notes: str | None = None,
    resolve_recipient: RecipientResolver | None = None,
) -> CashHandover:
    """Entry point for the shift-close trigger: the shift's reported cash starts a chain."""
    return create_handover(
        station_id,
        SHIFT_COLLECTION,
        from_user_id,
        expected_amount,
        actor_id,
        handover_date=handover_date,
        notes=notes,
        resolve_recipient=resolve_recipient,
    )


# =============================================================================
# CONFIRMATION
# =============================================================================

def confirm_handover(
    handover_id: int,
    *,
    accept_as_is: bool = False,
    actual_amount=None,
    actor_id: int | None = None,
    notes: str | None = None,
    tolerance: ToleranceConfig | None = None,
) -> CashHandover:
    """
    Recipient confirms what they received.

    accept_as_is: actual = expected, variance 0, confirmed.
    Otherwise actual_amount is required and evaluated against expected;
    outside tolerance the handover becomes disputed (not an error).

    Raises:
        NotFoundError, ValidationError,
        AlreadyConfirmedError / AlreadyDisputedError if not pending
    """
    actual = None
    if not accept_as_is:
        actual = parse_amount(actual_amount, "actual_amount")
    tolerance = tolerance or variance_service.tolerance_from_config()

    def _confirm():
        handover = lock_for_update(db.session.query(CashHandover).filter_by(id=handover_id)).first()
        if not handover:
            db.session.rollback()
            raise NotFoundError(f"Handover {handover_id} not found")
        if handover.status == STATUS_CONFIRMED:
            db.session.rollback()
            raise AlreadyConfirmedError(f"Handover {handover_id} is already confirmed")
        if handover.status == STATUS_DISPUTED:
            db.session.rollback()
            raise AlreadyDisputedError(f"Handover {handover_id} is disputed and awaits manual resolution")

        expected = Decimal(handover.expected_amount)
        if accept_as_is:
            result = variance_service.matched_exactly()
            handover.actual_amount = expected
        else:
            result = variance_service.evaluate(expected, actual, tolerance)
            handover.actual_amount = actual

        handover.variance = result.variance
        handover.status = STATUS_CONFIRMED if result.is_matched else STATUS_DISPUTED
        handover.confirmed_at = utcnow()
        handover.confirmed_by_user_id = actor_id
        if notes:
            handover.notes = notes
        if not result.is_matched:
            handover.dispute_notes = (
                f"Discrepancy of {result.variance} exceeds tolerance of {result.threshold}"
            )

        db.session.commit()
        return handover

    handover = run_with_retry(_confirm)

    disputed = handover.status == STATUS_DISPUTED
    if disputed:
        current_app.logger.warning(
            "Handover %s disputed: expected %s, received %s",
            handover.id, handover.expected_amount, handover.actual_amount,
        )

    audit_service.log_audit_event(
        actor_user_id=actor_id,
        station_id=handover.station_id,
        action="handover.disputed" if disputed else "handover.confirmed",
        entity_type="cash_handover",
        entity_id=handover.id,
        old_values={"status": STATUS_PENDING},
        new_values=handover.to_dict(),
        category=audit_service.CATEGORY_CASH,
        severity=audit_service.SEVERITY_WARNING if disputed else audit_service.SEVERITY_INFO,
    )
    return handover


def record_bank_deposit(
    station_id: int,
    amount,
    actor_id: int | None,
    *,
    handover_date: date | None = None,
    bank_name: str | None = None,
    deposit_reference: str | None = None,
    notes: str | None = None,
    tolerance: ToleranceConfig | None = None,
    resolve_recipient: RecipientResolver | None = None,
) -> CashHandover:
    """
    Record the final custody stage.

    The deposited amount is checked against the confirmed manager_to_owner
    amount; within tolerance the deposit is stored already confirmed.

    Raises:
        SequenceViolationError: no confirmed, unconsumed manager_to_owner
        AmountMismatchError: deposit outside tolerance (nothing is written)
    """
    deposit = parse_amount(amount, "amount")
    tolerance = tolerance or variance_service.tolerance_from_config()
    resolve_recipient = resolve_recipient or recipient_service.resolve_recipient
    recipient_service.get_station(station_id)

    def _deposit():
        predecessor = find_unconsumed_predecessor(station_id, BANK_DEPOSIT, lock=True)
        if predecessor is None:
            db.session.rollback()
            raise SequenceViolationError(BANK_DEPOSIT, MANAGER_TO_OWNER)

        expected = Decimal(predecessor.actual_amount)
        result = variance_service.evaluate(expected, deposit, tolerance)
        if not result.is_matched:
            db.session.rollback()
            raise AmountMismatchError(expected, deposit, result)

        try:
            to_user_id = resolve_recipient(station_id, BANK_DEPOSIT)
        except ValidationError:
            db.session.rollback()
            raise

        now = utcnow()
        handover = CashHandover(
            station_id=station_id,
            handover_type=BANK_DEPOSIT,
            handover_date=handover_date or today(),
            from_user_id=actor_id,
            to_user_id=to_user_id,
            expected_amount=expected,
            actual_amount=deposit,
            variance=result.variance,
            status=STATUS_CONFIRMED,
            previous_handover_id=predecessor.id,
            created_by_user_id=actor_id,
            confirmed_by_user_id=actor_id,
            confirmed_at=now,
            bank_name=bank_name,
            deposit_reference=deposit_reference,
            notes=notes,
        )
        _flush_claim(handover, MANAGER_TO_OWNER)
        _commit_claim(BANK_DEPOSIT, MANAGER_TO_OWNER)
        return handover

    handover = run_with_retry(_deposit)

    audit_service.log_audit_event(
        actor_user_id=actor_id,
        station_id=station_id,
        action="handover.bank_deposit_recorded",
        entity_type="cash_handover",
        entity_id=handover.id,
        new_values=handover.to_dict(),
        category=audit_service.CATEGORY_CASH,
    )
    return handover


# =============================================================================
# QUERIES
# =============================================================================

def get_handover(handover_id: int) -> CashHandover:
    handover = db.session.get(CashHandover, handover_id)
    if not handover:
        raise NotFoundError(f"Handover {handover_id} not found")
    return handover


def get_pending_for_user(user_id: int, station_id: int | None = None) -> list[CashHandover]:
    """Handovers waiting for this user to confirm receipt."""
    query = db.session.query(CashHandover).filter_by(to_user_id=user_id, status=STATUS_PENDING)
    if station_id:
        query = query.filter_by(station_id=station_id)
    return query.order_by(CashHandover.handover_date.desc(), CashHandover.id.desc()).all()


def _date_range(query, start_date: date | None, end_date: date | None):
    if start_date:
        query = query.filter(CashHandover.handover_date >= start_date)
    if end_date:
        query = query.filter(CashHandover.handover_date <= end_date)
    return query


def list_station_handovers(
    station_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    handover_type: str | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[CashHandover], int]:
    """Page of a station's handovers (newest first) plus the total count."""
    query = _date_range(db.session.query(CashHandover).filter_by(station_id=station_id), start_date, end_date)
    if handover_type:
        _validate_type(handover_type)
        query = query.filter_by(handover_type=handover_type)
    if status:
        query = query.filter_by(status=status)

    total = query.count()
    rows = (
        query.order_by(CashHandover.handover_date.desc(), CashHandover.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return rows, total


def get_unconfirmed(station_id: int, start_date: date, end_date: date) -> list[CashHandover]:
    query = db.session.query(CashHandover).filter_by(station_id=station_id, status=STATUS_PENDING)
    return _date_range(query, start_date, end_date).order_by(CashHandover.handover_date, CashHandover.id).all()


def get_bank_deposits(station_id: int, start_date: date, end_date: date) -> list[CashHandover]:
    query = db.session.query(CashHandover).filter_by(station_id=station_id, handover_type=BANK_DEPOSIT)
    return _date_range(query, start_date, end_date).order_by(CashHandover.handover_date.desc(), CashHandover.id.desc()).all()


def get_cash_flow_summary(station_id: int, start_date: date, end_date: date) -> dict:
    """
    Confirmed totals per stage plus pending/disputed counts for a period.
    """
    base = _date_range(db.session.query(CashHandover).filter_by(station_id=station_id), start_date, end_date)

    rows = (
        _date_range(
            db.session.query(
                CashHandover.handover_type,
                func.count(CashHandover.id),
                func.sum(CashHandover.actual_amount),
                func.sum(CashHandover.variance),
            ).filter(
                CashHandover.station_id == station_id,
                CashHandover.status == STATUS_CONFIRMED,
            ),
            start_date,
            end_date,
        )
        .group_by(CashHandover.handover_type)
        .all()
    )

    by_type = {
        handover_type: {"count": 0, "total_amount": "0.00", "total_variance": "0.00"}
        for handover_type in HANDOVER_SEQUENCE
    }
    for handover_type, count, total_amount, total_variance in rows:
        by_type[handover_type] = {
            "count": count,
            "total_amount": str(quantize_money(Decimal(str(total_amount or 0)))),
            "total_variance": str(quantize_money(Decimal(str(total_variance or 0)))),
        }

    return {
        "station_id": station_id,
        "by_type": by_type,
        "pending_count": base.filter(CashHandover.status == STATUS_PENDING).count(),
        "disputed_count": base.filter(CashHandover.status == STATUS_DISPUTED).count(),
    }


def get_chain(handover_id: int) -> list[CashHandover]:
    """
    Whole custody chain containing handover_id, oldest stage first.
    """
    handover = get_handover(handover_id)

    chain = [handover]
    current = handover
    while current.previous_handover_id is not None:
        current = db.session.get(CashHandover, current.previous_handover_id)
        if current is None:
            break
        chain.insert(0, current)

    current = handover
    while True:
        successor = find_successor(current.id)
        if successor is None:
            break
        chain.append(successor)
        current = successor
    return chain
