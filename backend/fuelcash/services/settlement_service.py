"""
Settlement Engine

Binds a set of unlinked readings to a daily settlement and reconciles the
cash the reconciler counted against what the readings say was sold.

DESIGN PRINCIPLES:
- A reading belongs to at most one settlement; claiming it is a
  conditional UPDATE (settlement_id IS NULL) inside the same transaction
  as the settlement insert, so a concurrent claimer loses cleanly
- Expected amounts come from the readings, variance from the evaluator;
  neither is ever accepted from the caller
- At most one final settlement per station/date ("last final wins")
- Audit is emitted after commit and can never undo the settlement
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Reading, Settlement
from ..time_utils import to_iso_date, utcnow
from ..validation import ConflictError, ValidationError, NotFoundError, parse_amount, quantize_money
from . import audit_service, handover_service, reading_service, recipient_service, variance_service
from .concurrency import lock_for_update, run_with_retry
from .variance_service import ToleranceConfig, VarianceResult, DISPUTED, MATCHED


CHANNELS = ("cash", "online", "credit")


class AlreadyLinkedError(ConflictError):
    """One or more readings already belong to a settlement."""

    def __init__(self, reading_ids: Iterable[int]):
        self.reading_ids = sorted(reading_ids)
        super().__init__(
            f"Readings already linked to a settlement: {', '.join(str(i) for i in self.reading_ids)}"
        )


class FinalizationConflictError(ConflictError):
    """Another final settlement for the same station/date committed first."""


@dataclass(frozen=True)
class SettlementOutcome:
    settlement: Settlement
    evaluations: dict[str, VarianceResult]
    unfinalized_ids: list[int]
    handover_id: int | None = None


def _parse_actuals(actual_amounts: Mapping) -> dict[str, Decimal]:
    if actual_amounts is None:
        raise ValidationError("actual amounts are required")
    unknown = set(actual_amounts) - set(CHANNELS)
    if unknown:
        raise ValidationError(f"Unknown payment channels: {', '.join(sorted(unknown))}")
    return {
        channel: parse_amount(actual_amounts.get(channel, 0), f"actual {channel}")
        for channel in CHANNELS
    }


def expected_from_totals(totals: reading_service.ReadingTotals) -> dict[str, Decimal]:
    """
    Expected tender per channel.

    Online and credit are what the employees reported; cash is whatever
    of the metered sale value is left, so the three always add up to the
    readings' monetary value.
    """
    online = quantize_money(totals.online_total)
    credit = quantize_money(totals.credit_total)
    value = quantize_money(totals.value_total)
    return {
        "cash": value - online - credit,
        "online": online,
        "credit": credit,
    }


def _claim_readings(station_id: int, settlement_date: date, reading_ids: list[int]) -> list[Reading]:
    """Load and pre-check the selected readings under row locks."""
    readings = lock_for_update(
        db.session.query(Reading).filter(Reading.id.in_(reading_ids)).order_by(Reading.id)
    ).all()

    found = {r.id for r in readings}
    missing = [rid for rid in reading_ids if rid not in found]
    if missing:
        raise ValidationError(f"Readings not found: {', '.join(str(i) for i in missing)}")

    foreign = [r.id for r in readings if r.station_id != station_id or r.reading_date != settlement_date]
    if foreign:
        raise ValidationError(
            f"Readings {', '.join(str(i) for i in foreign)} do not belong to station {station_id} "
            f"on {settlement_date.isoformat()}"
        )

    taken = [r.id for r in readings if r.settlement_id is not None]
    if taken:
        raise AlreadyLinkedError(taken)
    return readings


def _link_readings(settlement_id: int, reading_ids: list[int]) -> None:
    """
    Point every selected reading at the settlement, but only where it is
    still unlinked. A short row count means someone else got there first.
    """
    updated = (
        db.session.query(Reading)
        .filter(Reading.id.in_(reading_ids), Reading.settlement_id.is_(None))
        .update({Reading.settlement_id: settlement_id}, synchronize_session=False)
    )
    if updated != len(reading_ids):
        db.session.rollback()
        taken = [
            rid for (rid,) in db.session.query(Reading.id)
            .filter(Reading.id.in_(reading_ids), Reading.settlement_id.isnot(None))
            .all()
        ]
        raise AlreadyLinkedError(taken or reading_ids)


def _unfinalize_others(station_id: int, settlement_date: date) -> list[int]:
    previous = lock_for_update(
        db.session.query(Settlement).filter_by(
            station_id=station_id, settlement_date=settlement_date, is_final=True
        )
    ).all()
    for settlement in previous:
        settlement.is_final = False
        settlement.finalized_at = None
    if previous:
        db.session.flush()
    return [s.id for s in previous]


def create_settlement(
    station_id: int,
    settlement_date: date,
    reading_ids: list[int],
    actual_amounts: Mapping,
    *,
    is_final: bool = False,
    actor_id: int,
    notes: str | None = None,
    handover_from_user_id: int | None = None,
    tolerance: ToleranceConfig | None = None,
) -> Settlement:
    """
    Record a settlement over a set of currently unlinked readings.

    Steps 1-6 run as one unit of work: re-check and lock readings, derive
    expected amounts, evaluate variance per channel, un-finalize any prior
    final settlement, insert, link readings. When handover_from_user_id is
    given the shift_collection handover for the counted cash is opened in
    the same transaction.

    Raises:
        ValidationError: empty/unknown/foreign reading ids, bad amounts,
            handover sender not at the station
        AlreadyLinkedError: a reading was claimed by another settlement
        FinalizationConflictError: a concurrent final settlement won
    """
    if not reading_ids:
        raise ValidationError("reading_ids must contain at least one reading")
    reading_ids = list(dict.fromkeys(reading_ids))
    actuals = _parse_actuals(actual_amounts)
    tolerance = tolerance or variance_service.tolerance_from_config()
    recipient_service.get_station(station_id)
    if handover_from_user_id is not None:
        recipient_service.require_station_member(station_id, handover_from_user_id)

    def _record() -> SettlementOutcome:
        try:
            readings = _claim_readings(station_id, settlement_date, reading_ids)

            totals = reading_service.aggregate(readings)
            expected = expected_from_totals(totals)
            evaluations = {
                channel: variance_service.evaluate(expected[channel], actuals[channel], tolerance)
                for channel in CHANNELS
            }
            status = DISPUTED if any(not e.is_matched for e in evaluations.values()) else MATCHED

            unfinalized_ids = _unfinalize_others(station_id, settlement_date) if is_final else []

            settlement = Settlement(
                station_id=station_id,
                settlement_date=settlement_date,
                expected_cash=expected["cash"],
                expected_online=expected["online"],
                expected_credit=expected["credit"],
                expected_total=quantize_money(totals.value_total),
                litres_total=totals.litres_total,
                reading_count=totals.count,
                reported_cash=quantize_money(totals.cash_total),
                reported_online=quantize_money(totals.online_total),
                reported_credit=quantize_money(totals.credit_total),
                actual_cash=actuals["cash"],
                actual_online=actuals["online"],
                actual_credit=actuals["credit"],
                variance_cash=evaluations["cash"].variance,
                variance_online=evaluations["online"].variance,
                variance_credit=evaluations["credit"].variance,
                variance_status=status,
                notes=notes,
                is_final=bool(is_final),
                finalized_at=utcnow() if is_final else None,
                recorded_by_user_id=actor_id,
            )
            db.session.add(settlement)
            db.session.flush()

            _link_readings(settlement.id, reading_ids)

            handover_id = None
            if handover_from_user_id is not None:
                handover = handover_service.build_shift_collection(
                    station_id,
                    handover_from_user_id,
                    actuals["cash"],
                    actor_id=actor_id,
                    handover_date=settlement_date,
                    settlement_id=settlement.id,
                )
                handover_id = handover.id

            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise FinalizationConflictError(
                f"Another final settlement for station {station_id} on {settlement_date.isoformat()} "
                "was recorded concurrently; retry"
            )
        except (ValidationError, ConflictError):
            db.session.rollback()
            raise

        return SettlementOutcome(settlement, evaluations, unfinalized_ids, handover_id)

    outcome = run_with_retry(_record)
    settlement = outcome.settlement

    if settlement.variance_status == DISPUTED:
        current_app.logger.warning(
            "Settlement %s for station %s on %s is outside tolerance (cash variance %s)",
            settlement.id, station_id, settlement_date.isoformat(), settlement.variance_cash,
        )

    audit_service.log_audit_event(
        actor_user_id=actor_id,
        station_id=station_id,
        action="settlement.recorded",
        entity_type="settlement",
        entity_id=settlement.id,
        old_values={"unfinalized_settlement_ids": outcome.unfinalized_ids} if outcome.unfinalized_ids else None,
        new_values={**settlement.to_dict(), "reading_ids": reading_ids},
        category=audit_service.CATEGORY_FINANCE,
        severity=audit_service.SEVERITY_WARNING if settlement.variance_status == DISPUTED else audit_service.SEVERITY_INFO,
    )
    if outcome.handover_id is not None:
        audit_service.log_audit_event(
            actor_user_id=actor_id,
            station_id=station_id,
            action="handover.created",
            entity_type="cash_handover",
            entity_id=outcome.handover_id,
            new_values={"settlement_id": settlement.id, "handover_type": "shift_collection"},
            category=audit_service.CATEGORY_CASH,
        )
    return settlement


# =============================================================================
# QUERIES
# =============================================================================

def get_settlement(settlement_id: int) -> Settlement:
    settlement = db.session.get(Settlement, settlement_id)
    if not settlement:
        raise NotFoundError(f"Settlement {settlement_id} not found")
    return settlement


def list_settlements(station_id: int, settlement_date: date | None = None) -> list[Settlement]:
    query = db.session.query(Settlement).filter_by(station_id=station_id)
    if settlement_date:
        query = query.filter_by(settlement_date=settlement_date)
    return query.order_by(Settlement.settlement_date.desc(), Settlement.id.desc()).all()


def get_final_settlement(station_id: int, settlement_date: date) -> Settlement | None:
    return db.session.query(Settlement).filter_by(
        station_id=station_id, settlement_date=settlement_date, is_final=True
    ).first()


def get_settlement_readings(settlement_id: int) -> list[Reading]:
    return db.session.query(Reading).filter_by(settlement_id=settlement_id).order_by(Reading.id).all()


def settlement_history(station_id: int, limit: int = 5) -> list[dict]:
    """
    One entry per settlement date, newest first.

    The main settlement is the final one when there is one, else the
    latest attempt. Every attempt for the date is listed alongside.
    """
    recipient_service.get_station(station_id)
    dates = [
        d for (d,) in db.session.query(Settlement.settlement_date)
        .filter_by(station_id=station_id)
        .distinct()
        .order_by(Settlement.settlement_date.desc())
        .limit(limit)
        .all()
    ]

    history = []
    for settlement_date in dates:
        attempts = (
            db.session.query(Settlement)
            .filter_by(station_id=station_id, settlement_date=settlement_date)
            .order_by(Settlement.id)
            .all()
        )
        final = next((s for s in attempts if s.is_final), None)
        main = final or attempts[-1]
        expected_cash = Decimal(main.expected_cash)
        variance = Decimal(main.variance_cash)
        if variance > 0:
            interpretation = "shortfall"
        elif variance < 0:
            interpretation = "overage"
        else:
            interpretation = "match"
        history.append({
            "settlement_date": to_iso_date(settlement_date),
            "main_settlement": main.to_dict(),
            "final_settlement_id": final.id if final else None,
            "attempts": len(attempts),
            "all_settlements": [s.to_dict() for s in attempts],
            "variance_analysis": {
                "percentage": str(quantize_money(variance / expected_cash * 100)) if expected_cash > 0 else "0.00",
                "band": variance_service.variance_band(variance, expected_cash),
                "interpretation": interpretation,
            },
        })
    return history
