"""
Reading Ledger

Append-only record of nozzle meter readings and the two settlement views
over it:

- unlinked: readings for a station/date not yet bound to a settlement
- linked: readings already bound, annotated with their settlement

DESIGN PRINCIPLES:
- Readings are never deleted here
- settlement_id is written only by the settlement engine
- total_amount (litres x price) is the authoritative monetary value;
  the cash/online/credit split is informational, but online + credit
  may not exceed it
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from sqlalchemy import and_, or_

from ..extensions import db
from ..models import Reading, Nozzle, FuelPrice
from ..time_utils import today, to_iso_date
from ..validation import ValidationError, NotFoundError, parse_amount, parse_quantity, quantize_money
from .recipient_service import get_station


ZERO = Decimal("0")
LITRE_PRECISION = Decimal("0.001")


@dataclass
class ReadingTotals:
    cash_total: Decimal = ZERO
    online_total: Decimal = ZERO
    credit_total: Decimal = ZERO
    litres_total: Decimal = ZERO
    value_total: Decimal = ZERO
    count: int = 0

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "cash": str(quantize_money(self.cash_total)),
            "online": str(quantize_money(self.online_total)),
            "credit": str(quantize_money(self.credit_total)),
            "litres": str(self.litres_total.quantize(LITRE_PRECISION)),
            "value": str(quantize_money(self.value_total)),
        }


@dataclass
class SettlementReadingView:
    """Both halves of a station/date, as shown on the settlement screen."""
    station_id: int
    reading_date: date
    unlinked: list[Reading] = field(default_factory=list)
    linked: list[Reading] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "station_id": self.station_id,
            "date": to_iso_date(self.reading_date),
            "unlinked": {
                "readings": [r.to_dict() for r in self.unlinked],
                "totals": aggregate(self.unlinked).to_dict(),
            },
            "linked": {
                "readings": [r.to_dict(include_settlement=True) for r in self.linked],
                "totals": aggregate(self.linked).to_dict(),
            },
            "all_readings_count": len(self.unlinked) + len(self.linked),
        }


def _sale_readings_filter():
    # Initial readings only carry a sale when litres were actually sold.
    return or_(
        Reading.is_initial_reading.is_(False),
        and_(Reading.is_initial_reading.is_(True), Reading.litres_sold > 0),
    )


def _station_date_query(station_id: int, reading_date: date):
    return db.session.query(Reading).filter(
        Reading.station_id == station_id,
        Reading.reading_date == reading_date,
        _sale_readings_filter(),
    )


# =============================================================================
# READ VIEWS
# =============================================================================

def list_unlinked(station_id: int, reading_date: date) -> list[Reading]:
    """Readings for the station/date that no settlement has claimed yet."""
    return (
        _station_date_query(station_id, reading_date)
        .filter(Reading.settlement_id.is_(None))
        .order_by(Reading.created_at, Reading.id)
        .all()
    )


def list_linked(station_id: int, reading_date: date) -> list[Reading]:
    """Readings for the station/date already bound to a settlement."""
    return (
        _station_date_query(station_id, reading_date)
        .filter(Reading.settlement_id.isnot(None))
        .order_by(Reading.settlement_id, Reading.id)
        .all()
    )


def readings_for_settlement(station_id: int, reading_date: date) -> SettlementReadingView:
    get_station(station_id)
    return SettlementReadingView(
        station_id=station_id,
        reading_date=reading_date,
        unlinked=list_unlinked(station_id, reading_date),
        linked=list_linked(station_id, reading_date),
    )


def aggregate(readings: Iterable[Reading]) -> ReadingTotals:
    """Sum payment channels, litres and monetary value across readings."""
    totals = ReadingTotals()
    for reading in readings:
        totals.cash_total += Decimal(reading.cash_amount or 0)
        totals.online_total += Decimal(reading.online_amount or 0)
        totals.credit_total += Decimal(reading.credit_amount or 0)
        totals.litres_total += Decimal(reading.litres_sold or 0)
        totals.value_total += Decimal(reading.total_amount or 0)
        totals.count += 1
    return totals


def get_reading(reading_id: int) -> Reading:
    reading = db.session.get(Reading, reading_id)
    if not reading:
        raise NotFoundError(f"Reading {reading_id} not found")
    return reading


# =============================================================================
# PRICE LOOKUP
# =============================================================================

def get_price_for_date(station_id: int, fuel_type: str, on_date: date) -> Decimal | None:
    """Price per litre in force on a date (latest effective_from <= date)."""
    price = (
        db.session.query(FuelPrice)
        .filter(
            FuelPrice.station_id == station_id,
            FuelPrice.fuel_type == fuel_type,
            FuelPrice.effective_from <= on_date,
        )
        .order_by(FuelPrice.effective_from.desc())
        .first()
    )
    return Decimal(price.price) if price else None


# =============================================================================
# RECORDING
# =============================================================================

def get_previous_reading(nozzle_id: int, on_date: date) -> Reading | None:
    """Latest reading for a nozzle on or before a date."""
    return (
        db.session.query(Reading)
        .filter(Reading.nozzle_id == nozzle_id, Reading.reading_date <= on_date)
        .order_by(Reading.reading_date.desc(), Reading.id.desc())
        .first()
    )


def record_reading(
    station_id: int,
    nozzle_id: int,
    reading_value,
    *,
    reading_date: date | None = None,
    entered_by_user_id: int | None = None,
    cash_amount=0,
    online_amount=0,
    credit_amount=0,
    is_initial_reading: bool = False,
) -> Reading:
    """
    Capture a meter value and derive litres sold and sale value.

    litres_sold = current meter - previous meter for the nozzle
    total_amount = litres_sold x price valid on reading_date

    Raises:
        NotFoundError: station or nozzle unknown
        ValidationError: bad meter value, meter went backwards, no previous
            reading, no price, or non-cash payments above the sale value
    """
    get_station(station_id)
    nozzle = db.session.get(Nozzle, nozzle_id)
    if not nozzle:
        raise NotFoundError(f"Nozzle {nozzle_id} not found")
    if nozzle.station_id != station_id:
        raise ValidationError(f"Nozzle {nozzle_id} does not belong to station {station_id}")

    reading_date = reading_date or today()
    meter = parse_quantity(reading_value, "reading_value", places=LITRE_PRECISION)

    cash = parse_amount(cash_amount, "cash_amount")
    online = parse_amount(online_amount, "online_amount")
    credit = parse_amount(credit_amount, "credit_amount")

    if is_initial_reading:
        reading = Reading(
            station_id=station_id,
            nozzle_id=nozzle_id,
            entered_by_user_id=entered_by_user_id,
            reading_date=reading_date,
            reading_value=meter,
            previous_reading=meter,
            litres_sold=ZERO,
            price_per_litre=None,
            total_amount=ZERO,
            cash_amount=ZERO,
            online_amount=ZERO,
            credit_amount=ZERO,
            is_initial_reading=True,
        )
        db.session.add(reading)
        db.session.commit()
        return reading

    previous = get_previous_reading(nozzle_id, reading_date)
    if previous is None:
        raise ValidationError(f"Nozzle {nozzle_id} has no previous reading; record an initial reading first")

    previous_value = Decimal(previous.reading_value)
    litres = meter - previous_value
    if litres < 0:
        raise ValidationError(
            f"Meter value {meter} is lower than previous reading {previous_value}"
        )

    price = get_price_for_date(station_id, nozzle.fuel_type, reading_date)
    if price is None:
        raise ValidationError(f"No {nozzle.fuel_type} price set for {reading_date.isoformat()}")

    total = (litres * price).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if online + credit > total:
        raise ValidationError(
            f"online_amount + credit_amount ({online + credit}) exceeds sale value {total}"
        )

    reading = Reading(
        station_id=station_id,
        nozzle_id=nozzle_id,
        entered_by_user_id=entered_by_user_id,
        reading_date=reading_date,
        reading_value=meter,
        previous_reading=previous_value,
        litres_sold=litres,
        price_per_litre=price,
        total_amount=total,
        cash_amount=cash,
        online_amount=online,
        credit_amount=credit,
        is_initial_reading=False,
    )
    db.session.add(reading)
    db.session.commit()
    return reading
