# Overview: Pytest coverage for the settlement engine.

"""
Settlement Engine Tests

Covers:
- Expected amounts derived from readings, variance computed server-side
- A reading is claimed by at most one settlement
- At most one final settlement per station/date
- Optional shift_collection handover opened with the settlement
"""

from datetime import date
from decimal import Decimal

import pytest
from fuelcash.models import Reading, Settlement, CashHandover
from fuelcash.services import settlement_service
from fuelcash.services.settlement_service import AlreadyLinkedError, FinalizationConflictError
from fuelcash.validation import ValidationError, NotFoundError

from conftest import BUSINESS_DATE


class TestCreateSettlement:

    def test_end_to_end_shortfall_within_tolerance(self, db_session, staffed_station, manager, record_sale):
        """40 L at 100.00 is 4000 expected; counting 3900 is a 100 shortfall, still matched."""
        reading = record_sale(40, cash=4000)

        settlement = settlement_service.create_settlement(
            staffed_station.id, BUSINESS_DATE, [reading.id], {"cash": "3900"}, actor_id=manager.id
        )

        assert settlement.expected_cash == Decimal("4000.00")
        assert settlement.expected_total == Decimal("4000.00")
        assert settlement.actual_cash == Decimal("3900.00")
        assert settlement.variance_cash == Decimal("100.00")
        assert settlement.variance_status == "matched"
        assert settlement.reading_count == 1
        assert settlement.recorded_by_user_id == manager.id

        db_session.refresh(reading)
        assert reading.settlement_id == settlement.id

    def test_shortfall_outside_tolerance_is_disputed(self, db_session, staffed_station, manager, record_sale):
        reading = record_sale(40, cash=4000)

        settlement = settlement_service.create_settlement(
            staffed_station.id, BUSINESS_DATE, [reading.id], {"cash": "3500"}, actor_id=manager.id
        )

        assert settlement.variance_cash == Decimal("500.00")
        assert settlement.variance_status == "disputed"

    def test_expected_split_follows_reported_channels(self, db_session, staffed_station, manager, record_sale):
        first = record_sale(40, cash=3000, online=1000)
        second = record_sale(10, cash=500, credit=500)

        settlement = settlement_service.create_settlement(
            staffed_station.id,
            BUSINESS_DATE,
            [first.id, second.id],
            {"cash": "3500", "online": "1000", "credit": "500"},
            actor_id=manager.id,
        )

        assert settlement.expected_online == Decimal("1000.00")
        assert settlement.expected_credit == Decimal("500.00")
        assert settlement.expected_cash == Decimal("3500.00")
        assert settlement.expected_total == Decimal("5000.00")
        assert settlement.reported_cash == Decimal("3500.00")
        assert settlement.variance_status == "matched"

    def test_any_disputed_channel_disputes_settlement(self, db_session, staffed_station, manager, record_sale):
        reading = record_sale(40, cash=2000, online=2000)

        settlement = settlement_service.create_settlement(
            staffed_station.id,
            BUSINESS_DATE,
            [reading.id],
            {"cash": "2000", "online": "1500"},
            actor_id=manager.id,
        )

        assert settlement.variance_cash == Decimal("0.00")
        assert settlement.variance_online == Decimal("500.00")
        assert settlement.variance_status == "disputed"

    def test_client_variance_is_not_accepted(self, db_session, staffed_station, manager, record_sale):
        reading = record_sale(40)
        with pytest.raises(ValidationError):
            settlement_service.create_settlement(
                staffed_station.id, BUSINESS_DATE, [reading.id], {"cash": "4000", "variance": "0"},
                actor_id=manager.id,
            )

    def test_empty_reading_list_rejected(self, db_session, staffed_station, manager):
        with pytest.raises(ValidationError):
            settlement_service.create_settlement(
                staffed_station.id, BUSINESS_DATE, [], {"cash": "0"}, actor_id=manager.id
            )

    def test_unknown_reading_rejected(self, db_session, staffed_station, manager, record_sale):
        reading = record_sale(40)
        with pytest.raises(ValidationError):
            settlement_service.create_settlement(
                staffed_station.id, BUSINESS_DATE, [reading.id, 99999], {"cash": "4000"}, actor_id=manager.id
            )
        assert db_session.query(Settlement).count() == 0

    def test_reading_from_other_date_rejected(self, db_session, staffed_station, manager, record_sale):
        reading = record_sale(40, on_date=date(2026, 10, 16))
        with pytest.raises(ValidationError):
            settlement_service.create_settlement(
                staffed_station.id, BUSINESS_DATE, [reading.id], {"cash": "4000"}, actor_id=manager.id
            )

    def test_negative_actual_rejected(self, db_session, staffed_station, manager, record_sale):
        reading = record_sale(40)
        with pytest.raises(ValidationError):
            settlement_service.create_settlement(
                staffed_station.id, BUSINESS_DATE, [reading.id], {"cash": "-1"}, actor_id=manager.id
            )

    def test_unknown_station(self, db_session, manager):
        with pytest.raises(NotFoundError):
            settlement_service.create_settlement(99999, BUSINESS_DATE, [1], {"cash": "0"}, actor_id=manager.id)


class TestReadingClaims:

    def test_reading_cannot_be_settled_twice(self, db_session, staffed_station, manager, record_sale):
        first = record_sale(40, cash=4000)
        second = record_sale(10, cash=1000)
        settlement_service.create_settlement(
            staffed_station.id, BUSINESS_DATE, [first.id], {"cash": "4000"}, actor_id=manager.id
        )

        with pytest.raises(AlreadyLinkedError) as exc_info:
            settlement_service.create_settlement(
                staffed_station.id, BUSINESS_DATE, [first.id, second.id], {"cash": "5000"}, actor_id=manager.id
            )

        assert exc_info.value.reading_ids == [first.id]
        assert db_session.query(Settlement).count() == 1
        db_session.refresh(second)
        assert second.settlement_id is None

    def test_lost_race_on_link_rolls_back(self, db_session, staffed_station, manager, record_sale, monkeypatch):
        """Pre-check passes but the conditional update finds the reading already taken."""
        reading = record_sale(40, cash=4000)
        winner = settlement_service.create_settlement(
            staffed_station.id, BUSINESS_DATE, [reading.id], {"cash": "4000"}, actor_id=manager.id
        )

        monkeypatch.setattr(settlement_service, "_claim_readings", lambda *args: [])

        with pytest.raises(AlreadyLinkedError) as exc_info:
            settlement_service.create_settlement(
                staffed_station.id, BUSINESS_DATE, [reading.id], {"cash": "4000"}, actor_id=manager.id
            )

        assert exc_info.value.reading_ids == [reading.id]
        assert db_session.query(Settlement).count() == 1
        assert db_session.get(Reading, reading.id).settlement_id == winner.id

    def test_duplicate_ids_in_request_are_collapsed(self, db_session, staffed_station, manager, record_sale):
        reading = record_sale(40, cash=4000)
        settlement = settlement_service.create_settlement(
            staffed_station.id, BUSINESS_DATE, [reading.id, reading.id], {"cash": "4000"}, actor_id=manager.id
        )
        assert settlement.reading_count == 1


class TestFinalization:

    def test_last_final_wins(self, db_session, staffed_station, manager, record_sale):
        first = record_sale(40, cash=4000)
        second = record_sale(10, cash=1000)

        earlier = settlement_service.create_settlement(
            staffed_station.id, BUSINESS_DATE, [first.id], {"cash": "4000"}, is_final=True, actor_id=manager.id
        )
        later = settlement_service.create_settlement(
            staffed_station.id, BUSINESS_DATE, [second.id], {"cash": "1000"}, is_final=True, actor_id=manager.id
        )

        db_session.refresh(earlier)
        assert earlier.is_final is False
        assert earlier.finalized_at is None
        assert later.is_final is True
        assert settlement_service.get_final_settlement(staffed_station.id, BUSINESS_DATE).id == later.id

    def test_draft_does_not_unfinalize(self, db_session, staffed_station, manager, record_sale):
        first = record_sale(40, cash=4000)
        second = record_sale(10, cash=1000)

        final = settlement_service.create_settlement(
            staffed_station.id, BUSINESS_DATE, [first.id], {"cash": "4000"}, is_final=True, actor_id=manager.id
        )
        settlement_service.create_settlement(
            staffed_station.id, BUSINESS_DATE, [second.id], {"cash": "1000"}, actor_id=manager.id
        )

        assert settlement_service.get_final_settlement(staffed_station.id, BUSINESS_DATE).id == final.id

    def test_concurrent_final_surfaces_conflict(self, db_session, staffed_station, manager, record_sale, monkeypatch):
        """Another writer's final settlement lands between our un-finalize step and our insert."""
        first = record_sale(40, cash=4000)
        second = record_sale(10, cash=1000)
        settlement_service.create_settlement(
            staffed_station.id, BUSINESS_DATE, [first.id], {"cash": "4000"}, is_final=True, actor_id=manager.id
        )

        monkeypatch.setattr(settlement_service, "_unfinalize_others", lambda *args: [])

        with pytest.raises(FinalizationConflictError):
            settlement_service.create_settlement(
                staffed_station.id, BUSINESS_DATE, [second.id], {"cash": "1000"}, is_final=True, actor_id=manager.id
            )

        assert db_session.query(Settlement).count() == 1
        assert db_session.get(Reading, second.id).settlement_id is None


class TestShiftCollection:

    def test_settlement_opens_shift_collection(self, db_session, staffed_station, manager, employee, record_sale):
        reading = record_sale(40, cash=4000)

        settlement = settlement_service.create_settlement(
            staffed_station.id,
            BUSINESS_DATE,
            [reading.id],
            {"cash": "3950"},
            actor_id=manager.id,
            handover_from_user_id=employee.id,
        )

        handover = db_session.query(CashHandover).filter_by(settlement_id=settlement.id).one()
        assert handover.handover_type == "shift_collection"
        assert handover.expected_amount == Decimal("3950.00")
        assert handover.from_user_id == employee.id
        assert handover.to_user_id == manager.id
        assert handover.status == "pending"
        assert handover.handover_date == BUSINESS_DATE

    def test_sender_outside_station_rejected(self, db_session, staffed_station, manager, outsider, record_sale):
        reading = record_sale(40, cash=4000)

        with pytest.raises(ValidationError):
            settlement_service.create_settlement(
                staffed_station.id,
                BUSINESS_DATE,
                [reading.id],
                {"cash": "4000"},
                actor_id=manager.id,
                handover_from_user_id=outsider.id,
            )

        assert db_session.query(Settlement).count() == 0
        assert db_session.get(Reading, reading.id).settlement_id is None

    def test_missing_recipient_aborts_settlement(self, db_session, station, employee, owner, nozzle, petrol_price):
        """No manager assigned: neither the settlement nor the handover is written."""
        from fuelcash.services import reading_service

        reading_service.record_reading(station.id, nozzle.id, "1000", reading_date=BUSINESS_DATE, is_initial_reading=True)
        reading = reading_service.record_reading(station.id, nozzle.id, "1040", reading_date=BUSINESS_DATE)

        with pytest.raises(ValidationError):
            settlement_service.create_settlement(
                station.id,
                BUSINESS_DATE,
                [reading.id],
                {"cash": "4000"},
                actor_id=owner.id,
                handover_from_user_id=employee.id,
            )

        assert db_session.query(Settlement).count() == 0
        assert db_session.query(CashHandover).count() == 0
        assert db_session.get(Reading, reading.id).settlement_id is None


class TestHistory:

    def test_history_prefers_final_settlement(self, db_session, staffed_station, manager, record_sale):
        first = record_sale(40, cash=4000)
        second = record_sale(10, cash=1000)
        third = record_sale(5, cash=500, on_date=date(2026, 10, 18))

        final = settlement_service.create_settlement(
            staffed_station.id, BUSINESS_DATE, [first.id], {"cash": "3900"}, is_final=True, actor_id=manager.id
        )
        settlement_service.create_settlement(
            staffed_station.id, BUSINESS_DATE, [second.id], {"cash": "1000"}, actor_id=manager.id
        )
        latest = settlement_service.create_settlement(
            staffed_station.id, date(2026, 10, 18), [third.id], {"cash": "500"}, actor_id=manager.id
        )

        history = settlement_service.settlement_history(staffed_station.id)

        assert [h["settlement_date"] for h in history] == ["2026-10-18", "2026-10-17"]
        assert history[0]["main_settlement"]["id"] == latest.id
        assert history[0]["final_settlement_id"] is None
        assert history[1]["main_settlement"]["id"] == final.id
        assert history[1]["attempts"] == 2
        assert history[1]["variance_analysis"] == {
            "percentage": "2.50",
            "band": "review",
            "interpretation": "shortfall",
        }

    def test_history_limit(self, db_session, staffed_station, manager, record_sale):
        for day in (15, 16, 17):
            reading = record_sale(1, cash=100, on_date=date(2026, 10, day))
            settlement_service.create_settlement(
                staffed_station.id, date(2026, 10, day), [reading.id], {"cash": "100"}, actor_id=manager.id
            )

        history = settlement_service.settlement_history(staffed_station.id, limit=2)
        assert [h["settlement_date"] for h in history] == ["2026-10-17", "2026-10-16"]
