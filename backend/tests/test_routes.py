# Overview: Pytest coverage for the HTTP API surface.

"""
API Route Tests

Exercises request parsing, status codes, role checks and station scoping
through the Flask test client.
"""

from fuelcash.services import handover_service

from conftest import BUSINESS_DATE, actor_headers


def _post_reading(client, station, nozzle, user, value, **extra):
    return client.post(
        f"/api/stations/{station.id}/readings",
        json={"nozzle_id": nozzle.id, "reading_value": value, "reading_date": "2026-10-17", **extra},
        headers=actor_headers(user),
    )


class TestSystem:

    def test_health(self, client, db_session):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json["checks"]["database"]["status"] == "healthy"


class TestAuthentication:

    def test_missing_actor_header(self, client, db_session, staffed_station):
        response = client.get(f"/api/stations/{staffed_station.id}/settlements")
        assert response.status_code == 401

    def test_unknown_actor(self, client, db_session, staffed_station):
        response = client.get(f"/api/stations/{staffed_station.id}/settlements", headers={"X-User-Id": "99999"})
        assert response.status_code == 401

    def test_employee_cannot_settle(self, client, db_session, staffed_station, employee):
        response = client.post(
            f"/api/stations/{staffed_station.id}/settlements",
            json={"reading_ids": [1], "actual": {"cash": "0"}},
            headers=actor_headers(employee),
        )
        assert response.status_code == 403

    def test_other_organization_denied(self, client, db_session, staffed_station, outsider):
        response = client.get(
            f"/api/stations/{staffed_station.id}/readings-for-settlement",
            headers=actor_headers(outsider),
        )
        assert response.status_code == 403


class TestReadingRoutes:

    def test_record_and_list(self, client, db_session, staffed_station, nozzle, petrol_price, employee, manager):
        initial = _post_reading(client, staffed_station, nozzle, employee, "1000", is_initial_reading=True)
        assert initial.status_code == 201

        sale = _post_reading(client, staffed_station, nozzle, employee, "1040", cash_amount="4000")
        assert sale.status_code == 201
        assert sale.json["reading"]["total_amount"] == "4000.00"

        response = client.get(
            f"/api/stations/{staffed_station.id}/readings-for-settlement?date=2026-10-17",
            headers=actor_headers(manager),
        )
        assert response.status_code == 200
        assert response.json["unlinked"]["totals"]["value"] == "4000.00"
        assert len(response.json["unlinked"]["readings"]) == 1

    def test_backwards_meter_is_400(self, client, db_session, staffed_station, nozzle, petrol_price, employee):
        _post_reading(client, staffed_station, nozzle, employee, "1000", is_initial_reading=True)
        response = _post_reading(client, staffed_station, nozzle, employee, "900")
        assert response.status_code == 400

    def test_non_numeric_meter_is_400(self, client, db_session, staffed_station, nozzle, petrol_price, employee):
        _post_reading(client, staffed_station, nozzle, employee, "1000", is_initial_reading=True)
        for value in ("abc", True, {"value": 1050}):
            response = _post_reading(client, staffed_station, nozzle, employee, value)
            assert response.status_code == 400
            assert "reading_value" in response.json["error"]

    def test_malformed_nozzle_id_is_400(self, client, db_session, staffed_station, nozzle, employee):
        for nozzle_id in ([nozzle.id], {"id": nozzle.id}, "pump-1"):
            response = client.post(
                f"/api/stations/{staffed_station.id}/readings",
                json={"nozzle_id": nozzle_id, "reading_value": "1000", "is_initial_reading": True},
                headers=actor_headers(employee),
            )
            assert response.status_code == 400

    def test_payments_above_sale_value_is_400(self, client, db_session, staffed_station, nozzle, petrol_price, employee):
        _post_reading(client, staffed_station, nozzle, employee, "1000", is_initial_reading=True)
        response = _post_reading(
            client, staffed_station, nozzle, employee, "1040", online_amount="3000", credit_amount="1500"
        )
        assert response.status_code == 400
        assert "exceeds sale value" in response.json["error"]

    def test_bad_date_is_400(self, client, db_session, staffed_station, manager):
        response = client.get(
            f"/api/stations/{staffed_station.id}/readings-for-settlement?date=17-10-2026",
            headers=actor_headers(manager),
        )
        assert response.status_code == 400


class TestSettlementRoutes:

    def test_create_then_conflict(self, client, db_session, staffed_station, manager, record_sale):
        reading = record_sale(40, cash=4000)
        body = {
            "date": "2026-10-17",
            "reading_ids": [reading.id],
            "actual": {"cash": "3900"},
            "is_final": True,
            "variance": "0",
        }

        created = client.post(
            f"/api/stations/{staffed_station.id}/settlements", json=body, headers=actor_headers(manager)
        )
        assert created.status_code == 201
        settlement = created.json["settlement"]
        assert settlement["expected"]["cash"] == "4000.00"
        assert settlement["variance"]["cash"] == "100.00"
        assert settlement["variance_status"] == "matched"
        assert created.json["reading_ids"] == [reading.id]

        conflict = client.post(
            f"/api/stations/{staffed_station.id}/settlements", json=body, headers=actor_headers(manager)
        )
        assert conflict.status_code == 409
        assert conflict.json["reading_ids"] == [reading.id]

    def test_invalid_body(self, client, db_session, staffed_station, manager):
        response = client.post(
            f"/api/stations/{staffed_station.id}/settlements",
            json={"reading_ids": "1,2", "actual": {"cash": "10"}},
            headers=actor_headers(manager),
        )
        assert response.status_code == 400

    def test_handover_sender_must_belong_to_station(
        self, client, db_session, staffed_station, manager, outsider, record_sale
    ):
        reading = record_sale(40, cash=4000)
        url = f"/api/stations/{staffed_station.id}/settlements"
        for sender in ({"id": manager.id}, [manager.id], outsider.id):
            response = client.post(
                url,
                json={
                    "date": "2026-10-17",
                    "reading_ids": [reading.id],
                    "actual": {"cash": "4000"},
                    "handover_from_user_id": sender,
                },
                headers=actor_headers(manager),
            )
            assert response.status_code == 400

        listing = client.get(f"{url}?date=2026-10-17", headers=actor_headers(manager))
        assert listing.json["count"] == 0

    def test_get_list_and_history(self, client, db_session, staffed_station, manager, owner, record_sale):
        reading = record_sale(40, cash=4000)
        created = client.post(
            f"/api/stations/{staffed_station.id}/settlements",
            json={"date": "2026-10-17", "reading_ids": [reading.id], "actual": {"cash": "4000"}},
            headers=actor_headers(manager),
        )
        settlement_id = created.json["settlement"]["id"]

        detail = client.get(f"/api/settlements/{settlement_id}", headers=actor_headers(owner))
        assert detail.status_code == 200
        assert detail.json["totals"]["litres"] == "40.000"

        listing = client.get(
            f"/api/stations/{staffed_station.id}/settlements?date=2026-10-17", headers=actor_headers(owner)
        )
        assert listing.json["count"] == 1

        history = client.get(
            f"/api/stations/{staffed_station.id}/settlements/history", headers=actor_headers(owner)
        )
        assert history.json["history"][0]["main_settlement"]["id"] == settlement_id

    def test_missing_settlement(self, client, db_session, manager):
        response = client.get("/api/settlements/99999", headers=actor_headers(manager))
        assert response.status_code == 404


class TestHandoverRoutes:

    def test_chain_through_api(self, client, db_session, staffed_station, employee, manager, owner):
        created = client.post(
            "/api/handovers",
            json={
                "station_id": staffed_station.id,
                "handover_type": "shift_collection",
                "from_user_id": employee.id,
                "expected_amount": "4000",
                "handover_date": "2026-10-17",
            },
            headers=actor_headers(manager),
        )
        assert created.status_code == 201
        handover_id = created.json["handover"]["id"]
        assert created.json["handover"]["to_user_id"] == manager.id

        # Only the recipient (or an owner) may confirm
        denied = client.post(
            f"/api/handovers/{handover_id}/confirm", json={"accept_as_is": True}, headers=actor_headers(employee)
        )
        assert denied.status_code == 403

        pending = client.get("/api/handovers/pending", headers=actor_headers(manager))
        assert pending.json["count"] == 1

        confirmed = client.post(
            f"/api/handovers/{handover_id}/confirm", json={"accept_as_is": True}, headers=actor_headers(manager)
        )
        assert confirmed.status_code == 200
        assert confirmed.json["handover"]["status"] == "confirmed"

        again = client.post(
            f"/api/handovers/{handover_id}/confirm", json={"accept_as_is": True}, headers=actor_headers(manager)
        )
        assert again.status_code == 409

        next_stage = client.post(
            "/api/handovers",
            json={"station_id": staffed_station.id, "handover_type": "employee_to_manager", "from_user_id": employee.id},
            headers=actor_headers(manager),
        )
        assert next_stage.status_code == 201

        chain = client.get(f"/api/handovers/{handover_id}/chain", headers=actor_headers(owner))
        assert [h["handover_type"] for h in chain.json["chain"]] == ["shift_collection", "employee_to_manager"]

    def test_employee_cannot_create_handover(self, client, db_session, staffed_station, employee, manager):
        for handover_type in ("shift_collection", "bank_deposit"):
            response = client.post(
                "/api/handovers",
                json={"station_id": staffed_station.id, "handover_type": handover_type, "expected_amount": "10"},
                headers=actor_headers(employee),
            )
            assert response.status_code == 403
        assert handover_service.get_pending_for_user(manager.id) == []

    def test_generic_route_cannot_record_bank_deposit(
        self, client, db_session, staffed_station, employee, manager, owner
    ):
        collection = handover_service.create_shift_collection(
            staffed_station.id, employee.id, "4000", handover_date=BUSINESS_DATE
        )
        handover_service.confirm_handover(collection.id, accept_as_is=True, actor_id=manager.id)
        to_manager = handover_service.create_handover(
            staffed_station.id, "employee_to_manager", employee.id, handover_date=BUSINESS_DATE
        )
        handover_service.confirm_handover(to_manager.id, accept_as_is=True, actor_id=manager.id)
        to_owner = handover_service.create_handover(
            staffed_station.id, "manager_to_owner", manager.id, handover_date=BUSINESS_DATE
        )
        handover_service.confirm_handover(to_owner.id, accept_as_is=True, actor_id=owner.id)

        body = {"station_id": staffed_station.id, "handover_type": "bank_deposit", "expected_amount": "10"}
        by_manager = client.post("/api/handovers", json=body, headers=actor_headers(manager))
        assert by_manager.status_code == 403
        by_owner = client.post("/api/handovers", json=body, headers=actor_headers(owner))
        assert by_owner.status_code == 400

        # The owner's confirmed cash is still available for the real deposit
        deposit = client.post(
            "/api/handovers/bank-deposit",
            json={"station_id": staffed_station.id, "amount": "4000", "handover_date": "2026-10-17"},
            headers=actor_headers(owner),
        )
        assert deposit.status_code == 201
        assert deposit.json["handover"]["previous_handover_id"] == to_owner.id

    def test_malformed_ids_are_400(self, client, db_session, staffed_station, employee, manager, outsider):
        bodies = [
            {"station_id": [staffed_station.id], "handover_type": "shift_collection", "expected_amount": "10"},
            {"station_id": staffed_station.id, "handover_type": "shift_collection",
             "expected_amount": "10", "from_user_id": {"id": employee.id}},
            {"station_id": staffed_station.id, "handover_type": "shift_collection",
             "expected_amount": "10", "from_user_id": outsider.id},
        ]
        for body in bodies:
            response = client.post("/api/handovers", json=body, headers=actor_headers(manager))
            assert response.status_code == 400

    def test_out_of_order_stage_is_409(self, client, db_session, staffed_station, manager):
        response = client.post(
            "/api/handovers",
            json={"station_id": staffed_station.id, "handover_type": "manager_to_owner", "expected_amount": "10"},
            headers=actor_headers(manager),
        )
        assert response.status_code == 409
        assert response.json["missing_type"] == "employee_to_manager"

    def test_disputed_confirmation_is_200(self, client, db_session, staffed_station, employee, manager):
        handover = handover_service.create_shift_collection(staffed_station.id, employee.id, "4000")
        response = client.post(
            f"/api/handovers/{handover.id}/confirm", json={"actual_amount": "3000"}, headers=actor_headers(manager)
        )
        assert response.status_code == 200
        assert response.json["handover"]["status"] == "disputed"
        assert response.json["handover"]["variance"] == "1000.00"

    def test_bank_deposit_routes(self, client, db_session, staffed_station, employee, manager, owner):
        collection = handover_service.create_shift_collection(
            staffed_station.id, employee.id, "4000", handover_date=BUSINESS_DATE
        )
        handover_service.confirm_handover(collection.id, accept_as_is=True, actor_id=manager.id)
        to_manager = handover_service.create_handover(
            staffed_station.id, "employee_to_manager", employee.id, handover_date=BUSINESS_DATE
        )
        handover_service.confirm_handover(to_manager.id, accept_as_is=True, actor_id=manager.id)
        to_owner = handover_service.create_handover(
            staffed_station.id, "manager_to_owner", manager.id, handover_date=BUSINESS_DATE
        )
        handover_service.confirm_handover(to_owner.id, accept_as_is=True, actor_id=owner.id)

        manager_attempt = client.post(
            "/api/handovers/bank-deposit",
            json={"station_id": staffed_station.id, "amount": "4000"},
            headers=actor_headers(manager),
        )
        assert manager_attempt.status_code == 403

        mismatch = client.post(
            "/api/handovers/bank-deposit",
            json={"station_id": staffed_station.id, "amount": "2500", "handover_date": "2026-10-17"},
            headers=actor_headers(owner),
        )
        assert mismatch.status_code == 409
        assert mismatch.json["variance"]["status"] == "disputed"

        deposit = client.post(
            "/api/handovers/bank-deposit",
            json={"station_id": staffed_station.id, "amount": "4000", "handover_date": "2026-10-17"},
            headers=actor_headers(owner),
        )
        assert deposit.status_code == 201

        deposits = client.get(
            f"/api/stations/{staffed_station.id}/handovers/bank-deposits"
            "?start_date=2026-10-17&end_date=2026-10-17",
            headers=actor_headers(owner),
        )
        assert deposits.json["summary"] == {"count": 1, "total_deposited": "4000.00"}

        summary = client.get(
            f"/api/stations/{staffed_station.id}/handovers/summary"
            "?start_date=2026-10-17&end_date=2026-10-17",
            headers=actor_headers(owner),
        )
        assert summary.status_code == 200
        assert summary.json["by_type"]["bank_deposit"]["count"] == 1

    def test_summary_requires_period(self, client, db_session, staffed_station, owner):
        response = client.get(
            f"/api/stations/{staffed_station.id}/handovers/summary", headers=actor_headers(owner)
        )
        assert response.status_code == 400

    def test_station_listing(self, client, db_session, staffed_station, employee, manager):
        handover_service.create_shift_collection(staffed_station.id, employee.id, "100", handover_date=BUSINESS_DATE)
        response = client.get(
            f"/api/stations/{staffed_station.id}/handovers?status=pending&limit=10",
            headers=actor_headers(manager),
        )
        assert response.status_code == 200
        assert response.json["pagination"]["total"] == 1

        unconfirmed = client.get(
            f"/api/stations/{staffed_station.id}/handovers/unconfirmed"
            "?start_date=2026-10-17&end_date=2026-10-17",
            headers=actor_headers(manager),
        )
        assert unconfirmed.json["count"] == 1
        assert unconfirmed.json["alert"]
