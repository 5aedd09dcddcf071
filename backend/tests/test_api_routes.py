"""
API tests over the ASGI app (mongomock + recording mailer)
"""

import pytest

from config import today_iso
from tests.conftest import ADMIN, date_days_ago, seed_dealer, seed_paid_order, seed_vehicle
from tests.test_availability import next_weekday, MONDAY


def dealer_user(dealer):
    return {"id": dealer["user_id"], "email": "dealer@example.in", "role": "dealer", "dealer_id": dealer["id"]}


class TestPayoutRoutes:

    async def test_create_and_list(self, api, db, dealer, week_range):
        await seed_paid_order(db, dealer["id"], 500.0)
        await seed_paid_order(db, dealer["id"], 300.0)

        body = {"dealer_id": dealer["id"], "from_date": week_range[0], "to_date": week_range[1]}
        response = await api.post("/api/payouts", json=body)
        assert response.status_code == 201
        payout = response.json()["payout"]
        assert payout["amount"] == 800.0
        assert payout["orders_included"]["count"] == 2

        again = await api.post("/api/payouts", json=body)
        assert again.status_code == 404
        assert again.json()["error"] == "no_unpaid_commissions"

        api.login_as(dealer_user(dealer))
        listed = await api.get("/api/payouts")
        assert listed.status_code == 200
        assert listed.json()["count"] == 1
        assert listed.json()["payouts"][0]["dealer"]["business_name"] == "Volt Motors"

    async def test_zero_amount_is_400(self, api, db, dealer, week_range):
        await seed_paid_order(db, dealer["id"], 0.0)
        response = await api.post("/api/payouts", json={
            "dealer_id": dealer["id"], "from_date": week_range[0], "to_date": week_range[1]})
        assert response.status_code == 400
        assert response.json()["error"] == "zero_commission_amount"

    async def test_dealer_cannot_create(self, api, dealer, week_range):
        api.login_as(dealer_user(dealer))
        response = await api.post("/api/payouts", json={
            "dealer_id": dealer["id"], "from_date": week_range[0], "to_date": week_range[1]})
        assert response.status_code == 403
        assert response.json()["error"] == "admin_required"

    async def test_missing_field_is_invalid_input(self, api, week_range):
        response = await api.post("/api/payouts", json={"from_date": week_range[0], "to_date": week_range[1]})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_input"
        assert "dealer_id" in response.json()["detail"]

    async def test_list_filters_include_to_date(self, api, db, dealer, week_range):
        await seed_paid_order(db, dealer["id"], 60.0)
        await api.post("/api/payouts", json={
            "dealer_id": dealer["id"], "from_date": week_range[0], "to_date": week_range[1]})

        today = today_iso()
        listed = await api.get("/api/payouts", params={"from_date": today, "to_date": today})
        assert listed.status_code == 200
        assert listed.json()["count"] == 1

        only_to = await api.get("/api/payouts", params={"to_date": today})
        assert only_to.json()["count"] == 1
        before = await api.get("/api/payouts", params={"to_date": date_days_ago(1)})
        assert before.json()["count"] == 0

        reversed_range = await api.get("/api/payouts", params={"from_date": today, "to_date": date_days_ago(1)})
        assert reversed_range.status_code == 400
        assert reversed_range.json()["error"] == "invalid_date_range"

    async def test_status_update_errors(self, api, db, dealer, week_range):
        await seed_paid_order(db, dealer["id"], 100.0)
        created = await api.post("/api/payouts", json={
            "dealer_id": dealer["id"], "from_date": week_range[0], "to_date": week_range[1]})
        payout_id = created.json()["payout"]["id"]

        assert (await api.put("/api/payouts", json={"payout_id": payout_id, "status": "paid"})).status_code == 400
        assert (await api.put("/api/payouts", json={"payout_id": "nope", "status": "processing"})).status_code == 404
        skip = await api.put("/api/payouts", json={"payout_id": payout_id, "status": "completed"})
        assert skip.status_code == 409

        ok = await api.put("/api/payouts", json={"payout_id": payout_id, "status": "processing"})
        assert ok.status_code == 200
        assert ok.json()["payout"]["status"] == "processing"

    async def test_summary_and_unpaid(self, api, db, dealer, week_range):
        await seed_paid_order(db, dealer["id"], 75.0)
        api.login_as(dealer_user(dealer))

        summary = await api.get("/api/payouts/summary")
        assert summary.json()["unpaid_commission"] == 75.0

        unpaid = await api.get("/api/payouts/unpaid", params={"from_date": week_range[0], "to_date": week_range[1]})
        assert unpaid.json()["count"] == 1
        assert unpaid.json()["total"] == 75.0


class TestLeadRoutes:

    async def test_submit_assign_and_work(self, api, db, dealer):
        submitted = await api.post("/api/leads", json={
            "name": "Meera", "email": "MEERA@Example.in", "phone": "+91 98123 45678",
            "subject": "Price", "message": "Quote please", "source": "inquiry"})
        assert submitted.status_code == 201
        lead_id = submitted.json()["lead"]["id"]
        stored = await db.leads.find_one({"id": lead_id})
        assert stored["email"] == "meera@example.in"
        assert stored["phone"] == "9812345678"

        assigned = await api.post("/api/leads/assign", json={"leadId": lead_id, "dealerId": dealer["id"]})
        assert assigned.status_code == 200
        again = await api.post("/api/leads/assign", json={"leadId": lead_id, "dealerId": dealer["id"]})
        assert again.status_code == 400
        assert again.json()["error"] == "lead_already_assigned"

        api.login_as(dealer_user(dealer))
        mine = await api.get("/api/dealer/leads")
        assert mine.json()["stats"]["assigned"] == 1

        moved = await api.put(f"/api/leads/{lead_id}/status", json={"status": "contacted"})
        assert moved.status_code == 200
        noted = await api.post(f"/api/leads/{lead_id}/notes", json={"note": "left voicemail"})
        assert noted.json()["lead"]["notes"].endswith("left voicemail")

    async def test_invalid_lead_payload(self, api):
        response = await api.post("/api/leads", json={"name": "X", "email": "not-an-email"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_input"


class TestOrderRoutes:

    async def test_checkout_pay_ship(self, api, db, dealer):
        vehicle_id = await seed_vehicle(db)
        api.login_as({"id": "customer-1", "email": "buyer@example.in", "role": "customer"})
        created = await api.post("/api/orders/checkout", json={"vehicle_id": vehicle_id, "dealer_id": dealer["id"]})
        assert created.status_code == 201
        order_id = created.json()["order"]["id"]

        api.login_as(dict(ADMIN))
        paid = await api.post(f"/api/orders/{order_id}/payment", json={"payment_id": "pay_1"})
        assert paid.json()["order"]["status"] == "confirmed"

        api.login_as(dealer_user(dealer))
        skip = await api.put(f"/api/orders/{order_id}/status", json={"status": "shipped"})
        assert skip.status_code == 400
        assert skip.json()["error"] == "invalid_transition"
        cancel = await api.put(f"/api/orders/{order_id}/status",
                               json={"status": "cancelled", "cancellation_reason": "x"})
        assert cancel.status_code == 403
        ok = await api.put(f"/api/orders/{order_id}/status", json={"status": "processing"})
        assert ok.status_code == 200

        api.login_as({"id": "customer-1", "email": "buyer@example.in", "role": "customer"})
        track = await api.get(f"/api/orders/track/{order_id}")
        assert track.json()["status"] == "processing"


class TestAvailabilityRoutes:

    async def test_dealer_settings_and_public_check(self, api, dealer):
        monday = next_weekday(MONDAY)
        api.login_as(dealer_user(dealer))
        settings = await api.get("/api/dealer/availability")
        assert settings.json()["slotDuration"] == 30

        added = await api.post("/api/dealer/availability/holidays", json={"date": monday})
        assert monday in added.json()["availability"]["holidays"]

        check = await api.post("/api/dealer/availability/check", json={"dealerId": dealer["id"], "date": monday})
        assert check.json() == {"date": monday, "dayOfWeek": "monday", "available": False,
                                "reason": "holiday", "slots": []}

        removed = await api.delete(f"/api/dealer/availability/holidays/{monday}")
        assert monday not in removed.json()["availability"]["holidays"]

        slots = await api.get("/api/test-rides/slots", params={"dealer_id": dealer["id"], "date": monday})
        assert len(slots.json()["slots"]) == 18

        booked = await api.post("/api/test-rides/book", json={
            "dealer_id": dealer["id"], "name": "Kiran", "email": "kiran@example.in",
            "preferred_date": monday, "preferred_time": "09:00"})
        assert booked.status_code == 201

    async def test_slots_for_unknown_dealer(self, api):
        response = await api.get("/api/test-rides/slots", params={"dealer_id": "nope", "date": next_weekday(MONDAY)})
        assert response.status_code == 404
        assert response.json()["error"] == "dealer_not_found"

    async def test_bad_settings_is_invalid_input(self, api, dealer):
        api.login_as(dealer_user(dealer))
        response = await api.put("/api/dealer/availability", json={"workingHours": {}, "slotDuration": 500})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_input"


class TestMiscRoutes:

    async def test_commission_rate(self, api, db):
        dealer = await seed_dealer(db)
        response = await api.put(f"/api/admin/dealers/{dealer['id']}/commission-rate", json={"commission_rate": 12.5})
        assert response.status_code == 200
        assert (await db.dealers.find_one({"id": dealer["id"]}))["commission_rate"] == 12.5

        bad = await api.put(f"/api/admin/dealers/{dealer['id']}/commission-rate", json={"commission_rate": 150})
        assert bad.status_code == 400
        assert bad.json()["error"] == "invalid_input"

    async def test_notifications_inbox(self, api, db, dealer, week_range):
        await seed_paid_order(db, dealer["id"], 100.0)
        await api.post("/api/payouts", json={
            "dealer_id": dealer["id"], "from_date": week_range[0], "to_date": week_range[1]})

        api.login_as(dealer_user(dealer))
        inbox = await api.get("/api/notifications")
        assert inbox.json()["unread_count"] == 1
        notif_id = inbox.json()["notifications"][0]["id"]

        assert (await api.put(f"/api/notifications/{notif_id}")).status_code == 200
        assert (await api.put("/api/notifications/missing")).status_code == 404
        bulk = await api.put("/api/notifications/bulk", json={})
        assert bulk.json()["updated"] == 0

    async def test_me(self, api):
        response = await api.get("/api/auth/me")
        assert response.json()["role"] == "admin"

    async def test_unknown_event_topic(self, api):
        response = await api.get("/api/events/unknown")
        assert response.status_code == 404
        assert response.json()["error"] == "unknown_topic"

    async def test_bearer_session_lookup(self, api, db):
        api.logout()
        anonymous = await api.get("/api/auth/me")
        assert anonymous.status_code == 401
        assert anonymous.json()["error"] == "not_authenticated"

        expired = await api.get("/api/auth/me", headers={"Authorization": "Bearer stale"})
        assert expired.status_code == 401
        assert expired.json()["error"] == "session_expired"

        await db.users.insert_one({"id": "customer-9", "email": "c9@example.in", "role": "customer"})
        await db.sessions.insert_one({"token": "tok-9", "user_id": "customer-9",
                                      "expires_at": "2999-01-01T00:00:00+00:00"})
        me = await api.get("/api/auth/me", headers={"Authorization": "Bearer tok-9"})
        assert me.status_code == 200
        assert me.json()["email"] == "c9@example.in"

        denied = await api.post("/api/payouts", headers={"Authorization": "Bearer tok-9"}, json={
            "dealer_id": "d1", "from_date": "2024-01-01", "to_date": "2024-01-31"})
        assert denied.status_code == 403
        assert denied.json()["error"] == "admin_required"

    async def test_unknown_route_has_error_code(self, api):
        response = await api.get("/api/nothing-here")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"
