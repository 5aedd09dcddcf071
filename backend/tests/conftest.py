"""
Shared fixtures: mongomock database, recording mailer, seeded dealer,
services wired the way create_app() wires them, and an in-process API client.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from mongomock_motor import AsyncMongoMockClient

from config import today_iso
from services.availability import AvailabilityService
from services.event_bus import EventBus
from services.leads import LeadService
from services.notifications import NotificationService
from services.order_state_machine import OrderService
from services.payouts import PayoutService
from services.test_rides import TestRideService


class FakeMailer:
    """Records send_template calls instead of talking to SendGrid"""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    def send_template(self, template_id: str, to_email: str, props: dict) -> bool:
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append({"template_id": template_id, "to": to_email, "props": props})
        return True


def iso_days_ago(days: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()


def date_days_ago(days: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).date().isoformat()


@pytest.fixture
def db():
    return AsyncMongoMockClient()[f"test_{uuid.uuid4().hex[:8]}"]


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def notifier(db, mailer, events):
    return NotificationService(db, mailer=mailer, events=events)


@pytest.fixture
def payout_service(db, notifier, events):
    return PayoutService(db, notifier, events)


@pytest.fixture
def order_service(db, notifier, events):
    return OrderService(db, notifier, events)


@pytest.fixture
def lead_service(db, notifier, events):
    return LeadService(db, notifier, events)


@pytest.fixture
def availability_service(db):
    return AvailabilityService(db)


@pytest.fixture
def booking_service(db, notifier, events, availability_service):
    return TestRideService(db, notifier, events, availability=availability_service)


# ==================== SEED HELPERS ====================

async def seed_dealer(db, commission_rate=10.0, status="approved", is_active=True):
    user_id = str(uuid.uuid4())
    dealer_id = str(uuid.uuid4())
    await db.users.insert_one({
        "id": user_id, "email": f"dealer-{user_id[:6]}@example.in",
        "role": "dealer", "is_active": True,
    })
    await db.dealers.insert_one({
        "id": dealer_id,
        "user_id": user_id,
        "business_name": "Volt Motors",
        "business_email": f"dealer-{user_id[:6]}@example.in",
        "business_phone": "9876543210",
        "commission_rate": commission_rate,
        "status": status,
        "is_active": is_active,
    })
    return {"id": dealer_id, "user_id": user_id}


async def seed_paid_order(db, dealer_id, commission, created_at=None, **overrides):
    """An order already paid, carrying its frozen commission"""
    order = {
        "id": str(uuid.uuid4()),
        "customer_id": "customer-1",
        "dealer_id": dealer_id,
        "vehicle_id": "vehicle-1",
        "quantity": 1,
        "final_amount": commission * 10,
        "status": "confirmed",
        "payment_status": "paid",
        "dealer_commission_amount": commission,
        "commission_paid": False,
        "commission_paid_at": None,
        "payout_id": None,
        "created_at": created_at or iso_days_ago(1),
        "updated_at": created_at or iso_days_ago(1),
    }
    order.update(overrides)
    await db.orders.insert_one(order)
    order.pop("_id", None)
    return order


async def seed_vehicle(db, price=100000.0, stock=5):
    vehicle_id = str(uuid.uuid4())
    await db.vehicles.insert_one({
        "id": vehicle_id, "name": "Volt S1", "price": price,
        "stock_quantity": stock, "is_active": True,
    })
    return vehicle_id


@pytest.fixture
async def dealer(db):
    return await seed_dealer(db)


@pytest.fixture
def week_range():
    return date_days_ago(7), today_iso()


# ==================== API ====================

ADMIN = {"id": "admin-1", "email": "admin@evdealerhub.in", "role": "admin"}


@pytest.fixture
async def api(db, mailer, events):
    """
    AsyncClient over the ASGI app. The logged-in user is whatever
    api.login_as(...) last set (admin by default). api.logout() drops the
    override so requests go through the real bearer session lookup.
    """
    from server import create_app
    from routes.auth import get_current_user

    app = create_app(db=db, mailer=mailer, events=events)
    current = {"user": dict(ADMIN)}

    async def fake_user():
        return current["user"]

    app.dependency_overrides[get_current_user] = fake_user

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        client.login_as = lambda user: current.update(user=user)
        client.logout = lambda: app.dependency_overrides.pop(get_current_user, None)
        yield client
