"""Shared test fixtures and helpers."""

import threading
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

import pytest

from bookingbot.app import BookingApp, build_app
from bookingbot.conversation.input_parser import build_postback
from bookingbot.conversation.session_store import InMemorySessionStore
from bookingbot.schemas.booking_schema import Booking, BookingRequest
from bookingbot.schemas.catalog_schema import ServiceCategory, ServiceItem
from bookingbot.schemas.channel_schema import EventKind, InboundEvent, OutboundResponse
from bookingbot.schemas.session_schema import Session
from bookingbot.schemas.staff_schema import Staff
from bookingbot.schemas.tenant_schema import TenantSettings
from bookingbot.utils import parse_clock

TENANT_ID = "salon-1"
USER_ID = "U-alice"
# Monday 07:00 UTC; tenants in tests run on UTC.
NOW = datetime(2025, 3, 17, 7, 0, tzinfo=timezone.utc)
DAY = date(2025, 3, 18)


class FixedClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingSender:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def send(self, event: str, booking: Booking) -> None:
        with self._lock:
            self.sent.append((event, booking.reference))


class FailingSender:
    def send(self, event: str, booking: Booking) -> None:
        raise RuntimeError("notification endpoint down")


def make_tenant(tenant_id: str = TENANT_ID, **overrides) -> TenantSettings:
    values = dict(
        tenant_id=tenant_id,
        name="Test Salon",
        open_time=time(9, 0),
        close_time=time(18, 0),
        slot_interval_minutes=30,
        max_advance_days=30,
        timezone="UTC",
    )
    values.update(overrides)
    return TenantSettings(**values)


def make_service(service_id: str = "svc-cut", **overrides) -> ServiceItem:
    values = dict(
        id=service_id,
        name="Haircut",
        category_id="hair",
        duration_minutes=60,
        price=800,
    )
    values.update(overrides)
    return ServiceItem(**values)


def seed_salon(app: BookingApp, tenant: TenantSettings) -> None:
    """One category, three services, two staff on tenant hours."""
    app.tenants.put(tenant)
    app.catalog.add_category(tenant.tenant_id, ServiceCategory(id="hair", name="Hair"))
    app.catalog.add_service(tenant.tenant_id, make_service(sort_order=1))
    app.catalog.add_service(tenant.tenant_id, make_service(
        "svc-color", name="Colour", duration_minutes=120, buffer_minutes=15, price=2400,
        sort_order=2,
    ))
    app.catalog.add_service(tenant.tenant_id, make_service(
        "svc-wash", name="Wash", duration_minutes=30, price=400, requires_staff=False,
        sort_order=3,
    ))
    app.staff.add_staff(tenant.tenant_id, Staff(id="stf-amy", name="Amy", sort_order=1))
    app.staff.add_staff(tenant.tenant_id, Staff(id="stf-ben", name="Ben", sort_order=2))


def book(
    app: BookingApp,
    tenant: TenantSettings,
    start: str,
    staff_id: Optional[str] = None,
    service_id: str = "svc-cut",
    booking_date: date = DAY,
    customer_id: str = "CUS-OTHER",
) -> Booking:
    """Commit a booking directly, bypassing the dialogue."""
    return app.committer.commit(tenant, BookingRequest(
        tenant_id=tenant.tenant_id,
        customer_id=customer_id,
        service_id=service_id,
        staff_id=staff_id,
        booking_date=booking_date,
        start_time=parse_clock(start),
    ))


class Chat:
    """Drives the dialogue engine as one chat user."""

    def __init__(self, app: BookingApp, tenant_id: str = TENANT_ID, user_id: str = USER_ID) -> None:
        self.app = app
        self.tenant_id = tenant_id
        self.user_id = user_id

    def _send(self, kind: EventKind, payload: str = "") -> OutboundResponse:
        return self.app.engine.handle(InboundEvent(
            tenant_id=self.tenant_id, user_id=self.user_id, kind=kind, payload=payload,
        ))

    def text(self, message: str) -> OutboundResponse:
        return self._send(EventKind.TEXT, message)

    def postback(self, action: str, **params: str) -> OutboundResponse:
        return self._send(EventKind.POSTBACK, build_postback(action, **params))

    def follow(self) -> OutboundResponse:
        return self._send(EventKind.FOLLOW)

    def unfollow(self) -> OutboundResponse:
        return self._send(EventKind.UNFOLLOW)

    @property
    def session(self) -> Optional[Session]:
        return self.app.store.get(self.tenant_id, self.user_id)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def tenant():
    return make_tenant()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def app(clock, tenant, sender):
    app = build_app(
        clock=clock,
        store=InMemorySessionStore(clock=clock),
        notification_sender=sender,
        assignment_policy="first_available",
        min_lead_minutes=30,
    )
    seed_salon(app, tenant)
    yield app
    app.shutdown()


@pytest.fixture
def chat(app):
    return Chat(app)
