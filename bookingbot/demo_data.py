"""Demo tenant used by the console demo and the webhook replay command."""

import logging
from datetime import time

from bookingbot.app import BookingApp
from bookingbot.schemas.catalog_schema import ServiceCategory, ServiceItem
from bookingbot.schemas.shop_schema import Coupon, Product
from bookingbot.schemas.staff_schema import DaySchedule, Staff, WeeklySchedule
from bookingbot.schemas.tenant_schema import TenantSettings
from bookingbot.utils import parse_clock

logger = logging.getLogger(__name__)

DEMO_TENANT_ID = "demo-salon"

CATEGORIES = [
    ServiceCategory(id="hair", name="Hair", sort_order=1),
    ServiceCategory(id="nails", name="Nails", sort_order=2),
]

SERVICES = [
    ServiceItem(id="svc-cut", name="Haircut", category_id="hair",
                duration_minutes=60, price=800, sort_order=1),
    ServiceItem(id="svc-color", name="Colour", category_id="hair",
                duration_minutes=120, buffer_minutes=15, price=2400, sort_order=2),
    ServiceItem(id="svc-wash", name="Wash & Blow-dry", category_id="hair",
                duration_minutes=30, price=400, requires_staff=False, sort_order=3),
    ServiceItem(id="svc-gel", name="Gel Manicure", category_id="nails",
                duration_minutes=90, price=1200, sort_order=1),
]


def _weekdays(start: str, end: str, off: tuple[int, ...] = ()) -> list[DaySchedule]:
    return [
        DaySchedule(weekday=day, working=day not in off, start=parse_clock(start), end=parse_clock(end))
        for day in range(7)
    ]


STAFF = [
    (
        Staff(id="stf-amy", name="Amy", sort_order=1, max_concurrent_bookings=2),
        _weekdays("10:00", "19:00", off=(1,)),
    ),
    (
        Staff(id="stf-ben", name="Ben", sort_order=2, service_ids=["svc-cut", "svc-color"]),
        _weekdays("12:00", "20:00", off=(3,)),
    ),
    (
        Staff(id="stf-cara", name="Cara", sort_order=3, service_ids=["svc-gel"]),
        _weekdays("10:00", "17:00", off=(5,)),
    ),
]

PRODUCTS = [
    Product(id="prd-oil", name="Argan Hair Oil", description="50 ml, for dry ends.",
            price=680, stock=12, sort_order=1),
    Product(id="prd-mask", name="Repair Mask", description="200 ml weekly treatment.",
            price=950, stock=3, sort_order=2),
]

COUPONS = [
    Coupon(id="cpn-first", name="10% off your first visit", limit_per_customer=1),
]


def seed_demo_tenant(app: BookingApp, tenant_id: str = DEMO_TENANT_ID) -> TenantSettings:
    """Load a small salon into the app's in-memory directories."""
    tenant = TenantSettings(
        tenant_id=tenant_id,
        name="Lumen Hair Studio",
        open_time=time(10, 0),
        close_time=time(20, 0),
        slot_interval_minutes=30,
        closed_weekdays=[6],
        max_advance_days=14,
    )
    app.tenants.put(tenant)
    for category in CATEGORIES:
        app.catalog.add_category(tenant_id, category)
    for service in SERVICES:
        app.catalog.add_service(tenant_id, service)
    for staff, days in STAFF:
        app.staff.add_staff(tenant_id, staff, WeeklySchedule(staff_id=staff.id, days=days))
    for product in PRODUCTS:
        app.shop.add_product(tenant_id, product)
    for coupon in COUPONS:
        app.shop.add_coupon(tenant_id, coupon)
    logger.info(
        "Seeded demo tenant %s: %d services, %d staff", tenant_id, len(SERVICES), len(STAFF)
    )
    return tenant
