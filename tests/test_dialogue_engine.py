"""End-to-end tests for the dialogue engine."""

import threading
from datetime import time

import pytest

from bookingbot.app import build_app
from bookingbot.config import ConversationConfig
from bookingbot.conversation.dialogue_engine import DialogueEngine
from bookingbot.conversation.session_store import InMemorySessionStore
from bookingbot.errors import UpstreamUnavailable
from bookingbot.locking import KeyedLock
from bookingbot.messages import menus, texts
from bookingbot.schemas.booking_schema import BookingStatus
from bookingbot.schemas.catalog_schema import ServiceCategory
from bookingbot.schemas.channel_schema import EventKind, InboundEvent
from bookingbot.schemas.session_schema import ConversationState
from bookingbot.schemas.shop_schema import Coupon, Product
from bookingbot.schemas.tenant_schema import StaffSelectionMode
from tests.conftest import (
    DAY,
    TENANT_ID,
    USER_ID,
    Chat,
    RecordingSender,
    book,
    make_service,
    make_tenant,
    seed_salon,
)

S = ConversationState


def labels(response):
    return [o.label for o in response.options]


def reach_confirm(chat, staff_id="stf-amy", start="10:00", note=None):
    chat.postback("start_booking")
    chat.postback("select_service", serviceId="svc-cut")
    chat.postback("select_staff", staffId=staff_id)
    chat.postback("select_date", date=DAY.isoformat())
    chat.postback("select_time", time=start)
    if note is not None:
        return chat.text(note)
    return chat.postback("skip_note")


class FlakyStore(InMemorySessionStore):
    def __init__(self, clock):
        super().__init__(clock=clock)
        self.fail_reads = False
        self.fail_writes = False

    def get(self, tenant_id, user_id):
        if self.fail_reads:
            raise UpstreamUnavailable("session backend down")
        return super().get(tenant_id, user_id)

    def put(self, session, ttl=None):
        if self.fail_writes:
            raise UpstreamUnavailable("session backend down")
        super().put(session, ttl)


class TestHappyPath:
    def test_booking_by_postback(self, chat, app):
        response = chat.postback("start_booking")
        assert chat.session.state == S.SELECTING_SERVICE
        assert "Haircut (60 min, $800)" in labels(response)

        response = chat.postback("select_service", serviceId="svc-cut")
        assert chat.session.state == S.SELECTING_STAFF
        assert labels(response)[:3] == ["No preference", "Amy", "Ben"]

        chat.postback("select_staff", staffId="")
        assert chat.session.state == S.SELECTING_DATE
        assert chat.session.staff_id is None

        response = chat.postback("select_date", date=DAY.isoformat())
        assert chat.session.state == S.SELECTING_TIME
        assert labels(response)[0] == "09:00"

        chat.postback("select_time", time="10:00")
        assert chat.session.state == S.INPUTTING_NOTE

        response = chat.text("Please use the quiet room")
        assert chat.session.state == S.CONFIRMING_BOOKING
        assert "Note: Please use the quiet room" in response.text
        assert "Time: 10:00-11:00" in response.text

        response = chat.text("yes")
        assert chat.session.state == S.IDLE
        assert "You're booked!" in response.text
        assert "Status: pending" in response.text
        assert labels(response) == ["Book", "My bookings", "Shop", "Coupons", "Help"]

        customer = app.customers.find(TENANT_ID, USER_ID)
        [booking] = app.ledger.find_customer_bookings(TENANT_ID, customer.id)
        assert booking.reference in response.text
        assert booking.staff_id == "stf-amy"
        assert booking.customer_note == "Please use the quiet room"
        assert chat.session.selections()["service_id"] is None

    def test_booking_by_text(self, chat, app):
        chat.text("book")
        chat.text("1")
        assert chat.session.service_id == "svc-cut"
        chat.text("Ben")
        assert chat.session.staff_id == "stf-ben"
        chat.text("03/18 (Tue)")
        assert chat.session.booking_date == DAY
        chat.text("14:30")
        chat.text("skip")
        assert chat.session.state == S.CONFIRMING_BOOKING
        assert chat.session.note is None
        chat.text("確認")

        [booking] = app.ledger.find_active_bookings(TENANT_ID, "stf-ben", DAY)
        assert booking.start_time.strftime("%H:%M") == "14:30"

    def test_auto_confirm_tenant(self, chat, app, tenant):
        app.tenants.put(tenant.model_copy(update={"auto_confirm": True}))
        reach_confirm(chat)
        response = chat.text("yes")
        assert "Status: confirmed" in response.text


class TestOptionalSteps:
    def test_category_step_when_several_categories(self, chat, app):
        app.catalog.add_category(TENANT_ID, ServiceCategory(id="nails", name="Nails", sort_order=2))
        app.catalog.add_service(TENANT_ID, make_service(
            "svc-gel", name="Gel Manicure", category_id="nails", duration_minutes=90,
        ))
        response = chat.postback("start_booking")
        assert chat.session.state == S.SELECTING_CATEGORY
        assert labels(response)[:2] == ["Hair", "Nails"]

        response = chat.postback("select_category", categoryId="nails")
        assert chat.session.state == S.SELECTING_SERVICE
        assert labels(response)[0].startswith("Gel Manicure")
        assert not any(label.startswith("Haircut") for label in labels(response))

        chat.text("back")
        assert chat.session.state == S.SELECTING_CATEGORY
        assert chat.session.category_id is None

    def test_empty_category_not_offered(self, chat, app):
        app.catalog.add_category(TENANT_ID, ServiceCategory(id="nails", name="Nails"))
        app.catalog.add_category(TENANT_ID, ServiceCategory(id="spa", name="Spa"))
        app.catalog.add_service(TENANT_ID, make_service("svc-gel", category_id="nails"))
        response = chat.postback("start_booking")
        assert "Spa" not in labels(response)

        response = chat.postback("select_category", categoryId="spa")
        assert response.text.startswith(texts.DIDNT_UNDERSTAND)
        assert chat.session.state == S.SELECTING_CATEGORY

    def test_staff_step_skipped_by_tenant_policy(self, chat, app, tenant):
        app.tenants.put(tenant.model_copy(update={"staff_selection": StaffSelectionMode.NO_PREFERENCE}))
        chat.postback("start_booking")
        chat.postback("select_service", serviceId="svc-cut")
        assert chat.session.state == S.SELECTING_DATE
        assert chat.session.staff_id is None

        chat.postback("go_back")
        assert chat.session.state == S.SELECTING_SERVICE

    def test_staff_step_skipped_for_service_without_staff(self, chat):
        chat.postback("start_booking")
        chat.postback("select_service", serviceId="svc-wash")
        assert chat.session.state == S.SELECTING_DATE

    def test_booking_service_without_staff(self, chat, app):
        chat.postback("start_booking")
        chat.postback("select_service", serviceId="svc-wash")
        chat.postback("select_date", date=DAY.isoformat())
        chat.postback("select_time", time="17:30")
        chat.postback("skip_note")
        response = chat.text("yes")
        assert "You're booked!" in response.text
        assert "Staff: No preference" in response.text


class TestInvalidInput:
    def test_unoffered_time_leaves_session_unchanged(self, chat):
        reach_confirm(chat)
        chat.postback("go_back")
        chat.postback("go_back")
        before = chat.session
        assert before.state == S.SELECTING_TIME

        response = chat.postback("select_time", time="08:00")

        after = chat.session
        assert response.text.startswith(texts.DIDNT_UNDERSTAND)
        assert texts.CANCEL_HINT in response.text
        assert after.state == S.SELECTING_TIME
        assert after.selections() == before.selections()
        assert response.options == before.offered_options
        assert after.offered_options == before.offered_options

    def test_free_text_during_selection(self, chat):
        chat.postback("start_booking")
        chat.postback("select_service", serviceId="svc-cut")
        response = chat.text("I'd like a massage")
        assert response.text.startswith(texts.DIDNT_UNDERSTAND)
        assert chat.session.state == S.SELECTING_STAFF
        assert chat.session.service_id == "svc-cut"

    def test_selection_for_another_step(self, chat):
        chat.postback("start_booking")
        response = chat.postback("select_time", time="10:00")
        assert response.text.startswith(texts.DIDNT_UNDERSTAND)
        assert chat.session.state == S.SELECTING_SERVICE

    def test_date_outside_menu(self, chat):
        chat.postback("start_booking")
        chat.postback("select_service", serviceId="svc-cut")
        chat.postback("select_staff", staffId="stf-amy")
        chat.postback("select_date", date="2025-04-10")
        assert chat.session.state == S.SELECTING_DATE
        assert chat.session.booking_date is None

    def test_confirm_from_another_flow(self, chat, app):
        reach_confirm(chat)
        response = chat.postback("confirm_purchase")
        assert response.text.startswith(texts.DIDNT_UNDERSTAND)
        assert chat.session.state == S.CONFIRMING_BOOKING
        assert app.ledger.find_active_bookings(TENANT_ID, "stf-amy", DAY) == []

    def test_unknown_postback_in_idle(self, chat):
        response = chat.postback("launch_rocket")
        assert response.text.startswith(texts.DIDNT_UNDERSTAND)
        assert labels(response)[0] == "Book"

    def test_idle_free_text_shows_main_menu(self, chat):
        response = chat.text("hello there")
        assert response.blocks[0].text == texts.MAIN_MENU
        assert chat.session.state == S.IDLE

    def test_help(self, chat):
        response = chat.text("help")
        assert response.blocks[0].text == texts.HELP


class TestCancelAndBack:
    def test_cancel_in_time_selection(self, chat, app):
        chat.postback("start_booking")
        chat.postback("select_service", serviceId="svc-cut")
        chat.postback("select_staff", staffId="stf-amy")
        chat.postback("select_date", date=DAY.isoformat())
        assert chat.session.state == S.SELECTING_TIME

        response = chat.text("cancel")

        session = chat.session
        assert session.state == S.IDLE
        assert session.service_id is None
        assert session.staff_id is None
        assert session.booking_date is None
        assert texts.FLOW_CANCELLED in response.text
        assert app.ledger.find_active_bookings(TENANT_ID, "stf-amy", DAY) == []

    def test_cancel_button(self, chat):
        reach_confirm(chat)
        chat.postback("cancel_flow")
        assert chat.session.state == S.IDLE

    def test_back_walks_the_flow_and_clears_downstream(self, chat):
        reach_confirm(chat, note="Window seat")
        assert chat.session.note == "Window seat"

        chat.postback("go_back")
        assert chat.session.state == S.INPUTTING_NOTE
        assert chat.session.note is None

        chat.text("back")
        assert chat.session.state == S.SELECTING_TIME
        assert chat.session.start_time is None

        chat.postback("go_back")
        assert chat.session.state == S.SELECTING_DATE
        assert chat.session.booking_date is None

        chat.postback("go_back")
        assert chat.session.state == S.SELECTING_STAFF
        assert chat.session.staff_id is None

        chat.postback("go_back")
        assert chat.session.state == S.SELECTING_SERVICE
        assert chat.session.service_id is None

        response = chat.postback("go_back")
        assert chat.session.state == S.IDLE
        assert labels(response)[0] == "Book"

    def test_note_truncated(self, chat):
        reach_confirm(chat, note="x" * 600)
        assert chat.session.state == S.CONFIRMING_BOOKING
        assert len(chat.session.note) == 500


class TestSessionLifetime:
    def test_stale_selection_after_expiry_restarts(self, chat, clock):
        chat.postback("start_booking")
        chat.postback("select_service", serviceId="svc-cut")
        assert chat.session.state == S.SELECTING_STAFF

        clock.advance(minutes=31)
        response = chat.postback("select_service", serviceId="svc-cut")

        assert response.blocks[0].text == texts.SESSION_ENDED
        assert chat.session.state == S.SELECTING_SERVICE
        assert chat.session.service_id is None

    def test_stale_confirm_after_expiry(self, chat, app, clock):
        reach_confirm(chat)
        clock.advance(minutes=45)
        response = chat.text("yes")
        assert response.blocks[0].text == texts.SESSION_ENDED
        assert chat.session.state == S.IDLE
        assert app.ledger.find_active_bookings(TENANT_ID, "stf-amy", DAY) == []

    def test_activity_within_ttl_keeps_session(self, chat, clock):
        chat.postback("start_booking")
        clock.advance(minutes=29)
        chat.postback("select_service", serviceId="svc-cut")
        clock.advance(minutes=29)
        assert chat.session.state == S.SELECTING_STAFF

    def test_follow_resets_and_welcomes(self, chat, app):
        chat.postback("start_booking")
        response = chat.follow()
        assert response.blocks[0].text == texts.WELCOME.format(name="Test Salon")
        assert chat.session.state == S.IDLE
        assert app.customers.find(TENANT_ID, USER_ID).following

    def test_unfollow_clears_session(self, chat, app):
        chat.follow()
        chat.postback("start_booking")
        response = chat.unfollow()
        assert response.blocks == []
        assert chat.session is None
        assert not app.customers.find(TENANT_ID, USER_ID).following


class TestCommitOutcomes:
    def test_conflict_returns_to_time_selection(self, chat, app, tenant):
        reach_confirm(chat, staff_id="stf-amy", start="10:00")
        book(app, tenant, "10:00", staff_id="stf-amy")

        response = chat.text("yes")

        session = chat.session
        assert response.blocks[0].text == texts.SLOT_TAKEN
        assert session.state == S.SELECTING_TIME
        assert session.service_id == "svc-cut"
        assert session.staff_id == "stf-amy"
        assert session.booking_date == DAY
        assert session.start_time is None
        assert "10:00" not in labels(response)
        assert "11:00" in labels(response)

    def test_service_withdrawn_before_confirm(self, chat, app):
        reach_confirm(chat)
        app.catalog.add_service(TENANT_ID, make_service(available=False))
        response = chat.text("yes")
        assert response.blocks[0].text == texts.SERVICE_GONE
        assert chat.session.state == S.IDLE
        assert app.ledger.find_active_bookings(TENANT_ID, "stf-amy", DAY) == []

    def test_upstream_failure_keeps_state(self, chat, app, monkeypatch):
        chat.postback("start_booking")
        chat.postback("select_service", serviceId="svc-cut")
        chat.postback("select_staff", staffId="stf-amy")

        def down(*args, **kwargs):
            raise UpstreamUnavailable("staff service timeout")

        monkeypatch.setattr(app.calculator, "available_slots", down)
        response = chat.postback("select_date", date=DAY.isoformat())

        assert response.text.startswith(texts.TRY_AGAIN_LATER)
        assert chat.session.state == S.SELECTING_DATE
        assert chat.session.booking_date is None

    def test_tenant_without_services(self, app):
        app.tenants.put(make_tenant("empty-salon"))
        chat = Chat(app, tenant_id="empty-salon")
        response = chat.postback("start_booking")
        assert response.text.startswith(texts.BOOKING_UNAVAILABLE)
        assert chat.session.state == S.IDLE

    def test_booking_disabled(self, chat, app, tenant):
        app.tenants.put(tenant.model_copy(update={"booking_enabled": False}))
        response = chat.text("book")
        assert response.text.startswith(texts.BOOKING_UNAVAILABLE)

    def test_service_without_staff_members(self, app):
        app.tenants.put(make_tenant("no-staff"))
        app.catalog.add_service("no-staff", make_service())
        chat = Chat(app, tenant_id="no-staff")
        chat.postback("start_booking")
        response = chat.postback("select_service", serviceId="svc-cut")
        assert response.text.startswith(texts.BOOKING_UNAVAILABLE)
        assert chat.session.state == S.SELECTING_SERVICE

    def test_unknown_tenant(self, app):
        chat = Chat(app, tenant_id="ghost")
        response = chat.text("book")
        assert response.text == texts.BOOKING_UNAVAILABLE
        assert chat.session is None


class TestStoreFailures:
    @pytest.fixture
    def flaky(self, clock, tenant):
        store = FlakyStore(clock)
        app = build_app(clock=clock, store=store, notification_sender=RecordingSender())
        seed_salon(app, tenant)
        yield app, store
        app.shutdown()

    def test_read_failure(self, flaky):
        app, store = flaky
        chat = Chat(app)
        chat.postback("start_booking")
        store.fail_reads = True
        response = chat.postback("select_service", serviceId="svc-cut")
        assert response.text == texts.TRY_AGAIN_LATER
        store.fail_reads = False
        assert chat.session.state == S.SELECTING_SERVICE

    def test_write_failure(self, flaky):
        app, store = flaky
        chat = Chat(app)
        store.fail_writes = True
        response = chat.postback("start_booking")
        assert response.text == texts.TRY_AGAIN_LATER
        store.fail_writes = False
        assert chat.session is None

    def test_write_failure_after_commit_is_not_booked_twice(self, flaky):
        app, store = flaky
        chat = Chat(app)
        reach_confirm(chat, staff_id="")

        store.fail_writes = True
        first = chat.text("yes")
        store.fail_writes = False
        assert "You're booked!" in first.text
        assert chat.session.state == S.CONFIRMING_BOOKING

        second = chat.text("yes")
        assert chat.session.state == S.IDLE
        customer = app.customers.find(TENANT_ID, USER_ID)
        [booking] = app.ledger.find_customer_bookings(TENANT_ID, customer.id, active_only=False)
        assert booking.reference in first.text
        assert booking.reference in second.text
        bookings = (
            app.ledger.find_active_bookings(TENANT_ID, "stf-amy", DAY)
            + app.ledger.find_active_bookings(TENANT_ID, "stf-ben", DAY)
        )
        assert len(bookings) == 1

    def test_write_failure_after_order_is_not_charged_twice(self, flaky):
        app, store = flaky
        app.shop.add_product(TENANT_ID, Product(id="prd-oil", name="Hair Oil", price=680, stock=3))
        chat = Chat(app)
        chat.text("shop")
        chat.postback("select_product", productId="prd-oil")
        chat.postback("buy_product", productId="prd-oil")
        chat.postback("select_quantity", quantity="1")

        store.fail_writes = True
        first = chat.text("yes")
        store.fail_writes = False
        assert "OD-" in first.text
        chat.text("yes")

        customer = app.customers.find(TENANT_ID, USER_ID)
        [order] = app.shop.orders_for(TENANT_ID, customer.id)
        assert order.order_no in first.text
        assert app.shop.get_product(TENANT_ID, "prd-oil").stock == 2

    def test_new_confirmation_gets_new_commit_key(self, flaky):
        app, _ = flaky
        chat = Chat(app)
        reach_confirm(chat)
        first_key = chat.session.commit_key
        chat.postback("go_back")
        chat.postback("skip_note")
        assert chat.session.state == S.CONFIRMING_BOOKING
        assert chat.session.commit_key not in (None, first_key)


class TestManageBookings:
    def test_view_and_cancel(self, chat, app):
        reach_confirm(chat)
        chat.text("yes")

        response = chat.text("my bookings")
        assert chat.session.state == S.VIEWING_BOOKINGS
        assert labels(response)[0] == "03/18 (Tue) 10:00 Haircut"

        chat.text("1")
        assert chat.session.state == S.CONFIRMING_CANCEL_BOOKING

        response = chat.text("yes")
        assert chat.session.state == S.IDLE
        customer = app.customers.find(TENANT_ID, USER_ID)
        [booking] = app.ledger.find_customer_bookings(TENANT_ID, customer.id, active_only=False)
        assert booking.status == BookingStatus.CANCELLED
        assert booking.reference in response.text

    def test_back_from_cancel_confirmation(self, chat):
        reach_confirm(chat)
        chat.text("yes")
        chat.text("my bookings")
        chat.text("1")
        chat.postback("go_back")
        assert chat.session.state == S.VIEWING_BOOKINGS
        assert chat.session.cancel_booking_id is None

    def test_no_bookings(self, chat):
        response = chat.text("my bookings")
        assert response.blocks[0].text == texts.NO_BOOKINGS
        assert chat.session.state == S.IDLE

    def test_stale_cancel_request_in_idle(self, chat, app):
        reach_confirm(chat)
        chat.text("yes")
        customer = app.customers.find(TENANT_ID, USER_ID)
        [booking] = app.ledger.find_customer_bookings(TENANT_ID, customer.id)

        stranger = Chat(app, user_id="U-mallory")
        response = stranger.postback("cancel_booking_request", bookingId=booking.id)
        assert response.blocks[0].text == texts.SESSION_ENDED
        assert app.ledger.get(TENANT_ID, booking.id).is_active


class TestShop:
    @pytest.fixture(autouse=True)
    def products(self, app):
        app.shop.add_product(TENANT_ID, Product(id="prd-oil", name="Hair Oil", price=680, stock=3))

    def test_purchase(self, chat, app):
        chat.text("shop")
        assert chat.session.state == S.BROWSING_PRODUCTS
        chat.postback("select_product", productId="prd-oil")
        assert chat.session.state == S.VIEWING_PRODUCT_DETAIL
        response = chat.postback("buy_product", productId="prd-oil")
        assert chat.session.state == S.SELECTING_QUANTITY
        assert labels(response)[:3] == ["1", "2", "3"]

        chat.postback("select_quantity", quantity="2")
        assert chat.session.state == S.CONFIRMING_PURCHASE
        response = chat.text("yes")

        assert chat.session.state == S.IDLE
        assert "OD-" in response.text
        assert app.shop.get_product(TENANT_ID, "prd-oil").stock == 1
        customer = app.customers.find(TENANT_ID, USER_ID)
        [order] = app.shop.orders_for(TENANT_ID, customer.id)
        assert order.total == 1360

    def test_quantity_beyond_stock(self, chat):
        chat.text("shop")
        chat.postback("select_product", productId="prd-oil")
        chat.postback("buy_product", productId="prd-oil")
        response = chat.postback("select_quantity", quantity="5")
        assert response.text.startswith(texts.DIDNT_UNDERSTAND)
        assert chat.session.state == S.SELECTING_QUANTITY

    def test_stock_gone_at_confirm(self, chat, app):
        chat.text("shop")
        chat.postback("select_product", productId="prd-oil")
        chat.postback("buy_product", productId="prd-oil")
        chat.postback("select_quantity", quantity="3")
        app.shop.place_order(TENANT_ID, "CUS-OTHER", "prd-oil", 1)

        response = chat.text("yes")
        assert response.blocks[0].text == texts.OUT_OF_STOCK
        assert chat.session.state == S.BROWSING_PRODUCTS

    def test_back_from_detail(self, chat):
        chat.text("shop")
        chat.postback("select_product", productId="prd-oil")
        chat.postback("go_back")
        assert chat.session.state == S.BROWSING_PRODUCTS
        assert chat.session.product_id is None

    def test_no_products(self, app):
        chat = Chat(app, tenant_id="bare")
        app.tenants.put(make_tenant("bare"))
        response = chat.text("shop")
        assert response.blocks[0].text == texts.NO_PRODUCTS


class TestCoupons:
    def test_claim_once(self, chat, app):
        app.shop.add_coupon(TENANT_ID, Coupon(id="cpn-1", name="10% off"))
        chat.text("coupons")
        assert chat.session.state == S.BROWSING_COUPONS
        response = chat.postback("claim_coupon", couponId="cpn-1")
        assert response.blocks[0].text.startswith("You claimed 10% off")
        assert chat.session.state == S.IDLE

        chat.text("coupons")
        response = chat.postback("claim_coupon", couponId="cpn-1")
        assert response.text.startswith("You have already claimed 10% off.")
        assert chat.session.state == S.BROWSING_COUPONS

    def test_no_coupons(self, chat):
        response = chat.text("coupons")
        assert response.blocks[0].text == texts.NO_COUPONS


class TestMenus:
    def test_menu_bounded(self, chat, app):
        for i in range(30):
            app.catalog.add_service(TENANT_ID, make_service(f"svc-{i:02d}", name=f"Service {i}"))
        response = chat.postback("start_booking")
        assert len(response.options) == 24
        assert labels(response)[-2:] == ["Back", "Cancel"]

    def test_time_pages_fit_limit(self):
        slots = [time(9, 0), time(9, 30), time(10, 0), time(10, 30), time(11, 0)]
        first = menus.time_block(DAY, slots, limit=6)
        middle = menus.time_block(DAY, slots, limit=6, page=1)
        last = menus.time_block(DAY, slots, limit=6, page=9)

        assert [o.label for o in first.options] == [
            "09:00", "09:30", texts.LATER_TIMES_LABEL, "Back", "Cancel",
        ]
        assert [o.label for o in middle.options] == [
            texts.EARLIER_TIMES_LABEL, "10:00", "10:30", texts.LATER_TIMES_LABEL, "Back", "Cancel",
        ]
        assert [o.label for o in last.options] == [
            texts.EARLIER_TIMES_LABEL, "11:00", "Back", "Cancel",
        ]


class TestTimePaging:
    @pytest.fixture(autouse=True)
    def quarter_hours(self, app, tenant):
        app.tenants.put(tenant.model_copy(update={"slot_interval_minutes": 15}))

    def reach_time(self, chat):
        chat.postback("start_booking")
        chat.postback("select_service", serviceId="svc-cut")
        chat.postback("select_staff", staffId="stf-amy")
        return chat.postback("select_date", date=DAY.isoformat())

    def test_first_page_offers_later_times(self, chat):
        response = self.reach_time(chat)
        assert len(response.options) <= 24
        assert labels(response)[0] == "09:00"
        assert "16:00" not in labels(response)
        assert labels(response)[-3:] == [texts.LATER_TIMES_LABEL, "Back", "Cancel"]

    def test_late_slot_is_bookable(self, chat, app):
        self.reach_time(chat)
        response = chat.text("Later times")
        assert chat.session.state == S.SELECTING_TIME
        assert labels(response)[0] == texts.EARLIER_TIMES_LABEL
        assert "17:00" in labels(response)

        chat.postback("select_time", time="16:00")
        assert chat.session.state == S.INPUTTING_NOTE
        chat.postback("skip_note")
        response = chat.text("yes")

        assert "You're booked!" in response.text
        [booking] = app.ledger.find_active_bookings(TENANT_ID, "stf-amy", DAY)
        assert booking.start_time == time(16, 0)

    def test_earlier_times_returns_to_first_page(self, chat):
        self.reach_time(chat)
        chat.postback("time_page", page="1")
        response = chat.postback("time_page", page="0")
        assert labels(response)[0] == "09:00"

    def test_page_not_offered_rejected(self, chat):
        self.reach_time(chat)
        response = chat.postback("time_page", page="5")
        assert response.text.startswith(texts.DIDNT_UNDERSTAND)
        assert chat.session.state == S.SELECTING_TIME


class TestConcurrency:
    def test_busy_user_gets_busy_reply(self, app, clock):
        locks = KeyedLock()
        engine = DialogueEngine(
            tenants=app.tenants, catalog=app.catalog, calculator=app.calculator,
            committer=app.committer, ledger=app.ledger, customers=app.customers,
            shop=app.shop, store=app.store, locks=locks, clock=clock,
            config=ConversationConfig(session_lock_timeout_sec=0.05),
        )
        event = InboundEvent(tenant_id=TENANT_ID, user_id=USER_ID, kind=EventKind.TEXT, payload="book")
        with locks.hold(f"{TENANT_ID}:{USER_ID}"):
            response = engine.handle(event)
        assert response.text == texts.BUSY

    def test_parallel_users_each_book(self, app):
        users = [f"U-{i}" for i in range(6)]
        errors = []

        def run(user_id):
            try:
                chat = Chat(app, user_id=user_id)
                reach_confirm(chat, staff_id="", start="10:00")
                chat.text("yes")
            except Exception as exc:  # surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=run, args=(u,)) for u in users]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        booked = (
            app.ledger.find_active_bookings(TENANT_ID, "stf-amy", DAY)
            + app.ledger.find_active_bookings(TENANT_ID, "stf-ben", DAY)
        )
        assert len(booked) == 2
