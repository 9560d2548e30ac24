"""
Dialogue engine: one inbound event in, one outbound response out.

For each event the engine takes the per-user lock, loads the session,
categorises the input, looks the (state, input kind) pair up in the
transition table and runs the table's action on a working copy of the
session. Only a successful action's copy is stored; on any recoverable
error the stored session stays exactly as it was and the user is
re-prompted with the menu they were last shown.
"""

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from bookingbot.config import ConversationConfig, settings
from bookingbot.conversation.input_parser import InputParser, ParsedInput, parse_postback
from bookingbot.conversation.session_store import SessionStore
from bookingbot.conversation.state_machine import Action, DialogueStateMachine
from bookingbot.errors import (
    ConfigurationInvalid,
    InsufficientStock,
    InvalidInput,
    SessionBusy,
    SlotUnavailable,
    UpstreamUnavailable,
)
from bookingbot.locking import KeyedLock, SessionLock
from bookingbot.logging_context import get_session_logger, make_session_key, session_key_scope
from bookingbot.messages import menus, texts
from bookingbot.schemas.booking_schema import BookingRequest
from bookingbot.schemas.catalog_schema import ServiceCategory, ServiceItem
from bookingbot.schemas.channel_schema import EventKind, InboundEvent, MessageBlock, OutboundResponse
from bookingbot.schemas.session_schema import ConversationState, Session
from bookingbot.schemas.shop_schema import Product
from bookingbot.schemas.tenant_schema import StaffSelectionMode, TenantSettings
from bookingbot.tools.availability import AvailabilityCalculator
from bookingbot.tools.booking import BookingCommitService, InMemoryBookingLedger
from bookingbot.tools.catalog import CatalogProvider
from bookingbot.tools.customer import InMemoryCustomerDirectory
from bookingbot.tools.shop import InMemoryShop
from bookingbot.tools.tenants import TenantProvider
from bookingbot.utils import from_minutes, parse_clock, to_minutes, truncate

logger = get_session_logger(__name__)

S = ConversationState
Blocks = list[MessageBlock]

# Actions that write to the ledger or shop when they land in IDLE. Their
# reply is sent even if the session cannot be stored afterwards.
_COMMITTING_ACTIONS = frozenset({
    Action.CONFIRM_BOOKING,
    Action.CONFIRM_PURCHASE,
    Action.CLAIM_COUPON,
    Action.CONFIRM_CANCEL_BOOKING,
})


class DialogueEngine:
    """Drives every tenant's chat booking dialogue. Safe to share across workers."""

    def __init__(
        self,
        *,
        tenants: TenantProvider,
        catalog: CatalogProvider,
        calculator: AvailabilityCalculator,
        committer: BookingCommitService,
        ledger: InMemoryBookingLedger,
        customers: InMemoryCustomerDirectory,
        shop: InMemoryShop,
        store: SessionStore,
        machine: Optional[DialogueStateMachine] = None,
        parser: Optional[InputParser] = None,
        locks: Optional[SessionLock] = None,
        clock: Optional[Callable[[], datetime]] = None,
        config: Optional[ConversationConfig] = None,
    ) -> None:
        self._tenants = tenants
        self._catalog = catalog
        self._calculator = calculator
        self._committer = committer
        self._ledger = ledger
        self._customers = customers
        self._shop = shop
        self._store = store
        self._machine = machine or DialogueStateMachine()
        self._parser = parser or InputParser()
        self._locks = locks or KeyedLock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._config = config or settings.conversation
        self._ttl = timedelta(minutes=self._config.session_ttl_minutes)

        self._actions: dict[Action, Callable[[Session, ParsedInput, TenantSettings, datetime], Blocks]] = {
            Action.SHOW_MAIN_MENU: self._show_main_menu,
            Action.SHOW_HELP: self._show_help,
            Action.SESSION_ENDED: self._session_ended,
            Action.START_BOOKING: self._start_booking,
            Action.RESTART_BOOKING: self._restart_booking,
            Action.CHOOSE_CATEGORY: self._choose_category,
            Action.CHOOSE_SERVICE: self._choose_service,
            Action.CHOOSE_STAFF: self._choose_staff,
            Action.CHOOSE_DATE: self._choose_date,
            Action.CHOOSE_TIME: self._choose_time,
            Action.SHOW_TIME_PAGE: self._page_times,
            Action.SET_NOTE: self._set_note,
            Action.SKIP_NOTE: self._skip_note,
            Action.CONFIRM_BOOKING: self._confirm_booking,
            Action.GO_BACK: self._go_back,
            Action.RESET: self._reset,
            Action.BROWSE_PRODUCTS: self._browse_products,
            Action.CHOOSE_PRODUCT: self._choose_product,
            Action.BUY_PRODUCT: self._buy_product,
            Action.CHOOSE_QUANTITY: self._choose_quantity,
            Action.CONFIRM_PURCHASE: self._confirm_purchase,
            Action.BROWSE_COUPONS: self._browse_coupons,
            Action.CLAIM_COUPON: self._claim_coupon,
            Action.VIEW_BOOKINGS: self._view_bookings,
            Action.REQUEST_CANCEL_BOOKING: self._request_cancel_booking,
            Action.CONFIRM_CANCEL_BOOKING: self._confirm_cancel_booking,
        }
        missing = set(Action) - set(self._actions)
        if missing:
            raise ValueError(f"Actions without handler: {sorted(a.value for a in missing)}")

    # ------------------------------------------------------------------ #
    # Event entry point
    # ------------------------------------------------------------------ #

    def handle(self, event: InboundEvent) -> OutboundResponse:
        """Process one inbound event. At most one event per (tenant, user) runs at a time."""
        key = make_session_key(event.tenant_id, event.user_id)
        with session_key_scope(key):
            try:
                with self._locks.hold(key, timeout=self._config.session_lock_timeout_sec):
                    return self._handle_locked(event)
            except SessionBusy:
                return OutboundResponse(blocks=[MessageBlock(text=texts.BUSY)])
            except UpstreamUnavailable as exc:
                logger.warning("Session lock unavailable: %s", exc)
                return OutboundResponse(blocks=[MessageBlock(text=texts.TRY_AGAIN_LATER)])

    def _handle_locked(self, event: InboundEvent) -> OutboundResponse:
        now = self._clock()
        if event.kind == EventKind.UNFOLLOW:
            try:
                self._store.clear(event.tenant_id, event.user_id)
            except UpstreamUnavailable:
                logger.warning("Could not clear session of unfollowed user")
            self._customers.set_following(event.tenant_id, event.user_id, False)
            logger.info("User unfollowed; session cleared")
            return OutboundResponse()

        try:
            tenant = self._tenants.get_settings(event.tenant_id)
        except ConfigurationInvalid as exc:
            logger.warning("Event for unusable tenant: %s", exc)
            return OutboundResponse(blocks=[MessageBlock(text=texts.BOOKING_UNAVAILABLE)])

        try:
            stored = self._store.get(event.tenant_id, event.user_id)
        except UpstreamUnavailable as exc:
            logger.warning("Session store unavailable: %s", exc)
            return OutboundResponse(blocks=[MessageBlock(text=texts.TRY_AGAIN_LATER)])
        if stored is None:
            logger.debug("No live session, starting at idle")
            stored = Session.new(event.tenant_id, event.user_id, now)

        committed = False
        if event.kind == EventKind.FOLLOW:
            session = Session.new(event.tenant_id, event.user_id, now)
            self._customers.get_or_create(event.tenant_id, event.user_id, event.display_name)
            self._customers.set_following(event.tenant_id, event.user_id, True)
            blocks = [
                MessageBlock(text=texts.WELCOME.format(name=tenant.name or "us")),
                menus.main_menu_block(),
            ]
        else:
            parsed = self._parser.parse(event, stored)
            session, blocks, committed = self._dispatch(stored, parsed, tenant, now)

        session.touch(now)
        self._remember_menu(session, blocks)
        try:
            self._store.put(session, self._ttl)
        except UpstreamUnavailable as exc:
            if committed:
                # A repeated confirm carries the stored commit key and is a no-op.
                logger.warning("Session store unavailable after commit: %s", exc)
                return OutboundResponse(blocks=blocks)
            logger.warning("Session store unavailable on write: %s", exc)
            return OutboundResponse(blocks=[MessageBlock(text=texts.TRY_AGAIN_LATER)])
        return OutboundResponse(blocks=blocks)

    def _dispatch(
        self, stored: Session, parsed: ParsedInput, tenant: TenantSettings, now: datetime
    ) -> tuple[Session, Blocks, bool]:
        """
        Run the table action on a copy; return the stored session untouched on failure.

        The flag is True when the action committed a booking, order, claim
        or cancellation.
        """
        state = stored.state
        session = stored.model_copy(deep=True)
        try:
            transition = self._machine.resolve(state, parsed.kind)
            if transition.offered_only:
                self._require_offered(stored, parsed)
            blocks = self._actions[transition.action](session, parsed, tenant, now)
            self._machine.check_target(state, transition, session.state)
            committed = transition.action in _COMMITTING_ACTIONS and session.state == S.IDLE
            return session, blocks, committed
        except InvalidInput as exc:
            logger.info("Rejected %s in %s: %s", parsed.kind.value, state.value, exc)
            return stored, self._reprompt(stored, exc.user_message or texts.DIDNT_UNDERSTAND), False
        except UpstreamUnavailable as exc:
            logger.warning("Upstream failure in %s: %s", state.value, exc)
            return stored, self._reprompt(stored, texts.TRY_AGAIN_LATER), False
        except ConfigurationInvalid as exc:
            logger.warning("Tenant %s cannot take bookings: %s", tenant.tenant_id, exc)
            return stored, self._reprompt(stored, texts.BOOKING_UNAVAILABLE), False

    def _require_offered(self, session: Session, parsed: ParsedInput) -> None:
        offered = {parse_postback(o.id).key for o in session.offered_options}
        if parsed.key not in offered:
            raise InvalidInput(f"{parsed.action}={parsed.value!r} was not offered")

    def _reprompt(self, session: Session, message: str) -> Blocks:
        if session.state == S.IDLE:
            return [MessageBlock(text=message), menus.main_menu_block()]
        blocks = [MessageBlock(text=f"{message} {texts.CANCEL_HINT}")]
        if session.offered_options:
            blocks.append(MessageBlock(text=session.prompt, options=session.offered_options))
        return blocks

    @staticmethod
    def _remember_menu(session: Session, blocks: Blocks) -> None:
        """Record the last menu sent; selection inputs are checked against it."""
        for block in reversed(blocks):
            if block.options:
                session.offered_options = list(block.options)
                session.prompt = block.text
                return
        session.offered_options = []
        session.prompt = blocks[-1].text if blocks else ""

    # ------------------------------------------------------------------ #
    # Lookups shared by handlers
    # ------------------------------------------------------------------ #

    def _limit(self) -> int:
        return self._config.max_menu_options

    def _selected_service(self, session: Session, tenant: TenantSettings) -> ServiceItem:
        service = (
            self._catalog.get_service(tenant.tenant_id, session.service_id)
            if session.service_id else None
        )
        if service is None or not service.available:
            raise InvalidInput(
                f"Service {session.service_id} unavailable", user_message=texts.SERVICE_GONE
            )
        return service

    def _bookable_categories(
        self, tenant: TenantSettings, services: list[ServiceItem]
    ) -> list[ServiceCategory]:
        used = {s.category_id for s in services}
        return [c for c in self._catalog.list_categories(tenant.tenant_id) if c.id in used]

    def _require_confirm(self, parsed: ParsedInput, action: str) -> None:
        """A confirm button from another flow must not confirm this one."""
        if parsed.action is not None and parsed.action != action:
            raise InvalidInput(f"Confirmation {parsed.action} does not belong here")

    def _finish(self, session: Session, now: datetime, message: str) -> Blocks:
        session.reset(now)
        return [MessageBlock(text=message), menus.main_menu_block()]

    # ------------------------------------------------------------------ #
    # Main menu
    # ------------------------------------------------------------------ #

    def _show_main_menu(self, session, parsed, tenant, now) -> Blocks:
        session.reset(now)
        return [menus.main_menu_block()]

    def _show_help(self, session, parsed, tenant, now) -> Blocks:
        return self._finish(session, now, texts.HELP)

    def _session_ended(self, session, parsed, tenant, now) -> Blocks:
        return self._finish(session, now, texts.SESSION_ENDED)

    def _reset(self, session, parsed, tenant, now) -> Blocks:
        logger.info("Flow cancelled in %s", session.state.value)
        return self._finish(session, now, texts.FLOW_CANCELLED)

    # ------------------------------------------------------------------ #
    # Booking flow
    # ------------------------------------------------------------------ #

    def _start_booking(self, session, parsed, tenant, now) -> Blocks:
        if not tenant.booking_enabled:
            raise ConfigurationInvalid(f"Booking disabled for tenant {tenant.tenant_id}")
        services = self._catalog.list_services(tenant.tenant_id)
        if not services:
            raise ConfigurationInvalid(f"Tenant {tenant.tenant_id} has no active services")
        session.reset(now)
        categories = self._bookable_categories(tenant, services)
        if len(categories) > 1:
            session.category_step = True
            session.transition_to(S.SELECTING_CATEGORY, now)
            return [menus.category_block(categories, self._limit())]
        return self._enter_service(session, services, now)

    def _restart_booking(self, session, parsed, tenant, now) -> Blocks:
        logger.info("Stale %s input outside a flow, restarting booking", parsed.kind.value)
        blocks = self._start_booking(session, parsed, tenant, now)
        return [MessageBlock(text=texts.SESSION_ENDED)] + blocks

    def _enter_category(self, session: Session, tenant: TenantSettings, now: datetime) -> Blocks:
        services = self._catalog.list_services(tenant.tenant_id)
        categories = self._bookable_categories(tenant, services)
        if len(categories) <= 1:
            raise ConfigurationInvalid("Category step no longer applies")
        session.clear_from(S.SELECTING_CATEGORY)
        session.transition_to(S.SELECTING_CATEGORY, now)
        return [menus.category_block(categories, self._limit())]

    def _choose_category(self, session, parsed, tenant, now) -> Blocks:
        services = self._catalog.list_services(tenant.tenant_id, parsed.value)
        if not services:
            raise InvalidInput(f"Category {parsed.value} is empty", user_message=texts.EMPTY_CATEGORY)
        session.category_id = parsed.value
        return self._enter_service(session, services, now)

    def _enter_service(self, session: Session, services: list[ServiceItem], now: datetime) -> Blocks:
        session.clear_from(S.SELECTING_SERVICE)
        session.staff_step = False
        session.transition_to(S.SELECTING_SERVICE, now)
        return [menus.service_block(services, self._limit())]

    def _choose_service(self, session, parsed, tenant, now) -> Blocks:
        session.clear_from(S.SELECTING_SERVICE)
        session.service_id = parsed.value
        service = self._selected_service(session, tenant)
        if service.requires_staff:
            staff = self._calculator.eligible_staff(tenant, service)
            if not staff:
                raise ConfigurationInvalid(f"No bookable staff for service {service.id}")
            if tenant.staff_selection == StaffSelectionMode.ASK:
                session.staff_step = True
                session.transition_to(S.SELECTING_STAFF, now)
                return [menus.staff_block(staff, self._limit())]
        session.staff_step = False
        return self._enter_date(session, tenant, service, now)

    def _enter_staff(self, session: Session, tenant: TenantSettings, now: datetime) -> Blocks:
        service = self._selected_service(session, tenant)
        staff = self._calculator.eligible_staff(tenant, service)
        if not staff:
            raise ConfigurationInvalid(f"No bookable staff for service {service.id}")
        session.clear_from(S.SELECTING_STAFF)
        session.transition_to(S.SELECTING_STAFF, now)
        return [menus.staff_block(staff, self._limit())]

    def _choose_staff(self, session, parsed, tenant, now) -> Blocks:
        service = self._selected_service(session, tenant)
        staff_id = parsed.value or None
        if staff_id is not None and not self._calculator.eligible_staff(tenant, service, staff_id):
            raise InvalidInput(f"Staff {staff_id} cannot perform {service.id}")
        session.clear_from(S.SELECTING_STAFF)
        session.staff_id = staff_id
        return self._enter_date(session, tenant, service, now)

    def _enter_date(
        self, session: Session, tenant: TenantSettings, service: ServiceItem, now: datetime
    ) -> Blocks:
        dates = self._calculator.available_dates(
            tenant, service, session.staff_id, limit=self._config.date_menu_size
        )
        session.clear_from(S.SELECTING_DATE)
        session.transition_to(S.SELECTING_DATE, now)
        return [menus.date_block(service.name, dates, tenant.max_advance_days, self._limit())]

    def _choose_date(self, session, parsed, tenant, now) -> Blocks:
        try:
            chosen = date.fromisoformat(parsed.value or "")
        except ValueError:
            raise InvalidInput(f"Bad date {parsed.value!r}") from None
        service = self._selected_service(session, tenant)
        session.clear_from(S.SELECTING_DATE)
        session.booking_date = chosen
        return self._enter_time(session, tenant, service, now)

    def _enter_time(
        self,
        session: Session,
        tenant: TenantSettings,
        service: ServiceItem,
        now: datetime,
        notice: Optional[str] = None,
        page: int = 0,
    ) -> Blocks:
        slots = self._calculator.available_slots(
            tenant, service, session.booking_date, session.staff_id
        )
        session.clear_from(S.SELECTING_TIME)
        session.transition_to(S.SELECTING_TIME, now)
        blocks = [menus.time_block(session.booking_date, slots, self._limit(), page)]
        if notice:
            blocks.insert(0, MessageBlock(text=notice))
        return blocks

    def _page_times(self, session, parsed, tenant, now) -> Blocks:
        try:
            page = int(parsed.value or "")
        except ValueError:
            raise InvalidInput(f"Bad time page {parsed.value!r}") from None
        service = self._selected_service(session, tenant)
        return self._enter_time(session, tenant, service, now, page=page)

    def _choose_time(self, session, parsed, tenant, now) -> Blocks:
        try:
            chosen = parse_clock(parsed.value or "")
        except ValueError:
            raise InvalidInput(f"Bad time {parsed.value!r}") from None
        session.clear_from(S.SELECTING_TIME)
        session.start_time = chosen
        return self._enter_note(session, now)

    def _enter_note(self, session: Session, now: datetime) -> Blocks:
        session.note = None
        session.transition_to(S.INPUTTING_NOTE, now)
        return [menus.note_block()]

    def _set_note(self, session, parsed, tenant, now) -> Blocks:
        session.note = truncate(parsed.value or "", self._config.max_note_length) or None
        return self._enter_confirm(session, tenant, now)

    def _skip_note(self, session, parsed, tenant, now) -> Blocks:
        session.note = None
        return self._enter_confirm(session, tenant, now)

    def _enter_confirm(self, session: Session, tenant: TenantSettings, now: datetime) -> Blocks:
        service = self._selected_service(session, tenant)
        staff_name = None
        if session.staff_id:
            match = self._calculator.eligible_staff(tenant, service, session.staff_id)
            staff_name = match[0].name if match else None
        start = to_minutes(session.start_time)
        summary = menus.booking_summary(
            service, staff_name, session.booking_date, session.start_time,
            from_minutes(start + service.duration_minutes), session.note,
        )
        session.transition_to(S.CONFIRMING_BOOKING, now)
        session.commit_key = uuid.uuid4().hex
        return [menus.confirm_booking_block(summary)]

    def _confirm_booking(self, session, parsed, tenant, now) -> Blocks:
        self._require_confirm(parsed, "confirm_booking")
        if not session.can_confirm_booking():
            logger.warning("Confirmation with incomplete selections: %s", session.selections())
            return self._finish(session, now, texts.INCOMPLETE_BOOKING)

        customer = self._customers.get_or_create(tenant.tenant_id, session.user_id)
        request = BookingRequest(
            tenant_id=tenant.tenant_id,
            customer_id=customer.id,
            service_id=session.service_id,
            staff_id=session.staff_id,
            booking_date=session.booking_date,
            start_time=session.start_time,
            customer_note=session.note,
            source=settings.booking.booking_source,
            commit_key=session.commit_key,
        )
        try:
            booking = self._committer.commit(tenant, request)
        except SlotUnavailable as exc:
            logger.warning("Commit rejected: %s", exc)
            service = self._catalog.get_service(tenant.tenant_id, session.service_id)
            if service is None or not service.available:
                return self._finish(session, now, texts.SERVICE_GONE)
            return self._enter_time(session, tenant, service, now, notice=texts.SLOT_TAKEN)

        service = self._catalog.get_service(tenant.tenant_id, booking.service_id)
        summary = menus.booking_summary(
            service, booking.staff_name, booking.booking_date, booking.start_time,
            from_minutes(to_minutes(booking.start_time) + service.duration_minutes),
            booking.customer_note,
        ) if service else menus.describe_booking(booking)
        return self._finish(session, now, texts.BOOKING_DONE.format(
            reference=booking.reference,
            summary=summary,
            status=booking.status.value,
            token=booking.cancel_token,
        ))

    # ------------------------------------------------------------------ #
    # Back navigation
    # ------------------------------------------------------------------ #

    def _go_back(self, session, parsed, tenant, now) -> Blocks:
        state = session.state
        if state in (S.SELECTING_CATEGORY, S.BROWSING_PRODUCTS, S.BROWSING_COUPONS, S.VIEWING_BOOKINGS):
            return self._show_main_menu(session, parsed, tenant, now)
        if state == S.SELECTING_SERVICE:
            if session.category_step:
                return self._enter_category(session, tenant, now)
            return self._show_main_menu(session, parsed, tenant, now)
        if state == S.SELECTING_STAFF:
            return self._enter_service(
                session, self._catalog.list_services(tenant.tenant_id, session.category_id), now
            )
        if state == S.SELECTING_DATE:
            if session.staff_step:
                return self._enter_staff(session, tenant, now)
            return self._enter_service(
                session, self._catalog.list_services(tenant.tenant_id, session.category_id), now
            )
        if state == S.SELECTING_TIME:
            return self._enter_date(session, tenant, self._selected_service(session, tenant), now)
        if state == S.INPUTTING_NOTE:
            return self._enter_time(session, tenant, self._selected_service(session, tenant), now)
        if state == S.CONFIRMING_BOOKING:
            return self._enter_note(session, now)
        if state == S.VIEWING_PRODUCT_DETAIL:
            return self._browse_products(session, parsed, tenant, now)
        if state == S.SELECTING_QUANTITY:
            return self._enter_product_detail(session, self._selected_product(session, tenant), now)
        if state == S.CONFIRMING_PURCHASE:
            return self._enter_quantity(session, self._selected_product(session, tenant), now)
        if state == S.CONFIRMING_CANCEL_BOOKING:
            return self._view_bookings(session, parsed, tenant, now)
        raise InvalidInput(f"No way back from {state.value}")

    # ------------------------------------------------------------------ #
    # Shop flow
    # ------------------------------------------------------------------ #

    def _selected_product(self, session: Session, tenant: TenantSettings) -> Product:
        product = (
            self._shop.get_product(tenant.tenant_id, session.product_id)
            if session.product_id else None
        )
        if product is None or not product.on_sale:
            raise InvalidInput(f"Product {session.product_id} not on sale")
        return product

    def _browse_products(self, session, parsed, tenant, now) -> Blocks:
        products = self._shop.list_products(tenant.tenant_id)
        if not products:
            return self._finish(session, now, texts.NO_PRODUCTS)
        session.clear_from(S.BROWSING_PRODUCTS)
        session.transition_to(S.BROWSING_PRODUCTS, now)
        return [menus.product_list_block(products, self._limit())]

    def _choose_product(self, session, parsed, tenant, now) -> Blocks:
        session.product_id = parsed.value
        return self._enter_product_detail(session, self._selected_product(session, tenant), now)

    def _enter_product_detail(self, session: Session, product: Product, now: datetime) -> Blocks:
        session.clear_from(S.SELECTING_QUANTITY)
        session.transition_to(S.VIEWING_PRODUCT_DETAIL, now)
        return [menus.product_detail_block(product, self._shop.max_quantity(product))]

    def _buy_product(self, session, parsed, tenant, now) -> Blocks:
        product = self._selected_product(session, tenant)
        if self._shop.max_quantity(product) < 1:
            raise InvalidInput(
                f"{product.id} sold out", user_message=texts.SOLD_OUT.format(name=product.name)
            )
        return self._enter_quantity(session, product, now)

    def _enter_quantity(self, session: Session, product: Product, now: datetime) -> Blocks:
        session.quantity = None
        session.transition_to(S.SELECTING_QUANTITY, now)
        return [menus.quantity_block(self._shop.max_quantity(product))]

    def _choose_quantity(self, session, parsed, tenant, now) -> Blocks:
        try:
            quantity = int(parsed.value or "")
        except ValueError:
            raise InvalidInput(f"Bad quantity {parsed.value!r}") from None
        product = self._selected_product(session, tenant)
        session.quantity = quantity
        session.commit_key = uuid.uuid4().hex
        session.transition_to(S.CONFIRMING_PURCHASE, now)
        return [menus.confirm_purchase_block(product, quantity)]

    def _confirm_purchase(self, session, parsed, tenant, now) -> Blocks:
        self._require_confirm(parsed, "confirm_purchase")
        product = self._selected_product(session, tenant)
        customer = self._customers.get_or_create(tenant.tenant_id, session.user_id)
        try:
            order = self._shop.place_order(
                tenant.tenant_id, customer.id, product.id, session.quantity or 0,
                commit_key=session.commit_key,
            )
        except InsufficientStock as exc:
            logger.warning("Order rejected: %s", exc)
            return [MessageBlock(text=texts.OUT_OF_STOCK)] + self._browse_products(
                session, parsed, tenant, now
            )
        return self._finish(session, now, texts.ORDER_DONE.format(
            order_no=order.order_no,
            quantity=order.quantity,
            name=order.product_name,
            total=menus.format_price(order.total),
        ))

    # ------------------------------------------------------------------ #
    # Coupons
    # ------------------------------------------------------------------ #

    def _browse_coupons(self, session, parsed, tenant, now) -> Blocks:
        coupons = self._shop.list_coupons(tenant.tenant_id)
        if not coupons:
            return self._finish(session, now, texts.NO_COUPONS)
        session.transition_to(S.BROWSING_COUPONS, now)
        return [menus.coupon_block(coupons, self._limit())]

    def _claim_coupon(self, session, parsed, tenant, now) -> Blocks:
        customer = self._customers.get_or_create(tenant.tenant_id, session.user_id)
        claim = self._shop.claim_coupon(tenant.tenant_id, customer.id, parsed.value or "")
        coupon = next(
            (c for c in self._shop.list_coupons(tenant.tenant_id) if c.id == claim.coupon_id), None
        )
        name = coupon.name if coupon else claim.coupon_id
        return self._finish(session, now, texts.COUPON_CLAIMED.format(name=name, code=claim.code))

    # ------------------------------------------------------------------ #
    # Booking management
    # ------------------------------------------------------------------ #

    def _view_bookings(self, session, parsed, tenant, now) -> Blocks:
        customer = self._customers.find(tenant.tenant_id, session.user_id)
        local_now = self._calculator.now_for(tenant)
        upcoming = []
        if customer is not None:
            upcoming = [
                b for b in self._ledger.find_customer_bookings(tenant.tenant_id, customer.id)
                if b.is_cancellable
                and (b.booking_date, b.start_time) >= (local_now.date(), local_now.time())
            ]
        if not upcoming:
            return self._finish(session, now, texts.NO_BOOKINGS)
        session.cancel_booking_id = None
        session.transition_to(S.VIEWING_BOOKINGS, now)
        return [menus.bookings_block(upcoming, self._limit())]

    def _request_cancel_booking(self, session, parsed, tenant, now) -> Blocks:
        booking = self._ledger.get(tenant.tenant_id, parsed.value or "")
        customer = self._customers.find(tenant.tenant_id, session.user_id)
        if booking is None or customer is None or booking.customer_id != customer.id:
            raise InvalidInput(f"Booking {parsed.value} not found for this user")
        if not booking.is_cancellable:
            raise InvalidInput(
                f"Booking {booking.id} is {booking.status.value}", user_message=texts.NOT_CANCELLABLE
            )
        session.cancel_booking_id = booking.id
        session.transition_to(S.CONFIRMING_CANCEL_BOOKING, now)
        return [menus.confirm_cancel_block(booking)]

    def _confirm_cancel_booking(self, session, parsed, tenant, now) -> Blocks:
        self._require_confirm(parsed, "confirm_cancel_booking")
        if session.cancel_booking_id is None:
            return self._finish(session, now, texts.SESSION_ENDED)
        booking = self._committer.cancel_booking(
            tenant, session.cancel_booking_id, reason="Cancelled by customer via chat"
        )
        return self._finish(session, now, texts.BOOKING_CANCELLED.format(reference=booking.reference))
