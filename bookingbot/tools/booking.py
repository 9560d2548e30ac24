"""
Booking ledger and commit service.

The commit service re-runs the availability rules for the requested slot
while holding the ledger's per-(tenant, staff, date) locks, so the recheck
and the insert are one atomic step with respect to other commits touching
the same staff on the same day. It never substitutes a different slot: a
failed recheck raises SlotUnavailable and nothing is written.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Iterator, Optional

from bookingbot.config import STAFF_ASSIGNMENT_POLICIES, settings
from bookingbot.errors import InvalidInput, SlotUnavailable
from bookingbot.locking import KeyedLock
from bookingbot.schemas.booking_schema import Booking, BookingRequest, BookingStatus
from bookingbot.schemas.catalog_schema import ServiceItem
from bookingbot.schemas.tenant_schema import TenantSettings
from bookingbot.tools.availability import AvailabilityCalculator, StaffDay, tenant_allows
from bookingbot.tools.catalog import CatalogProvider
from bookingbot.tools.notifications import NotificationDispatcher
from bookingbot.utils import from_minutes, to_minutes

logger = logging.getLogger(__name__)

ANY_STAFF_KEY = "*"


class InMemoryBookingLedger:
    """Process-local booking ledger with per-slot commit locks."""

    def __init__(self) -> None:
        self._bookings: dict[str, Booking] = {}
        self._lock = threading.Lock()
        self._slot_locks = KeyedLock()

    @contextmanager
    def slot_guard(
        self, tenant_id: str, staff_ids: Iterable[Optional[str]], booking_date: date
    ) -> Iterator[None]:
        """Serialize commits for the given staff on ``booking_date``.

        Keys are acquired in sorted order (staff id, then date).
        """
        keys = [
            f"{tenant_id}:{staff_id or ANY_STAFF_KEY}:{booking_date.isoformat()}"
            for staff_id in staff_ids
        ]
        with self._slot_locks.hold_many(keys):
            yield

    def find_active_bookings(
        self, tenant_id: str, staff_id: Optional[str], booking_date: date
    ) -> list[Booking]:
        with self._lock:
            return [
                b for b in self._bookings.values()
                if b.tenant_id == tenant_id
                and b.staff_id == staff_id
                and b.booking_date == booking_date
                and b.is_active
            ]

    def find_customer_bookings(
        self, tenant_id: str, customer_id: str, active_only: bool = True
    ) -> list[Booking]:
        with self._lock:
            found = [
                b for b in self._bookings.values()
                if b.tenant_id == tenant_id
                and b.customer_id == customer_id
                and (b.is_active or not active_only)
            ]
        return sorted(found, key=lambda b: (b.booking_date, b.start_time))

    def get(self, tenant_id: str, booking_id: str) -> Optional[Booking]:
        with self._lock:
            booking = self._bookings.get(booking_id)
        if booking is None or booking.tenant_id != tenant_id:
            return None
        return booking

    def get_by_token(self, tenant_id: str, cancel_token: str) -> Optional[Booking]:
        with self._lock:
            for booking in self._bookings.values():
                if booking.tenant_id == tenant_id and booking.cancel_token == cancel_token:
                    return booking
        return None

    def find_by_commit_key(self, tenant_id: str, commit_key: str) -> Optional[Booking]:
        with self._lock:
            return self._find_by_commit_key(tenant_id, commit_key)

    def _find_by_commit_key(self, tenant_id: str, commit_key: str) -> Optional[Booking]:
        for booking in self._bookings.values():
            if booking.tenant_id == tenant_id and booking.commit_key == commit_key:
                return booking
        return None

    def insert_booking(self, booking: Booking) -> Booking:
        """Store ``booking``, or return the one already stored under its commit key."""
        with self._lock:
            if booking.id in self._bookings:
                raise ValueError(f"Booking {booking.id} already exists")
            if booking.commit_key:
                existing = self._find_by_commit_key(booking.tenant_id, booking.commit_key)
                if existing is not None:
                    return existing
            self._bookings[booking.id] = booking
        return booking

    def cancel(
        self, tenant_id: str, booking_id: str, reason: str, now: datetime
    ) -> Booking:
        """Mark a pending or confirmed booking cancelled.

        Raises:
            InvalidInput: If the booking does not exist or can no longer be cancelled.
        """
        with self._lock:
            booking = self._bookings.get(booking_id)
            if booking is None or booking.tenant_id != tenant_id:
                raise InvalidInput(f"Booking {booking_id} not found")
            if not booking.is_cancellable:
                raise InvalidInput(
                    f"Booking {booking_id} is {booking.status.value}",
                    user_message="This booking can no longer be cancelled.",
                )
            updated = booking.model_copy(update={
                "status": BookingStatus.CANCELLED,
                "cancelled_at": now,
                "cancel_reason": reason,
            })
            self._bookings[booking_id] = updated
        logger.info("Booking %s cancelled: %s", updated.reference, reason)
        return updated

    def reset(self) -> None:
        """Drop every booking. Test helper."""
        with self._lock:
            self._bookings.clear()


def _new_reference() -> str:
    return f"BK-{uuid.uuid4().hex[:6].upper()}"


class BookingCommitService:
    """Validates a finalized selection against current availability and persists it."""

    def __init__(
        self,
        catalog: CatalogProvider,
        calculator: AvailabilityCalculator,
        ledger: InMemoryBookingLedger,
        notifier: NotificationDispatcher,
        assignment_policy: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._catalog = catalog
        self._calculator = calculator
        self._ledger = ledger
        self._notifier = notifier
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.assignment_policy = assignment_policy or settings.booking.staff_assignment_policy
        if self.assignment_policy not in STAFF_ASSIGNMENT_POLICIES:
            raise ValueError(f"Unknown staff assignment policy {self.assignment_policy!r}")

    def _order_candidates(self, days: list[StaffDay]) -> list[StaffDay]:
        """Order staff for "any staff" assignment according to the policy."""
        if self.assignment_policy == "least_loaded":
            return sorted(days, key=lambda d: (len(d.bookings), d.staff.sort_order, d.staff.id))
        return sorted(days, key=lambda d: (d.staff.sort_order, d.staff.id))

    def commit(self, tenant: TenantSettings, request: BookingRequest) -> Booking:
        """
        Recheck and persist a booking.

        Returns:
            The created booking, PENDING or CONFIRMED per tenant auto-confirm.
            A request repeating an earlier ``commit_key`` gets that earlier
            booking back and nothing new is written.

        Raises:
            SlotUnavailable: If the slot no longer passes the availability rules.
        """
        if request.tenant_id != tenant.tenant_id:
            raise ValueError("Booking request tenant does not match tenant settings")
        if request.commit_key:
            existing = self._ledger.find_by_commit_key(tenant.tenant_id, request.commit_key)
            if existing is not None:
                logger.info(
                    "Commit %s already applied as booking %s", request.commit_key, existing.reference
                )
                return existing
        service = self._catalog.get_service(tenant.tenant_id, request.service_id)
        if service is None or not service.available:
            raise SlotUnavailable(f"Service {request.service_id} is no longer bookable")

        start = to_minutes(request.start_time)
        end = start + service.total_minutes
        now = self._calculator.now_for(tenant)
        if not tenant_allows(
            tenant, request.booking_date, start, end, now, self._calculator.min_lead_minutes
        ):
            raise SlotUnavailable(
                f"{request.booking_date} {request.start_time} is outside bookable hours"
            )

        if not service.requires_staff:
            with self._ledger.slot_guard(tenant.tenant_id, [None], request.booking_date):
                booking = self._insert(tenant, request, service, None, end)
        else:
            candidates = self._calculator.eligible_staff(tenant, service, request.staff_id)
            if not candidates:
                raise SlotUnavailable(f"No eligible staff for service {service.id}")
            with self._ledger.slot_guard(
                tenant.tenant_id, [s.id for s in candidates], request.booking_date
            ):
                days = [
                    self._calculator.load_staff_day(tenant, s, request.booking_date)
                    for s in candidates
                ]
                chosen = next(
                    (d for d in self._order_candidates(days) if d.can_take(tenant, start, end)),
                    None,
                )
                if chosen is None:
                    logger.warning(
                        "Slot %s %s for service %s no longer available (staff=%s)",
                        request.booking_date, request.start_time, service.id,
                        request.staff_id or "any",
                    )
                    raise SlotUnavailable(
                        f"{request.booking_date} {request.start_time} is no longer available"
                    )
                booking = self._insert(tenant, request, service, chosen, end)

        self._notifier.notify_booking_created(booking)
        return booking

    def _insert(
        self,
        tenant: TenantSettings,
        request: BookingRequest,
        service: ServiceItem,
        staff_day: Optional[StaffDay],
        end: int,
    ) -> Booking:
        booking = Booking(
            id=str(uuid.uuid4()),
            reference=_new_reference(),
            tenant_id=tenant.tenant_id,
            customer_id=request.customer_id,
            service_id=service.id,
            service_name=service.name,
            staff_id=staff_day.staff.id if staff_day else None,
            staff_name=staff_day.staff.name if staff_day else None,
            booking_date=request.booking_date,
            start_time=request.start_time,
            end_time=from_minutes(end),
            price=service.price,
            status=BookingStatus.CONFIRMED if tenant.auto_confirm else BookingStatus.PENDING,
            customer_note=request.customer_note,
            cancel_token=str(uuid.uuid4()),
            source=request.source,
            created_at=self._clock(),
            commit_key=request.commit_key,
        )
        stored = self._ledger.insert_booking(booking)
        if stored is not booking:
            return stored
        logger.info(
            "Booking %s created: %s on %s %s with %s",
            booking.reference, service.name, booking.booking_date,
            booking.start_time.strftime("%H:%M"), booking.staff_name or "no staff",
        )
        return booking

    def cancel_booking(
        self, tenant: TenantSettings, booking_id: str, reason: str = "Cancelled by customer"
    ) -> Booking:
        booking = self._ledger.cancel(tenant.tenant_id, booking_id, reason, self._clock())
        self._notifier.notify_booking_cancelled(booking)
        return booking

    def cancel_by_token(
        self, tenant: TenantSettings, cancel_token: str, reason: str = "Cancelled via link"
    ) -> Booking:
        """Customer self-cancel with the token handed out at booking time."""
        booking = self._ledger.get_by_token(tenant.tenant_id, cancel_token)
        if booking is None:
            raise InvalidInput("Unknown cancellation token")
        return self.cancel_booking(tenant, booking.id, reason)
