"""
Availability calculator.

Computes bookable start times for a service on a date from tenant business
hours, staff weekly schedules, staff leave and the booking ledger. The
slot rules live in pure functions (``tenant_allows``, ``StaffDay.can_take``,
``compute_available_slots``) so the commit service can re-run exactly the
same checks under its lock.

All interval arithmetic is in minutes since midnight on half-open ranges.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional, Protocol, TypedDict
from zoneinfo import ZoneInfo

from bookingbot.config import settings
from bookingbot.schemas.booking_schema import Booking
from bookingbot.schemas.catalog_schema import ServiceItem
from bookingbot.schemas.staff_schema import DaySchedule, Staff, StaffLeave
from bookingbot.schemas.tenant_schema import TenantSettings
from bookingbot.tools.staff import StaffProvider
from bookingbot.utils import from_minutes, intervals_overlap, to_minutes

logger = logging.getLogger(__name__)


class DateAvailability(TypedDict):
    """Summary of availability for a single date."""

    date: date
    day_name: str
    slot_count: int


class ActiveBookingSource(Protocol):
    def find_active_bookings(
        self, tenant_id: str, staff_id: Optional[str], booking_date: date
    ) -> list[Booking]: ...


@dataclass
class StaffDay:
    """One staff member's schedule, leave and bookings for a single date."""

    staff: Staff
    schedule: Optional[DaySchedule] = None
    leaves: list[StaffLeave] = field(default_factory=list)
    bookings: list[Booking] = field(default_factory=list)

    @property
    def working(self) -> bool:
        if self.schedule is not None and not self.schedule.working:
            return False
        return not any(leave.full_day for leave in self.leaves)

    def window(self, tenant: TenantSettings) -> Optional[tuple[int, int]]:
        """Business hours intersected with the staff's hours, or None if off."""
        if not self.working:
            return None
        start = to_minutes(tenant.open_time)
        end = to_minutes(tenant.close_time)
        if self.schedule is not None:
            if self.schedule.start is not None:
                start = max(start, to_minutes(self.schedule.start))
            if self.schedule.end is not None:
                end = min(end, to_minutes(self.schedule.end))
        return (start, end) if start < end else None

    def overlapping_bookings(self, start: int, end: int) -> int:
        return sum(
            1 for b in self.bookings
            if b.is_active
            and intervals_overlap(start, end, to_minutes(b.start_time), to_minutes(b.end_time))
        )

    def can_take(self, tenant: TenantSettings, start: int, end: int) -> bool:
        """Whether this staff member can serve [start, end) with capacity to spare."""
        window = self.window(tenant)
        if window is None or start < window[0] or end > window[1]:
            return False
        sched = self.schedule
        if sched is not None and sched.break_start is not None and sched.break_end is not None:
            if intervals_overlap(start, end, to_minutes(sched.break_start), to_minutes(sched.break_end)):
                return False
        for leave in self.leaves:
            if not leave.full_day and intervals_overlap(
                start, end, to_minutes(leave.start), to_minutes(leave.end)
            ):
                return False
        return self.overlapping_bookings(start, end) < self.staff.max_concurrent_bookings


def earliest_start(tenant: TenantSettings, target_date: date, now: datetime, lead_minutes: int) -> int:
    """First minute a booking may start on ``target_date`` given the current time."""
    if target_date > now.date():
        return 0
    minutes = now.hour * 60 + now.minute + (1 if now.second or now.microsecond else 0)
    return minutes + lead_minutes


def is_bookable_date(tenant: TenantSettings, target_date: date, now: datetime) -> bool:
    """Inside the advance-booking horizon and not a closed weekday."""
    today = now.date()
    if target_date < today or target_date > today + timedelta(days=tenant.max_advance_days):
        return False
    return target_date.weekday() not in tenant.closed_weekdays


def tenant_allows(
    tenant: TenantSettings,
    target_date: date,
    start: int,
    end: int,
    now: datetime,
    lead_minutes: int,
) -> bool:
    """Tenant-level rules for the interval [start, end) on ``target_date``."""
    if not is_bookable_date(tenant, target_date, now):
        return False
    open_min = to_minutes(tenant.open_time)
    if start < open_min or end > to_minutes(tenant.close_time):
        return False
    if (start - open_min) % tenant.slot_interval_minutes:
        return False
    if tenant.has_break and intervals_overlap(
        start, end, to_minutes(tenant.break_start), to_minutes(tenant.break_end)
    ):
        return False
    return start >= earliest_start(tenant, target_date, now, lead_minutes)


def compute_available_slots(
    tenant: TenantSettings,
    service: ServiceItem,
    target_date: date,
    now: datetime,
    staff_days: Optional[list[StaffDay]],
    lead_minutes: int = 0,
) -> list[time]:
    """
    Chronological start times bookable for ``service`` on ``target_date``.

    Args:
        now: Current time in the tenant's timezone.
        staff_days: Candidate staff for the date. ``None`` when the service
            needs no staff; an empty list means nobody is eligible.
        lead_minutes: Minimum notice for bookings on the current date.

    Returns:
        Possibly empty list of start times. An empty list is a valid answer.
    """
    if staff_days is not None and not staff_days:
        return []
    if not is_bookable_date(tenant, target_date, now):
        return []

    duration = service.total_minutes
    open_min = to_minutes(tenant.open_time)
    close_min = to_minutes(tenant.close_time)
    slots: list[time] = []
    start = open_min
    while start + duration <= close_min:
        end = start + duration
        if tenant_allows(tenant, target_date, start, end, now, lead_minutes):
            if staff_days is None or any(day.can_take(tenant, start, end) for day in staff_days):
                slots.append(from_minutes(start))
        start += tenant.slot_interval_minutes
    return slots


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AvailabilityCalculator:
    """Loads schedule, leave and ledger data and applies the slot rules.

    Read-only; safe to call from any number of workers at once.
    """

    def __init__(
        self,
        staff_provider: StaffProvider,
        ledger: ActiveBookingSource,
        clock: Optional[Callable[[], datetime]] = None,
        min_lead_minutes: Optional[int] = None,
    ) -> None:
        self._staff = staff_provider
        self._ledger = ledger
        self._clock = clock or _utc_now
        self.min_lead_minutes = (
            settings.scheduling.min_lead_minutes if min_lead_minutes is None else min_lead_minutes
        )

    def now_for(self, tenant: TenantSettings) -> datetime:
        """Current time in the tenant's timezone."""
        return self._clock().astimezone(ZoneInfo(tenant.timezone))

    def load_staff_day(self, tenant: TenantSettings, staff: Staff, target_date: date) -> StaffDay:
        weekly = self._staff.get_weekly_schedule(tenant.tenant_id, staff.id)
        return StaffDay(
            staff=staff,
            schedule=weekly.for_weekday(target_date.weekday()) if weekly else None,
            leaves=self._staff.get_leaves(tenant.tenant_id, staff.id, target_date, target_date),
            bookings=self._ledger.find_active_bookings(tenant.tenant_id, staff.id, target_date),
        )

    def eligible_staff(
        self, tenant: TenantSettings, service: ServiceItem, staff_id: Optional[str] = None
    ) -> list[Staff]:
        """Staff qualified for the service by sort order, narrowed to ``staff_id`` if given."""
        staff = self._staff.list_staff(tenant.tenant_id, service.id)
        if staff_id is not None:
            staff = [s for s in staff if s.id == staff_id]
        return staff

    def staff_days(
        self,
        tenant: TenantSettings,
        service: ServiceItem,
        target_date: date,
        staff_id: Optional[str] = None,
    ) -> Optional[list[StaffDay]]:
        if not service.requires_staff:
            return None
        return [
            self.load_staff_day(tenant, s, target_date)
            for s in self.eligible_staff(tenant, service, staff_id)
        ]

    def available_slots(
        self,
        tenant: TenantSettings,
        service: ServiceItem,
        target_date: date,
        staff_id: Optional[str] = None,
    ) -> list[time]:
        """Bookable start times; ``staff_id=None`` means any eligible staff."""
        now = self.now_for(tenant)
        if not is_bookable_date(tenant, target_date, now):
            return []
        days = self.staff_days(tenant, service, target_date, staff_id)
        slots = compute_available_slots(
            tenant, service, target_date, now, days, self.min_lead_minutes
        )
        logger.debug(
            "%d slots for service %s on %s (staff=%s)",
            len(slots), service.id, target_date, staff_id or "any",
        )
        return slots

    def available_dates(
        self,
        tenant: TenantSettings,
        service: ServiceItem,
        staff_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[DateAvailability]:
        """Dates within the booking horizon that have at least one slot, soonest first."""
        today = self.now_for(tenant).date()
        results: list[DateAvailability] = []
        for offset in range(tenant.max_advance_days + 1):
            day = today + timedelta(days=offset)
            if day.weekday() in tenant.closed_weekdays:
                continue
            slots = self.available_slots(tenant, service, day, staff_id)
            if slots:
                results.append({
                    "date": day,
                    "day_name": day.strftime("%A"),
                    "slot_count": len(slots),
                })
            if limit is not None and len(results) >= limit:
                break
        return results
