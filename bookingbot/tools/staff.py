"""Staff provider: who can work, when, and when they are on leave."""

import logging
import threading
from datetime import date
from typing import Optional, Protocol

from bookingbot.schemas.staff_schema import Staff, StaffLeave, WeeklySchedule

logger = logging.getLogger(__name__)


class StaffProvider(Protocol):
    def list_staff(self, tenant_id: str, service_id: Optional[str] = None) -> list[Staff]: ...

    def get_weekly_schedule(self, tenant_id: str, staff_id: str) -> Optional[WeeklySchedule]: ...

    def get_leaves(
        self, tenant_id: str, staff_id: str, start: date, end: date
    ) -> list[StaffLeave]: ...


class InMemoryStaffDirectory:
    """Staff, schedules and leave per tenant."""

    def __init__(self) -> None:
        self._staff: dict[str, dict[str, Staff]] = {}
        self._schedules: dict[tuple[str, str], WeeklySchedule] = {}
        self._leaves: dict[tuple[str, str], list[StaffLeave]] = {}
        self._lock = threading.Lock()

    def add_staff(
        self, tenant_id: str, staff: Staff, schedule: Optional[WeeklySchedule] = None
    ) -> None:
        with self._lock:
            self._staff.setdefault(tenant_id, {})[staff.id] = staff
            if schedule is not None:
                self._schedules[(tenant_id, staff.id)] = schedule

    def add_leave(self, tenant_id: str, leave: StaffLeave) -> None:
        with self._lock:
            self._leaves.setdefault((tenant_id, leave.staff_id), []).append(leave)

    def list_staff(self, tenant_id: str, service_id: Optional[str] = None) -> list[Staff]:
        """Active, bookable staff (qualified for ``service_id`` if given) by sort order."""
        with self._lock:
            members = list(self._staff.get(tenant_id, {}).values())
        eligible = [
            s for s in members
            if s.active and s.bookable and (service_id is None or s.can_perform(service_id))
        ]
        return sorted(eligible, key=lambda s: (s.sort_order, s.id))

    def get_staff(self, tenant_id: str, staff_id: str) -> Optional[Staff]:
        with self._lock:
            return self._staff.get(tenant_id, {}).get(staff_id)

    def get_weekly_schedule(self, tenant_id: str, staff_id: str) -> Optional[WeeklySchedule]:
        """None means the staff member follows tenant business hours every open day."""
        with self._lock:
            return self._schedules.get((tenant_id, staff_id))

    def get_leaves(
        self, tenant_id: str, staff_id: str, start: date, end: date
    ) -> list[StaffLeave]:
        """Leave records with ``start <= leave_date <= end``."""
        with self._lock:
            leaves = list(self._leaves.get((tenant_id, staff_id), []))
        return [lv for lv in leaves if start <= lv.leave_date <= end]
