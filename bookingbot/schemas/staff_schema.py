"""Staff, weekly schedule and leave models."""

from datetime import date, time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class LeaveType(str, Enum):
    PERSONAL = "personal"
    SICK = "sick"
    VACATION = "vacation"
    ANNUAL = "annual"
    OTHER = "other"


class Staff(BaseModel):
    """A bookable staff member.

    ``service_ids`` of None means qualified for every service.
    """
    id: str
    name: str
    active: bool = True
    bookable: bool = True
    max_concurrent_bookings: int = Field(default=1, ge=1)
    sort_order: int = 0
    service_ids: Optional[list[str]] = None

    def can_perform(self, service_id: str) -> bool:
        return self.service_ids is None or service_id in self.service_ids


class DaySchedule(BaseModel):
    """Working hours for one weekday. Missing start/end means tenant hours."""
    weekday: int = Field(ge=0, le=6)
    working: bool = True
    start: Optional[time] = None
    end: Optional[time] = None
    break_start: Optional[time] = None
    break_end: Optional[time] = None


class WeeklySchedule(BaseModel):
    staff_id: str
    days: list[DaySchedule] = Field(default_factory=list)

    def for_weekday(self, weekday: int) -> Optional[DaySchedule]:
        """Schedule entry for the weekday, or None when the staff has no entry."""
        for day in self.days:
            if day.weekday == weekday:
                return day
        return None


class StaffLeave(BaseModel):
    staff_id: str
    leave_date: date
    leave_type: LeaveType = LeaveType.PERSONAL
    full_day: bool = True
    start: Optional[time] = None
    end: Optional[time] = None

    @model_validator(mode="after")
    def _check_partial(self) -> "StaffLeave":
        if not self.full_day:
            if self.start is None or self.end is None:
                raise ValueError("partial leave needs start and end")
            if self.start >= self.end:
                raise ValueError("leave start must be before end")
        return self
