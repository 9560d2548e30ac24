"""Tenant business-hours and dialogue policy."""

from datetime import time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from bookingbot.config import settings
from bookingbot.utils import parse_clock

_sched = settings.scheduling


class StaffSelectionMode(str, Enum):
    """Whether the dialogue asks the customer to pick a staff member."""
    ASK = "ask"
    NO_PREFERENCE = "no_preference"


class TenantSettings(BaseModel):
    """Per-tenant booking configuration.

    ``closed_weekdays`` uses Python weekday numbers (Monday = 0, Sunday = 6).
    """

    tenant_id: str
    name: str = ""
    open_time: time = Field(default_factory=lambda: parse_clock(_sched.default_open_time))
    close_time: time = Field(default_factory=lambda: parse_clock(_sched.default_close_time))
    slot_interval_minutes: int = Field(default=_sched.default_slot_minutes, ge=5, le=240)
    break_start: Optional[time] = None
    break_end: Optional[time] = None
    closed_weekdays: list[int] = Field(default_factory=list)
    max_advance_days: int = Field(default=_sched.default_max_advance_days, ge=1)
    auto_confirm: bool = False
    staff_selection: StaffSelectionMode = StaffSelectionMode.ASK
    booking_enabled: bool = True
    timezone: str = _sched.default_timezone

    @model_validator(mode="after")
    def _check_windows(self) -> "TenantSettings":
        if self.open_time >= self.close_time:
            raise ValueError("open_time must be before close_time")
        if (self.break_start is None) != (self.break_end is None):
            raise ValueError("break_start and break_end must be set together")
        if self.break_start is not None and self.break_start >= self.break_end:
            raise ValueError("break_start must be before break_end")
        if any(day < 0 or day > 6 for day in self.closed_weekdays):
            raise ValueError("closed_weekdays must contain values 0-6")
        return self

    @property
    def has_break(self) -> bool:
        return self.break_start is not None
