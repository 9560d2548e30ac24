"""Booking ledger models."""

from datetime import date, datetime, time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


ACTIVE_STATUSES = frozenset({
    BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS,
})
CANCELLABLE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


class BookingRequest(BaseModel):
    """Finalized selection handed from the dialogue to the commit service."""
    tenant_id: str
    customer_id: str
    service_id: str
    staff_id: Optional[str] = None
    booking_date: date
    start_time: time
    customer_note: Optional[str] = None
    source: str = "LINE"
    # Repeating a commit with the same key returns the booking it created.
    commit_key: Optional[str] = None


class Booking(BaseModel):
    """A persisted booking. end_time already includes the service buffer."""
    id: str
    reference: str
    tenant_id: str
    customer_id: str
    service_id: str
    service_name: str
    staff_id: Optional[str] = None
    staff_name: Optional[str] = None
    booking_date: date
    start_time: time
    end_time: time
    price: int = 0
    status: BookingStatus = BookingStatus.PENDING
    customer_note: Optional[str] = None
    cancel_token: str
    source: str = "LINE"
    created_at: datetime
    commit_key: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    tags: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_times(self) -> "Booking":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_cancellable(self) -> bool:
        return self.status in CANCELLABLE_STATUSES
