"""Service catalog models."""

from typing import Optional

from pydantic import BaseModel, Field


class ServiceCategory(BaseModel):
    id: str
    name: str
    sort_order: int = 0
    active: bool = True


class ServiceItem(BaseModel):
    """A bookable service. Read-only for the lifetime of a session."""
    id: str
    name: str
    category_id: Optional[str] = None
    duration_minutes: int = Field(gt=0)
    buffer_minutes: int = Field(default=0, ge=0)
    price: int = Field(default=0, ge=0)
    available: bool = True
    requires_staff: bool = True
    sort_order: int = 0

    @property
    def total_minutes(self) -> int:
        """Duration plus clean-up buffer; the span a booking occupies."""
        return self.duration_minutes + self.buffer_minutes
