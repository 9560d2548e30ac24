"""Per (tenant, end-user) dialogue session."""

from datetime import date, datetime, time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from bookingbot.schemas.channel_schema import MenuOption


class ConversationState(str, Enum):
    """All dialogue states. IDLE is initial and every flow ends there."""
    IDLE = "idle"
    SELECTING_CATEGORY = "selecting_category"
    SELECTING_SERVICE = "selecting_service"
    SELECTING_STAFF = "selecting_staff"
    SELECTING_DATE = "selecting_date"
    SELECTING_TIME = "selecting_time"
    INPUTTING_NOTE = "inputting_note"
    CONFIRMING_BOOKING = "confirming_booking"
    BROWSING_PRODUCTS = "browsing_products"
    VIEWING_PRODUCT_DETAIL = "viewing_product_detail"
    SELECTING_QUANTITY = "selecting_quantity"
    CONFIRMING_PURCHASE = "confirming_purchase"
    BROWSING_COUPONS = "browsing_coupons"
    VIEWING_BOOKINGS = "viewing_bookings"
    CONFIRMING_CANCEL_BOOKING = "confirming_cancel_booking"


# Selection fields owned by each step, in dialogue order. Re-entering a step
# clears its own field and everything after it.
_STEP_FIELDS: list[tuple[ConversationState, tuple[str, ...]]] = [
    (ConversationState.SELECTING_CATEGORY, ("category_id",)),
    (ConversationState.SELECTING_SERVICE, ("service_id",)),
    (ConversationState.SELECTING_STAFF, ("staff_id",)),
    (ConversationState.SELECTING_DATE, ("booking_date",)),
    (ConversationState.SELECTING_TIME, ("start_time",)),
    (ConversationState.INPUTTING_NOTE, ("note",)),
    (ConversationState.CONFIRMING_BOOKING, ("commit_key",)),
]
_SHOP_FIELDS: list[tuple[ConversationState, tuple[str, ...]]] = [
    (ConversationState.BROWSING_PRODUCTS, ("product_id",)),
    (ConversationState.VIEWING_PRODUCT_DETAIL, ()),
    (ConversationState.SELECTING_QUANTITY, ("quantity",)),
    (ConversationState.CONFIRMING_PURCHASE, ("commit_key",)),
]


class Session(BaseModel):
    """Dialogue state plus the selections accumulated so far."""

    tenant_id: str
    user_id: str
    state: ConversationState = ConversationState.IDLE
    previous_state: Optional[ConversationState] = None
    state_changed_at: Optional[datetime] = None
    last_activity: datetime

    category_id: Optional[str] = None
    service_id: Optional[str] = None
    staff_id: Optional[str] = None
    booking_date: Optional[date] = None
    start_time: Optional[time] = None
    note: Optional[str] = None
    # Whether the optional steps were shown, for back navigation.
    category_step: bool = False
    staff_step: bool = False

    product_id: Optional[str] = None
    quantity: Optional[int] = None
    cancel_booking_id: Optional[str] = None
    # Issued on entering a confirmation step; a repeated confirm reuses it.
    commit_key: Optional[str] = None

    prompt: str = ""
    offered_options: list[MenuOption] = Field(default_factory=list)

    @classmethod
    def new(cls, tenant_id: str, user_id: str, now: datetime) -> "Session":
        return cls(tenant_id=tenant_id, user_id=user_id, last_activity=now, state_changed_at=now)

    @property
    def key(self) -> str:
        return f"{self.tenant_id}:{self.user_id}"

    def transition_to(self, state: ConversationState, now: Optional[datetime] = None) -> None:
        if state != self.state:
            self.previous_state = self.state
            self.state = state
            self.state_changed_at = now or self.last_activity

    def touch(self, now: datetime) -> None:
        self.last_activity = now

    def clear_from(self, step: ConversationState) -> None:
        """Clear the selection owned by ``step`` and every later step of its flow."""
        for flow in (_STEP_FIELDS, _SHOP_FIELDS):
            names = [s for s, _ in flow]
            if step in names:
                for _, fields in flow[names.index(step):]:
                    for name in fields:
                        setattr(self, name, None)
                return

    def clear_booking(self) -> None:
        self.clear_from(ConversationState.SELECTING_CATEGORY)
        self.category_step = False
        self.staff_step = False

    def reset(self, now: Optional[datetime] = None) -> None:
        """Back to IDLE with every selection discarded."""
        self.clear_booking()
        self.clear_from(ConversationState.BROWSING_PRODUCTS)
        self.cancel_booking_id = None
        self.transition_to(ConversationState.IDLE, now)

    def can_confirm_booking(self) -> bool:
        return (
            self.service_id is not None
            and self.booking_date is not None
            and self.start_time is not None
        )

    def selections(self) -> dict[str, Optional[str]]:
        """Accumulated booking selections as strings, for logging and tests."""
        return {
            "category_id": self.category_id,
            "service_id": self.service_id,
            "staff_id": self.staff_id,
            "booking_date": self.booking_date.isoformat() if self.booking_date else None,
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "note": self.note,
            "product_id": self.product_id,
            "quantity": str(self.quantity) if self.quantity is not None else None,
            "cancel_booking_id": self.cancel_booking_id,
        }
