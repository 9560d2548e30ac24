"""
Channel user to customer resolution.

A chat user is known only by the channel's opaque user id. The first
booking, order or coupon claim creates a tenant-scoped customer record.
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from bookingbot.schemas.customer_schema import Customer

logger = logging.getLogger(__name__)


class InMemoryCustomerDirectory:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._customers: dict[tuple[str, str], Customer] = {}
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def find(self, tenant_id: str, channel_user_id: str) -> Optional[Customer]:
        """Look up the customer for a channel user. Returns None if not found."""
        with self._lock:
            return self._customers.get((tenant_id, channel_user_id))

    def get_or_create(
        self, tenant_id: str, channel_user_id: str, display_name: Optional[str] = None
    ) -> Customer:
        with self._lock:
            customer = self._customers.get((tenant_id, channel_user_id))
            if customer is None:
                customer = Customer(
                    id=f"CUS-{uuid.uuid4().hex[:8].upper()}",
                    tenant_id=tenant_id,
                    channel_user_id=channel_user_id,
                    display_name=display_name,
                    created_at=self._clock(),
                )
                self._customers[(tenant_id, channel_user_id)] = customer
                logger.info("New customer created: %s for user %s", customer.id, channel_user_id)
            elif display_name and customer.display_name != display_name:
                customer = customer.model_copy(update={"display_name": display_name})
                self._customers[(tenant_id, channel_user_id)] = customer
            return customer

    def set_following(self, tenant_id: str, channel_user_id: str, following: bool) -> None:
        """Record follow/unfollow. Unknown users are ignored."""
        with self._lock:
            customer = self._customers.get((tenant_id, channel_user_id))
            if customer is not None:
                self._customers[(tenant_id, channel_user_id)] = customer.model_copy(
                    update={"following": following}
                )
