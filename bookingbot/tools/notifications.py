"""
Fire-and-forget booking notifications.

Delivery runs on a small thread pool. A failing sender is logged and
otherwise ignored; the booking that triggered it is already committed.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Optional, Protocol

import requests

from bookingbot.config import settings
from bookingbot.schemas.booking_schema import Booking

logger = logging.getLogger(__name__)

BOOKING_CREATED = "booking.created"
BOOKING_CANCELLED = "booking.cancelled"


class NotificationSender(Protocol):
    def send(self, event: str, booking: Booking) -> None: ...


class LoggingSender:
    """Writes notifications to the log. Used when no webhook is configured."""

    def send(self, event: str, booking: Booking) -> None:
        logger.info(
            "Notification %s: booking %s on %s %s for tenant %s",
            event, booking.reference, booking.booking_date,
            booking.start_time.strftime("%H:%M"), booking.tenant_id,
        )


class WebhookSender:
    """POSTs a JSON notification to an HTTP endpoint."""

    def __init__(
        self,
        url: str,
        http_client: Optional[requests.Session] = None,
        timeout_sec: float = 5.0,
    ) -> None:
        self.url = url
        self.http_client = http_client or requests.Session()
        self.timeout_sec = timeout_sec

    def build_payload(self, event: str, booking: Booking) -> dict[str, Any]:
        return {
            "event": event,
            "tenant_id": booking.tenant_id,
            "booking": booking.model_dump(mode="json", exclude={"cancel_token", "commit_key"}),
        }

    def send(self, event: str, booking: Booking) -> None:
        response = self.http_client.post(
            self.url, json=self.build_payload(event, booking), timeout=self.timeout_sec
        )
        response.raise_for_status()


def default_sender() -> NotificationSender:
    url = settings.booking.notification_webhook_url
    return WebhookSender(url) if url else LoggingSender()


class NotificationDispatcher:
    """Submits notifications to a worker pool and never raises to the caller."""

    def __init__(
        self,
        sender: Optional[NotificationSender] = None,
        workers: Optional[int] = None,
    ) -> None:
        self._sender = sender or default_sender()
        self._executor = ThreadPoolExecutor(
            max_workers=workers or settings.booking.notification_workers,
            thread_name_prefix="notify",
        )

    def notify_booking_created(self, booking: Booking) -> Optional[Future]:
        return self._submit(BOOKING_CREATED, booking)

    def notify_booking_cancelled(self, booking: Booking) -> Optional[Future]:
        return self._submit(BOOKING_CANCELLED, booking)

    def _submit(self, event: str, booking: Booking) -> Optional[Future]:
        try:
            return self._executor.submit(self._deliver, event, booking)
        except RuntimeError:
            logger.exception("Notification %s for %s dropped: dispatcher shut down",
                             event, booking.reference)
            return None

    def _deliver(self, event: str, booking: Booking) -> None:
        try:
            self._sender.send(event, booking)
        except Exception:
            logger.exception("Notification %s for %s failed", event, booking.reference)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
