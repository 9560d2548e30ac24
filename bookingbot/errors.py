"""
Error taxonomy for the booking core.

Every error here is scoped to a single session or request. The dialogue
engine catches them per event and turns them into a user-facing reply.
"""

from typing import Optional


class BookingBotError(Exception):
    """Base class for recoverable booking core errors."""


class InvalidInput(BookingBotError):
    """Input does not match what the current dialogue state accepts.

    ``user_message`` optionally replaces the generic "didn't understand" reply.
    """

    def __init__(self, message: str, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message


class SlotUnavailable(BookingBotError):
    """The requested slot failed the availability recheck at commit time."""


class SessionExpired(BookingBotError):
    """A stored session outlived its TTL. Treated exactly like an absent session."""


class SessionBusy(BookingBotError):
    """Another event for the same (tenant, user) is still being processed."""

    def __init__(self, key: str, timeout: Optional[float]) -> None:
        super().__init__(f"Lock for {key!r} not acquired within {timeout}s")
        self.key = key
        self.timeout = timeout


class UpstreamUnavailable(BookingBotError):
    """A catalog, staff, ledger or shop backend failed."""


class ConfigurationInvalid(BookingBotError):
    """Tenant data does not allow the dialogue to proceed (no services, no staff)."""


class InsufficientStock(BookingBotError):
    """A product order asked for more units than remain in stock."""
