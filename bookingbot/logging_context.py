"""Session key logging context for tracing one end-user's dialogue.

Every inbound event is processed under the key ``"{tenant_id}:{user_id}"``.
The key is held in a ContextVar so it follows the worker thread handling
the event, and the filter below copies it onto each log record.

Usage:
    from bookingbot.logging_context import get_session_logger, session_key_scope

    logger = get_session_logger(__name__)
    with session_key_scope("salon-1:U123"):
        logger.info("Processing event")  # record.session_key == "salon-1:U123"
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

_session_key: ContextVar[str] = ContextVar("session_key", default="NO_SESSION")


def make_session_key(tenant_id: str, user_id: str) -> str:
    return f"{tenant_id}:{user_id}"


def set_session_key(key: str) -> None:
    """Set the session key for the current context."""
    _session_key.set(key)


def get_session_key() -> str:
    """Retrieve the current session key."""
    return _session_key.get()


@contextmanager
def session_key_scope(key: str) -> Iterator[None]:
    """Bind the session key for the duration of a block, then restore it."""
    token = _session_key.set(key)
    try:
        yield
    finally:
        _session_key.reset(token)


class SessionKeyFilter(logging.Filter):
    """Injects session_key into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_key = _session_key.get()  # type: ignore[attr-defined]
        return True


def get_session_logger(name: str) -> logging.Logger:
    """Return a logger with the SessionKeyFilter attached.

    The filter adds ``session_key`` to each record so formatters can
    include ``%(session_key)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, SessionKeyFilter) for f in logger.filters):
        logger.addFilter(SessionKeyFilter())
    return logger
