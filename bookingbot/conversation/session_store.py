"""
Conversation state store.

Sessions are keyed by (tenant_id, user_id) and expire after a period of
inactivity. Reading an expired session returns None, exactly as if it had
never existed; the sweeper only reclaims memory.

Two backends share the same contract:
- InMemorySessionStore for single-process deployments and tests
- RedisSessionStore (redis-py) when several workers share sessions
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

import redis

from bookingbot.config import StoreConfig, settings
from bookingbot.errors import UpstreamUnavailable
from bookingbot.locking import RedisKeyedLock
from bookingbot.schemas.session_schema import Session

logger = logging.getLogger(__name__)


def default_ttl() -> timedelta:
    return timedelta(minutes=settings.conversation.session_ttl_minutes)


class SessionStore(Protocol):
    def get(self, tenant_id: str, user_id: str) -> Optional[Session]: ...

    def put(self, session: Session, ttl: Optional[timedelta] = None) -> None: ...

    def clear(self, tenant_id: str, user_id: str) -> None: ...

    def sweep(self) -> int: ...


class InMemorySessionStore:
    """Sessions serialized to JSON in a dict, with per-entry expiry."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._entries: dict[tuple[str, str], tuple[str, datetime]] = {}
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get(self, tenant_id: str, user_id: str) -> Optional[Session]:
        key = (tenant_id, user_id)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            payload, expires_at = entry
            if expires_at <= now:
                del self._entries[key]
                logger.debug("Session %s:%s expired at %s", tenant_id, user_id, expires_at)
                return None
        return Session.model_validate_json(payload)

    def put(self, session: Session, ttl: Optional[timedelta] = None) -> None:
        expires_at = self._clock() + (ttl or default_ttl())
        with self._lock:
            self._entries[(session.tenant_id, session.user_id)] = (
                session.model_dump_json(), expires_at,
            )

    def clear(self, tenant_id: str, user_id: str) -> None:
        with self._lock:
            self._entries.pop((tenant_id, user_id), None)

    def sweep(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.info("Swept %d expired sessions", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisSessionStore:
    """Sessions as JSON strings under ``{prefix}:{tenant}:{user}`` with native expiry."""

    def __init__(self, client: "redis.Redis", key_prefix: Optional[str] = None) -> None:
        self._client = client
        self._prefix = key_prefix or settings.store.session_key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: Optional[str] = None) -> "RedisSessionStore":
        pool = redis.ConnectionPool.from_url(
            url,
            max_connections=50,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
            decode_responses=True,
        )
        logger.info("Creating Redis session store (prefix=%s)", key_prefix or settings.store.session_key_prefix)
        return cls(redis.Redis(connection_pool=pool), key_prefix)

    def keyed_lock(self, lease_sec: Optional[float] = None) -> RedisKeyedLock:
        """Per-user locks on the same server, so workers in other processes serialize too."""
        return RedisKeyedLock(self._client, self._prefix, lease_sec)

    def _key(self, tenant_id: str, user_id: str) -> str:
        return f"{self._prefix}:{tenant_id}:{user_id}"

    def get(self, tenant_id: str, user_id: str) -> Optional[Session]:
        try:
            payload = self._client.get(self._key(tenant_id, user_id))
        except redis.RedisError as exc:
            raise UpstreamUnavailable(f"Session read failed: {exc}") from exc
        if payload is None:
            return None
        return Session.model_validate_json(payload)

    def put(self, session: Session, ttl: Optional[timedelta] = None) -> None:
        seconds = int((ttl or default_ttl()).total_seconds())
        try:
            self._client.set(
                self._key(session.tenant_id, session.user_id),
                session.model_dump_json(),
                ex=max(seconds, 1),
            )
        except redis.RedisError as exc:
            raise UpstreamUnavailable(f"Session write failed: {exc}") from exc

    def clear(self, tenant_id: str, user_id: str) -> None:
        try:
            self._client.delete(self._key(tenant_id, user_id))
        except redis.RedisError as exc:
            raise UpstreamUnavailable(f"Session delete failed: {exc}") from exc

    def sweep(self) -> int:
        """Redis expires keys itself."""
        return 0


def build_session_store(
    config: Optional[StoreConfig] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> SessionStore:
    config = config or settings.store
    if config.session_backend == "redis":
        return RedisSessionStore.from_url(config.redis_url, config.session_key_prefix)
    return InMemorySessionStore(clock=clock)


class SessionSweeper(threading.Thread):
    """Background thread calling ``store.sweep()`` at a fixed interval."""

    def __init__(self, store: SessionStore, interval_sec: Optional[float] = None) -> None:
        super().__init__(name="session-sweeper", daemon=True)
        self._store = store
        self._interval = interval_sec or settings.conversation.sweep_interval_sec
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self._store.sweep()
            except Exception:
                logger.exception("Session sweep failed")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        self.join(timeout)
