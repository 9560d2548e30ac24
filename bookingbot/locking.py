"""
Keyed mutexes shared by the session store and the booking ledger.

Each key gets its own ``threading.Lock``, created on first use and dropped
once no caller holds or waits on it. ``hold_many`` acquires several keys
in sorted order so two callers locking overlapping key sets cannot deadlock.

RedisKeyedLock offers the same ``hold`` across processes for deployments
where several workers share a Redis session store.
"""

import logging
import threading
from contextlib import contextmanager
from typing import ContextManager, Iterable, Iterator, Optional, Protocol

import redis

from bookingbot.config import settings
from bookingbot.errors import SessionBusy, UpstreamUnavailable

logger = logging.getLogger(__name__)


class SessionLock(Protocol):
    def hold(self, key: str, timeout: Optional[float] = None) -> ContextManager[None]: ...


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.refs = 0


class KeyedLock:
    """A family of mutexes addressed by string key."""

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._guard = threading.Lock()

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.refs += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.refs -= 1
            if entry.refs == 0:
                self._entries.pop(key, None)

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the lock for ``key``.

        Raises:
            SessionBusy: If ``timeout`` elapses before the lock is acquired.
        """
        entry = self._checkout(key)
        acquired = entry.lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            self._checkin(key, entry)
            logger.warning("Timed out waiting for lock %s after %ss", key, timeout)
            raise SessionBusy(key, timeout)
        try:
            yield
        finally:
            entry.lock.release()
            self._checkin(key, entry)

    @contextmanager
    def hold_many(self, keys: Iterable[str], timeout: Optional[float] = None) -> Iterator[None]:
        """Hold every lock in ``keys``, acquired in sorted order."""
        ordered = sorted(set(keys))
        held: list[tuple[str, _Entry]] = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                if not entry.lock.acquire(timeout=-1 if timeout is None else timeout):
                    self._checkin(key, entry)
                    raise SessionBusy(key, timeout)
                held.append((key, entry))
            yield
        finally:
            for key, entry in reversed(held):
                entry.lock.release()
                self._checkin(key, entry)

    def active_keys(self) -> list[str]:
        """Keys currently held or awaited."""
        with self._guard:
            return sorted(self._entries)


class RedisKeyedLock:
    """Per-key locks under ``{prefix}:lock:{key}``, held through redis-py ``Lock``.

    Every lock carries a lease, so a worker that dies while holding one
    blocks its user for at most ``lease_sec``.
    """

    def __init__(self, client: "redis.Redis", prefix: str, lease_sec: Optional[float] = None) -> None:
        self._client = client
        self._prefix = prefix
        self._lease = lease_sec or settings.conversation.session_lock_lease_sec

    def name(self, key: str) -> str:
        return f"{self._prefix}:lock:{key}"

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the Redis lock for ``key``.

        Raises:
            SessionBusy: If ``timeout`` elapses before the lock is acquired.
            UpstreamUnavailable: If Redis cannot be reached.
        """
        lock = self._client.lock(self.name(key), timeout=self._lease, blocking_timeout=timeout)
        try:
            acquired = lock.acquire()
        except redis.RedisError as exc:
            raise UpstreamUnavailable(f"Session lock failed: {exc}") from exc
        if not acquired:
            logger.warning("Timed out waiting for lock %s after %ss", key, timeout)
            raise SessionBusy(key, timeout)
        try:
            yield
        finally:
            try:
                lock.release()
            except redis.RedisError as exc:
                # The lease ran out or Redis went away; the lock expires on its own.
                logger.warning("Could not release lock %s: %s", key, exc)
