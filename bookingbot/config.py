"""
Centralized configuration with environment variable overrides.

Conversation timeouts, tenant scheduling defaults, commit policy and
storage backends are configurable here. Per-tenant values (business
hours, auto-confirm, closed days) live on TenantSettings and fall back
to the scheduling defaults below.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

STAFF_ASSIGNMENT_POLICIES = ("first_available", "least_loaded")
SESSION_BACKENDS = ("memory", "redis")


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _is_clock_time(value: str) -> bool:
    try:
        datetime.strptime(value.strip(), "%H:%M")
        return True
    except ValueError:
        return False


@dataclass(frozen=True)
class ConversationConfig:
    """Session lifetime and dialogue presentation limits."""

    session_ttl_minutes: int = _safe_int("SESSION_TTL_MINUTES", "30")
    session_lock_timeout_sec: float = _safe_float("SESSION_LOCK_TIMEOUT", "5.0")
    # Redis lock lease; a crashed holder's lock frees itself after this.
    session_lock_lease_sec: float = _safe_float("SESSION_LOCK_LEASE", "30.0")
    max_note_length: int = _safe_int("MAX_NOTE_LENGTH", "500")
    max_menu_options: int = _safe_int("MAX_MENU_OPTIONS", "24")
    date_menu_size: int = _safe_int("DATE_MENU_SIZE", "10")
    sweep_interval_sec: int = _safe_int("SWEEP_INTERVAL_SECONDS", "300")


@dataclass(frozen=True)
class SchedulingConfig:
    """Defaults applied to tenants that do not override business hours."""

    default_open_time: str = os.getenv("DEFAULT_OPEN_TIME", "09:00")
    default_close_time: str = os.getenv("DEFAULT_CLOSE_TIME", "18:00")
    default_slot_minutes: int = _safe_int("DEFAULT_SLOT_MINUTES", "30")
    default_max_advance_days: int = _safe_int("DEFAULT_MAX_ADVANCE_DAYS", "30")
    min_lead_minutes: int = _safe_int("MIN_LEAD_MINUTES", "30")
    default_timezone: str = os.getenv("DEFAULT_TIMEZONE", "Asia/Taipei")


@dataclass(frozen=True)
class BookingConfig:
    """Commit policy and notification delivery."""

    staff_assignment_policy: str = os.getenv("STAFF_ASSIGNMENT_POLICY", "first_available")
    notification_workers: int = _safe_int("NOTIFICATION_WORKERS", "2")
    notification_webhook_url: Optional[str] = os.getenv("NOTIFICATION_WEBHOOK_URL") or None
    booking_source: str = os.getenv("BOOKING_SOURCE", "LINE")


@dataclass(frozen=True)
class StoreConfig:
    """Session storage backend selection."""

    session_backend: str = os.getenv("SESSION_BACKEND", "memory")
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    session_key_prefix: str = os.getenv("SESSION_KEY_PREFIX", "line:conversation")


@dataclass(frozen=True)
class ChannelConfig:
    """Inbound channel worker pool and webhook verification."""

    event_workers: int = _safe_int("EVENT_WORKERS", "8")
    channel_secret: Optional[str] = os.getenv("CHANNEL_SECRET") or None


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    conversation: ConversationConfig = field(default_factory=ConversationConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    booking: BookingConfig = field(default_factory=BookingConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    channel: ChannelConfig = field(default_factory=ChannelConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    app_name: str = os.getenv("APP_NAME", "salon-booking-bot")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    conv = config.conversation
    if conv.session_ttl_minutes < 1:
        raise ValueError(
            f"SESSION_TTL_MINUTES must be >= 1, got {conv.session_ttl_minutes}"
        )
    if conv.session_lock_timeout_sec <= 0:
        raise ValueError(
            f"SESSION_LOCK_TIMEOUT must be > 0, got {conv.session_lock_timeout_sec}"
        )
    if conv.session_lock_lease_sec <= 0:
        raise ValueError(
            f"SESSION_LOCK_LEASE must be > 0, got {conv.session_lock_lease_sec}"
        )
    if conv.max_note_length < 1:
        raise ValueError(f"MAX_NOTE_LENGTH must be >= 1, got {conv.max_note_length}")
    if conv.max_menu_options < 2:
        raise ValueError(f"MAX_MENU_OPTIONS must be >= 2, got {conv.max_menu_options}")
    if conv.date_menu_size < 1:
        raise ValueError(f"DATE_MENU_SIZE must be >= 1, got {conv.date_menu_size}")
    if conv.sweep_interval_sec < 1:
        raise ValueError(
            f"SWEEP_INTERVAL_SECONDS must be >= 1, got {conv.sweep_interval_sec}"
        )

    sched = config.scheduling
    for env_name, value in [
        ("DEFAULT_OPEN_TIME", sched.default_open_time),
        ("DEFAULT_CLOSE_TIME", sched.default_close_time),
    ]:
        if not _is_clock_time(value):
            raise ValueError(f"{env_name} must be HH:MM, got {value!r}")
    if sched.default_open_time >= sched.default_close_time:
        raise ValueError(
            "DEFAULT_OPEN_TIME must be before DEFAULT_CLOSE_TIME, "
            f"got {sched.default_open_time} >= {sched.default_close_time}"
        )
    if not 5 <= sched.default_slot_minutes <= 240:
        raise ValueError(
            f"DEFAULT_SLOT_MINUTES must be between 5 and 240, got {sched.default_slot_minutes}"
        )
    if sched.default_max_advance_days < 1:
        raise ValueError(
            f"DEFAULT_MAX_ADVANCE_DAYS must be >= 1, got {sched.default_max_advance_days}"
        )
    if sched.min_lead_minutes < 0:
        raise ValueError(f"MIN_LEAD_MINUTES must be >= 0, got {sched.min_lead_minutes}")

    if config.booking.staff_assignment_policy not in STAFF_ASSIGNMENT_POLICIES:
        raise ValueError(
            f"STAFF_ASSIGNMENT_POLICY must be one of {STAFF_ASSIGNMENT_POLICIES}, "
            f"got {config.booking.staff_assignment_policy!r}"
        )
    if config.booking.notification_workers < 1:
        raise ValueError(
            f"NOTIFICATION_WORKERS must be >= 1, got {config.booking.notification_workers}"
        )
    if config.store.session_backend not in SESSION_BACKENDS:
        raise ValueError(
            f"SESSION_BACKEND must be one of {SESSION_BACKENDS}, "
            f"got {config.store.session_backend!r}"
        )
    if config.channel.event_workers < 1:
        raise ValueError(f"EVENT_WORKERS must be >= 1, got {config.channel.event_workers}")


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("Configuration loaded for '%s'", config.app_name)
    return config


# Singleton instance
settings = load_config()
