"""Tests for configuration loading and validation."""

from dataclasses import replace

import pytest

from bookingbot.config import (
    AppConfig,
    BookingConfig,
    ChannelConfig,
    ConversationConfig,
    SchedulingConfig,
    StoreConfig,
    _validate_config,
)


class TestConfigValidation:
    def test_default_config_passes_validation(self):
        config = AppConfig()
        _validate_config(config)  # should not raise

    def test_zero_session_ttl(self):
        config = replace(AppConfig(), conversation=ConversationConfig(session_ttl_minutes=0))
        with pytest.raises(ValueError, match="SESSION_TTL_MINUTES"):
            _validate_config(config)

    def test_non_positive_lock_timeout(self):
        config = replace(
            AppConfig(), conversation=ConversationConfig(session_lock_timeout_sec=0.0)
        )
        with pytest.raises(ValueError, match="SESSION_LOCK_TIMEOUT"):
            _validate_config(config)

    def test_non_positive_lock_lease(self):
        config = replace(
            AppConfig(), conversation=ConversationConfig(session_lock_lease_sec=-1.0)
        )
        with pytest.raises(ValueError, match="SESSION_LOCK_LEASE"):
            _validate_config(config)

    def test_menu_too_small_for_navigation(self):
        config = replace(AppConfig(), conversation=ConversationConfig(max_menu_options=1))
        with pytest.raises(ValueError, match="MAX_MENU_OPTIONS"):
            _validate_config(config)

    def test_malformed_open_time(self):
        config = replace(AppConfig(), scheduling=SchedulingConfig(default_open_time="9am"))
        with pytest.raises(ValueError, match="DEFAULT_OPEN_TIME must be HH:MM"):
            _validate_config(config)

    def test_open_after_close(self):
        scheduling = SchedulingConfig.__new__(SchedulingConfig)
        object.__setattr__(scheduling, "default_open_time", "19:00")
        object.__setattr__(scheduling, "default_close_time", "09:00")
        object.__setattr__(scheduling, "default_slot_minutes", 30)
        object.__setattr__(scheduling, "default_max_advance_days", 30)
        object.__setattr__(scheduling, "min_lead_minutes", 30)
        object.__setattr__(scheduling, "default_timezone", "UTC")

        config = AppConfig.__new__(AppConfig)
        object.__setattr__(config, "conversation", ConversationConfig())
        object.__setattr__(config, "scheduling", scheduling)
        object.__setattr__(config, "booking", BookingConfig())
        object.__setattr__(config, "store", StoreConfig())
        object.__setattr__(config, "channel", ChannelConfig())
        object.__setattr__(config, "log_level", "INFO")
        object.__setattr__(config, "app_name", "test")

        with pytest.raises(ValueError, match="DEFAULT_OPEN_TIME must be before"):
            _validate_config(config)

    def test_slot_minutes_out_of_range(self):
        config = replace(AppConfig(), scheduling=SchedulingConfig(default_slot_minutes=3))
        with pytest.raises(ValueError, match="DEFAULT_SLOT_MINUTES must be between 5 and 240"):
            _validate_config(config)

    def test_negative_lead_time(self):
        config = replace(AppConfig(), scheduling=SchedulingConfig(min_lead_minutes=-1))
        with pytest.raises(ValueError, match="MIN_LEAD_MINUTES"):
            _validate_config(config)

    def test_unknown_assignment_policy(self):
        config = replace(AppConfig(), booking=BookingConfig(staff_assignment_policy="random"))
        with pytest.raises(ValueError, match="STAFF_ASSIGNMENT_POLICY must be one of"):
            _validate_config(config)

    def test_unknown_session_backend(self):
        config = replace(AppConfig(), store=StoreConfig(session_backend="memcached"))
        with pytest.raises(ValueError, match="SESSION_BACKEND must be one of"):
            _validate_config(config)

    def test_zero_event_workers(self):
        config = replace(AppConfig(), channel=ChannelConfig(event_workers=0))
        with pytest.raises(ValueError, match="EVENT_WORKERS"):
            _validate_config(config)

    def test_safe_int_parsing(self):
        from bookingbot.config import _safe_int

        assert _safe_int("NONEXISTENT_VAR_12345", "42") == 42

    def test_safe_int_rejects_garbage(self, monkeypatch):
        from bookingbot.config import _safe_int

        monkeypatch.setenv("BOOKINGBOT_TEST_INT", "thirty")
        with pytest.raises(ValueError, match="BOOKINGBOT_TEST_INT"):
            _safe_int("BOOKINGBOT_TEST_INT", "30")

    def test_safe_float_parsing(self):
        from bookingbot.config import _safe_float

        assert _safe_float("NONEXISTENT_VAR_12345", "3.14") == pytest.approx(3.14)
