"""Tests for configuration settings."""
from zoneinfo import ZoneInfo

import pytest

from lexledger.config import (
    ClockSettings,
    EntitlementSettings,
    PREMIUM_PLAN_DAYS,
    ResourceSettings,
    SecuritySettings,
    Settings,
    settings,
)


def test_base_directories_exist():
    """Test that all required directories exist."""
    from lexledger.config import DATA_DIR, GUEST_STORAGE_DIR

    assert DATA_DIR.exists()
    assert GUEST_STORAGE_DIR.exists()


def test_settings_defaults():
    """Test default settings values."""
    assert settings.resources.daily_energy == 20
    assert settings.resources.daily_reveal_tokens == 5
    assert settings.resources.premium_daily_energy == 100
    assert settings.resources.premium_daily_reveal_tokens == 20
    assert settings.entitlement.trial_duration_days == 3
    assert settings.security.max_failed_login_attempts == 5
    assert settings.security.lock_duration_minutes == 60
    assert settings.security.max_registrations_per_device == 3
    assert settings.clock.tzinfo == ZoneInfo("UTC")


def test_premium_plans():
    """Test premium plan durations."""
    assert PREMIUM_PLAN_DAYS == {"monthly": 30, "quarterly": 90, "semiAnnual": 180}
    assert settings.entitlement.plan_days == PREMIUM_PLAN_DAYS


def test_settings_validation():
    """Test settings validation."""
    Settings().validate()

    with pytest.raises(ValueError):
        Settings(resources=ResourceSettings(daily_energy=-1)).validate()

    with pytest.raises(ValueError):
        Settings(resources=ResourceSettings(daily_energy=50, premium_daily_energy=10)).validate()

    with pytest.raises(ValueError):
        Settings(entitlement=EntitlementSettings(trial_duration_days=0)).validate()

    with pytest.raises(ValueError):
        Settings(security=SecuritySettings(lock_duration_minutes=0)).validate()

    with pytest.raises(ValueError):
        Settings(clock=ClockSettings(timezone="Nowhere/Atlantis")).validate()
