"""Configuration settings for the ledger."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


# Define data directories from environment variables
DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))
GUEST_STORAGE_DIR = Path(os.getenv("GUEST_STORAGE_DIR", str(DATA_DIR / "guest")))

# Premium plan durations in days
PREMIUM_PLAN_DAYS = {
    "monthly": 30,
    "quarterly": 90,
    "semiAnnual": 180,
}


def ensure_directories() -> None:
    """Ensure all required directories exist."""
    directories = [
        DATA_DIR,
        GUEST_STORAGE_DIR,
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///lexledger.db")
    echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"
    timeout_seconds: float = float(os.getenv("DATABASE_TIMEOUT", "5"))


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = os.getenv("LOG_FILE", None)
    max_bytes: int = int(os.getenv("LOG_MAX_BYTES", str(10 * 1024 * 1024)))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "5"))


@dataclass
class ResourceSettings:
    """Daily allotments for the two resource kinds."""
    daily_energy: int = int(os.getenv("DAILY_ENERGY_ALLOCATION", "20"))
    daily_reveal_tokens: int = int(os.getenv("DAILY_REVEAL_TOKENS", "5"))
    premium_daily_energy: int = int(os.getenv("PREMIUM_DAILY_ENERGY_ALLOCATION", "100"))
    premium_daily_reveal_tokens: int = int(os.getenv("PREMIUM_DAILY_REVEAL_TOKENS", "20"))


@dataclass
class EntitlementSettings:
    """Premium and trial window settings."""
    trial_duration_days: int = int(os.getenv("PREMIUM_TRIAL_DURATION_DAYS", "3"))
    plan_days: dict[str, int] = field(default_factory=lambda: dict(PREMIUM_PLAN_DAYS))


@dataclass
class SecuritySettings:
    """Device throttle settings."""
    max_failed_login_attempts: int = int(os.getenv("MAX_FAILED_LOGIN_ATTEMPTS", "5"))
    lock_duration_minutes: int = int(os.getenv("LOGIN_LOCK_DURATION_MINUTES", "60"))
    max_registrations_per_device: int = int(os.getenv("MAX_REGISTRATIONS_PER_DEVICE", "3"))


@dataclass
class ClockSettings:
    """Clock oracle settings."""
    timeout_seconds: float = float(os.getenv("CLOCK_TIMEOUT", "3"))
    timezone: str = os.getenv("DAY_TIMEZONE", "UTC")

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass
class TransactionSettings:
    """Optimistic transaction settings."""
    max_retries: int = int(os.getenv("TRANSACTION_MAX_RETRIES", "5"))
    timeout_seconds: float = float(os.getenv("TRANSACTION_TIMEOUT", "10"))


@dataclass
class GuestSettings:
    """Device-local guest storage settings."""
    storage_dir: Path = GUEST_STORAGE_DIR
    storage_key: str = os.getenv("GUEST_STORAGE_KEY", "lexledger_guest_state")


@dataclass
class MonitoringSettings:
    """Prometheus exporter settings."""
    enabled: bool = os.getenv("MONITORING_ENABLED", "false").lower() == "true"
    port: int = int(os.getenv("MONITORING_PORT", "9090"))


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_resource_settings() -> ResourceSettings:
    """Get resource settings."""
    return ResourceSettings()


def get_entitlement_settings() -> EntitlementSettings:
    """Get entitlement settings."""
    return EntitlementSettings()


def get_security_settings() -> SecuritySettings:
    """Get security settings."""
    return SecuritySettings()


def get_clock_settings() -> ClockSettings:
    """Get clock settings."""
    return ClockSettings()


def get_transaction_settings() -> TransactionSettings:
    """Get transaction settings."""
    return TransactionSettings()


def get_guest_settings() -> GuestSettings:
    """Get guest settings."""
    return GuestSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    resources: ResourceSettings = field(default_factory=get_resource_settings)
    entitlement: EntitlementSettings = field(default_factory=get_entitlement_settings)
    security: SecuritySettings = field(default_factory=get_security_settings)
    clock: ClockSettings = field(default_factory=get_clock_settings)
    transactions: TransactionSettings = field(default_factory=get_transaction_settings)
    guest: GuestSettings = field(default_factory=get_guest_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        if self.resources.daily_energy < 0 or self.resources.daily_reveal_tokens < 0:
            raise ValueError("Daily allotments cannot be negative")

        if self.resources.premium_daily_energy < self.resources.daily_energy or \
           self.resources.premium_daily_reveal_tokens < self.resources.daily_reveal_tokens:
            raise ValueError("Premium allotments cannot be lower than the regular allotments")

        if self.entitlement.trial_duration_days < 1:
            raise ValueError("PREMIUM_TRIAL_DURATION_DAYS must be positive")

        if self.security.max_failed_login_attempts < 1:
            raise ValueError("MAX_FAILED_LOGIN_ATTEMPTS must be positive")

        if self.security.lock_duration_minutes < 1:
            raise ValueError("LOGIN_LOCK_DURATION_MINUTES must be positive")

        if self.transactions.max_retries < 1:
            raise ValueError("TRANSACTION_MAX_RETRIES must be positive")

        try:
            self.clock.tzinfo
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown DAY_TIMEZONE: {self.clock.timezone}") from e


# Create global settings instance
settings = Settings()
settings.validate()
