import os
from dataclasses import dataclass
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Database settings
    data_file: str = os.getenv("LIBRARY_DB_FILE", "circulation.db")
    db_busy_timeout: float = float(os.getenv("DB_BUSY_TIMEOUT", "5"))

    # Circulation rules
    grace_period_days: int = int(os.getenv("FINE_GRACE_DAYS", "30"))
    daily_fine_rate: Decimal = Decimal(os.getenv("FINE_DAILY_RATE", "0.50"))
    high_risk_damaged_threshold: int = int(os.getenv("HIGH_RISK_DAMAGED_THRESHOLD", "2"))
    active_member_window_days: int = int(os.getenv("ACTIVE_MEMBER_WINDOW_DAYS", "60"))

    # Seconds an issue/return waits for a per-book or per-issue lock before failing
    lock_timeout: float = float(os.getenv("LOCK_TIMEOUT", "5"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Circulation")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    debug: bool = _env_flag("DEBUG")
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Feature flags
    enable_return_notifications: bool = _env_flag("ENABLE_RETURN_NOTIFICATIONS", "True")


settings = Settings()
