import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(f"Invalid integer for {name}: {raw!r}") from None


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(f"Invalid float for {name}: {raw!r}") from None


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./service_scheduler.db")

# Connection pool (ignored for SQLite)
DB_POOL_SIZE = _env_int("DB_POOL_SIZE", "20")
DB_MAX_OVERFLOW = _env_int("DB_MAX_OVERFLOW", "30")
DB_POOL_TIMEOUT = _env_int("DB_POOL_TIMEOUT", "30")
DB_POOL_RECYCLE = _env_int("DB_POOL_RECYCLE", "300")

# Booking transactions rely on this; SQLite gets BEGIN IMMEDIATE instead
DB_ISOLATION_LEVEL = os.getenv("DB_ISOLATION_LEVEL", "SERIALIZABLE")

DB_LOG_SLOW_QUERIES = _env_bool("DB_LOG_SLOW_QUERIES", "true")
DB_SLOW_QUERY_THRESHOLD = _env_float("DB_SLOW_QUERY_THRESHOLD", "1.0")

# Scheduling
BOOKING_TIMEOUT_SECONDS = _env_float("BOOKING_TIMEOUT_SECONDS", "10")
DEFAULT_PROVIDER_TIMEZONE = os.getenv("DEFAULT_PROVIDER_TIMEZONE", "UTC")
APPOINTMENT_NUMBER_PREFIX = os.getenv("APPOINTMENT_NUMBER_PREFIX", "SA")
MAX_SLOTS_PER_REQUEST = _env_int("MAX_SLOTS_PER_REQUEST", "500")

# Event hand-off to the notification worker
APPOINTMENT_EVENTS_ENABLED = _env_bool("APPOINTMENT_EVENTS_ENABLED", "true")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

if BOOKING_TIMEOUT_SECONDS <= 0:
    raise ValueError(f"BOOKING_TIMEOUT_SECONDS must be > 0, got {BOOKING_TIMEOUT_SECONDS}")
if MAX_SLOTS_PER_REQUEST < 1:
    raise ValueError(f"MAX_SLOTS_PER_REQUEST must be >= 1, got {MAX_SLOTS_PER_REQUEST}")
