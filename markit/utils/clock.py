import os
import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

if os.getenv("ENVIRONMENT") == "development":
    load_dotenv()

TIMEZONE = ZoneInfo(os.getenv("MARKIT_TIMEZONE", "UTC"))


def now_ms() -> int:
    return int(time.time() * 1000)


def to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def iso_timestamp(ms: int) -> str:
    """UTC ISO-8601 with millisecond precision, e.g. 2024-05-01T09:30:00.000Z"""
    return to_datetime(ms).strftime("%Y-%m-%dT%H:%M:%S.") + f"{ms % 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def log_date(ms: int) -> str:
    """Calendar date (YYYY-MM-DD) a daily log entry is filed under."""
    return to_datetime(ms).astimezone(TIMEZONE).strftime("%Y-%m-%d")
