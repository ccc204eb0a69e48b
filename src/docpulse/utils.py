"""Small shared helpers for time buckets and identities."""

import secrets
import time
from datetime import date, datetime, timedelta, timezone
from typing import Optional


def now_ts() -> float:
    """Current wall-clock time as epoch seconds."""
    return time.time()


def normalize_email(email: Optional[str]) -> str:
    """Trim and lower-case an email for case-insensitive comparison."""
    return (email or "").strip().lower()


def generate_api_key() -> str:
    """Generate a new random account API key."""
    return secrets.token_hex(32)


def utc_date(ts: float) -> date:
    """Calendar date (UTC) a timestamp falls on."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).date()


def day_start_ts(day: date) -> float:
    """Epoch seconds of 00:00 UTC on the given date."""
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp()


def live_boundary(now: float, retention_days: int) -> date:
    """First date still inside the live window.

    Heartbeats dated before this are eligible for rollup and reported from
    daily totals; heartbeats on or after it are read raw.
    """
    return utc_date(now) - timedelta(days=retention_days)


def format_minutes(minutes: int) -> str:
    """Render a minute count as ``45m`` or ``2h 05m``."""
    if minutes < 60:
        return f"{minutes}m"
    hours, rest = divmod(minutes, 60)
    return f"{hours}h {rest:02d}m"
