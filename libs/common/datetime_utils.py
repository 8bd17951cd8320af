"""Aware-UTC timestamps for model defaults and idle-time windows."""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_days_ago(days: int, *, now: datetime | None = None) -> datetime:
    """Cutoff ``days`` before ``now`` (defaults to the current UTC time)."""
    return (now or utc_now()) - timedelta(days=days)
