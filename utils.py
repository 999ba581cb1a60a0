"""Utility functions for the enrichment service."""

import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional


def get_current_timestamp() -> str:
    """Get current UTC timestamp in ISO8601 format."""
    return format_timestamp(datetime.now(timezone.utc))


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as a fixed-width UTC ISO8601 string.

    Microseconds are always emitted so that stored timestamps compare
    lexically in the same order as chronologically.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO8601 timestamp into an aware UTC datetime."""
    moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def next_timestamp(previous: Optional[str] = None) -> str:
    """Timestamp for a write that must sort strictly after ``previous``."""
    now = datetime.now(timezone.utc)
    if previous:
        floor = parse_timestamp(previous) + timedelta(microseconds=1)
        if now < floor:
            now = floor
    return format_timestamp(now)


def timestamp_ago(**delta) -> str:
    """Timestamp for now minus the given timedelta arguments."""
    return format_timestamp(datetime.now(timezone.utc) - timedelta(**delta))


def calculate_elapsed_seconds(start_time: str, end_time: Optional[str] = None) -> float:
    """Calculate elapsed seconds between timestamps."""
    start = parse_timestamp(start_time)
    end = parse_timestamp(end_time) if end_time else datetime.now(timezone.utc)
    return (end - start).total_seconds()


def generate_job_id() -> str:
    """Generate a unique job identifier."""
    return uuid.uuid4().hex


def stable_digest(*parts: str) -> str:
    """Short deterministic digest of the given parts."""
    content = "|".join(parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]
