"""Organization-local day bucketing.

Every aggregation path (the canonical unfiltered rollup and the filtered
dashboard path) buckets through day_key() so their day totals agree exactly.
Day keys are computed in the organization's configured zone, never the
process's local zone, so DST offsets (-5h vs -4h for America/New_York) are
handled by zoneinfo.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable, Iterator, Optional, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .contract import DEFAULT_ORG_TIMEZONE


logger = logging.getLogger(__name__)

T = TypeVar("T")


def resolve_timezone(tz_name: Optional[str]) -> ZoneInfo:
    """Resolve a zone name, falling back to the default org zone."""
    if not tz_name:
        return ZoneInfo(DEFAULT_ORG_TIMEZONE)
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Invalid organization timezone '%s', using %s", tz_name, DEFAULT_ORG_TIMEZONE
        )
        return ZoneInfo(DEFAULT_ORG_TIMEZONE)


def parse_instant(value: object) -> Optional[datetime]:
    """Parse a datetime or ISO-8601 string into an aware UTC-based instant.

    Naive values are treated as UTC. Returns None for anything unparseable.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        instant = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            instant = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant


def day_key(value: object, tz: str | ZoneInfo | None = DEFAULT_ORG_TIMEZONE) -> Optional[str]:
    """Return the YYYY-MM-DD day of an instant in the organization timezone.

    Args:
        value: datetime or ISO-8601 string
        tz: Zone name or ZoneInfo (defaults to America/New_York)

    Returns:
        Day key, or None when the value cannot be parsed
    """
    instant = parse_instant(value)
    if instant is None:
        return None

    zone = tz if isinstance(tz, ZoneInfo) else resolve_timezone(tz)
    return instant.astimezone(zone).strftime("%Y-%m-%d")


def bucket_by_day(
    items: Iterable[T],
    key_fn: Callable[[T], object],
    tz: str | ZoneInfo | None = DEFAULT_ORG_TIMEZONE,
) -> dict[str, list[T]]:
    """Group items by org-local day key, keeping arrival order per bucket.

    Items whose date cannot be parsed are dropped from every bucket.
    """
    zone = tz if isinstance(tz, ZoneInfo) else resolve_timezone(tz)
    buckets: dict[str, list[T]] = {}
    dropped = 0

    for item in items:
        key = day_key(key_fn(item), zone)
        if key is None:
            dropped += 1
            continue
        buckets.setdefault(key, []).append(item)

    if dropped:
        logger.debug("Dropped %s items with unparseable dates", dropped)

    return buckets


def iter_day_keys(start: date, end: date) -> Iterator[str]:
    """Yield inclusive calendar day keys from start to end."""
    current = start
    while current <= end:
        yield current.isoformat()
        current += timedelta(days=1)


def previous_period(start: date, end: date) -> tuple[date, date]:
    """Return the equal-length window ending the day before start."""
    span = (end - start).days
    prev_end = start - timedelta(days=1)
    prev_start = prev_end - timedelta(days=span)
    return (prev_start, prev_end)


def day_label(key: str) -> str:
    """Short chart label for a day key, e.g. '2025-01-05' -> 'Jan 5'."""
    day = date.fromisoformat(key)
    return f"{day.strftime('%b')} {day.day}"
