# persona_context/utils/timefmt.py
"""Timestamp rendering for prompts: absolute, relative and gap markers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_MINUTE = 60
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR


class TimeGapConfig(BaseModel):
    """When to mark a pause between consecutive history messages."""

    min_gap_seconds: float = Field(default=4 * _HOUR, gt=0)


def _zone(tz_name: str | None):
    if not tz_name:
        return timezone.utc
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug("Unknown timezone %r, using UTC", tz_name)
        return timezone.utc


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}" if n == 1 else f"{n} {unit}s"


def format_duration(seconds: float) -> str:
    seconds = max(0, int(seconds))
    if seconds < _HOUR:
        return _plural(max(1, seconds // _MINUTE), "minute")
    if seconds < _DAY:
        return _plural(seconds // _HOUR, "hour")
    if seconds < 30 * _DAY:
        return _plural(seconds // _DAY, "day")
    if seconds < 365 * _DAY:
        return _plural(seconds // (30 * _DAY), "month")
    return _plural(seconds // (365 * _DAY), "year")


def format_relative_time(ts: datetime, now: datetime | None = None) -> str:
    """``now``, ``5m ago``, ``3h ago``, ``2d ago`` style labels."""
    now = _aware(now or datetime.now(timezone.utc))
    delta = (now - _aware(ts)).total_seconds()
    if delta < _MINUTE:
        return "now"
    if delta < _HOUR:
        return f"{int(delta // _MINUTE)}m ago"
    if delta < _DAY:
        return f"{int(delta // _HOUR)}h ago"
    if delta < 30 * _DAY:
        return f"{int(delta // _DAY)}d ago"
    return f"{format_duration(delta)} ago"


def format_absolute_time(ts: datetime, tz_name: str | None = None) -> str:
    """``YYYY-MM-DD (Day) HH:MM`` in the user's timezone."""
    local = _aware(ts).astimezone(_zone(tz_name))
    return local.strftime("%Y-%m-%d (%A) %H:%M")


def format_prompt_timestamp(
    ts: datetime,
    now: datetime | None = None,
    tz_name: str | None = None,
) -> str:
    """Unified attribute value: ``YYYY-MM-DD (Day) HH:MM • 2h ago``."""
    return f"{format_absolute_time(ts, tz_name)} • {format_relative_time(ts, now)}"


def format_full_datetime(now: datetime | None = None, tz_name: str | None = None) -> str:
    now = _aware(now or datetime.now(timezone.utc)).astimezone(_zone(tz_name))
    return now.strftime("%A, %B %d, %Y at %H:%M %Z").strip()


def calculate_time_gap(previous: datetime, current: datetime) -> float:
    return (_aware(current) - _aware(previous)).total_seconds()


def should_show_gap(gap_seconds: float, config: TimeGapConfig) -> bool:
    return gap_seconds >= config.min_gap_seconds


def format_time_gap_marker(gap_seconds: float) -> str:
    return f'<time_gap duration="{format_duration(gap_seconds)}"/>'
