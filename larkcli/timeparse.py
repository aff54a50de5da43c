"""Parsing and formatting helpers for times and durations."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone, tzinfo
from fractions import Fraction

_RFC3339_RE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})"
)

# Local layouts tried after RFC 3339, in order. Fractional seconds are
# accepted after the seconds field even when the layout does not name them.
_LOCAL_LAYOUTS = (
    re.compile(r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?"),
    re.compile(r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2})"),
    re.compile(r"(\d{4})-(\d{2})-(\d{2}) (\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?"),
    re.compile(r"(\d{4})-(\d{2})-(\d{2}) (\d{2}):(\d{2})"),
    re.compile(r"(\d{4})-(\d{2})-(\d{2})"),
)

_SIMPLE_DURATION_RE = re.compile(r"(\d+)(h|m|min|hr|hrs|mins|hours?|minutes?)")
_DURATION_PART_RE = re.compile(r"(\d*)(\.(\d*))?([^\d.]*)")

_UNIT_NANOS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_MAX_NANOS = 2**63 - 1


def _microseconds(fraction: str | None) -> int:
    if not fraction:
        return 0
    return int(fraction[:6].ljust(6, "0"))


def _build(groups: tuple, tz: tzinfo | None) -> datetime:
    numbers = [int(g) for g in groups[:6] if g is not None]
    while len(numbers) < 6:
        numbers.append(0)
    micro = _microseconds(groups[6]) if len(groups) > 6 else 0
    return datetime(*numbers, micro, tzinfo=tz)


def _parse_rfc3339(text: str) -> datetime | None:
    match = _RFC3339_RE.fullmatch(text)
    if not match:
        return None
    *fields, fraction, offset = match.groups()
    if offset == "Z":
        zone = timezone.utc
    else:
        sign = -1 if offset[0] == "-" else 1
        hours, minutes = int(offset[1:3]), int(offset[4:6])
        if hours >= 24 or minutes >= 60:
            return None
        zone = timezone(sign * timedelta(hours=hours, minutes=minutes))
    try:
        return _build((*fields, fraction), zone)
    except ValueError:
        return None


def parse(text: str, tz: tzinfo | None = None) -> datetime:
    """Parse an ISO 8601 / RFC 3339 time; times without an offset are placed in *tz*.

    When *tz* is None the local time zone is used.
    """
    text = text.strip()
    if not text:
        raise ValueError("empty time string")

    parsed = _parse_rfc3339(text)
    if parsed is not None:
        return parsed

    for layout in _LOCAL_LAYOUTS:
        match = layout.fullmatch(text)
        if not match:
            continue
        try:
            naive = _build(match.groups(), None)
        except ValueError:
            continue
        if tz is None:
            return naive.astimezone()
        return naive.replace(tzinfo=tz)

    raise ValueError(
        f"unable to parse time: {text} "
        "(use ISO 8601 format, e.g. 2006-01-02 or 2006-01-02T15:04:05)"
    )


def _parse_unit_duration(text: str) -> int | None:
    """Parse a sequence of decimal numbers with units (e.g. "1h30m", "-1.5h") into nanoseconds."""
    negative = False
    if text and text[0] in "+-":
        negative = text[0] == "-"
        text = text[1:]
    if text == "0":
        return 0
    if not text:
        return None

    total = Fraction(0)
    pos = 0
    while pos < len(text):
        match = _DURATION_PART_RE.match(text, pos)
        whole, _, frac, unit = match.groups()
        if not whole and not frac:
            return None
        if unit not in _UNIT_NANOS:
            return None
        value = Fraction(int(whole or "0"))
        if frac:
            value += Fraction(int(frac), 10 ** len(frac))
        total += value * _UNIT_NANOS[unit]
        pos = match.end()

    nanos = int(total)
    if nanos > _MAX_NANOS + (1 if negative else 0):
        return None
    return -nanos if negative else nanos


def _nanos_to_timedelta(nanos: int) -> timedelta:
    delta = timedelta(microseconds=abs(nanos) // 1000)
    return -delta if nanos < 0 else delta


def parse_duration(text: str) -> timedelta:
    """Parse durations such as "30m", "1h", "1h30m", "2hr" or "45 minutes"-style forms."""
    text = text.lower().strip()
    if not text:
        raise ValueError("empty duration string")

    nanos = _parse_unit_duration(text)
    if nanos is not None:
        return _nanos_to_timedelta(nanos)

    match = _SIMPLE_DURATION_RE.fullmatch(text)
    if match:
        value = int(match.group(1))
        unit = match.group(2)
        if unit.startswith("h"):
            return timedelta(hours=value)
        if unit.startswith("m"):
            return timedelta(minutes=value)

    raise ValueError(f"unable to parse duration: {text}")


def format_time(t: datetime) -> str:
    """Format a time as RFC 3339 with second precision."""
    if t.tzinfo is None:
        t = t.astimezone()
    stamp = t.strftime("%Y-%m-%dT%H:%M:%S")
    offset = t.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        return stamp + "Z"
    sign = "-" if offset < timedelta(0) else "+"
    minutes = int(abs(offset).total_seconds()) // 60
    return f"{stamp}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def start_of_day(t: datetime) -> datetime:
    """Return midnight at the start of *t*'s day."""
    return t.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(t: datetime) -> datetime:
    """Return the last representable instant of *t*'s day."""
    return t.replace(hour=23, minute=59, second=59, microsecond=999999)


def start_of_week(t: datetime) -> datetime:
    """Return the start of the week (Monday) containing *t*."""
    return start_of_day(t - timedelta(days=t.weekday()))


def end_of_week(t: datetime) -> datetime:
    """Return the end of the week (Sunday) containing *t*."""
    return end_of_day(t + timedelta(days=6 - t.weekday()))