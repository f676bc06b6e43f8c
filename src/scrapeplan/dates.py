# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tolerant date parsing to canonical ISO-8601 (``2024-12-25T00:00:00.000Z``).

Order of attempts:
  1. Native: ISO 8601 (``fromisoformat``), RFC 2822, English month names.
  2. Day-first numeric: ``D.M.Y``, ``D/M/Y``, ``D-M-Y``.
  3. ISO-ish numeric: ``Y-M-D``, ``M/D/Y``, ``Y/M/D``.

Naive values are taken as UTC.  Anything else returns None; the caller
decides whether that is an error.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

_MONTH_NAME_FORMATS = ("%B %d, %Y", "%b %d, %Y", "%d %B %Y", "%d %b %Y", "%B %d %Y", "%b %d %Y")

_DAY_FIRST_RES = (
    re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$"),
    re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$"),
    re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$"),
)
_YMD_DASH_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_MDY_SLASH_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_YMD_SLASH_RE = re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})$")

_CANONICAL_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


def _as_utc(dt: datetime) -> datetime | None:
    """Aware UTC view of *dt*; None when the shift leaves the datetime range."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    try:
        return dt.astimezone(UTC)
    except (OverflowError, ValueError):
        return None


def to_iso(dt: datetime) -> str:
    """Canonical UTC form with millisecond precision and ``Z`` suffix.

    Raises OverflowError when *dt* has an offset that moves it out of range;
    :func:`parse_date` never passes such a value.
    """
    dt = dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt.astimezone(UTC)
    return (
        f"{dt.year:04d}-{dt.month:02d}-{dt.day:02d}"
        f"T{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d}.{dt.microsecond // 1000:03d}Z"
    )


def _safe_date(year: int, month: int, day: int) -> datetime | None:
    try:
        return datetime(year, month, day, tzinfo=UTC)
    except ValueError:
        return None


def _parse_native(s: str) -> datetime | None:
    try:
        return datetime.fromisoformat(s)
    except ValueError:
        pass
    try:
        return parsedate_to_datetime(s)
    except (TypeError, ValueError, IndexError):
        pass
    for fmt in _MONTH_NAME_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    return None


def parse_datetime(value: object) -> datetime | None:
    """Parse *value* into an aware UTC datetime, or None.

    Offset timestamps whose UTC equivalent falls outside years 1-9999 count
    as unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    s = str(value).strip()
    if not s:
        return None

    dt = _parse_native(s)
    if dt is not None:
        return _as_utc(dt)

    for pattern in _DAY_FIRST_RES:
        m = pattern.match(s)
        if m and (dt := _safe_date(int(m.group(3)), int(m.group(2)), int(m.group(1)))):
            return dt

    m = _YMD_DASH_RE.match(s)
    if m and (dt := _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))):
        return dt
    m = _MDY_SLASH_RE.match(s)
    if m and (dt := _safe_date(int(m.group(3)), int(m.group(1)), int(m.group(2)))):
        return dt
    m = _YMD_SLASH_RE.match(s)
    if m and (dt := _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))):
        return dt
    return None


def parse_date(value: object) -> str | None:
    """Parse *value* to canonical ISO-8601, or None when unparseable."""
    dt = parse_datetime(value)
    return to_iso(dt) if dt is not None else None


def is_canonical_iso(value: object) -> bool:
    """True for strings already in canonical form that denote a real instant."""
    return isinstance(value, str) and bool(_CANONICAL_RE.match(value)) and parse_date(value) == value


def years_from_now(iso: str, now: datetime | None = None) -> float:
    """Absolute distance in years between *iso* and *now*."""
    dt = parse_datetime(iso)
    if dt is None:
        return 0.0
    now = now or datetime.now(UTC)
    return abs((dt - now).total_seconds()) / (365.25 * 24 * 3600)
