#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Utility Functions for goldwatch
Shared helpers for time handling and loose numeric parsing.
"""

import math
from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """
    Format a datetime as an ISO-8601 UTC string with millisecond precision

    Args:
        dt: Datetime (naive values are taken as UTC)

    Returns:
        String like '2025-02-01T10:00:00.000Z'
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return to_iso(utc_now())


def parse_iso(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime

    Args:
        value: ISO string (a trailing 'Z' is accepted) or datetime

    Returns:
        Aware datetime, or None when the value cannot be parsed
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value).strip()
        if not s:
            return None
        if s.endswith("Z") or s.endswith("z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_number_loose(value: Any) -> Optional[float]:
    """
    Parse a number from a loosely formatted value

    Thousands separators and whitespace are ignored ('2,050.10 ' -> 2050.1).
    Booleans, empty strings and non-finite results give None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        n = float(value)
    else:
        s = "".join(str(value).replace(",", "").split())
        if not s:
            return None
        try:
            n = float(s)
        except ValueError:
            return None
    if not math.isfinite(n):
        return None
    return n


def normalize_price(value: Optional[float]) -> Optional[float]:
    """Round to cents, the display and storage precision of ounce prices."""
    if value is None or not math.isfinite(value):
        return None
    return round(value, 2)
