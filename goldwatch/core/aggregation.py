#!/usr/bin/env python3
"""
Downsampling of the accepted price series for charting.
Does NOT affect ingestion or deltas, only visualization.

Reduces an arbitrary number of points inside a rolling timeframe window to a
fixed maximum while keeping the shape: each bucket contributes its first
point, a mean midpoint and its last point, so local extremes and the trend
direction survive where naive striding would drop them.
"""
from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import logging

from ..shared.models import ChartSeries, PricePoint, Timeframe
from ..shared.utils import parse_iso, utc_now

log = logging.getLogger(__name__)


def window_points(
    points: Iterable[PricePoint],
    timeframe: Timeframe,
    now: Optional[datetime] = None
) -> List[Tuple[datetime, PricePoint]]:
    """
    Keep points inside `[now - window, ...]`, sorted ascending by parsed time.

    Points with unparseable timestamps or non-finite prices are dropped.
    """
    now_dt = now if now is not None else utc_now()
    min_t = now_dt - timedelta(seconds=timeframe.window_seconds)
    kept: List[Tuple[datetime, PricePoint]] = []
    for p in points:
        ts = parse_iso(p.t)
        if ts is None or not math.isfinite(p.p):
            continue
        if ts >= min_t:
            kept.append((ts, p))
    kept.sort(key=lambda item: item[0])
    return kept


def bucket_reduce(points: Sequence[PricePoint], max_out: int) -> List[PricePoint]:
    """
    Reduce `points` to at most `max_out` entries.

    Args:
        points: Time-ordered points
        max_out: Maximum output length (>= 1)

    Returns:
        `points` unchanged when already small enough; otherwise per-bucket
        first / mean-midpoint / last points, stride-trimmed to exactly
        `max_out` if the buckets still produce too many.

    Example:
        >>> pts = [PricePoint(t=str(i), p=float(i)) for i in range(10)]
        >>> [p.p for p in bucket_reduce(pts, 4)]
        [0.0, 3.0, 6.0, 9.0]
    """
    if max_out <= 0:
        raise ValueError("max_out must be positive")
    n = len(points)
    if n <= max_out:
        return list(points)

    bucket_size = int(math.ceil(n / max_out))
    out: List[PricePoint] = []
    for start in range(0, n, bucket_size):
        bucket = points[start:start + bucket_size]
        out.append(bucket[0])
        if len(bucket) > 2:
            mid = bucket[len(bucket) // 2]
            avg = float(np.mean([b.p for b in bucket]))
            out.append(PricePoint(t=mid.t, p=avg))
        if len(bucket) > 1:
            out.append(bucket[-1])

    if len(out) > max_out:
        out = stride_trim(out, max_out)
    return out


def stride_trim(points: Sequence[PricePoint], max_out: int) -> List[PricePoint]:
    """Uniform stride down to exactly `max_out` points, first and last kept."""
    n = len(points)
    if n <= max_out:
        return list(points)
    if max_out == 1:
        return [points[-1]]
    idx = np.rint(np.linspace(0, n - 1, max_out)).astype(int)
    return [points[i] for i in idx]


def format_label(ts: datetime, timeframe: Timeframe) -> str:
    local = ts.astimezone()
    if timeframe is Timeframe.D7:
        return local.strftime("%m/%d %H:%M")
    return local.strftime("%H:%M:%S")


def downsample(
    points: Iterable[PricePoint],
    timeframe: Timeframe | str,
    max_shown: int,
    now: Optional[datetime] = None
) -> ChartSeries:
    """
    Build the render-ready series for one timeframe selection.

    Args:
        points: Stored series (any order)
        timeframe: "1h", "24h" or "7d"
        max_shown: Maximum number of rendered points
        now: Reference time for the rolling window (defaults to current UTC)

    Returns:
        ChartSeries with labels, values, shown and raw counts
    """
    tf = Timeframe.parse(timeframe)
    windowed = window_points(points, tf, now)
    ordered = [p for _, p in windowed]
    shown = bucket_reduce(ordered, max_shown)

    times = {p.t: ts for ts, p in windowed}
    labels = []
    for p in shown:
        ts = times.get(p.t) or parse_iso(p.t)
        labels.append(format_label(ts, tf))

    log.debug(f"Downsampled {len(ordered)} points to {len(shown)} for {tf.value}")
    return ChartSeries(
        timeframe=tf.value,
        labels=labels,
        values=[p.p for p in shown],
        shown_count=len(shown),
        raw_count=len(ordered),
    )
