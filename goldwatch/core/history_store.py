#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Time series store for accepted price points.

Holds an ordered, deduplicated (by `t`), capacity-bounded list of PricePoints.
At startup the locally persisted series is merged with the shared seed series
from the static mirror; afterwards every accepted append persists the full
series (overwrite). The seed is never written back to its origin.

Storage failures never propagate: a failed read starts from the seed only, a
failed write is logged and reported through `on_storage_error`.
"""
from __future__ import annotations

import bisect
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from ..shared.models import PricePoint
from ..shared.utils import parse_iso, utc_now_iso
from .local_store import LocalStore, StorageError

log = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def point_time(point: PricePoint) -> datetime:
    """Sort key; unparseable timestamps sort first so they are evicted first."""
    return parse_iso(point.t) or _EPOCH


def merge_series(seed: Optional[Iterable[PricePoint]], local: Optional[Iterable[PricePoint]], max_points: int) -> List[PricePoint]:
    """
    Union by `t` (local wins), ascending by time, most recent `max_points` kept.
    """
    by_t: Dict[str, PricePoint] = {}
    for p in seed or []:
        by_t[p.t] = p
    for p in local or []:
        by_t[p.t] = p
    merged = sorted(by_t.values(), key=point_time)
    if len(merged) > max_points:
        merged = merged[-max_points:]
    return merged


def points_from_document(doc: object) -> Optional[List[PricePoint]]:
    """Decode `{points: [{t, p}, ...]}`; None when the shape is wrong."""
    if not isinstance(doc, dict) or not isinstance(doc.get("points"), list):
        return None
    return [pt for pt in (PricePoint.from_dict(p) for p in doc["points"]) if pt is not None]


class TimeSeriesStore:
    def __init__(self, *, max_points: int, local_store: Optional[LocalStore] = None, key: str = "gm_chart_history_v1",
                 on_storage_error: Optional[Callable[[StorageError], None]] = None) -> None:
        if max_points <= 0:
            raise ValueError("max_points must be positive")
        self.max_points = max_points
        self.local_store = local_store
        self.key = key
        self.on_storage_error = on_storage_error
        self._points: List[PricePoint] = []
        self._times: List[datetime] = []

    def __len__(self) -> int:
        return len(self._points)

    def points(self) -> List[PricePoint]:
        return list(self._points)

    def last(self) -> Optional[PricePoint]:
        return self._points[-1] if self._points else None

    def _replace_all(self, points: List[PricePoint]) -> None:
        self._points = list(points)
        self._times = [point_time(p) for p in self._points]

    def _read_local(self) -> Optional[List[PricePoint]]:
        if self.local_store is None:
            return None
        try:
            doc = self.local_store.load(self.key)
        except StorageError as e:
            log.warning(f"Local series unreadable, starting without it: {e}")
            self._report(e)
            return None
        if doc is None:
            return None
        points = points_from_document(doc)
        if points is None:
            log.warning(f"Local series under '{self.key}' has an unexpected shape; ignoring it")
        return points

    def load(self, seed: Optional[Iterable[PricePoint]] = None) -> int:
        """Merge seed and local series into memory; returns the resulting size."""
        seed_points = list(seed) if seed is not None else []
        local = self._read_local()
        self._replace_all(merge_series(seed_points, local, self.max_points))
        log.info(
            f"Series loaded: {len(self._points)} points "
            f"(seed={len(seed_points)}, local={len(local) if local else 0})"
        )
        return len(self._points)

    def merge(self, seed: Optional[Iterable[PricePoint]]) -> int:
        """Merge another series into memory; stored points win on key collision."""
        self._replace_all(merge_series(seed, self._points, self.max_points))
        return len(self._points)

    def append(self, point: PricePoint) -> None:
        """
        Insert in time order, evict the oldest beyond capacity, persist.

        A point whose `t` is already stored replaces the stored value.
        """
        for i, existing in enumerate(self._points):
            if existing.t == point.t:
                self._points[i] = point
                self._persist()
                return

        ts = point_time(point)
        idx = bisect.bisect_right(self._times, ts)
        self._points.insert(idx, point)
        self._times.insert(idx, ts)

        overflow = len(self._points) - self.max_points
        if overflow > 0:
            del self._points[:overflow]
            del self._times[:overflow]
        self._persist()

    def _persist(self) -> None:
        if self.local_store is None:
            return
        doc = {
            "v": 1,
            "updated_at": utc_now_iso(),
            "points": [p.to_dict() for p in self._points],
        }
        try:
            self.local_store.save(self.key, doc)
        except StorageError as e:
            log.warning(f"Failed to persist series ({len(self._points)} points): {e}")
            self._report(e)

    def _report(self, error: StorageError) -> None:
        if self.on_storage_error is None:
            return
        try:
            self.on_storage_error(error)
        except Exception as hook_err:
            log.debug(f"Storage error hook failed: {hook_err}")
