#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Chart worker: runs the downsampler on its own thread.

Message protocol (plain dicts, so the worker could be moved to another process
or a browser worker unchanged):

    request  {"type": "build", "payload": {"points": [{t, p}], "timeframe": "24h", "maxShown": 520}}
    response {"type": "built", "payload": {"labels": [...], "data": [...],
                                           "shownCount": n, "rawCount": m, "timeframe": "24h"}}

`ChartChannel` is the caller side: one in-flight request per timeframe
selection, and responses for a timeframe that is no longer selected are
discarded.
"""
from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Dict, Iterable, Optional

from ..shared.models import ChartSeries, PricePoint, Timeframe
from .aggregation import downsample

log = logging.getLogger(__name__)

DEFAULT_MAX_SHOWN = 520
MIN_SHOWN = 120

Message = Dict[str, Any]


def handle_message(message: Message) -> Optional[Message]:
    """Process one request message; unknown message types yield None."""
    if not isinstance(message, dict) or message.get("type") != "build":
        return None
    payload = message.get("payload") or {}
    timeframe = Timeframe.parse(payload.get("timeframe") or Timeframe.H1.value)
    max_shown = max(MIN_SHOWN, int(payload.get("maxShown") or DEFAULT_MAX_SHOWN))
    points = [pt for pt in (PricePoint.from_dict(p) for p in payload.get("points") or []) if pt is not None]
    series = downsample(points, timeframe, max_shown)
    return {
        "type": "built",
        "payload": {
            "labels": series.labels,
            "data": series.values,
            "shownCount": series.shown_count,
            "rawCount": series.raw_count,
            "timeframe": series.timeframe,
            "requestId": message.get("requestId"),
        },
    }


def series_from_response(message: Message) -> ChartSeries:
    payload = message.get("payload") or {}
    return ChartSeries(
        timeframe=str(payload.get("timeframe")),
        labels=list(payload.get("labels") or []),
        values=list(payload.get("data") or []),
        shown_count=int(payload.get("shownCount") or 0),
        raw_count=int(payload.get("rawCount") or 0),
    )


class ChartWorker:
    """Daemon thread consuming build requests from a queue."""

    _STOP = object()

    def __init__(self, on_response: Callable[[Message], None]) -> None:
        self._on_response = on_response
        self._requests: "queue.Queue[Any]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, daemon=True, name="ChartWorker")
        self._thread.start()

    def post(self, message: Message) -> None:
        self._requests.put(message)

    def stop(self, timeout: float = 2.0) -> None:
        if self._thread is None:
            return
        self._requests.put(self._STOP)
        self._thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        while True:
            message = self._requests.get()
            if message is self._STOP:
                return
            try:
                response = handle_message(message)
            except Exception as e:
                log.exception(f"Chart build failed: {e}")
                continue
            if response is not None:
                self._on_response(response)


class ChartChannel:
    """
    Caller side of the worker protocol.

    `select()` records the current timeframe and posts a build request;
    `latest()` returns the last series built for the current selection.
    """

    def __init__(self, max_shown: int = DEFAULT_MAX_SHOWN, timeframe: Timeframe = Timeframe.H24) -> None:
        self.max_shown = max_shown
        self._lock = threading.Lock()
        self._timeframe = timeframe
        self._request_id = 0
        self._latest: Optional[ChartSeries] = None
        self._ready = threading.Event()
        self.worker = ChartWorker(self._on_response)

    @property
    def timeframe(self) -> Timeframe:
        return self._timeframe

    def start(self) -> None:
        self.worker.start()

    def stop(self) -> None:
        self.worker.stop()

    def select(self, timeframe: Timeframe | str, points: Iterable[PricePoint]) -> int:
        tf = Timeframe.parse(timeframe)
        with self._lock:
            self._request_id += 1
            request_id = self._request_id
            if tf is not self._timeframe:
                self._latest = None
            self._timeframe = tf
            self._ready.clear()
        self.worker.post({
            "type": "build",
            "requestId": request_id,
            "payload": {
                "points": [p.to_dict() for p in points],
                "timeframe": tf.value,
                "maxShown": self.max_shown,
            },
        })
        return request_id

    def refresh(self, points: Iterable[PricePoint]) -> int:
        return self.select(self._timeframe, points)

    def _on_response(self, message: Message) -> None:
        series = series_from_response(message)
        with self._lock:
            if series.timeframe != self._timeframe.value:
                log.debug(f"Discarding stale chart response for {series.timeframe} (selected {self._timeframe.value})")
                return
            self._latest = series
            self._ready.set()

    def latest(self) -> Optional[ChartSeries]:
        with self._lock:
            return self._latest

    def wait(self, timeout: float = 5.0) -> Optional[ChartSeries]:
        self._ready.wait(timeout)
        return self.latest()
