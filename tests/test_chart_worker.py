#!/usr/bin/env python3
"""
Tests for the chart worker message protocol and the caller-side channel
"""
import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from goldwatch.core.chart_worker import (
    MIN_SHOWN, ChartChannel, handle_message, series_from_response,
)
from goldwatch.shared.models import PricePoint, Timeframe
from goldwatch.shared.utils import to_iso, utc_now


def recent_points(n: int, step_s: int = 10):
    end = utc_now()
    return [PricePoint(t=to_iso(end - timedelta(seconds=step_s * (n - 1 - i))), p=2000.0 + i) for i in range(n)]


class TestHandleMessage:
    def test_build_response_shape(self):
        pts = recent_points(5)
        resp = handle_message({
            "type": "build",
            "requestId": 7,
            "payload": {"points": [p.to_dict() for p in pts], "timeframe": "1h", "maxShown": 520},
        })
        assert resp["type"] == "built"
        payload = resp["payload"]
        assert payload["data"] == [p.p for p in pts]
        assert payload["shownCount"] == 5 and payload["rawCount"] == 5
        assert payload["timeframe"] == "1h"
        assert payload["requestId"] == 7
        assert len(payload["labels"]) == 5

    def test_max_shown_floor(self):
        pts = recent_points(400)
        resp = handle_message({"type": "build", "payload": {"points": [p.to_dict() for p in pts], "timeframe": "1h", "maxShown": 10}})
        assert resp["payload"]["shownCount"] == MIN_SHOWN

    def test_malformed_points_skipped(self):
        good = recent_points(1)[0].to_dict()
        resp = handle_message({"type": "build", "payload": {"points": [good, {"t": "x"}, None], "timeframe": "24h"}})
        assert resp["payload"]["rawCount"] == 1

    def test_unknown_message_ignored(self):
        assert handle_message({"type": "ping"}) is None
        assert handle_message("build") is None

    def test_series_from_response(self):
        series = series_from_response({"type": "built", "payload": {
            "labels": ["a"], "data": [1.0], "shownCount": 1, "rawCount": 3, "timeframe": "7d",
        }})
        assert series.timeframe == "7d"
        assert series.values == [1.0] and series.raw_count == 3


class TestChartChannel:
    def test_select_builds_in_worker(self):
        channel = ChartChannel(max_shown=520, timeframe=Timeframe.H24)
        channel.start()
        try:
            channel.select("1h", recent_points(30))
            series = channel.wait(timeout=5.0)
        finally:
            channel.stop()
        assert series is not None
        assert series.timeframe == "1h"
        assert series.shown_count == 30
        assert channel.timeframe is Timeframe.H1

    def test_stale_timeframe_response_discarded(self):
        channel = ChartChannel(timeframe=Timeframe.H1)
        channel._on_response({"type": "built", "payload": {"timeframe": "7d", "labels": [], "data": [], "shownCount": 0, "rawCount": 0}})
        assert channel.latest() is None
        channel._on_response({"type": "built", "payload": {"timeframe": "1h", "labels": ["x"], "data": [1.0], "shownCount": 1, "rawCount": 1}})
        assert channel.latest().values == [1.0]

    def test_switching_timeframe_clears_previous_series(self):
        channel = ChartChannel(timeframe=Timeframe.H1)
        channel._on_response({"type": "built", "payload": {"timeframe": "1h", "labels": ["x"], "data": [1.0], "shownCount": 1, "rawCount": 1}})
        channel.select(Timeframe.D7, [])  # worker not started: request stays queued
        assert channel.latest() is None

    def test_invalid_timeframe(self):
        with pytest.raises(ValueError):
            ChartChannel().select("2h", [])
