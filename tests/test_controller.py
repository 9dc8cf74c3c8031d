#!/usr/bin/env python3
"""
Tests for the ingestion controller

Tests cover:
- change-gated acceptance and ounce deltas across ticks
- DIRECT -> FEED fallback within a tick and OFFLINE ticks
- pause as a full no-op, readings discarded after a mid-tick pause
- exactly one render per non-paused tick, failures included
- notification de-duplication
- non-overlapping ticks
- margin from a local price and chart timeframe switches
"""
import threading
import pytest
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from goldwatch.core.chart_worker import ChartChannel
from goldwatch.core.controller import IngestionController, Notifier, SessionState
from goldwatch.core.history_store import TimeSeriesStore
from goldwatch.core.price_source import FetchTimeout, HttpError, ParseError
from goldwatch.core.pricing import derive
from goldwatch.shared.models import (
    BaselineKey, ConnectionState, CurrencyMode, MetricKind, Reading, Sign, Source, Timeframe, Unit,
)
from goldwatch.shared.utils import utc_now_iso


class ScriptedDirect:
    """Yields prices (floats) or raises exceptions in order."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = 0
        self.on_fetch = None

    def fetch_direct(self):
        self.calls += 1
        if self.on_fetch is not None:
            self.on_fetch()
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return Reading(price=item, timestamp=f"2025-02-01T10:00:{self.calls:02d}.000Z", source=Source.DIRECT)


class StaticFeed:
    def __init__(self, price=None, error=None, history=None):
        self.price = price
        self.error = error
        self.history = history
        self.latest_calls = 0

    def fetch_latest(self):
        self.latest_calls += 1
        if self.error is not None:
            raise self.error
        if self.price is None:
            return None
        return Reading(price=self.price, timestamp="2025-02-01T09:55:00.000Z", source=Source.FEED)

    def fetch_history(self):
        return self.history


class NowDirect:
    def __init__(self, price):
        self.price = price

    def fetch_direct(self):
        return Reading(price=self.price, timestamp=utc_now_iso(), source=Source.DIRECT)


class Recorder:
    def __init__(self):
        self.models = []

    def __call__(self, model):
        self.models.append(model)


def make_controller(config, direct, feed=None, notifier=None):
    rec = Recorder()
    ctl = IngestionController(
        config,
        direct=direct,
        feed=feed or StaticFeed(),
        store=TimeSeriesStore(max_points=config.max_points),
        render=rec,
        notifier=notifier,
    )
    return ctl, rec


def test_end_to_end_change_gating(config):
    ctl, rec = make_controller(config, ScriptedDirect([2050.00, 2050.03, 2050.25, 2048.00]))
    for _ in range(4):
        ctl.tick()

    assert [p.p for p in ctl.store.points()] == [2050.00, 2050.25, 2048.00]
    assert [p.t for p in ctl.store.points()] == [
        "2025-02-01T10:00:01.000Z", "2025-02-01T10:00:03.000Z", "2025-02-01T10:00:04.000Z",
    ]
    delta = ctl.tracker.delta(BaselineKey.ounce())
    assert delta.abs == pytest.approx(-2.25)
    assert delta.sign is Sign.DOWN
    assert [m.changed for m in rec.models] == [True, False, True, True]
    assert rec.models[-1].ounce_price == 2048.00
    assert ctl.state.last_updated == "2025-02-01T10:00:04.000Z"


def test_noise_tick_keeps_last_updated_and_delta(config):
    ctl, rec = make_controller(config, ScriptedDirect([2050.00, 2051.00, 2051.05]))
    for _ in range(3):
        ctl.tick()
    assert ctl.state.last_updated == "2025-02-01T10:00:02.000Z"
    assert rec.models[-1].ounce_delta.abs == pytest.approx(1.0)
    assert rec.models[-1].ounce_price == 2051.00


@pytest.mark.parametrize("error", [
    FetchTimeout("slow"), HttpError("HTTP 500", status=500), ParseError("no price"),
])
def test_direct_failure_falls_back_to_feed_same_tick(config, error):
    feed = StaticFeed(price=2049.0)
    ctl, rec = make_controller(config, ScriptedDirect([error]), feed)
    model = ctl.tick()
    assert feed.latest_calls == 1
    assert model.connection is ConnectionState.DEGRADED
    assert model.mode is Source.FEED
    assert model.ounce_price == 2049.0
    assert [p.p for p in ctl.store.points()] == [2049.0]
    assert len(rec.models) == 1


def test_direct_retried_first_on_next_tick(config):
    feed = StaticFeed(price=2049.0)
    direct = ScriptedDirect([FetchTimeout("slow"), 2050.0])
    ctl, _ = make_controller(config, direct, feed)
    ctl.tick()
    model = ctl.tick()
    assert direct.calls == 2
    assert feed.latest_calls == 1
    assert model.connection is ConnectionState.ONLINE
    assert model.mode is Source.DIRECT


def test_offline_tick_still_renders(config):
    feed = StaticFeed(error=HttpError("down", status=503))
    ctl, rec = make_controller(config, ScriptedDirect([HttpError("down", status=503)]), feed)
    model = ctl.tick()
    assert model.connection is ConnectionState.OFFLINE
    assert model.changed is False
    assert len(ctl.store) == 0
    assert len(rec.models) == 1
    assert ctl.state.failures == 1


def test_feed_without_price_is_offline(config):
    ctl, rec = make_controller(config, ScriptedDirect([ParseError("x")]), StaticFeed(price=None))
    assert ctl.tick().connection is ConnectionState.OFFLINE


def test_paused_tick_is_noop(config):
    direct = ScriptedDirect([2050.0])
    ctl, rec = make_controller(config, direct)
    ctl.pause()
    assert ctl.tick() is None
    assert direct.calls == 0
    assert rec.models == []
    ctl.resume()
    assert ctl.tick().ounce_price == 2050.0


def test_reading_discarded_when_paused_mid_tick(config):
    direct = ScriptedDirect([2050.0])
    ctl, rec = make_controller(config, direct)
    direct.on_fetch = ctl.pause
    model = ctl.tick()
    assert len(ctl.store) == 0
    assert ctl.state.last_accepted is None
    assert model.paused is True
    assert len(rec.models) == 1


def test_renderer_failure_does_not_break_tick(config):
    ctl, rec = make_controller(config, ScriptedDirect([2050.0, 2051.0]))

    def broken(model):
        raise RuntimeError("presenter crashed")

    ctl.add_renderer(broken)
    ctl.tick()
    ctl.tick()
    assert len(rec.models) == 2


def test_unexpected_error_renders_offline(config):
    class Exploding:
        def fetch_direct(self):
            raise RuntimeError("bug")

    ctl, rec = make_controller(config, Exploding())
    model = ctl.tick()
    assert model.connection is ConnectionState.OFFLINE
    assert "bug" in model.error
    assert len(rec.models) == 1


def test_ticks_do_not_overlap(config):
    release = threading.Event()
    entered = threading.Event()
    direct = ScriptedDirect([2050.0])

    def block():
        entered.set()
        release.wait(5.0)

    direct.on_fetch = block
    ctl, rec = make_controller(config, direct)
    worker = threading.Thread(target=ctl.tick)
    worker.start()
    assert entered.wait(5.0)
    assert ctl.tick() is None
    release.set()
    worker.join(5.0)
    assert direct.calls == 1
    assert len(rec.models) == 1


def test_derived_cards_follow_display_context(make_config):
    config = make_config(display__conversionRate=1310.0, display__margin=3000)
    ctl, rec = make_controller(config, ScriptedDirect([2000.0, 2010.0]))
    ctl.tick()
    model = ctl.tick()
    assert [c.karat for c in model.cards] == config.karats
    card = model.cards[0]
    assert card.unit is Unit.MITHQAL
    assert card.price.currency is CurrencyMode.LOCAL
    assert card.price.margin_applied == 3000
    # deltas are margin-free
    expected = (10.0 / config.ounce_to_gram_ratio) * config.karat_factors[card.karat] * config.mithqal_grams * 1310.0
    assert card.delta.abs == pytest.approx(expected)


def test_set_margin_clamps(config):
    ctl, _ = make_controller(config, ScriptedDirect([]))
    assert ctl.set_margin(1_000_000) == config.margin_bounds.max
    assert ctl.set_margin(1400) == 1000


def test_apply_local_price(make_config):
    config = make_config(display__conversionRate=1310.0)
    ctl, _ = make_controller(config, ScriptedDirect([2000.0]))
    with pytest.raises(ValueError):
        ctl.apply_local_price(500000.0, "21", Unit.MITHQAL)
    ctl.tick()
    margin = ctl.apply_local_price(1e9, "21", Unit.MITHQAL)
    assert margin == config.margin_bounds.max
    assert ctl.state.margin == margin


def test_apply_local_price_uses_last_accepted_price(make_config):
    config = make_config(display__conversionRate=1310.0, margin__step=1)
    ctl, _ = make_controller(config, ScriptedDirect([2000.0, 2000.05]))
    ctl.tick()
    ctl.tick()  # noise: cards still show 2000.00
    base = derive(config, 2000.0, "21", Unit.MITHQAL, 1310.0, 0).base
    assert ctl.apply_local_price(base + 5000.4, "21", Unit.MITHQAL) == 5000


def test_derived_keys_track_current_display_context_only(make_config):
    config = make_config(display__conversionRate=1310.0)
    ctl, _ = make_controller(config, ScriptedDirect([2000.0, 2010.0]))
    ctl.tick()
    ctl.set_unit(Unit.GRAM)
    ctl.tick()
    derived = [k for k in ctl.tracker.keys() if k.kind is MetricKind.DERIVED]
    assert {(k.unit, k.currency) for k in derived} == {
        (Unit.MITHQAL, CurrencyMode.LOCAL), (Unit.GRAM, CurrencyMode.LOCAL),
    }
    assert ctl.tracker.delta(BaselineKey.derived("24", Unit.MITHQAL, CurrencyMode.LOCAL)).sign is Sign.FLAT
    assert not hasattr(SessionState(), "extra_contexts")


def test_select_timeframe_rebuilds_chart_and_drops_stale_series(config):
    chart = ChartChannel(max_shown=520, timeframe=Timeframe.H24)
    ctl = IngestionController(
        config, direct=NowDirect(2050.0), feed=StaticFeed(),
        store=TimeSeriesStore(max_points=config.max_points), chart=chart,
    )
    chart.start()
    try:
        ctl.tick()
        ctl.select_timeframe("1h")
        series = chart.wait(timeout=5.0)
        assert series is not None
        assert series.timeframe == "1h"
        assert series.raw_count == 1
        chart._on_response({"type": "built", "payload": {"timeframe": "24h", "labels": ["x"], "data": [1.0], "shownCount": 1, "rawCount": 1}})
        assert chart.latest() is series
    finally:
        chart.stop()


def test_bootstrap_seeds_store(config):
    from goldwatch.shared.models import PricePoint
    feed = StaticFeed(history=[PricePoint(t="2025-02-01T09:00:00.000Z", p=2040.0)])
    ctl, _ = make_controller(config, ScriptedDirect([]), feed)
    assert ctl.bootstrap() == 1
    assert ctl.store.last().p == 2040.0


class TestNotifier:
    def test_consecutive_duplicates_suppressed(self):
        sent = []
        n = Notifier(lambda kind, msg: sent.append((kind, msg)))
        assert n.notify("bad", "Offline") is True
        assert n.notify("bad", "Offline") is False
        assert n.notify("ok", "Online") is True
        assert n.notify("bad", "Offline") is True
        assert len(sent) == 3

    def test_reset_allows_repeat(self):
        n = Notifier()
        n.notify("bad", "Offline")
        n.reset()
        assert n.notify("bad", "Offline") is True

    def test_repeated_failures_notify_once(self, config):
        sent = []
        feed = StaticFeed(error=HttpError("down"))
        direct = ScriptedDirect([HttpError("down"), HttpError("down"), 2050.0, HttpError("down")])
        ctl, _ = make_controller(config, direct, feed, Notifier(lambda k, m: sent.append(m)))
        for _ in range(4):
            ctl.tick()
        offline = [m for m in sent if m.startswith("Offline")]
        assert len(offline) == 2
        assert ctl.state.failures == 1
