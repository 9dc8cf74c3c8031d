#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Ingestion controller: one poll tick at a time.

Per tick:
- the live endpoint (DIRECT) is always tried first; any failure moves the same
  tick to the static mirror (FEED); there is no latched mode
- the reading goes through the change detector; only an accepted reading
  advances baselines, appends to the series and moves "last updated"
- the render callback runs exactly once at the end of every non-paused tick,
  including failed ones

A paused tick is a full no-op. Ticks never overlap: a tick that finds the
previous one still running returns immediately.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..shared.config import GoldwatchConfig
from ..shared.models import (
    BaselineKey,
    CardView,
    ConnectionState,
    DisplayContext,
    PricePoint,
    Reading,
    RenderModel,
    Source,
    Unit,
)
from .change_detector import ChangeDetector
from .chart_worker import ChartChannel
from .history_store import TimeSeriesStore
from .price_source import DirectPriceSource, FeedMirrorSource, SourceError
from .pricing import clamp_margin, derive, margin_from_local_price
from .reference_state import BaselineTracker

log = logging.getLogger(__name__)

RenderCallback = Callable[[RenderModel], None]
NotifyCallback = Callable[[str, str], None]


class Notifier:
    """
    Transient user notifications with consecutive de-duplication.

    The same (kind, message) pair is delivered once until a different one is
    sent or `reset()` is called after a successful tick.
    """

    def __init__(self, sink: Optional[NotifyCallback] = None) -> None:
        self._sink = sink
        self._last: Optional[tuple] = None

    def notify(self, kind: str, message: str) -> bool:
        if self._last == (kind, message):
            return False
        self._last = (kind, message)
        if kind == "bad":
            log.warning(message)
        else:
            log.info(message)
        if self._sink is not None:
            self._sink(kind, message)
        return True

    def reset(self) -> None:
        self._last = None


@dataclass
class SessionState:
    """Everything the controller mutates; owned by exactly one controller."""
    paused: bool = False
    mode: Optional[Source] = None
    connection: ConnectionState = ConnectionState.OFFLINE
    last_accepted: Optional[Reading] = None
    last_updated: Optional[str] = None
    unit: Unit = Unit.MITHQAL
    conversion_rate: Optional[float] = None
    margin: float = 0.0
    last_error: Optional[str] = None
    ticks: int = 0
    failures: int = 0

    @property
    def display_context(self) -> DisplayContext:
        return DisplayContext(unit=self.unit, conversion_rate=self.conversion_rate)


class IngestionController:
    def __init__(
        self,
        config: GoldwatchConfig,
        *,
        direct: DirectPriceSource,
        feed: FeedMirrorSource,
        store: TimeSeriesStore,
        tracker: Optional[BaselineTracker] = None,
        detector: Optional[ChangeDetector] = None,
        chart: Optional[ChartChannel] = None,
        render: Optional[RenderCallback] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.config = config
        self.direct = direct
        self.feed = feed
        self.store = store
        self.tracker = tracker or BaselineTracker(config)
        self.detector = detector or ChangeDetector(config.noise_threshold_usd)
        self.chart = chart
        self.notifier = notifier or Notifier()
        self._renderers: List[RenderCallback] = [render] if render else []
        self._tick_lock = threading.Lock()
        self._stop = threading.Event()

        display = config.display
        margin = display.margin if display.margin is not None else config.margin_bounds.min
        self.state = SessionState(
            unit=display.unit,
            conversion_rate=display.conversion_rate,
            margin=clamp_margin(config.margin_bounds, margin),
        )

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def add_renderer(self, render: RenderCallback) -> None:
        self._renderers.append(render)

    def bootstrap(self) -> int:
        """Merge the mirror's shared history with the local series (startup only)."""
        seed = self.feed.fetch_history()
        size = self.store.load(seed)
        if self.chart is not None:
            self.chart.refresh(self.store.points())
        return size

    # ------------------------------------------------------------------
    # User-level controls
    # ------------------------------------------------------------------

    def pause(self) -> None:
        self.state.paused = True
        self.notifier.notify("bad", "Live updates paused.")

    def resume(self) -> None:
        self.state.paused = False
        self.notifier.notify("ok", "Live updates resumed.")

    def toggle_pause(self) -> bool:
        if self.state.paused:
            self.resume()
        else:
            self.pause()
        return self.state.paused

    def set_unit(self, unit: Unit | str) -> None:
        self.state.unit = unit if isinstance(unit, Unit) else Unit(str(unit).strip().lower())

    def set_conversion_rate(self, rate: Optional[float]) -> None:
        if rate is not None and rate <= 0:
            raise ValueError("conversion rate must be positive")
        self.state.conversion_rate = rate

    def set_margin(self, margin: float) -> float:
        self.state.margin = clamp_margin(self.config.margin_bounds, margin)
        return self.state.margin

    def apply_local_price(self, local_price: float, karat: str, unit: Unit) -> float:
        """Tax finder: derive the margin from a quoted local price and apply it.

        The base is the last accepted ounce price, the one the cards show.
        """
        ounce = self.state.last_accepted.price if self.state.last_accepted else None
        margin = margin_from_local_price(
            self.config, local_price, ounce, karat, unit, self.state.conversion_rate
        )
        self.state.margin = margin
        self.notifier.notify("ok", "Margin applied to main slider.")
        return margin

    def select_timeframe(self, timeframe: str) -> None:
        if self.chart is not None:
            self.chart.select(timeframe, self.store.points())

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def _fetch(self) -> Optional[Reading]:
        """DIRECT first, FEED within the same tick on any DIRECT failure."""
        try:
            reading = self.direct.fetch_direct()
            self.state.mode = Source.DIRECT
            self.state.connection = ConnectionState.ONLINE
            self.state.last_error = None
            return reading
        except SourceError as e:
            log.warning(f"Direct fetch failed ({type(e).__name__}): {e}")
            self.state.mode = Source.FEED
            self.state.last_error = f"{type(e).__name__}: {e}"

        try:
            reading = self.feed.fetch_latest()
        except SourceError as e:
            log.warning(f"Feed fetch failed ({type(e).__name__}): {e}")
            reading = None
            self.state.last_error = f"{self.state.last_error}; feed {type(e).__name__}: {e}"

        if reading is None:
            self.state.connection = ConnectionState.OFFLINE
            return None
        self.state.connection = ConnectionState.DEGRADED
        return reading

    def tick(self) -> Optional[RenderModel]:
        """
        Run one poll cycle

        Returns:
            The render model handed to the presenters, or None for a paused
            tick or one skipped because the previous tick is still running
        """
        if not self._tick_lock.acquire(blocking=False):
            log.debug("Previous tick still running; skipping")
            return None
        model: Optional[RenderModel] = None
        try:
            if self.state.paused:
                return None
            self.state.ticks += 1
            previous = self.state.connection
            changed = False
            try:
                reading = self._fetch()
                if reading is not None and self.state.paused:
                    log.debug("Paused while fetching; discarding reading")
                    reading = None
                if reading is not None:
                    changed = self._accept(reading)
            except Exception as e:
                log.exception(f"Tick failed: {e}")
                self.state.last_error = str(e)
                self.state.connection = ConnectionState.OFFLINE
            self._notify_connection(previous)
            model = self.build_render_model(changed)
        finally:
            try:
                if model is not None:
                    self._render(model)
            finally:
                self._tick_lock.release()
        return model

    def _accept(self, reading: Reading) -> bool:
        if not self.detector.accept(reading, self.state.last_accepted):
            log.debug(f"Noise: {reading.price} vs {self.state.last_accepted.price} (< {self.detector.threshold})")
            return False
        self.state.last_accepted = reading
        self.tracker.on_change(reading.price, reading.timestamp, [self.state.display_context])
        self.store.append(PricePoint(t=reading.timestamp, p=reading.price))
        self.state.last_updated = reading.timestamp
        log.info(f"Price changed: {reading.price:.2f} via {reading.source.value} ({len(self.store)} points)")
        if self.chart is not None:
            self.chart.refresh(self.store.points())
        return True

    def _notify_connection(self, previous: ConnectionState) -> None:
        current = self.state.connection
        if current is ConnectionState.ONLINE:
            if self.state.failures:
                self.notifier.notify("ok", "Online: live endpoint restored.")
            self.state.failures = 0
            self.notifier.reset()
            return
        self.state.failures += 1
        if current is ConnectionState.DEGRADED:
            self.notifier.notify("bad", "Live API failed; showing the mirrored feed.")
        else:
            self.notifier.notify("bad", "Offline: no price source reachable.")
        if previous is not current:
            log.info(f"Connection {previous.value} -> {current.value}")

    def _render(self, model: RenderModel) -> None:
        for render in self._renderers:
            try:
                render(model)
            except Exception as e:
                log.exception(f"Renderer {render!r} failed: {e}")

    def build_render_model(self, changed: bool = False) -> RenderModel:
        ounce = self.state.last_accepted.price if self.state.last_accepted else None
        ctx = self.state.display_context
        cards: List[CardView] = []
        if ounce is not None:
            for karat in self.config.karats:
                price = derive(self.config, ounce, karat, ctx.unit, ctx.conversion_rate, self.state.margin)
                key = BaselineKey.derived(karat, ctx.unit, ctx.currency)
                cards.append(CardView(karat=karat, unit=ctx.unit, price=price, delta=self.tracker.delta(key)))
        return RenderModel(
            ounce_price=ounce,
            ounce_delta=self.tracker.delta(BaselineKey.ounce()),
            cards=cards,
            connection=self.state.connection,
            mode=self.state.mode,
            last_updated=self.state.last_updated,
            paused=self.state.paused,
            changed=changed,
            series_points=len(self.store),
            chart=self.chart.latest() if self.chart is not None else None,
            error=self.state.last_error,
        )

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run_forever(self) -> None:
        interval = self.config.poll_interval_s
        log.info(f"Polling every {interval:.1f}s (direct timeout {self.config.direct_timeout_s:.1f}s)")
        while not self._stop.is_set():
            started = time.monotonic()
            try:
                self.tick()
            except Exception as e:
                log.exception(f"Polling error: {e}")
            elapsed = time.monotonic() - started
            self._stop.wait(max(0.0, interval - elapsed))

    def stop(self) -> None:
        self._stop.set()
