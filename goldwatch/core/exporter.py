#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Prometheus exporter and JSON state endpoint fed from per-tick render models.

Endpoints:
- GET  /metrics                     Prometheus text exposition
- GET  /api/state                   last render model as JSON
- GET  /api/chart?timeframe=24h     downsampled series for a timeframe
- POST /api/pause                   toggle the controller pause flag
"""
from __future__ import annotations

from typing import Optional, Dict, TYPE_CHECKING
from dataclasses import dataclass
from prometheus_client import Gauge, Counter, CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import urlparse, parse_qs
import threading
import time
import json
import logging

from ..shared.config import GoldwatchConfig
from ..shared.models import ConnectionState, RenderModel, Source
from .aggregation import downsample

if TYPE_CHECKING:
    from .controller import IngestionController

log = logging.getLogger(__name__)


@dataclass
class MetricHandles:
    ounce_price_usd: Gauge
    ounce_delta_abs: Gauge
    ounce_delta_pct: Gauge
    connection_online: Gauge
    ingestion_mode: Gauge  # labeled by source, 1 for the current one
    series_points: Gauge
    derived_price: Gauge  # labeled by karat, unit, currency
    last_change_timestamp_seconds: Gauge
    last_tick_timestamp_seconds: Gauge
    consecutive_failures: Gauge
    storage_errors: Counter
    paused: Gauge


class MetricsExporter:
    def __init__(self, config: GoldwatchConfig, controller: Optional["IngestionController"] = None) -> None:
        self.config = config
        self.controller = controller
        self.registry = CollectorRegistry()
        pfx = config.telemetry.metric_prefix
        self.latest_model: Optional[RenderModel] = None
        self._server: Optional[HTTPServer] = None

        self.metrics = MetricHandles(
            ounce_price_usd=Gauge(f"{pfx}ounce_price_usd", "Last accepted XAU ounce price (USD)", registry=self.registry),
            ounce_delta_abs=Gauge(f"{pfx}ounce_delta_abs", "Ounce delta since previous change (USD)", registry=self.registry),
            ounce_delta_pct=Gauge(f"{pfx}ounce_delta_pct", "Ounce delta since previous change (%)", registry=self.registry),
            connection_online=Gauge(f"{pfx}connection_online", "1=live endpoint, 0.5=mirror, 0=offline", registry=self.registry),
            ingestion_mode=Gauge(f"{pfx}ingestion_mode", "Source used by the last tick (0/1)", ['source'], registry=self.registry),
            series_points=Gauge(f"{pfx}series_points", "Points in the stored series", registry=self.registry),
            derived_price=Gauge(f"{pfx}derived_price", "Displayed karat price per unit", ['karat', 'unit', 'currency'], registry=self.registry),
            last_change_timestamp_seconds=Gauge(f"{pfx}last_change_timestamp_seconds", "Time of the last accepted change (epoch seconds)", registry=self.registry),
            last_tick_timestamp_seconds=Gauge(f"{pfx}last_tick_timestamp_seconds", "Time of the last rendered tick (epoch seconds)", registry=self.registry),
            consecutive_failures=Gauge(f"{pfx}consecutive_failures", "Ticks in a row without the live endpoint", registry=self.registry),
            storage_errors=Counter(f"{pfx}storage_errors", "Local series read/write failures", registry=self.registry),
            paused=Gauge(f"{pfx}paused", "Pause flag (0/1)", registry=self.registry),
        )
        self._state_lock = threading.Lock()

    def record_storage_error(self, error: Exception) -> None:
        """Observability hook for swallowed storage failures."""
        self.metrics.storage_errors.inc()
        log.debug(f"Storage error recorded: {error}")

    def update(self, model: RenderModel) -> None:
        """Render callback: refresh gauges and keep the model for /api/state."""
        m = self.metrics
        with self._state_lock:
            self.latest_model = model
        m.last_tick_timestamp_seconds.set(time.time())
        m.paused.set(1 if model.paused else 0)
        m.series_points.set(model.series_points)
        m.connection_online.set({
            ConnectionState.ONLINE: 1.0,
            ConnectionState.DEGRADED: 0.5,
            ConnectionState.OFFLINE: 0.0,
        }[model.connection])
        for src in Source:
            m.ingestion_mode.labels(source=src.value).set(1 if model.mode is src else 0)
        if self.controller is not None:
            m.consecutive_failures.set(self.controller.state.failures)
        if model.ounce_price is not None:
            m.ounce_price_usd.set(model.ounce_price)
        if model.ounce_delta is not None:
            m.ounce_delta_abs.set(model.ounce_delta.abs)
            # undefined percentage (zero baseline) exports as NaN
            pct = model.ounce_delta.pct
            m.ounce_delta_pct.set(pct if pct is not None else float("nan"))
        for card in model.cards:
            m.derived_price.labels(
                karat=card.karat, unit=card.unit.value, currency=card.price.currency.value
            ).set(card.price.total)
        if model.changed:
            m.last_change_timestamp_seconds.set(time.time())

    def render_metrics(self) -> bytes:
        return generate_latest(self.registry)

    def state_payload(self) -> Dict[str, object]:
        with self._state_lock:
            model = self.latest_model
        return {"state": model.to_dict() if model is not None else None}

    def chart_payload(self, timeframe: str) -> Dict[str, object]:
        points = self.controller.store.points() if self.controller is not None else []
        series = downsample(points, timeframe, self.config.max_shown_points)
        return {
            "timeframe": series.timeframe,
            "labels": series.labels,
            "data": series.values,
            "shownCount": series.shown_count,
            "rawCount": series.raw_count,
        }

    def start_http(self) -> None:
        """Start an HTTP server exposing /metrics and the /api endpoints."""
        tel = self.config.telemetry
        outer_self = self

        class Handler(BaseHTTPRequestHandler):  # type: ignore
            def log_message(self, format: str, *args) -> None:  # quiet logs
                return

            def _send(self_inner, status: int, data: bytes, content_type: str = "application/json") -> None:
                self_inner.send_response(status)
                self_inner.send_header("Content-Type", content_type)
                self_inner.send_header("Content-Length", str(len(data)))
                self_inner.send_header("Cache-Control", "no-store")
                self_inner.end_headers()
                self_inner.wfile.write(data)

            def _send_json(self_inner, status: int, payload: object) -> None:
                self_inner._send(status, json.dumps(payload).encode("utf-8"))

            def do_GET(self_inner):  # type: ignore
                try:
                    parsed = urlparse(self_inner.path)
                    path = parsed.path

                    if path == "/metrics":
                        self_inner._send(200, outer_self.render_metrics(), CONTENT_TYPE_LATEST)
                        return

                    if path == "/api/state":
                        self_inner._send_json(200, outer_self.state_payload())
                        return

                    if path == "/api/chart":
                        q = parse_qs(parsed.query)
                        tf = (q.get("timeframe", [outer_self.config.default_timeframe.value])[0] or "").strip()
                        try:
                            payload = outer_self.chart_payload(tf)
                        except ValueError as e:
                            self_inner._send_json(400, {"error": str(e)})
                            return
                        self_inner._send_json(200, payload)
                        return

                    self_inner._send_json(404, {"error": "not found"})
                except Exception as e:
                    log.exception(f"GET {self_inner.path} failed: {e}")
                    try:
                        self_inner._send_json(500, {"error": str(e)})
                    except Exception:
                        pass

            def do_POST(self_inner):  # type: ignore
                try:
                    path = urlparse(self_inner.path).path
                    if path == "/api/pause" and outer_self.controller is not None:
                        paused = outer_self.controller.toggle_pause()
                        self_inner._send_json(200, {"paused": paused})
                        return
                    self_inner._send_json(404, {"error": "not found"})
                except Exception as e:
                    log.exception(f"POST {self_inner.path} failed: {e}")
                    try:
                        self_inner._send_json(500, {"error": str(e)})
                    except Exception:
                        pass

        server = HTTPServer((tel.listen_address, int(tel.listen_port)), Handler)
        self._server = server
        t = threading.Thread(target=server.serve_forever, daemon=True, name="MetricsHTTP")
        t.start()
        log.info(f"Serving /metrics and /api on http://{tel.listen_address}:{tel.listen_port}")

    def stop_http(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
