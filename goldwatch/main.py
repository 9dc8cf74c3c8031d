#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
goldwatch main runner.
- Loads configuration
- Seeds the local series from the mirrored history
- Polls the live endpoint (mirror fallback) and renders every tick
- Optionally starts the Prometheus /metrics and /api server

Usage examples:
  python -m goldwatch.main --help
  python -m goldwatch.main --config path/to/goldwatch_config.yaml
  python -m goldwatch.main --once  # run one tick, print the summary and exit
  python -m goldwatch.main --update-feed  # refresh the mirror documents once
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from .core.chart_worker import ChartChannel
from .core.controller import IngestionController
from .core.exporter import MetricsExporter
from .core.feed_updater import update_feed
from .core.history_store import TimeSeriesStore
from .core.local_store import LocalStore
from .core.presenter import ConsolePresenter, summarize
from .core.price_source import DirectPriceSource, FeedMirrorSource, SourceError
from .core.reference_state import BaselineTracker
from .shared.colored_logging import setup_colored_logging
from .shared.config import ConfigError, GoldwatchConfig, load_config
from .shared.logging_setup import level_from_name
from .shared.models import Timeframe


def _resolve(base: Path, location: str) -> Path:
    path = Path(location)
    return path if path.is_absolute() else base / path


def build_controller(config: GoldwatchConfig, base: Path, timeframe: Optional[Timeframe] = None) -> IngestionController:
    """Wire sources, store, tracker and chart channel into a controller."""
    direct = DirectPriceSource(
        api_url=config.api_url,
        timeout_s=config.direct_timeout_s,
        user_agent=config.user_agent,
    )
    feed = FeedMirrorSource(
        latest_url=config.feed.latest_url,
        history_url=config.feed.history_url,
        timeout_s=config.feed.timeout_ms / 1000.0,
        base_dir=base,
    )
    store = TimeSeriesStore(
        max_points=config.max_points,
        local_store=LocalStore(_resolve(base, config.storage.dir)),
        key=config.storage.chart_history_key,
    )
    chart = ChartChannel(max_shown=config.max_shown_points, timeframe=timeframe or config.default_timeframe)
    return IngestionController(
        config,
        direct=direct,
        feed=feed,
        store=store,
        tracker=BaselineTracker(config),
        chart=chart,
        render=ConsolePresenter(),
    )


def main(config_path: Optional[str] = None, once: bool = False, no_telemetry: bool = False, log_level: Optional[str] = None, timeframe: Optional[str] = None, run_update_feed: bool = False) -> None:
    base = Path(__file__).resolve().parents[1]
    default_cfg = base / 'config' / 'goldwatch_config.yaml'
    try:
        config = load_config(str(config_path or default_cfg))
    except ConfigError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    setup_colored_logging(level=level_from_name(log_level or config.logging_level))
    log = logging.getLogger(__name__)

    if run_update_feed:
        try:
            result = update_feed(
                config,
                _resolve(base, config.feed.latest_url),
                _resolve(base, config.feed.history_url),
            )
        except SourceError as e:
            print(f"Feed update failed: {type(e).__name__}: {e}")
            sys.exit(1)
        print(f"price={result.price:.2f} appended={result.appended} history={result.history_size}")
        return

    try:
        tf = Timeframe.parse(timeframe) if timeframe else None
    except ValueError as e:
        print(str(e))
        sys.exit(2)

    controller = build_controller(config, base, tf)
    exporter: Optional[MetricsExporter] = None
    if config.telemetry.enabled and not once and not no_telemetry:
        exporter = MetricsExporter(config, controller)
        controller.store.on_storage_error = exporter.record_storage_error
        controller.add_renderer(exporter.update)
        exporter.start_http()

    controller.chart.start()
    try:
        size = controller.bootstrap()
        log.info(f"Startup: {size} points in the local series")

        if once:
            controller.tick()
            controller.chart.wait(timeout=5.0)
            model = controller.build_render_model()
            print("\n".join(summarize(model)))
            return

        try:
            controller.run_forever()
        except KeyboardInterrupt:
            log.info("Interrupted; stopping")
            controller.stop()
    finally:
        controller.chart.stop()
        if exporter is not None:
            exporter.stop_http()


def cli() -> None:
    parser = argparse.ArgumentParser(description='goldwatch gold price monitor')
    parser.add_argument('--config', type=str, default=None, help='Path to goldwatch_config.yaml (JSON is accepted too)')
    parser.add_argument('--once', action='store_true', help='Run one tick, print the summary and exit (no metrics server)')
    parser.add_argument('--no-telemetry', action='store_true', help='Disable metrics server even if enabled in config')
    parser.add_argument('--log-level', type=str, default=None, choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], help='Logging level (default: logging.level from config)')
    parser.add_argument('--timeframe', type=str, default=None, choices=[t.value for t in Timeframe], help='Initial chart timeframe')
    parser.add_argument('--update-feed', action='store_true', help='Refresh the mirrored latest/history documents once and exit')
    args = parser.parse_args()
    main(config_path=args.config, once=args.once, no_telemetry=args.no_telemetry, log_level=args.log_level, timeframe=args.timeframe, run_update_feed=args.update_feed)


if __name__ == '__main__':
    cli()
