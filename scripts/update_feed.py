#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Refresh the static mirror documents once (for a scheduled job).

Usage:
  python scripts/update_feed.py --config config/goldwatch_config.yaml
  python scripts/update_feed.py --latest data/latest.json --history data/history.json

Fetches the live endpoint, rewrites the latest document and appends to the
history document when the price moved at least the noise threshold.
Exits non-zero when the live endpoint fails.
"""
from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from goldwatch.core.feed_updater import update_feed  # noqa: E402
from goldwatch.core.price_source import SourceError  # noqa: E402
from goldwatch.shared.colored_logging import setup_colored_logging  # noqa: E402
from goldwatch.shared.config import ConfigError, load_config  # noqa: E402


def main() -> int:
    root = Path(__file__).resolve().parent.parent
    parser = argparse.ArgumentParser(description="Update the mirrored gold price feed")
    parser.add_argument("--config", default=str(root / "config" / "goldwatch_config.yaml"))
    parser.add_argument("--latest", default=None, help="Latest document path (default: feed.latestUrl)")
    parser.add_argument("--history", default=None, help="History document path (default: feed.historyUrl)")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    args = parser.parse_args()

    setup_colored_logging(level=getattr(logging, args.log_level))

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1

    latest = Path(args.latest or config.feed.latest_url)
    history = Path(args.history or config.feed.history_url)
    if not latest.is_absolute():
        latest = root / latest
    if not history.is_absolute():
        history = root / history

    try:
        result = update_feed(config, latest, history)
    except SourceError as e:
        print(f"FAIL: {type(e).__name__}: {e}")
        return 1

    print(f"price={result.price:.2f} appended={result.appended} history={result.history_size}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
