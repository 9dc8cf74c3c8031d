#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Background feed updater.

Runs server-side on a schedule (one invocation per run) and maintains the
static mirror documents read by FeedMirrorSource:
- latest document, rewritten on every successful fetch
- history document, appended only when the price moved at least the noise
  threshold away from the last history point, capped at chart.maxPoints
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from ..shared.config import GoldwatchConfig
from ..shared.models import PricePoint
from .change_detector import ChangeDetector
from .price_source import DirectPriceSource

log = logging.getLogger(__name__)

UPDATER_SOURCE = "feed-updater"


@dataclass(frozen=True)
class UpdateResult:
    price: float
    updated_at: str
    appended: bool
    history_size: int


def _empty_latest() -> Dict[str, Any]:
    return {"v": 1, "updated_at": None, "price": None, "currency": "USD", "source": UPDATER_SOURCE}


def _empty_history() -> Dict[str, Any]:
    return {"v": 1, "updated_at": None, "points": [], "source": UPDATER_SOURCE}


def read_document(path: Path, fallback: Dict[str, Any]) -> Dict[str, Any]:
    """Missing, unreadable or non-object documents fall back to `fallback`."""
    try:
        doc = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return fallback
    except (OSError, ValueError) as e:
        log.warning(f"Ignoring unreadable document {path}: {e}")
        return fallback
    if not isinstance(doc, dict):
        log.warning(f"Ignoring {path}: expected a JSON object")
        return fallback
    return doc


def write_document(path: Path, doc: Dict[str, Any]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(doc, f, indent=2)
        f.write("\n")
    os.replace(tmp, path)


def update_feed(config: GoldwatchConfig, latest_path: Path, history_path: Path, source: Optional[DirectPriceSource] = None) -> UpdateResult:
    """
    Fetch one live price and refresh the mirror documents

    Args:
        config: Loaded configuration (apiUrl, threshold, maxPoints)
        latest_path: Where the latest document lives
        history_path: Where the history document lives
        source: Live endpoint adapter (built from config when omitted)

    Returns:
        UpdateResult describing what was written

    Raises:
        SourceError: If the live endpoint fails; nothing is written then
    """
    if source is None:
        source = DirectPriceSource(
            api_url=config.api_url,
            timeout_s=config.direct_timeout_s,
            user_agent=config.user_agent,
        )
    reading = source.fetch_direct()

    latest = _empty_latest()
    latest.update({"updated_at": reading.timestamp, "price": reading.price})
    write_document(latest_path, latest)

    history = read_document(history_path, _empty_history())
    raw_points = history.get("points")
    if not isinstance(raw_points, list):
        raw_points = []
    points = [pt for pt in (PricePoint.from_dict(p) for p in raw_points) if pt is not None]

    last_price = points[-1].p if points else None
    detector = ChangeDetector(config.noise_threshold_usd)
    if not detector.moved(reading.price, last_price):
        log.info(f"Noise (< {config.noise_threshold_usd}); history unchanged at {len(points)} points")
        return UpdateResult(price=reading.price, updated_at=reading.timestamp, appended=False, history_size=len(points))

    points.append(PricePoint(t=reading.timestamp, p=reading.price))
    if len(points) > config.max_points:
        points = points[-config.max_points:]
    write_document(history_path, {
        "v": 1,
        "updated_at": reading.timestamp,
        "points": [p.to_dict() for p in points],
        "source": UPDATER_SOURCE,
    })
    log.info(f"Saved history point: {reading.price} (>= {config.noise_threshold_usd}), {len(points)} points")
    return UpdateResult(price=reading.price, updated_at=reading.timestamp, appended=True, history_size=len(points))
