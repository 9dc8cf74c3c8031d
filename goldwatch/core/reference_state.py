#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Reference state handling: baselines and deltas per tracked metric.

A baseline is the value a metric last *changed to*. It only advances when the
change detector fires, so deltas stay visible between change events instead of
collapsing to zero on every poll.

Tracked metrics:
- the raw ounce price (one key)
- every (karat, unit, currency mode) combination that has been displayed,
  derived with zero margin so that a manual markup never shows up as movement

Keys that are not in the active display contexts keep their frozen baseline
until they are revisited on a later change event.

State is process-local and resets on restart.
"""
from __future__ import annotations

import logging
import math
from typing import Dict, Iterable, Optional

from ..shared.config import GoldwatchConfig
from ..shared.models import BaselineKey, DeltaRecord, DisplayContext
from .pricing import derive

log = logging.getLogger(__name__)


def compute_delta(new_value: float, baseline: float) -> DeltaRecord:
    """abs = new - baseline; pct is None when the baseline is exactly 0."""
    abs_value = new_value - baseline
    pct = None if baseline == 0 else abs_value / baseline * 100.0
    return DeltaRecord.build(abs_value, pct)


class BaselineTracker:
    def __init__(self, config: GoldwatchConfig) -> None:
        self.config = config
        self._baselines: Dict[BaselineKey, float] = {}
        self._deltas: Dict[BaselineKey, DeltaRecord] = {}

    def baseline(self, key: BaselineKey) -> Optional[float]:
        return self._baselines.get(key)

    def delta(self, key: BaselineKey) -> Optional[DeltaRecord]:
        return self._deltas.get(key)

    def keys(self) -> list:
        return list(self._baselines.keys())

    def advance(self, key: BaselineKey, value: float) -> DeltaRecord:
        """
        Apply one change event to a single key

        First observation sets the baseline with a flat delta. Afterwards the
        delta is recomputed against the old baseline and the baseline always
        moves to `value`; a zero delta keeps the previous record on display.
        """
        if not math.isfinite(value):
            log.warning(f"Ignoring non-finite value for {key.label()}: {value}")
            return self._deltas.get(key) or DeltaRecord.flat()

        prev = self._baselines.get(key)
        if prev is None:
            self._baselines[key] = value
            self._deltas[key] = DeltaRecord.flat()
            return self._deltas[key]

        fresh = compute_delta(value, prev)
        self._baselines[key] = value
        if fresh.abs != 0 or key not in self._deltas:
            self._deltas[key] = fresh
        return self._deltas[key]

    def on_change(self, new_raw_price: float, timestamp: str, contexts: Iterable[DisplayContext]) -> None:
        """Advance the ounce key and every derived key currently in use."""
        ounce = self.advance(BaselineKey.ounce(), new_raw_price)
        log.debug(f"Baseline advanced at {timestamp}: ounce={new_raw_price} delta={ounce.abs:+.2f} ({ounce.sign.value})")

        for ctx in contexts:
            for karat in self.config.karats:
                key = BaselineKey.derived(karat, ctx.unit, ctx.currency)
                value = derive(self.config, new_raw_price, karat, ctx.unit, ctx.conversion_rate, 0.0).total
                self.advance(key, value)

    def reset(self) -> None:
        self._baselines.clear()
        self._deltas.clear()
