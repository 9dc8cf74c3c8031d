#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Console presenter: turns a RenderModel into log lines.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from ..shared.models import CurrencyMode, DeltaRecord, RenderModel

log = logging.getLogger(__name__)


def format_number(value: Optional[float], digits: int = 0) -> str:
    if value is None:
        return "—"
    return f"{value:,.{digits}f}"


def format_delta(delta: Optional[DeltaRecord], digits: int = 2, suffix: str = "$") -> str:
    if delta is None:
        return "—"
    pct = "—" if delta.pct is None else f"{abs(delta.pct):.3f}%"
    return f"{delta.sign.glyph} {format_number(delta.magnitude, digits)}{suffix} • {pct}"


def summarize(model: RenderModel) -> List[str]:
    lines = []
    state = "Paused" if model.paused else "Live"
    lines.append(
        f"XAU {format_number(model.ounce_price, 2)}$ {format_delta(model.ounce_delta)} "
        f"[{model.connection.value}{'/' + model.mode.value if model.mode else ''}, {state}, "
        f"updated {model.last_updated or '—'}, {model.series_points} pts]"
    )
    for card in model.cards:
        local = card.price.currency is CurrencyMode.LOCAL
        digits = 0 if local else 2
        currency = "IQD" if local else "$"
        margin = f" (base {format_number(card.price.base, digits)}, margin {format_number(card.price.margin_applied, 0)})" if local else ""
        lines.append(
            f"  {card.karat}K/{card.unit.value}: {format_number(card.price.total, digits)} {currency}{margin} "
            f"{format_delta(card.delta, digits, ' ' + currency)}"
        )
    if model.chart is not None:
        lines.append(f"  chart {model.chart.timeframe}: {model.chart.shown_count}/{model.chart.raw_count} points")
    return lines


class ConsolePresenter:
    """Logs every changed tick at INFO and unchanged ones at DEBUG."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.log = logger or log

    def __call__(self, model: RenderModel) -> None:
        level = logging.INFO if model.changed else logging.DEBUG
        if not self.log.isEnabledFor(level):
            return
        self.log.log(level, "\n".join(summarize(model)))
