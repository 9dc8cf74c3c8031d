#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Derived price engine.

Pure functions mapping an ounce price to per-unit karat prices:

    per_gram_24k = ounce_usd / ounce_to_gram
    base_usd     = per_gram_24k * karat_factor * (1 | mithqal_grams)

In converted-currency mode the base is multiplied by the conversion rate and
the user margin is added on top; in USD mode no margin applies. Shared by the
karat cards, the baseline tracker (always with zero margin), the expectation
panel and the tax finder.
"""
from __future__ import annotations

import math
from typing import Dict, Optional

from ..shared.config import GoldwatchConfig, MarginBounds
from ..shared.models import CurrencyMode, DerivedPrice, Unit


def unit_grams(config: GoldwatchConfig, unit: Unit) -> float:
    return 1.0 if unit is Unit.GRAM else config.mithqal_grams


def karat_factor(config: GoldwatchConfig, karat: str) -> float:
    try:
        return config.karat_factors[str(karat)]
    except KeyError:
        raise ValueError(f"Unknown karat {karat!r}; configured: {config.karats}")


def derive(config: GoldwatchConfig, ounce_usd: float, karat: str, unit: Unit, conversion_rate: Optional[float] = None, margin_minor: float = 0.0) -> DerivedPrice:
    """
    Price of one unit of `karat` gold

    Args:
        config: Loaded configuration (factors and unit ratios)
        ounce_usd: Raw ounce price in the source currency
        karat: Karat key as configured ("24", "21", ...)
        unit: GRAM or MITHQAL
        conversion_rate: Source-to-local rate; None selects USD mode
        margin_minor: Additive markup, only applied in converted mode

    Returns:
        DerivedPrice with currency, base, applied margin and total
    """
    per_gram_24k = ounce_usd / config.ounce_to_gram_ratio
    base_usd = per_gram_24k * karat_factor(config, karat) * unit_grams(config, unit)
    if not conversion_rate:
        return DerivedPrice(currency=CurrencyMode.USD, base=base_usd, margin_applied=0.0, total=base_usd)
    margin = margin_minor if (margin_minor is not None and math.isfinite(margin_minor)) else 0.0
    base_local = base_usd * conversion_rate
    return DerivedPrice(currency=CurrencyMode.LOCAL, base=base_local, margin_applied=margin, total=base_local + margin)


def clamp_margin(bounds: MarginBounds, value: float) -> float:
    """Clamp into [min, max] and snap to the configured step."""
    clamped = min(bounds.max, max(bounds.min, value))
    return round(clamped / bounds.step) * bounds.step


def expectation(config: GoldwatchConfig, ounce_usd: float, karat: str, unit: Unit, conversion_rate: Optional[float] = None, margin_minor: float = 0.0) -> Dict[str, DerivedPrice]:
    """What-if pricing for a hypothetical ounce price.

    Returns the selected unit's price (with margin) plus margin-free
    per-gram and per-mithqal references.
    """
    return {
        "selected": derive(config, ounce_usd, karat, unit, conversion_rate, margin_minor if conversion_rate else 0.0),
        "per_gram": derive(config, ounce_usd, karat, Unit.GRAM, conversion_rate, 0.0),
        "per_mithqal": derive(config, ounce_usd, karat, Unit.MITHQAL, conversion_rate, 0.0),
    }


def margin_from_local_price(config: GoldwatchConfig, local_price: float, ounce_usd: float, karat: str, unit: Unit, conversion_rate: Optional[float]) -> float:
    """
    Margin that explains a locally quoted price (tax finder)

    The live base price is subtracted from the quote; a quote below the base
    gives a zero margin. The result is clamped and snapped like slider input.

    Raises:
        ValueError: If any input is missing or no conversion rate is set
    """
    if local_price is None or not math.isfinite(local_price):
        raise ValueError("Enter local price first.")
    if ounce_usd is None or not math.isfinite(ounce_usd):
        raise ValueError("Live ounce not ready yet.")
    if not conversion_rate or not math.isfinite(conversion_rate):
        raise ValueError("A conversion rate is required (converted-currency mode).")
    base = derive(config, ounce_usd, karat, unit, conversion_rate, 0.0).base
    return clamp_margin(config.margin_bounds, max(0.0, local_price - base))
