#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Noise filter deciding whether a reading is a genuine price change.
"""
from __future__ import annotations

from typing import Optional

from ..shared.models import Reading

# absorbs binary float error such as 100.10 - 100.00 == 0.0999999...
FLOAT_TOLERANCE = 1e-9


class ChangeDetector:
    """
    Accepts a reading when there is no previously accepted one, or when it
    moved at least `threshold` away from it (|price - reference| >= threshold).
    """

    def __init__(self, threshold: float) -> None:
        if threshold < 0:
            raise ValueError("threshold cannot be negative")
        self.threshold = float(threshold)

    def accept(self, reading: Reading, last_accepted: Optional[Reading]) -> bool:
        if last_accepted is None:
            return True
        return self.moved(reading.price, last_accepted.price)

    def moved(self, price: float, reference: Optional[float]) -> bool:
        if reference is None:
            return True
        return abs(price - reference) >= self.threshold - FLOAT_TOLERANCE
