#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Domain Models for the goldwatch price monitor
Defines readings, price points, baseline keys, deltas and the per-tick render model.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class Source(str, Enum):
    """Where a reading came from"""
    DIRECT = "DIRECT"
    FEED = "FEED"


class Unit(str, Enum):
    """Physical basis of a derived price"""
    GRAM = "gram"
    MITHQAL = "mithqal"


class CurrencyMode(str, Enum):
    """USD = primary (source) currency, LOCAL = converted with a user rate"""
    USD = "USD"
    LOCAL = "LOCAL"


class MetricKind(str, Enum):
    OUNCE = "OUNCE"
    DERIVED = "DERIVED"


class Sign(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    FLAT = "FLAT"

    @property
    def glyph(self) -> str:
        return {"UP": "▲", "DOWN": "▼", "FLAT": "—"}[self.value]


class ConnectionState(str, Enum):
    ONLINE = "ONLINE"      # live endpoint answered
    DEGRADED = "DEGRADED"  # live endpoint failed, static mirror answered
    OFFLINE = "OFFLINE"    # nothing retrievable this tick


class Timeframe(str, Enum):
    H1 = "1h"
    H24 = "24h"
    D7 = "7d"

    @property
    def window_seconds(self) -> int:
        return {"1h": 3600, "24h": 24 * 3600, "7d": 7 * 24 * 3600}[self.value]

    @classmethod
    def parse(cls, value: object) -> "Timeframe":
        if isinstance(value, Timeframe):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"timeframe must be one of {[t.value for t in cls]}, got {value!r}")


@dataclass(frozen=True)
class Reading:
    """
    One normalized price observation produced by a poll attempt

    Transient: only accepted readings leave a trace (as PricePoints).
    """
    price: float
    timestamp: str  # ISO-8601
    source: Source


@dataclass(frozen=True)
class PricePoint:
    """Persisted chart point; `t` is the identity key for deduplication"""
    t: str
    p: float

    def to_dict(self) -> Dict[str, object]:
        return {"t": self.t, "p": self.p}

    @classmethod
    def from_dict(cls, raw: object) -> Optional["PricePoint"]:
        """Build a point from `{t, p}`; returns None for malformed entries."""
        if not isinstance(raw, dict):
            return None
        t = raw.get("t")
        p = raw.get("p")
        if not t or isinstance(p, bool):
            return None
        try:
            value = float(p)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(value):
            return None
        return cls(t=str(t), p=value)


@dataclass(frozen=True)
class BaselineKey:
    """Composite key of one tracked metric"""
    kind: MetricKind
    unit: Optional[Unit] = None
    currency: CurrencyMode = CurrencyMode.USD
    karat: Optional[str] = None

    @classmethod
    def ounce(cls) -> "BaselineKey":
        return cls(kind=MetricKind.OUNCE)

    @classmethod
    def derived(cls, karat: str, unit: Unit, currency: CurrencyMode) -> "BaselineKey":
        return cls(kind=MetricKind.DERIVED, unit=unit, currency=currency, karat=str(karat))

    def label(self) -> str:
        if self.kind is MetricKind.OUNCE:
            return "ounce"
        return f"{self.karat}k|{self.unit.value}|{self.currency.value}"


def classify_sign(value: Optional[float]) -> Sign:
    if value is None or not math.isfinite(value) or value == 0:
        return Sign.FLAT
    return Sign.UP if value > 0 else Sign.DOWN


@dataclass(frozen=True)
class DeltaRecord:
    """Signed movement of a metric since its previous baseline"""
    abs: float
    pct: Optional[float]
    sign: Sign

    @classmethod
    def build(cls, abs_value: float, pct: Optional[float]) -> "DeltaRecord":
        return cls(abs=abs_value, pct=pct, sign=classify_sign(abs_value))

    @classmethod
    def flat(cls) -> "DeltaRecord":
        return cls(abs=0.0, pct=0.0, sign=Sign.FLAT)

    @property
    def magnitude(self) -> float:
        return abs(self.abs)

    @property
    def pct_magnitude(self) -> Optional[float]:
        return None if self.pct is None else abs(self.pct)


@dataclass(frozen=True)
class DerivedPrice:
    """Output of the derived price engine"""
    currency: CurrencyMode
    base: float
    margin_applied: float
    total: float


@dataclass(frozen=True)
class DisplayContext:
    """Unit and currency mode a set of karat cards is currently shown in"""
    unit: Unit = Unit.MITHQAL
    conversion_rate: Optional[float] = None

    @property
    def currency(self) -> CurrencyMode:
        return CurrencyMode.LOCAL if self.conversion_rate else CurrencyMode.USD


@dataclass(frozen=True)
class ChartSeries:
    """Render-ready chart series built by the downsampler"""
    timeframe: str
    labels: List[str] = field(default_factory=list)
    values: List[float] = field(default_factory=list)
    shown_count: int = 0
    raw_count: int = 0


@dataclass(frozen=True)
class CardView:
    karat: str
    unit: Unit
    price: DerivedPrice
    delta: Optional[DeltaRecord] = None


@dataclass(frozen=True)
class RenderModel:
    """
    Everything a presenter needs after one tick

    Built once per tick by the ingestion controller; presenters never reach
    back into controller state.
    """
    ounce_price: Optional[float]
    ounce_delta: Optional[DeltaRecord]
    cards: List[CardView]
    connection: ConnectionState
    mode: Optional[Source]
    last_updated: Optional[str]
    paused: bool
    changed: bool
    series_points: int
    chart: Optional[ChartSeries] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        def _delta(d: Optional[DeltaRecord]) -> Optional[Dict[str, object]]:
            if d is None:
                return None
            return {"abs": d.abs, "pct": d.pct, "sign": d.sign.value}

        return {
            "ounce_price": self.ounce_price,
            "ounce_delta": _delta(self.ounce_delta),
            "cards": [
                {
                    "karat": c.karat,
                    "unit": c.unit.value,
                    "currency": c.price.currency.value,
                    "base": c.price.base,
                    "margin_applied": c.price.margin_applied,
                    "total": c.price.total,
                    "delta": _delta(c.delta),
                }
                for c in self.cards
            ],
            "connection": self.connection.value,
            "mode": self.mode.value if self.mode else None,
            "last_updated": self.last_updated,
            "paused": self.paused,
            "changed": self.changed,
            "series_points": self.series_points,
            "chart": None if self.chart is None else {
                "timeframe": self.chart.timeframe,
                "labels": list(self.chart.labels),
                "data": list(self.chart.values),
                "shownCount": self.chart.shown_count,
                "rawCount": self.chart.raw_count,
            },
            "error": self.error,
        }
