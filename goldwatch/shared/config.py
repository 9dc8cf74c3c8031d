#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration System for goldwatch
Handles YAML (or JSON) configuration loading, validation, and type conversion.

The document is read once at startup; the resulting dataclasses are frozen.
"""

import yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .models import Timeframe, Unit


class ConfigError(Exception):
    """Configuration-related errors"""
    pass


_MISSING = object()

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class MarginBounds:
    """Range and step of the user margin (converted-currency minor units)"""
    min: float = 0.0
    max: float = 0.0
    step: float = 1.0

    def __post_init__(self):
        if self.step <= 0:
            raise ValueError("margin.step must be positive")
        if self.min > self.max:
            raise ValueError("margin.min must not exceed margin.max")


@dataclass(frozen=True)
class FeedConfig:
    """Static mirror documents maintained by the background updater"""
    latest_url: str = "data/latest.json"
    history_url: str = "data/history.json"
    timeout_ms: int = 8000

    def __post_init__(self):
        if not self.latest_url or not self.history_url:
            raise ValueError("feed.latestUrl and feed.historyUrl cannot be empty")
        if self.timeout_ms <= 0:
            raise ValueError("feed.timeoutMs must be positive")


@dataclass(frozen=True)
class StorageConfig:
    dir: str = ".goldwatch"
    chart_history_key: str = "gm_chart_history_v1"

    def __post_init__(self):
        if not self.dir:
            raise ValueError("storage.dir cannot be empty")
        if not self.chart_history_key:
            raise ValueError("storage.keys.chartHistory cannot be empty")


@dataclass(frozen=True)
class DisplayConfig:
    """Initial display context; changed at runtime through the controller"""
    unit: Unit = Unit.MITHQAL
    conversion_rate: Optional[float] = None
    margin: Optional[float] = None

    def __post_init__(self):
        if self.conversion_rate is not None and self.conversion_rate <= 0:
            raise ValueError("display.conversionRate must be positive when set")


@dataclass(frozen=True)
class TelemetryConfig:
    enabled: bool = False
    listen_address: str = "127.0.0.1"
    listen_port: int = 9108
    metric_prefix: str = "gm_"

    def __post_init__(self):
        if not (1 <= self.listen_port <= 65535):
            raise ValueError("telemetry.listenPort must be between 1 and 65535")


@dataclass(frozen=True)
class GoldwatchConfig:
    """Main configuration"""
    api_url: str
    noise_threshold_usd: float
    poll_interval_ms: int
    direct_timeout_ms: int
    max_points: int
    max_shown_points: int
    karat_factors: Dict[str, float]
    mithqal_grams: float
    ounce_to_gram_ratio: float
    margin_bounds: MarginBounds
    feed: FeedConfig = field(default_factory=FeedConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    default_timeframe: Timeframe = Timeframe.H24
    logging_level: str = "INFO"
    user_agent: str = "goldwatch/1.0"

    def __post_init__(self):
        """Validate main configuration"""
        if not self.api_url:
            raise ValueError("apiUrl cannot be empty")
        if self.noise_threshold_usd < 0:
            raise ValueError("noiseThresholdUSD cannot be negative")
        if self.poll_interval_ms <= 0:
            raise ValueError("poll.directMs must be positive")
        if self.direct_timeout_ms <= 0:
            raise ValueError("poll.directTimeoutMs must be positive")
        if self.max_points <= 0:
            raise ValueError("chart.maxPoints must be positive")
        if self.max_shown_points <= 0:
            raise ValueError("chart.maxShown must be positive")
        if not self.karat_factors:
            raise ValueError("karats cannot be empty")
        for karat, factor in self.karat_factors.items():
            if factor <= 0:
                raise ValueError(f"karat factor for {karat} must be positive")
        if self.mithqal_grams <= 0:
            raise ValueError("constants.mithqalGram must be positive")
        if self.ounce_to_gram_ratio <= 0:
            raise ValueError("constants.ounceToGram must be positive")
        if self.logging_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"logging.level must be one of: {list(VALID_LOG_LEVELS)}")

    @property
    def karats(self) -> list:
        return list(self.karat_factors.keys())

    @property
    def poll_interval_s(self) -> float:
        return self.poll_interval_ms / 1000.0

    @property
    def direct_timeout_s(self) -> float:
        return self.direct_timeout_ms / 1000.0


def _lookup(raw: Dict[str, Any], dotted: str, default: Any = _MISSING) -> Any:
    """
    Resolve a dotted path ('poll.directMs') in the raw document

    Raises:
        ConfigError: If the field is absent and no default is given
    """
    node: Any = raw
    for part in dotted.split("."):
        if not isinstance(node, dict) or part not in node or node[part] is None:
            if default is _MISSING:
                raise ConfigError(f"Missing required configuration field: {dotted}")
            return default
        node = node[part]
    return node


def _number(raw: Dict[str, Any], dotted: str, default: Any = _MISSING) -> float:
    value = _lookup(raw, dotted, default)
    if value is None:
        return value
    if isinstance(value, bool):
        raise ConfigError(f"{dotted} must be a number, got a boolean")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{dotted} must be a number, got {value!r}")


def _load_raw_config(config_path: str) -> Dict[str, Any]:
    """
    Load raw configuration from a YAML or JSON file

    Args:
        config_path: Path to the configuration file

    Returns:
        Raw configuration dictionary

    Raises:
        ConfigError: If file cannot be loaded or parsed
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML/JSON in {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read {config_path}: {e}")

    if not isinstance(raw_config, dict):
        raise ConfigError(f"Configuration must be a mapping, got {type(raw_config)}")

    return raw_config


def build_config(raw: Dict[str, Any]) -> GoldwatchConfig:
    """
    Build GoldwatchConfig from a raw document

    Args:
        raw: Parsed configuration mapping

    Returns:
        Validated, immutable GoldwatchConfig

    Raises:
        ConfigError: If a required field is missing or a value is invalid
    """
    try:
        karats_raw = _lookup(raw, "karats")
        if not isinstance(karats_raw, dict):
            raise ConfigError("'karats' must be a mapping of karat -> factor")
        karat_factors = {}
        for karat, factor in karats_raw.items():
            if isinstance(factor, bool):
                raise ConfigError(f"karats.{karat} must be a number")
            try:
                karat_factors[str(karat)] = float(factor)
            except (TypeError, ValueError):
                raise ConfigError(f"karats.{karat} must be a number, got {factor!r}")

        margin = MarginBounds(
            min=_number(raw, "margin.min"),
            max=_number(raw, "margin.max"),
            step=_number(raw, "margin.step"),
        )

        feed = FeedConfig(
            latest_url=str(_lookup(raw, "feed.latestUrl", "data/latest.json")),
            history_url=str(_lookup(raw, "feed.historyUrl", "data/history.json")),
            timeout_ms=int(_number(raw, "feed.timeoutMs", 8000)),
        )

        storage = StorageConfig(
            dir=str(_lookup(raw, "storage.dir", ".goldwatch")),
            chart_history_key=str(_lookup(raw, "storage.keys.chartHistory", "gm_chart_history_v1")),
        )

        unit_raw = str(_lookup(raw, "display.unit", Unit.MITHQAL.value)).strip().lower()
        try:
            unit = Unit(unit_raw)
        except ValueError:
            raise ConfigError(f"display.unit must be one of {[u.value for u in Unit]}")
        display = DisplayConfig(
            unit=unit,
            conversion_rate=_number(raw, "display.conversionRate", None),
            margin=_number(raw, "display.margin", None),
        )

        telemetry = TelemetryConfig(
            enabled=bool(_lookup(raw, "telemetry.enabled", False)),
            listen_address=str(_lookup(raw, "telemetry.listenAddress", "127.0.0.1")),
            listen_port=int(_number(raw, "telemetry.listenPort", 9108)),
            metric_prefix=str(_lookup(raw, "telemetry.metricPrefix", "gm_")),
        )

        return GoldwatchConfig(
            api_url=str(_lookup(raw, "apiUrl")),
            noise_threshold_usd=_number(raw, "noiseThresholdUSD"),
            poll_interval_ms=int(_number(raw, "poll.directMs")),
            direct_timeout_ms=int(_number(raw, "poll.directTimeoutMs")),
            max_points=int(_number(raw, "chart.maxPoints")),
            max_shown_points=int(_number(raw, "chart.maxShown")),
            karat_factors=karat_factors,
            mithqal_grams=_number(raw, "constants.mithqalGram"),
            ounce_to_gram_ratio=_number(raw, "constants.ounceToGram"),
            margin_bounds=margin,
            feed=feed,
            storage=storage,
            display=display,
            telemetry=telemetry,
            default_timeframe=Timeframe.parse(_lookup(raw, "chart.defaultTimeframe", "24h")),
            logging_level=str(_lookup(raw, "logging.level", "INFO")).upper(),
            user_agent=str(_lookup(raw, "userAgent", "goldwatch/1.0")),
        )

    except (ValueError, TypeError) as e:
        raise ConfigError(f"Configuration validation failed: {e}")


def load_config(config_path: str) -> GoldwatchConfig:
    """
    Load and validate configuration from a YAML or JSON file

    Args:
        config_path: Path to the configuration file

    Returns:
        Validated GoldwatchConfig instance

    Raises:
        ConfigError: If configuration cannot be loaded or is invalid
    """
    try:
        return build_config(_load_raw_config(str(config_path)))
    except ConfigError:
        raise
    except Exception as e:
        raise ConfigError(f"Unexpected error loading configuration: {e}")
