import copy
import sys
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from goldwatch.shared.config import build_config


BASE_RAW = {
    "apiUrl": "https://example.invalid/price/XAU",
    "noiseThresholdUSD": 0.10,
    "poll": {"directMs": 1000, "directTimeoutMs": 2500},
    "chart": {"maxPoints": 9000, "maxShown": 520},
    "karats": {"24": 1.0, "22": 0.916, "21": 0.875, "18": 0.75},
    "constants": {"mithqalGram": 5, "ounceToGram": 31.1035},
    "margin": {"min": 0, "max": 20000, "step": 1000},
}


@pytest.fixture
def raw_config():
    return copy.deepcopy(BASE_RAW)


@pytest.fixture
def make_config(raw_config):
    """Build a config from the base document; overrides use `chart__maxPoints=10` paths."""
    def _make(**overrides):
        raw = copy.deepcopy(raw_config)
        for dotted, value in overrides.items():
            node = raw
            parts = dotted.split("__")
            for part in parts[:-1]:
                node = node.setdefault(part, {})
            node[parts[-1]] = value
        return build_config(raw)
    return _make


@pytest.fixture
def config(make_config):
    return make_config()
