import copy
from datetime import datetime, timedelta
from io import BytesIO

import numpy as np
from PIL import Image

from config.config_loader import DEFAULT_CONFIG
from services.engine import PersonalizationEngine
from services.storage import InMemoryStore
from utils.prometheus_metrics import PrometheusMetrics

START = datetime(2024, 6, 3, 14, 0, 0)  # a Monday afternoon
TEST_SEED = 20240611


class FakeClock:
    def __init__(self, start: datetime = START):
        self._now = start
        self._monotonic = 1000.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, **kwargs):
        delta = timedelta(**kwargs)
        self._now += delta
        self._monotonic += delta.total_seconds()


def make_engine(clock=None, store=None, config=None) -> PersonalizationEngine:
    return PersonalizationEngine(
        store or InMemoryStore(),
        metrics=PrometheusMetrics(enabled=True),
        clock=clock or FakeClock(),
        config=config or copy.deepcopy(DEFAULT_CONFIG),
        hash_seed=TEST_SEED,
    )


def make_png(width: int = 64, height: int = 64, seed: int = 7) -> bytes:
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    buffer = BytesIO()
    Image.fromarray(pixels, "RGB").save(buffer, format="PNG")
    return buffer.getvalue()


def make_gradient_png(width: int = 64, height: int = 64) -> bytes:
    row = np.linspace(0, 255, width, dtype=np.uint8)
    gray = np.tile(row, (height, 1))
    pixels = np.stack([gray, gray, gray], axis=-1)
    buffer = BytesIO()
    Image.fromarray(pixels, "RGB").save(buffer, format="PNG")
    return buffer.getvalue()
