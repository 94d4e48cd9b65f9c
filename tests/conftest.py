import io

import numpy as np
import pytest
from PIL import Image

from screen_monitor.config import ConfigRepository, MonitorConfig
from screen_monitor.core.models import Frame


def noise(height: int, width: int, seed: int) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width), dtype=np.uint8)


def png_bytes(gray: np.ndarray) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(gray).save(buf, format="PNG")
    return buf.getvalue()


def frame_from_gray(gray: np.ndarray, scale: int = 1) -> Frame:
    h, w = gray.shape
    rgba = np.dstack([gray, gray, gray, np.full((h, w), 255, dtype=np.uint8)])
    return Frame(width=w, height=h, data=rgba.tobytes(), scale=scale)


def paste(background: np.ndarray, patch: np.ndarray, top: int, left: int) -> np.ndarray:
    out = background.copy()
    out[top:top + patch.shape[0], left:left + patch.shape[1]] = patch
    return out


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingSink:
    """Match sink that keeps what it was given."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.saved = []

    def save_capture(self, data, tag, timestamp):
        if self.fail:
            return None
        self.saved.append((tag, data))
        return f"/captures/{len(self.saved)}_{tag}"

    @property
    def tags(self):
        return [tag for tag, _ in self.saved]


@pytest.fixture
def template_a() -> np.ndarray:
    return noise(80, 80, seed=1)


@pytest.fixture
def background() -> np.ndarray:
    return noise(240, 320, seed=2)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def config_repo() -> ConfigRepository:
    repo = ConfigRepository(path=None)
    repo.update(MonitorConfig(), persist=False)
    return repo
