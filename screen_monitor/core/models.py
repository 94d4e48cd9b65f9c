"""
Core data types shared by the ingest gate, the matcher and the storage layer.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from ..errors import ConfigError, FrameError, MonitorError


WEAK_MARGIN = 0.04
WEAK_PREFIX = "weak_"


class IngestOutcome(Enum):
    """Result of offering a frame to the ingest gate."""
    ACCEPTED = "accepted"
    DROPPED_BUSY = "dropped_busy"
    DROPPED_RATE_LIMITED = "dropped_rate_limited"
    DROPPED_DUPLICATE = "dropped_duplicate"
    DROPPED_INVALID = "dropped_invalid"
    DROPPED_STOPPED = "dropped_stopped"


@dataclass(eq=True)
class Frame:
    """
    One raw RGBA8888 screen capture.

    The buffer is owned by the frame: producers may reuse their own buffer as
    soon as the frame has been built. scale == 2 means the producer already
    downscaled the capture, so no further resizing is applied.
    """
    width: int
    height: int
    data: bytes
    scale: int = 1
    timestamp: float = field(default_factory=time.time, compare=False)

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise FrameError(f"Invalid frame size {self.width}x{self.height}")
        expected = self.width * self.height * 4
        if len(self.data) != expected:
            raise FrameError(
                f"Frame buffer has {len(self.data)} bytes, expected {expected} "
                f"for {self.width}x{self.height} RGBA"
            )

    @classmethod
    def from_buffer(cls, buffer, width: int, height: int, scale: int = 1) -> "Frame":
        """
        Copy any buffer-protocol object into a new frame.

        Raises:
            FrameError: if the buffer cannot be copied or its size is not
                exactly width * height * 4; padded rows are rejected
        """
        try:
            data = bytes(buffer)
        except (TypeError, ValueError) as e:
            raise FrameError(f"Cannot copy frame buffer: {e}") from e
        return cls(width=width, height=height, data=data, scale=scale)

    def to_rgba(self) -> np.ndarray:
        """View the buffer as an (h, w, 4) array. The result is a private copy."""
        return np.frombuffer(self.data, dtype=np.uint8).reshape(self.height, self.width, 4).copy()


@dataclass(frozen=True)
class Template:
    """A preprocessed grayscale template ready for correlation."""
    name: str
    image: np.ndarray

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]


@dataclass(frozen=True)
class TemplateSnapshot:
    """Immutable view of the active template set, in priority order."""
    templates: Tuple[Template, ...] = ()

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(t.name for t in self.templates)

    def __len__(self) -> int:
        return len(self.templates)

    def __iter__(self):
        return iter(self.templates)


@dataclass
class MatchResult:
    """Outcome of a successful template search."""
    template_name: str
    score: float
    scale: float
    elapsed_ms: float
    is_weak: bool = False


@dataclass(frozen=True)
class Thresholds:
    """Strong and weak acceptance thresholds for one matching pass."""
    strong: float = 0.92
    weak: float = 0.92 - WEAK_MARGIN

    @classmethod
    def from_strong(cls, strong: float) -> "Thresholds":
        return cls(strong=strong, weak=strong - WEAK_MARGIN)


@dataclass
class PipelineReport:
    """What one processing pass did with an accepted frame."""
    quality_passed: bool = False
    match: Optional[MatchResult] = None
    saved_tags: list = field(default_factory=list)
    skipped_reason: Optional[str] = None
