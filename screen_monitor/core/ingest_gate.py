"""
Frame Ingest Gate - admission control in front of the matcher.

Architecture:
    on_frame_available (producer thread)
        └──→ accept()
               ├─ busy?          → DROPPED_BUSY
               ├─ too soon?      → DROPPED_RATE_LIMITED
               ├─ same picture?  → DROPPED_DUPLICATE
               └─ ACCEPTED ──→ FrameWorker ──→ process()
                                  ├─ decode, downscale, grayscale
                                  ├─ quality gate
                                  ├─ forced / periodic save
                                  ├─ match cooldown
                                  └─ matcher → sink

Key Design:
- accept() never blocks on the pipeline: at most one frame is in flight and
  everything arriving meanwhile is dropped, not queued
- The rate check runs before dedup, and the acceptance slot is consumed even
  if the frame then turns out to be a duplicate
- Thresholds, rate and cooldown are read from the config provider on every
  call, so a config update applies to the very next frame
- All timers use the injected clock (seconds)
"""

import io
import logging
import threading
import time
from datetime import datetime
from typing import Callable, Optional

import cv2
import numpy as np
from PIL import Image

from ..threads.frame_worker import FrameWorker
from ..vision.matcher import ScaleSpaceMatcher
from ..vision.quality import assess_frame_quality
from ..vision.signature import compute_signature
from .interfaces import ConfigProvider, MatchSink
from .models import Frame, FrameError, IngestOutcome, PipelineReport, Thresholds
from .pipeline_state import PipelineState

logger = logging.getLogger(__name__)


MAX_FRAME_DIMENSION = 2160       # Native frames larger than this are downscaled
DEFAULT_INTERVAL_SECONDS = 0.5   # Used when detectPerSecond <= 0
PERIODIC_SAVE_SECONDS = 30 * 60
STATS_LOG_SECONDS = 10.0
JPEG_QUALITY = 90

TAG_PERIODIC = "periodic"
TAG_FORCED = "forced"


def accept_interval(detect_per_second: float) -> float:
    """Minimum seconds between two accepted frames."""
    if detect_per_second > 0:
        return 1.0 / detect_per_second
    return DEFAULT_INTERVAL_SECONDS


def downscale_frame(rgba: np.ndarray, max_dimension: int = MAX_FRAME_DIMENSION) -> np.ndarray:
    """Shrink so the longest side is at most max_dimension, keeping aspect ratio."""
    h, w = rgba.shape[:2]
    longest = max(w, h)
    if longest <= max_dimension:
        return rgba
    factor = max_dimension / longest
    new_size = (max(1, round(w * factor)), max(1, round(h * factor)))
    return cv2.resize(rgba, new_size, interpolation=cv2.INTER_AREA)


def encode_jpeg(rgba: np.ndarray, quality: int = JPEG_QUALITY) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(rgba).convert("RGB").save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


class FrameIngestGate:
    """
    Admission, deduplication and dispatch of raw frames.

    Usage:
        gate = FrameIngestGate(matcher, sink, config_repo)
        gate.start()
        outcome = gate.accept(frame)
        ...
        gate.shutdown()

    With threaded=False accepted frames are processed inline before accept()
    returns, which keeps tests deterministic. A threaded gate reports
    DROPPED_STOPPED until start() has been called.
    """

    def __init__(
        self,
        matcher: ScaleSpaceMatcher,
        sink: MatchSink,
        config_provider: ConfigProvider,
        clock: Callable[[], float] = time.monotonic,
        periodic_save_seconds: float = PERIODIC_SAVE_SECONDS,
        max_dimension: int = MAX_FRAME_DIMENSION,
        threaded: bool = True,
    ):
        self.matcher = matcher
        self.sink = sink
        self.config_provider = config_provider
        self.clock = clock
        self.periodic_save_seconds = periodic_save_seconds
        self.max_dimension = max_dimension

        self.state = PipelineState()
        self._idle = threading.Event()
        self._idle.set()
        self._stopped = False
        self._last_stats_log: Optional[float] = None

        self.threaded = threaded
        self._worker: Optional[FrameWorker] = None
        if threaded:
            self._worker = FrameWorker(handler=self._run_pass, name="FrameWorker")

    # =========================
    # Lifecycle
    # =========================

    def start(self):
        """Start (or restart after shutdown) the worker."""
        if self._stopped:
            # A stopped worker thread cannot be started again
            self.state.reset()
            self._idle.set()
            self._last_stats_log = None
            if self.threaded:
                self._worker = FrameWorker(handler=self._run_pass, name="FrameWorker")
            self._stopped = False
        if self._worker is not None and not self._worker.is_alive():
            self._worker.start()
        logger.info("Ingest gate started")

    def _is_accepting(self) -> bool:
        if self._stopped:
            return False
        return self._worker is None or self._worker.is_alive()

    @property
    def is_busy(self) -> bool:
        return not self._idle.is_set()

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no frame is being processed."""
        return self._idle.wait(timeout)

    def reset(self):
        """Clear timers, signature, counters and the busy flag. Templates are kept."""
        self.state.reset()
        self._idle.set()
        self._last_stats_log = None
        logger.info("Ingest gate reset")

    def shutdown(self):
        """Stop the worker and refuse further frames. Safe to call repeatedly."""
        if self._stopped:
            return
        self._stopped = True
        if self._worker is not None:
            self._worker.stop()
        self.state.reset()
        self._idle.set()
        logger.info("Ingest gate shut down")

    def request_forced_save(self):
        """Save the next frame that passes the quality gate, tagged 'forced'."""
        self.state.request_forced_save()

    # =========================
    # Admission
    # =========================

    def submit(self, buffer, width: int, height: int, scale: int = 1) -> IngestOutcome:
        """Copy a producer-owned buffer and offer it to the gate."""
        if not self._is_accepting():
            self.state.incr("dropped_stopped")
            return IngestOutcome.DROPPED_STOPPED
        if self.is_busy:
            self.state.incr("received")
            self.state.incr("dropped_busy")
            return IngestOutcome.DROPPED_BUSY

        try:
            frame = Frame.from_buffer(buffer, width, height, scale)
        except FrameError as e:
            logger.error(f"Dropping frame: {e}")
            self.state.incr("received")
            self.state.incr("dropped_invalid")
            return IngestOutcome.DROPPED_INVALID

        return self.accept(frame)

    def accept(self, frame: Frame) -> IngestOutcome:
        """Decide whether a frame enters the pipeline. Never blocks on processing."""
        if not self._is_accepting():
            self.state.incr("dropped_stopped")
            return IngestOutcome.DROPPED_STOPPED

        now = self.clock()
        self.state.incr("received")
        self._maybe_log_stats(now)

        interval = accept_interval(self.config_provider.get_current().detectPerSecond)
        outcome = self._admit(frame, now, interval)

        if outcome is not IngestOutcome.ACCEPTED:
            self.state.incr(outcome.value)
            return outcome

        self.state.incr("accepted")

        if self._worker is None:
            self._run_pass(frame)
        elif not self._worker.submit(frame):
            self._idle.set()
            self.state.incr("dropped_busy")
            return IngestOutcome.DROPPED_BUSY

        return IngestOutcome.ACCEPTED

    def _admit(self, frame: Frame, now: float, interval: float) -> IngestOutcome:
        state = self.state
        with state.lock:
            if not self._idle.is_set():
                return IngestOutcome.DROPPED_BUSY

            if state.last_accept_time is not None and now - state.last_accept_time < interval:
                return IngestOutcome.DROPPED_RATE_LIMITED
            state.last_accept_time = now

            signature = compute_signature(frame.data, frame.width, frame.height)
            if signature is None:
                return IngestOutcome.DROPPED_INVALID
            if signature == state.last_signature:
                return IngestOutcome.DROPPED_DUPLICATE

            state.last_signature = signature
            self._idle.clear()
            return IngestOutcome.ACCEPTED

    # =========================
    # Processing
    # =========================

    def _run_pass(self, frame: Frame):
        try:
            self.process(frame)
        except Exception as e:
            self.state.incr("errors")
            logger.error(f"Frame pipeline failed: {e}", exc_info=True)
        finally:
            self._idle.set()

    def process(self, frame: Frame, now: Optional[float] = None) -> PipelineReport:
        """Run one full pipeline pass on an accepted frame."""
        if now is None:
            now = self.clock()
        current = self.config_provider.get_current()
        report = PipelineReport()

        rgba = frame.to_rgba()
        working = rgba if frame.scale != 1 else downscale_frame(rgba, self.max_dimension)
        gray = cv2.cvtColor(working, cv2.COLOR_RGBA2GRAY)

        quality = assess_frame_quality(gray)
        if not quality.passed:
            self.state.incr("quality_rejected")
            report.skipped_reason = quality.rejection_reason
            logger.debug(f"Frame rejected: {quality.rejection_reason}")
            return report

        report.quality_passed = True
        self.state.incr("processed")

        if self.state.take_forced_save():
            self._save(rgba, TAG_FORCED, frame.timestamp, report)

        if self.state.periodic_save_due(now, self.periodic_save_seconds):
            self._save(rgba, TAG_PERIODIC, frame.timestamp, report)

        if self.state.in_cooldown(now, current.matchCooldownMs / 1000.0):
            self.state.incr("cooldown_skips")
            report.skipped_reason = "cooldown"
            return report

        result = self.matcher.match(gray, Thresholds.from_strong(current.matchThreshold))
        report.match = result
        if result is None:
            return report

        self.state.record_match(now)
        self.state.incr("weak_matches" if result.is_weak else "matches")
        logger.info(
            f"Matched {result.template_name} (score={result.score:.3f}, "
            f"scale={result.scale:.2f}, {result.elapsed_ms:.0f}ms)"
        )
        self._save(rgba, result.template_name, frame.timestamp, report)
        return report

    def _save(self, rgba: np.ndarray, tag: str, timestamp: float, report: PipelineReport):
        try:
            data = encode_jpeg(rgba)
            location = self.sink.save_capture(data, tag, datetime.fromtimestamp(timestamp))
        except Exception as e:
            self.state.incr("save_failures")
            logger.error(f"Failed to save frame ({tag}): {e}")
            return

        if location is None:
            self.state.incr("save_failures")
            logger.warning(f"Sink rejected frame ({tag})")
            return

        self.state.incr("saves")
        report.saved_tags.append(tag)
        logger.debug(f"Frame saved ({tag}) -> {location}")

    # =========================
    # Diagnostics
    # =========================

    def _maybe_log_stats(self, now: float):
        if self._last_stats_log is None:
            self._last_stats_log = now
            return
        if now - self._last_stats_log < STATS_LOG_SECONDS:
            return
        self._last_stats_log = now
        s = self.state.snapshot()
        logger.info(
            f"Frames: received={s['received']} accepted={s['accepted']} "
            f"busy={s['dropped_busy']} rate={s['dropped_rate_limited']} "
            f"dup={s['dropped_duplicate']} invalid={s['dropped_invalid']} "
            f"flat={s['quality_rejected']} matches={s['matches']}"
        )

    def get_stats(self) -> dict:
        stats = self.state.snapshot()
        stats["busy"] = self.is_busy
        stats["stopped"] = self._stopped
        if self._worker is not None:
            stats["worker"] = self._worker.get_stats()
        return stats
