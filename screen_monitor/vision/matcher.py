"""
Scale-Space Template Matcher.

Two-phase normalized cross-correlation search, one template at a time in
priority order:

1. Coarse pass over a few widely spaced scales
2. Early exit when the coarse best is hopeless
3. Fine pass around the coarse winner (band chosen from the coarse best scale)
4. Strong result, weak result, or move on to the next template

The first template that qualifies wins. Scores are TM_CCOEFF_NORMED maxima,
so they lie in [-1, 1]; a failed or non-finite evaluation scores -inf.
"""

import logging
import math
import threading
import time
from typing import Iterable, List, Optional, Tuple

import cv2
import numpy as np

from ..core.models import WEAK_PREFIX, MatchResult, Template, TemplateSnapshot, Thresholds
from .templates import TemplateStore

logger = logging.getLogger(__name__)


# Search constants
COARSE_SCALES = (1.0, 0.7, 0.5)
FINE_SCALES_HIGH = (0.95, 0.90, 0.85)
FINE_SCALES_LOW = (0.55, 0.48, 0.45)
HIGH_BAND = 0.9              # Coarse best scale at or above -> search just below native
MID_BAND = 0.65              # Coarse best scale in [MID_BAND, HIGH_BAND) -> search around it
MID_STEP = 0.05
EARLY_EXIT_MARGIN = 0.20     # Skip fine pass if coarse best < strong - margin
MIN_TEMPLATE_SIZE = 30       # Scaled template smaller than this is meaningless
DIAGNOSTIC_MARGIN = 0.10     # Log top scores when this close to the threshold


def fine_scales(coarse_best_scale: float) -> Tuple[float, ...]:
    """Pick the fine-phase scales from the coarse result."""
    if coarse_best_scale >= HIGH_BAND:
        return FINE_SCALES_HIGH
    if coarse_best_scale >= MID_BAND:
        return (coarse_best_scale + MID_STEP, coarse_best_scale - MID_STEP)
    return FINE_SCALES_LOW


class ScaleSpaceMatcher:
    """
    Matches grayscale frames against the active template set.

    Stateless apart from a diagnostic evaluation counter; safe to call from
    several threads.
    """

    def __init__(self, store: Optional[TemplateStore] = None):
        self.store = store
        self._eval_lock = threading.Lock()
        self._evaluations = 0

    @property
    def evaluations(self) -> int:
        """Number of scale evaluations performed since creation or reset_counters()."""
        with self._eval_lock:
            return self._evaluations

    def reset_counters(self):
        with self._eval_lock:
            self._evaluations = 0

    def match(
        self,
        image: np.ndarray,
        thresholds: Thresholds,
        snapshot: Optional[TemplateSnapshot] = None,
    ) -> Optional[MatchResult]:
        """
        Search the image for the first qualifying template.

        Args:
            image: Grayscale uint8 frame
            thresholds: Strong/weak thresholds for this pass
            snapshot: Templates to search; defaults to the store's current set

        Returns:
            MatchResult, or None if no template qualifies
        """
        if snapshot is None:
            if self.store is None:
                return None
            snapshot = self.store.get_snapshot()

        if image is None or image.size == 0 or len(snapshot) == 0:
            return None

        for template in snapshot:
            result = self._match_template(image, template, thresholds)
            if result is not None:
                return result

        return None

    def _match_template(
        self,
        image: np.ndarray,
        template: Template,
        thresholds: Thresholds,
    ) -> Optional[MatchResult]:
        start = time.perf_counter()
        scores: List[Tuple[float, float]] = []
        tested = set()

        # Coarse
        best_score, best_scale = self._evaluate_scales(image, template, COARSE_SCALES, tested, scores)

        # Early exit
        if best_score < thresholds.strong - EARLY_EXIT_MARGIN:
            logger.debug(
                f"{template.name}: coarse best {best_score:.3f} below "
                f"{thresholds.strong - EARLY_EXIT_MARGIN:.3f}, skipping"
            )
            return None

        # Fine
        fine_score, fine_scale = self._evaluate_scales(
            image, template, fine_scales(best_scale), tested, scores
        )
        if fine_score > best_score:
            best_score, best_scale = fine_score, fine_scale

        elapsed_ms = (time.perf_counter() - start) * 1000

        if best_score > thresholds.strong - DIAGNOSTIC_MARGIN:
            top = sorted(scores, key=lambda s: s[1], reverse=True)[:5]
            top_text = ", ".join(f"{scale:.2f}:{score:.3f}" for scale, score in top)
            logger.debug(f"{template.name}: top scales [{top_text}] in {elapsed_ms:.1f}ms")

        if best_score >= thresholds.strong:
            logger.info(f"Match {template.name} score={best_score:.3f} scale={best_scale:.2f}")
            return MatchResult(
                template_name=template.name,
                score=best_score,
                scale=best_scale,
                elapsed_ms=elapsed_ms,
            )

        if best_score >= thresholds.weak:
            logger.info(f"Weak match {template.name} score={best_score:.3f} scale={best_scale:.2f}")
            return MatchResult(
                template_name=WEAK_PREFIX + template.name,
                score=best_score,
                scale=best_scale,
                elapsed_ms=elapsed_ms,
                is_weak=True,
            )

        return None

    def _evaluate_scales(
        self,
        image: np.ndarray,
        template: Template,
        scales: Iterable[float],
        tested: set,
        scores: List[Tuple[float, float]],
    ) -> Tuple[float, float]:
        """Best (score, scale) over the given scales, skipping ones already tried."""
        best_score = -math.inf
        best_scale = 1.0
        for scale in scales:
            key = round(scale, 2)
            if key in tested:
                continue
            tested.add(key)

            score = self._score_at_scale(image, template, scale)
            scores.append((scale, score))
            if score > best_score:
                best_score, best_scale = score, scale

        return best_score, best_scale

    def _score_at_scale(self, image: np.ndarray, template: Template, scale: float) -> float:
        img_h, img_w = image.shape[:2]
        width = int(template.width * scale)
        height = int(template.height * scale)

        if width > img_w or height > img_h:
            return -math.inf
        if width < MIN_TEMPLATE_SIZE or height < MIN_TEMPLATE_SIZE:
            return -math.inf

        with self._eval_lock:
            self._evaluations += 1

        try:
            if width == template.width and height == template.height:
                scaled = template.image
            else:
                scaled = cv2.resize(template.image, (width, height), interpolation=cv2.INTER_AREA)
            result = cv2.matchTemplate(image, scaled, cv2.TM_CCOEFF_NORMED)
            _, max_val, _, _ = cv2.minMaxLoc(result)
        except cv2.error as e:
            logger.debug(f"{template.name}: evaluation at scale {scale:.2f} failed: {e}")
            return -math.inf

        max_val = float(max_val)
        if not math.isfinite(max_val):
            return -math.inf
        return max_val
