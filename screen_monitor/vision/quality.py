"""
Frame Quality Gate.

Rejects frames that are near-uniform (blank screens, solid loading
backgrounds) before they reach the matcher. Only the central 80% of the
image is measured so status bars and borders do not count as content.

Any failure to compute the statistics rejects the frame.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class QualityResult:
    """Result of frame quality assessment."""
    passed: bool
    mean: float = 0.0
    stddev: float = 0.0
    rejection_reason: Optional[str] = None


# Quality thresholds
MIN_STDDEV = 5.0        # Below this the frame is considered flat
CROP_MARGIN = 0.1       # Fraction trimmed from each side


def central_crop(gray: np.ndarray, margin: float = CROP_MARGIN) -> np.ndarray:
    rows, cols = gray.shape[:2]
    top, bottom = int(rows * margin), int(rows * (1 - margin))
    left, right = int(cols * margin), int(cols * (1 - margin))
    return gray[top:bottom, left:right]


def assess_frame_quality(gray: np.ndarray, min_stddev: float = MIN_STDDEV) -> QualityResult:
    """
    Check that a grayscale frame carries enough visual content.

    Args:
        gray: Single-channel uint8 image
        min_stddev: Minimum standard deviation of the central crop

    Returns:
        QualityResult with passed=True if the frame is usable
    """
    if gray is None or gray.size == 0:
        return QualityResult(passed=False, rejection_reason="empty image")

    try:
        roi = central_crop(gray)
        if roi.size == 0:
            return QualityResult(passed=False, rejection_reason="image too small to crop")

        mean, stddev = cv2.meanStdDev(roi)
        mean_value = float(mean[0][0])
        std_value = float(stddev[0][0])
    except cv2.error as e:
        logger.warning(f"Quality check failed: {e}")
        return QualityResult(passed=False, rejection_reason=f"statistics failed: {e}")

    if not (math.isfinite(mean_value) and math.isfinite(std_value)):
        return QualityResult(passed=False, rejection_reason="non-finite statistics")

    if std_value < min_stddev:
        return QualityResult(
            passed=False,
            mean=mean_value,
            stddev=std_value,
            rejection_reason=f"flat image (stddev {std_value:.2f} < {min_stddev})",
        )

    return QualityResult(passed=True, mean=mean_value, stddev=std_value)
