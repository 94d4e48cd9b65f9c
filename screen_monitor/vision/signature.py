"""
Frame Signature - cheap perceptual fingerprint of a raw RGBA buffer.

Samples nine pixels (corners, edge midpoints and center) and packs their
gray levels into one integer. Consecutive frames with the same signature are
treated as duplicates and never reach the matcher. Runs on the producer
thread, so it must stay O(1) in frame size.
"""

import logging
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

BITS_PER_SAMPLE = 7
SIGNATURE_MASK = (1 << 64) - 1


def sample_points(width: int, height: int) -> List[Tuple[int, int]]:
    """(col, row) of the nine sample points, row-major."""
    half_w = width // 2
    half_h = height // 2
    last_col = width - 1
    last_row = height - 1
    return [
        (0, 0), (half_w, 0), (last_col, 0),
        (0, half_h), (half_w, half_h), (last_col, half_h),
        (0, last_row), (half_w, last_row), (last_col, last_row),
    ]


def compute_signature(data: bytes, width: int, height: int) -> Optional[int]:
    """
    Compute the 9-point signature of an RGBA8888 buffer.

    Args:
        data: Raw RGBA bytes, row-major, no padding
        width: Frame width in pixels
        height: Frame height in pixels

    Returns:
        Signature, or None if the buffer cannot be sampled
    """
    if width <= 0 or height <= 0 or data is None:
        return None

    size = len(data)
    signature = 0
    for i, (col, row) in enumerate(sample_points(width, height)):
        offset = (row * width + col) * 4
        if offset + 2 >= size:
            logger.debug(f"Signature sample {i} out of range ({offset} >= {size})")
            return None
        gray = (data[offset] + data[offset + 1] + data[offset + 2]) // 3
        signature |= gray << (i * BITS_PER_SAMPLE)

    return signature & SIGNATURE_MASK
