"""
Template Store - the active set of preprocessed templates.

Architecture:
- Templates are decoded and preprocessed (downscale, grayscale) outside any
  lock, so a slow reload never stalls matching
- The write lock is held only to swap the snapshot reference
- Readers hold the read lock only long enough to copy that reference out;
  a matching pass keeps working on its snapshot even if a reload lands
  mid-scan
- The previous set is dropped only after the new snapshot is committed
"""

import io
import logging
import time
from typing import Iterable, List, Optional, Tuple

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from ..core.interfaces import TemplateSource
from ..core.models import Template, TemplateSnapshot
from ..core.rwlock import ReadWriteLock

logger = logging.getLogger(__name__)

MAX_TEMPLATE_DIMENSION = 3200


def decode_template(image_bytes: bytes, max_dimension: int = MAX_TEMPLATE_DIMENSION) -> np.ndarray:
    """
    Decode encoded image bytes into a read-only grayscale template.

    Raises:
        ValueError: if the bytes cannot be decoded as an image
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            rgb = np.asarray(img.convert("RGB"))
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise ValueError(f"Cannot decode image: {e}") from e

    h, w = rgb.shape[:2]
    if h == 0 or w == 0:
        raise ValueError("Decoded image is empty")

    longest = max(w, h)
    if longest > max_dimension:
        factor = max_dimension / longest
        new_size = (max(1, round(w * factor)), max(1, round(h * factor)))
        rgb = cv2.resize(rgb, new_size, interpolation=cv2.INTER_AREA)
        logger.debug(f"Template downscaled from {w}x{h} to {new_size[0]}x{new_size[1]}")

    gray = cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)
    gray.setflags(write=False)
    return gray


class TemplateStore:
    """
    Thread-safe holder of the active template set.

    Usage:
        store = TemplateStore(source=TemplateDirectory("Templates"))
        store.reload()
        snapshot = store.get_snapshot()
    """

    def __init__(self, source: Optional[TemplateSource] = None, max_dimension: int = MAX_TEMPLATE_DIMENSION):
        self.source = source
        self.max_dimension = max_dimension
        self._lock = ReadWriteLock()
        self._snapshot = TemplateSnapshot()
        self._loaded_at: Optional[float] = None

    def set_source(self, source: TemplateSource):
        self.source = source

    def load(self, sources: Iterable[Tuple[str, bytes]]) -> Tuple[int, List[str]]:
        """
        Replace the active set with freshly decoded templates.

        Entries that fail to decode are skipped; the rest are still loaded.

        Returns:
            (count, names) of the new active set
        """
        prepared: List[Template] = []
        for name, image_bytes in sources:
            try:
                image = decode_template(image_bytes, self.max_dimension)
            except ValueError as e:
                logger.warning(f"Skipping template {name}: {e}")
                continue
            prepared.append(Template(name=name, image=image))

        new_snapshot = TemplateSnapshot(templates=tuple(prepared))

        with self._lock.write():
            old_snapshot = self._snapshot
            self._snapshot = new_snapshot
            self._loaded_at = time.time()

        logger.info(
            f"Templates loaded: {len(new_snapshot)} active, "
            f"{len(old_snapshot)} released"
        )
        del old_snapshot

        return len(new_snapshot), list(new_snapshot.names)

    def reload(self) -> Tuple[int, List[str]]:
        """Reload from the attached template source."""
        if self.source is None:
            logger.warning("No template source attached, nothing to reload")
            return self.count, list(self.get_snapshot().names)
        return self.load(self.source.iter_templates())

    def get_snapshot(self) -> TemplateSnapshot:
        with self._lock.read():
            return self._snapshot

    @property
    def count(self) -> int:
        return len(self.get_snapshot())

    def release(self):
        """Drop every template."""
        with self._lock.write():
            released = len(self._snapshot)
            self._snapshot = TemplateSnapshot()
            self._loaded_at = None
        logger.info(f"Template store released ({released} templates)")

    def get_stats(self) -> dict:
        snapshot = self.get_snapshot()
        return {
            "count": len(snapshot),
            "names": list(snapshot.names),
            "loaded_at": self._loaded_at,
        }
