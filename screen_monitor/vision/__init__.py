"""Vision module for frame fingerprinting, quality gating and template matching."""

from .signature import compute_signature
from .quality import QualityResult, assess_frame_quality
from .templates import TemplateStore, decode_template
from .matcher import ScaleSpaceMatcher

__all__ = [
    "compute_signature",
    "QualityResult",
    "assess_frame_quality",
    "TemplateStore",
    "decode_template",
    "ScaleSpaceMatcher",
]
