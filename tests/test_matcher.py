import cv2
import pytest

from screen_monitor.core.models import Template, TemplateSnapshot, Thresholds
from screen_monitor.vision.matcher import (
    COARSE_SCALES,
    FINE_SCALES_HIGH,
    FINE_SCALES_LOW,
    ScaleSpaceMatcher,
    fine_scales,
)
from screen_monitor.vision.templates import TemplateStore

from conftest import noise, paste, png_bytes


def snapshot_of(*named_images):
    return TemplateSnapshot(templates=tuple(Template(name=n, image=img) for n, img in named_images))


def test_exact_paste_is_strong_match(template_a, background):
    image = paste(background, template_a, 50, 60)
    matcher = ScaleSpaceMatcher()

    result = matcher.match(image, Thresholds.from_strong(0.92), snapshot_of(("a.png", template_a)))

    assert result is not None
    assert result.template_name == "a.png"
    assert not result.is_weak
    assert result.score >= 0.99
    assert result.scale == pytest.approx(1.0, abs=0.01)
    assert result.elapsed_ms >= 0


def test_unrelated_template_exits_after_coarse_pass(background):
    unrelated = noise(80, 80, seed=99)
    matcher = ScaleSpaceMatcher()

    result = matcher.match(background, Thresholds.from_strong(0.92), snapshot_of(("b.png", unrelated)))

    assert result is None
    # Only the coarse scales were evaluated
    assert matcher.evaluations == len(COARSE_SCALES)


def test_close_but_below_strong_is_weak(template_a, background):
    image = paste(background, template_a, 20, 30)
    matcher = ScaleSpaceMatcher()

    result = matcher.match(image, Thresholds.from_strong(1.01), snapshot_of(("a.png", template_a)))

    assert result is not None
    assert result.is_weak
    assert result.template_name == "weak_a.png"


def test_first_qualifying_template_wins(template_a, background):
    template_b = noise(70, 90, seed=5)
    image = paste(paste(background, template_a, 10, 10), template_b, 120, 200)
    matcher = ScaleSpaceMatcher()
    thresholds = Thresholds.from_strong(0.92)

    result = matcher.match(image, thresholds, snapshot_of(("b.png", template_b), ("a.png", template_a)))
    assert result.template_name == "b.png"

    result = matcher.match(image, thresholds, snapshot_of(("a.png", template_a), ("b.png", template_b)))
    assert result.template_name == "a.png"


def test_falls_through_to_later_template(template_a, background):
    image = paste(background, template_a, 40, 40)
    missing = noise(80, 80, seed=42)
    matcher = ScaleSpaceMatcher()

    result = matcher.match(image, Thresholds(), snapshot_of(("missing.png", missing), ("a.png", template_a)))

    assert result.template_name == "a.png"


def test_template_larger_than_image_never_matches(background):
    huge = noise(600, 800, seed=8)
    matcher = ScaleSpaceMatcher()

    assert matcher.match(background, Thresholds(), snapshot_of(("huge.png", huge))) is None
    # Even at 0.5 the template (400x300) exceeds the 320x240 image
    assert matcher.evaluations == 0


def test_tiny_template_is_skipped(background):
    tiny = noise(20, 20, seed=9)
    matcher = ScaleSpaceMatcher()

    assert matcher.match(background, Thresholds(), snapshot_of(("tiny.png", tiny))) is None
    assert matcher.evaluations == 0


def test_empty_snapshot_returns_none(background):
    assert ScaleSpaceMatcher().match(background, Thresholds(), TemplateSnapshot()) is None


def test_matcher_reads_store_when_no_snapshot_given(template_a, background):
    store = TemplateStore()
    store.load([("a.png", png_bytes(template_a))])
    matcher = ScaleSpaceMatcher(store)

    result = matcher.match(paste(background, template_a, 100, 200), Thresholds())

    assert result is not None
    assert result.template_name == "a.png"


def test_fine_scale_band_follows_coarse_best_scale():
    assert fine_scales(1.0) == FINE_SCALES_HIGH
    assert fine_scales(0.9) == FINE_SCALES_HIGH
    assert fine_scales(0.5) == FINE_SCALES_LOW
    assert fine_scales(0.7) == pytest.approx((0.75, 0.65))


def test_small_rendering_found_by_low_fine_band():
    # Smooth content so the coarse pass at 0.5 already scores high
    base = cv2.GaussianBlur(noise(300, 300, seed=11), (0, 0), sigmaX=25)
    template = cv2.normalize(base, None, 0, 255, cv2.NORM_MINMAX)
    shrunk = cv2.resize(template, (144, 144), interpolation=cv2.INTER_AREA)
    image = paste(noise(480, 640, seed=12), shrunk, 100, 200)
    matcher = ScaleSpaceMatcher()

    result = matcher.match(image, Thresholds(), snapshot_of(("small.png", template)))

    assert result is not None
    assert not result.is_weak
    assert result.scale == pytest.approx(0.48)
    assert result.score >= 0.99


def test_high_coarse_score_runs_fine_pass(template_a, background):
    image = paste(background, template_a, 50, 60)
    matcher = ScaleSpaceMatcher()

    matcher.match(image, Thresholds(), snapshot_of(("a.png", template_a)))

    assert matcher.evaluations == len(COARSE_SCALES) + len(FINE_SCALES_HIGH)
