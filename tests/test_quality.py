import numpy as np

from screen_monitor.vision.quality import MIN_STDDEV, assess_frame_quality, central_crop

from conftest import noise


def test_flat_image_rejected():
    result = assess_frame_quality(np.full((100, 100), 128, dtype=np.uint8))
    assert not result.passed
    assert result.stddev < MIN_STDDEV
    assert "flat" in result.rejection_reason


def test_textured_image_passes():
    result = assess_frame_quality(noise(100, 100, seed=4))
    assert result.passed
    assert result.stddev > MIN_STDDEV


def test_only_central_region_counts():
    gray = np.zeros((100, 100), dtype=np.uint8)
    # Content confined to the outer 10% border
    gray[:5, :] = 255
    gray[:, :5] = 255
    result = assess_frame_quality(gray)
    assert not result.passed


def test_central_crop_bounds():
    crop = central_crop(np.zeros((100, 200), dtype=np.uint8))
    assert crop.shape == (80, 160)


def test_empty_image_fails_closed():
    result = assess_frame_quality(np.zeros((0, 0), dtype=np.uint8))
    assert not result.passed


def test_too_small_to_crop_fails_closed():
    result = assess_frame_quality(np.zeros((1, 1), dtype=np.uint8))
    assert not result.passed
    assert result.rejection_reason is not None
