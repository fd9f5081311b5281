"""Tests for the photo quality analyzer."""

from __future__ import annotations

import numpy as np
import pytest

from photogate.enrollment.types import BoundingBox, QualityLevel
from photogate.ml.quality import QualityAnalyzer, QualityThresholds

_FACE = BoundingBox(x=0.3, y=0.2, width=0.4, height=0.5)


def _checkerboard(height: int = 400, width: int = 300, cell: int = 4) -> np.ndarray:
    cells = (np.indices((height, width)) // cell).sum(axis=0) % 2
    gray = (60 + 140 * cells).astype(np.uint8)
    return np.stack([gray, gray, gray], axis=-1)


def _flat(value: int, height: int = 400, width: int = 300) -> np.ndarray:
    return np.full((height, width, 3), value, dtype=np.uint8)


class TestQualityAnalyzer:
    def test_sharp_well_exposed_photo_is_excellent(self) -> None:
        report = QualityAnalyzer().analyze(_checkerboard(), _FACE)
        assert report.overall is QualityLevel.EXCELLENT
        assert report.issues == ()
        assert report.metrics["sharpness"] == pytest.approx(1.0)
        assert report.metrics["face_size"] == pytest.approx(0.2)

    def test_dark_flat_photo_is_poor(self) -> None:
        report = QualityAnalyzer().analyze(_flat(20), _FACE)
        assert report.overall is QualityLevel.POOR
        assert "Image too dark - face not clearly visible" in report.issues
        assert "Low contrast - facial features not distinct" in report.issues
        assert "Image blurry - face features not sharp enough" in report.issues

    def test_bright_photo_flagged(self) -> None:
        report = QualityAnalyzer().analyze(_flat(250), _FACE)
        assert "Image too bright - face features washed out" in report.issues
        assert report.overall < QualityLevel.GOOD

    def test_tiny_face_downgrades_to_fair(self) -> None:
        tiny = BoundingBox(x=0.45, y=0.45, width=0.05, height=0.05)
        report = QualityAnalyzer().analyze(_checkerboard(), tiny)
        assert report.overall is QualityLevel.FAIR
        assert "Face too small - difficult to recognize" in report.issues
        assert "Face resolution too low - insufficient detail for recognition" in report.issues

    def test_oversized_face_flagged(self) -> None:
        huge = BoundingBox(x=0.0, y=0.0, width=1.0, height=0.9)
        report = QualityAnalyzer().analyze(_checkerboard(), huge)
        assert report.overall is QualityLevel.GOOD
        assert report.issues == ("Face too large or cropped - full face not visible",)

    def test_custom_thresholds(self) -> None:
        lenient = QualityAnalyzer(QualityThresholds(min_brightness=0.0, min_contrast=0.0, min_sharpness=0.0))
        report = lenient.analyze(_flat(20), _FACE)
        assert report.overall is QualityLevel.EXCELLENT

    def test_tiny_image_has_zero_sharpness(self) -> None:
        report = QualityAnalyzer().analyze(_flat(128, height=2, width=2), _FACE)
        assert report.metrics["sharpness"] == 0.0
