"""Tests for enrollment value types and embedding validation."""

from __future__ import annotations

import numpy as np
import pytest

from photogate.enrollment.errors import ErrorKind, PoorQuality, ProcessingException
from photogate.enrollment.types import (
    BoundingBox,
    DetectionResult,
    ImageDimensions,
    ScanStage,
    validate_embedding,
)


def _unit(dim: int = 512) -> np.ndarray:
    vector = np.linspace(-1.0, 1.0, dim, dtype=np.float32)
    return vector / np.linalg.norm(vector)


class TestBoundingBox:
    def test_area(self) -> None:
        assert BoundingBox(x=0.3, y=0.2, width=0.4, height=0.5).area == pytest.approx(0.2)

    @pytest.mark.parametrize(
        ("x", "y", "width", "height"),
        [(-0.1, 0.0, 0.5, 0.5), (0.0, 0.0, -0.1, 0.5), (0.7, 0.0, 0.4, 0.5), (0.0, 0.6, 0.5, 0.5)],
    )
    def test_rejects_out_of_range(self, x: float, y: float, width: float, height: float) -> None:
        with pytest.raises(ValueError):
            BoundingBox(x=x, y=y, width=width, height=height)

    def test_from_pixels_normalizes_and_clamps(self) -> None:
        box = BoundingBox.from_pixels(-10, 50, 350, 250, ImageDimensions(width=300, height=500))
        assert (box.x, box.y) == (0.0, pytest.approx(0.1))
        assert box.width == pytest.approx(1.0)
        assert box.height == pytest.approx(0.4)


class TestDetectionResult:
    def test_no_face_has_no_box(self) -> None:
        with pytest.raises(ValueError):
            DetectionResult(face_count=0, bounding_box=BoundingBox(0.1, 0.1, 0.2, 0.2), confidence=0.9)

    def test_face_requires_box_and_confidence(self) -> None:
        with pytest.raises(ValueError):
            DetectionResult(face_count=1, confidence=0.9)

    def test_confidence_range(self) -> None:
        with pytest.raises(ValueError):
            DetectionResult(face_count=1, bounding_box=BoundingBox(0.1, 0.1, 0.2, 0.2), confidence=1.2)


class TestValidateEmbedding:
    def test_accepts_unit_vector(self) -> None:
        validate_embedding(_unit(), 512)

    def test_rejects_wrong_dimension(self) -> None:
        with pytest.raises(ProcessingException, match="must be 512 dimensions, got 128"):
            validate_embedding(_unit(128), 512)

    def test_rejects_non_finite(self) -> None:
        vector = _unit()
        vector[7] = np.nan
        with pytest.raises(ProcessingException, match="index 7"):
            validate_embedding(vector, 512)

    def test_rejects_unnormalized(self) -> None:
        with pytest.raises(ProcessingException, match="not properly normalized"):
            validate_embedding(_unit() * 3, 512)


class TestErrorsAndStages:
    def test_poor_quality_message_lists_issues(self) -> None:
        error = PoorQuality(["Image too dark - face not clearly visible", "Low contrast - facial features not distinct"])
        assert error.kind is ErrorKind.POOR_QUALITY
        assert error.message == (
            "Image quality issues: Image too dark - face not clearly visible, "
            "Low contrast - facial features not distinct. Please upload a clearer photo."
        )

    def test_processing_exception_keeps_detail_private(self) -> None:
        error = ProcessingException("onnxruntime: bad input")
        assert error.detail == "onnxruntime: bad input"
        assert "onnxruntime" not in error.message

    def test_terminal_stages(self) -> None:
        assert {stage for stage in ScanStage if stage.is_terminal} == {ScanStage.COMPLETE, ScanStage.ERROR}
