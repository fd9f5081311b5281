"""Tests for the face quality gate."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from photogate.enrollment.errors import (
    ErrorKind,
    FaceTooSmall,
    LowConfidence,
    MultipleFacesDetected,
    NoFaceDetected,
    PoorQuality,
)
from photogate.enrollment.quality_gate import QualityGate
from photogate.enrollment.types import BoundingBox, DetectionResult, QualityLevel, QualityReport

_CENTERED = BoundingBox(x=0.3, y=0.2, width=0.4, height=0.5)
_GOOD = QualityReport(overall=QualityLevel.GOOD)


def _detection(
    face_count: int = 1,
    box: BoundingBox = _CENTERED,
    confidence: float = 0.95,
) -> DetectionResult:
    if face_count == 0:
        return DetectionResult(face_count=0)
    return DetectionResult(face_count=face_count, bounding_box=box, confidence=confidence)


class TestQualityGate:
    def test_accepts_single_clear_face(self) -> None:
        verdict = QualityGate().evaluate(_detection(confidence=0.81), _GOOD)
        assert verdict.accepted is True
        assert verdict.error is None

    def test_rejects_no_face(self) -> None:
        verdict = QualityGate().evaluate(_detection(face_count=0), _GOOD)
        assert verdict.accepted is False
        assert isinstance(verdict.error, NoFaceDetected)

    def test_rejects_multiple_faces(self) -> None:
        verdict = QualityGate().evaluate(_detection(face_count=2), _GOOD)
        assert isinstance(verdict.error, MultipleFacesDetected)
        assert verdict.error.face_count == 2
        assert verdict.error.kind is ErrorKind.MULTIPLE_FACES_DETECTED

    def test_single_face_without_box_is_not_accepted(self) -> None:
        # Duck-typed detection that skips DetectionResult validation.
        detection = SimpleNamespace(face_count=1, bounding_box=None, confidence=0.95)
        verdict = QualityGate().evaluate(detection, _GOOD)  # type: ignore[arg-type]
        assert verdict.accepted is False
        assert isinstance(verdict.error, NoFaceDetected)

    def test_rejects_small_face(self) -> None:
        small = BoundingBox(x=0.4, y=0.4, width=0.2, height=0.3)
        verdict = QualityGate().evaluate(_detection(box=small), _GOOD)
        assert isinstance(verdict.error, FaceTooSmall)
        assert verdict.error.area == pytest.approx(0.06)

    def test_area_at_minimum_accepted(self) -> None:
        box = BoundingBox(x=0.3, y=0.3, width=0.4, height=0.25)
        assert QualityGate(min_face_area=0.1).evaluate(_detection(box=box), _GOOD).accepted

    def test_rejects_low_confidence(self) -> None:
        verdict = QualityGate().evaluate(_detection(confidence=0.79), _GOOD)
        assert isinstance(verdict.error, LowConfidence)
        assert verdict.error.confidence == pytest.approx(0.79)

    @pytest.mark.parametrize("level", [QualityLevel.FAIR, QualityLevel.POOR, QualityLevel.UNACCEPTABLE])
    def test_rejects_quality_below_good(self, level: QualityLevel) -> None:
        quality = QualityReport(overall=level, issues=("Image blurry - face features not sharp enough",))
        verdict = QualityGate().evaluate(_detection(), quality)
        assert isinstance(verdict.error, PoorQuality)
        assert verdict.error.issues == ["Image blurry - face features not sharp enough"]
        assert verdict.error.message == (
            "Image quality issues: Image blurry - face features not sharp enough. Please upload a clearer photo."
        )

    @pytest.mark.parametrize("level", [QualityLevel.GOOD, QualityLevel.EXCELLENT])
    def test_accepts_good_or_better(self, level: QualityLevel) -> None:
        assert QualityGate().evaluate(_detection(), QualityReport(overall=level)).accepted

    def test_face_count_checked_before_area_and_confidence(self) -> None:
        small = BoundingBox(x=0.0, y=0.0, width=0.1, height=0.1)
        verdict = QualityGate().evaluate(_detection(face_count=3, box=small, confidence=0.1), _GOOD)
        assert isinstance(verdict.error, MultipleFacesDetected)

    def test_area_checked_before_confidence(self) -> None:
        small = BoundingBox(x=0.0, y=0.0, width=0.1, height=0.1)
        verdict = QualityGate().evaluate(_detection(box=small, confidence=0.1), _GOOD)
        assert isinstance(verdict.error, FaceTooSmall)

    def test_confidence_checked_before_quality(self) -> None:
        poor = QualityReport(overall=QualityLevel.POOR)
        verdict = QualityGate().evaluate(_detection(confidence=0.5), poor)
        assert isinstance(verdict.error, LowConfidence)

    def test_check_raises_rejection(self) -> None:
        with pytest.raises(NoFaceDetected):
            QualityGate().check(_detection(face_count=0), _GOOD)

    def test_check_quality_only_looks_at_quality(self) -> None:
        QualityGate().check_quality(_GOOD)
        with pytest.raises(PoorQuality, match="Image quality too poor"):
            QualityGate().check_quality(QualityReport(overall=QualityLevel.FAIR))


class TestQualityLevel:
    def test_ordering(self) -> None:
        assert QualityLevel.UNACCEPTABLE < QualityLevel.POOR < QualityLevel.FAIR
        assert QualityLevel.FAIR < QualityLevel.GOOD < QualityLevel.EXCELLENT
        assert QualityLevel.GOOD >= QualityLevel.GOOD
        assert max(QualityLevel) is QualityLevel.EXCELLENT
