"""Accept/reject decision for a detected face.

The gate is a total function of its inputs. Checks run in a fixed order and
the first failing one decides the verdict:

1. no face
2. more than one face
3. face area below ``MIN_FACE_AREA``
4. confidence below ``MIN_CONFIDENCE``
5. overall quality below the cutoff (``good``)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from photogate.enrollment.constants import MIN_CONFIDENCE, MIN_FACE_AREA
from photogate.enrollment.errors import (
    EnrollmentError,
    FaceTooSmall,
    LowConfidence,
    MultipleFacesDetected,
    NoFaceDetected,
    PoorQuality,
)
from photogate.enrollment.types import QualityLevel

if TYPE_CHECKING:
    from photogate.enrollment.types import DetectionResult, QualityReport


@dataclass(frozen=True)
class QualityVerdict:
    accepted: bool
    error: EnrollmentError | None = None


class QualityGate:
    def __init__(
        self,
        min_face_area: float = MIN_FACE_AREA,
        min_confidence: float = MIN_CONFIDENCE,
        cutoff: QualityLevel = QualityLevel.GOOD,
    ) -> None:
        self.min_face_area = min_face_area
        self.min_confidence = min_confidence
        self.cutoff = cutoff

    def evaluate(self, detection: DetectionResult, quality: QualityReport) -> QualityVerdict:
        """Return the verdict for a detection and its quality report."""
        if detection.face_count == 0:
            return QualityVerdict(accepted=False, error=NoFaceDetected())
        if detection.face_count > 1:
            return QualityVerdict(accepted=False, error=MultipleFacesDetected(detection.face_count))

        box, confidence = detection.bounding_box, detection.confidence
        if box is None or confidence is None:
            return QualityVerdict(accepted=False, error=NoFaceDetected())

        area = box.area
        if area < self.min_face_area:
            return QualityVerdict(accepted=False, error=FaceTooSmall(area, self.min_face_area))
        if confidence < self.min_confidence:
            return QualityVerdict(accepted=False, error=LowConfidence(confidence, self.min_confidence))

        return self.evaluate_quality(quality)

    def evaluate_quality(self, quality: QualityReport) -> QualityVerdict:
        """Apply only the quality cutoff (used again on the cropped image)."""
        if quality.overall < self.cutoff:
            return QualityVerdict(
                accepted=False,
                error=PoorQuality(list(quality.issues), overall=str(quality.overall)),
            )
        return QualityVerdict(accepted=True)

    def check(self, detection: DetectionResult, quality: QualityReport) -> None:
        """Like ``evaluate`` but raises the rejection reason."""
        verdict = self.evaluate(detection, quality)
        if verdict.error is not None:
            raise verdict.error

    def check_quality(self, quality: QualityReport) -> None:
        verdict = self.evaluate_quality(quality)
        if verdict.error is not None:
            raise verdict.error
