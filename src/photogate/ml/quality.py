"""Photo quality grading for face enrollment.

Five checks each contribute one point; the total maps to a ``QualityLevel``:

    5 -> excellent, 4 -> good, 3 -> fair, 2 -> poor, else unacceptable
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from photogate.enrollment.types import QualityLevel, QualityReport

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from photogate.enrollment.types import BoundingBox

_GRADES: dict[int, QualityLevel] = {
    5: QualityLevel.EXCELLENT,
    4: QualityLevel.GOOD,
    3: QualityLevel.FAIR,
    2: QualityLevel.POOR,
}


@dataclass(frozen=True)
class QualityThresholds:
    min_brightness: float = 0.4
    max_brightness: float = 0.75
    min_contrast: float = 0.4
    min_sharpness: float = 0.5
    min_face_size: float = 0.08
    max_face_size: float = 0.6
    min_face_resolution: float = 80.0
    edge_magnitude: float = 30.0


class QualityAnalyzer:
    def __init__(self, thresholds: QualityThresholds | None = None) -> None:
        self.thresholds = thresholds or QualityThresholds()

    def analyze(self, image: NDArray[np.uint8], box: BoundingBox) -> QualityReport:
        """Grade an HxWx3 RGB image with the primary face at ``box``."""
        t = self.thresholds
        height, width = image.shape[:2]
        rgb = image.astype(np.float32)

        brightness = float(rgb.mean() / 255.0)
        gray = rgb[..., 0] * 0.299 + rgb[..., 1] * 0.587 + rgb[..., 2] * 0.114
        contrast = min(1.0, float(gray.std()) / 64.0)
        sharpness = self._sharpness(gray)
        face_size = box.area
        face_resolution = min(width, height) * math.sqrt(face_size)

        issues: list[str] = []
        if brightness < t.min_brightness:
            issues.append("Image too dark - face not clearly visible")
        elif brightness > t.max_brightness:
            issues.append("Image too bright - face features washed out")
        if contrast < t.min_contrast:
            issues.append("Low contrast - facial features not distinct")
        if sharpness < t.min_sharpness:
            issues.append("Image blurry - face features not sharp enough")
        if face_size < t.min_face_size:
            issues.append("Face too small - difficult to recognize")
        elif face_size > t.max_face_size:
            issues.append("Face too large or cropped - full face not visible")
        if face_resolution < t.min_face_resolution:
            issues.append("Face resolution too low - insufficient detail for recognition")

        score = sum(
            (
                t.min_brightness <= brightness <= t.max_brightness,
                contrast >= t.min_contrast,
                sharpness >= t.min_sharpness,
                t.min_face_size <= face_size <= t.max_face_size,
                face_resolution >= t.min_face_resolution,
            )
        )

        return QualityReport(
            overall=_GRADES.get(score, QualityLevel.UNACCEPTABLE),
            issues=tuple(issues),
            metrics={
                "brightness": brightness,
                "contrast": contrast,
                "sharpness": sharpness,
                "face_size": face_size,
                "face_resolution": face_resolution,
            },
        )

    def _sharpness(self, gray: NDArray[np.float32]) -> float:
        """Fraction of strong Sobel edges, saturating at 10% of the pixels."""
        height, width = gray.shape
        if height < 3 or width < 3:
            return 0.0

        tl, tc, tr = gray[:-2, :-2], gray[:-2, 1:-1], gray[:-2, 2:]
        ml, mr = gray[1:-1, :-2], gray[1:-1, 2:]
        bl, bc, br = gray[2:, :-2], gray[2:, 1:-1], gray[2:, 2:]

        gx = (tr + 2 * mr + br) - (tl + 2 * ml + bl)
        gy = (bl + 2 * bc + br) - (tl + 2 * tc + tr)
        edges = int(np.count_nonzero(np.hypot(gx, gy) > self.thresholds.edge_magnitude))
        return min(1.0, edges / (width * height * 0.1))
