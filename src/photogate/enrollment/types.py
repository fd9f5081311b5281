"""Value types shared by the enrollment pipeline."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

import numpy as np

from photogate.enrollment.errors import EnrollmentError, ProcessingException

if TYPE_CHECKING:
    from numpy.typing import NDArray

_EPS = 1e-6


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawImageInput:
    """An uploaded file as received from the host."""

    size: int
    media_type: str
    data: bytes = field(repr=False)

    @classmethod
    def from_bytes(cls, data: bytes, media_type: str) -> RawImageInput:
        return cls(size=len(data), media_type=media_type, data=data)


@dataclass(frozen=True)
class ImageDimensions:
    width: int
    height: int

    @property
    def ratio(self) -> float:
        return self.width / self.height


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BoundingBox:
    """Face rectangle normalized to the image size (0.0-1.0)."""

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if min(self.x, self.y, self.width, self.height) < 0:
            raise ValueError(f"Bounding box components must be >= 0: {self}")
        if self.x + self.width > 1 + _EPS or self.y + self.height > 1 + _EPS:
            raise ValueError(f"Bounding box exceeds image bounds: {self}")

    @property
    def area(self) -> float:
        return self.width * self.height

    @classmethod
    def from_pixels(cls, x1: float, y1: float, x2: float, y2: float, dimensions: ImageDimensions) -> BoundingBox:
        """Normalize a pixel-space corner rectangle, clamping it into the image."""
        w, h = dimensions.width, dimensions.height
        left = min(max(x1, 0.0), w) / w
        top = min(max(y1, 0.0), h) / h
        right = min(max(x2, 0.0), w) / w
        bottom = min(max(y2, 0.0), h) / h
        return cls(
            x=left,
            y=top,
            width=max(right - left, 0.0),
            height=max(bottom - top, 0.0),
        )


@dataclass(frozen=True)
class DetectionResult:
    """Summary of a detection pass: how many faces and where the primary one is."""

    face_count: int
    bounding_box: BoundingBox | None = None
    confidence: float | None = None

    def __post_init__(self) -> None:
        if self.face_count < 0:
            raise ValueError("face_count must be >= 0")
        has_face = self.face_count >= 1
        if has_face != (self.bounding_box is not None) or has_face != (self.confidence is not None):
            raise ValueError("bounding_box and confidence must be present iff face_count >= 1")
        if self.confidence is not None and not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")


class QualityLevel(StrEnum):
    UNACCEPTABLE = "unacceptable"
    POOR = "poor"
    FAIR = "fair"
    GOOD = "good"
    EXCELLENT = "excellent"

    @property
    def rank(self) -> int:
        return list(QualityLevel).index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, QualityLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, QualityLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, QualityLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, QualityLevel):
            return NotImplemented
        return self.rank >= other.rank


@dataclass(frozen=True)
class QualityReport:
    overall: QualityLevel
    issues: tuple[str, ...] = ()
    metrics: dict[str, float] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class DetectionReport:
    """What ``DetectionClient.detect`` returns: the detection and its quality grade."""

    detection: DetectionResult
    quality: QualityReport


@dataclass(frozen=True)
class EmbeddingResult:
    embedding: NDArray[np.float32] = field(repr=False, compare=False)
    quality: QualityReport


# ---------------------------------------------------------------------------
# Cropping
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CropRegion:
    """Crop rectangle in source pixel coordinates."""

    x: float
    y: float
    width: float
    height: float

    @property
    def ratio(self) -> float:
        return self.width / self.height

    def as_box(self) -> tuple[float, float, float, float]:
        """Return ``(left, upper, right, lower)`` as Pillow expects."""
        return (self.x, self.y, self.x + self.width, self.y + self.height)


@dataclass(frozen=True)
class CroppedFace:
    region: CropRegion
    data: bytes = field(repr=False)
    width: int
    height: int
    media_type: str = "image/jpeg"


# ---------------------------------------------------------------------------
# Scan state
# ---------------------------------------------------------------------------


class ScanStage(StrEnum):
    IDLE = "idle"
    VALIDATING = "validating"
    DETECTING = "detecting"
    QUALITY_CHECKING = "quality_checking"
    CROPPING = "cropping"
    RE_EMBEDDING = "re_embedding"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStage.COMPLETE, ScanStage.ERROR)


@dataclass(frozen=True)
class ScanProgress:
    """Progress gauges, each 0-100."""

    detection: int = 0
    embedding: int = 0
    quality: int = 0
    overall: int = 0


@dataclass(frozen=True)
class ScanResult:
    embedding: NDArray[np.float32] = field(repr=False, compare=False)
    crop: CroppedFace
    bounding_box: BoundingBox


@dataclass(frozen=True)
class ScanState:
    """Snapshot of one generation's progress; replaced wholesale on every change."""

    stage: ScanStage = ScanStage.IDLE
    generation: int = 0
    progress: ScanProgress = field(default_factory=ScanProgress)
    dimensions: ImageDimensions | None = None
    bounding_box: BoundingBox | None = None
    error: EnrollmentError | None = None
    result: ScanResult | None = None


# ---------------------------------------------------------------------------
# Embedding validation
# ---------------------------------------------------------------------------


def validate_embedding(embedding: NDArray[np.float32], expected_dim: int) -> None:
    """Reject embeddings that are the wrong length, non-finite, unnormalized or constant.

    Raises:
        ProcessingException: With a detail naming the first failed check.
    """
    vector = np.asarray(embedding).reshape(-1)
    if vector.shape[0] != expected_dim:
        raise ProcessingException(f"Embedding must be {expected_dim} dimensions, got {vector.shape[0]}")

    if not np.all(np.isfinite(vector)):
        index = int(np.argmin(np.isfinite(vector)))
        raise ProcessingException(f"Invalid embedding value at index {index}: {vector[index]}")

    norm = float(np.linalg.norm(vector))
    if not math.isclose(norm, 1.0, abs_tol=0.1):
        raise ProcessingException(f"Embedding not properly normalized. L2 norm: {norm:.4f}")

    if np.all(np.abs(vector - vector[0]) < 1e-6):
        raise ProcessingException("Suspicious embedding pattern detected")
