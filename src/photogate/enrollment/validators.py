"""Pre-detection checks on the uploaded file and the decoded image."""

from __future__ import annotations

from typing import TYPE_CHECKING

from photogate.enrollment.constants import (
    ASPECT_TOLERANCE,
    MAX_FILE_SIZE,
    MIN_IMAGE_SIDE,
    TARGET_ASPECT_RATIO,
)
from photogate.enrollment.errors import (
    AspectRatioMismatch,
    FileTooLarge,
    ImageTooSmall,
    InvalidFileType,
)

if TYPE_CHECKING:
    from photogate.enrollment.types import ImageDimensions, RawImageInput


class FileValidator:
    """Rejects uploads that are too large or not declared as images."""

    def __init__(self, max_size: int = MAX_FILE_SIZE) -> None:
        self.max_size = max_size

    def validate(self, raw: RawImageInput) -> None:
        """Raise ``FileTooLarge`` or ``InvalidFileType``; return None when the file is acceptable."""
        if raw.size > self.max_size:
            raise FileTooLarge(actual=raw.size, maximum=self.max_size)
        if not raw.media_type.lower().startswith("image/"):
            raise InvalidFileType(raw.media_type)


class AspectRatioValidator:
    """Compares width:height against the target ratio with a relative tolerance."""

    def __init__(
        self,
        target: float = TARGET_ASPECT_RATIO,
        tolerance: float = ASPECT_TOLERANCE,
    ) -> None:
        self.target = target
        self.tolerance = tolerance

    def is_within_tolerance(self, ratio: float) -> bool:
        return abs(ratio - self.target) / self.target <= self.tolerance

    def validate(self, dimensions: ImageDimensions) -> None:
        ratio = dimensions.ratio
        if not self.is_within_tolerance(ratio):
            raise AspectRatioMismatch(expected=self.target, actual=ratio)


def validate_min_dimensions(dimensions: ImageDimensions, min_side: int = MIN_IMAGE_SIDE) -> None:
    """Reject images too small to carry a recognizable face."""
    if dimensions.width < min_side or dimensions.height < min_side:
        raise ImageTooSmall(dimensions.width, dimensions.height, min_side)
