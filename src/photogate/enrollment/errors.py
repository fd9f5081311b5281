"""Enrollment error taxonomy.

Every failure a scan can end with is an ``EnrollmentError`` subclass. Each
carries an ``ErrorKind`` for programmatic handling and a ``message`` that is
safe to show to the person uploading the photo.
"""

from __future__ import annotations

from enum import StrEnum

_MIB = 1024 * 1024


class ErrorKind(StrEnum):
    FILE_TOO_LARGE = "file_too_large"
    INVALID_FILE_TYPE = "invalid_file_type"
    ASPECT_RATIO_MISMATCH = "aspect_ratio_mismatch"
    NO_FACE_DETECTED = "no_face_detected"
    MULTIPLE_FACES_DETECTED = "multiple_faces_detected"
    FACE_TOO_SMALL = "face_too_small"
    LOW_CONFIDENCE = "low_confidence"
    POOR_QUALITY = "poor_quality"
    PROCESSING_EXCEPTION = "processing_exception"


class EnrollmentError(Exception):
    """Base class for all terminal scan failures."""

    kind: ErrorKind = ErrorKind.PROCESSING_EXCEPTION

    @property
    def message(self) -> str:
        """User-facing message for this failure."""
        return str(self)


class FileTooLarge(EnrollmentError):
    kind = ErrorKind.FILE_TOO_LARGE

    def __init__(self, actual: int, maximum: int) -> None:
        self.actual = actual
        self.maximum = maximum
        super().__init__(
            f"File too large. Maximum size is {maximum / _MIB:.0f}MB, got {actual / _MIB:.1f}MB"
        )


class InvalidFileType(EnrollmentError):
    kind = ErrorKind.INVALID_FILE_TYPE

    def __init__(self, media_type: str) -> None:
        self.media_type = media_type
        super().__init__("Invalid file type. Please upload an image file.")


class AspectRatioMismatch(EnrollmentError):
    kind = ErrorKind.ASPECT_RATIO_MISMATCH

    def __init__(self, expected: float, actual: float) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Invalid aspect ratio. Expected 7:9 portrait (~{expected:.2f}:1), got ~{actual:.2f}:1"
        )


class NoFaceDetected(EnrollmentError):
    kind = ErrorKind.NO_FACE_DETECTED

    def __init__(self) -> None:
        super().__init__("No face detected in the image. Please upload a clear photo showing your face.")


class MultipleFacesDetected(EnrollmentError):
    kind = ErrorKind.MULTIPLE_FACES_DETECTED

    def __init__(self, face_count: int) -> None:
        self.face_count = face_count
        super().__init__("Multiple faces detected. Please upload a photo with only one face.")


class FaceTooSmall(EnrollmentError):
    kind = ErrorKind.FACE_TOO_SMALL

    def __init__(self, area: float, minimum: float) -> None:
        self.area = area
        self.minimum = minimum
        super().__init__("Face too small. Please upload a photo with a larger, clearer face.")


class LowConfidence(EnrollmentError):
    kind = ErrorKind.LOW_CONFIDENCE

    def __init__(self, confidence: float, minimum: float) -> None:
        self.confidence = confidence
        self.minimum = minimum
        super().__init__("Face not detected clearly enough. Please upload a sharper, well-lit photo.")


class PoorQuality(EnrollmentError):
    kind = ErrorKind.POOR_QUALITY

    def __init__(self, issues: list[str], overall: str | None = None) -> None:
        self.issues = list(issues)
        self.overall = overall
        detail = ", ".join(self.issues) if self.issues else "Image quality too poor"
        super().__init__(f"Image quality issues: {detail}. Please upload a clearer photo.")


class ProcessingException(EnrollmentError):
    """Catch-all for decoding and detection collaborator failures.

    ``detail`` is kept for logs only; the user-facing message never includes it.
    """

    kind = ErrorKind.PROCESSING_EXCEPTION

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail or "processing failed")

    @property
    def message(self) -> str:
        return "Failed to process image. Please try again."


class ImageTooSmall(ProcessingException):
    """Decoded image below the minimum side length.

    Reported with the ``processing_exception`` kind, but the message tells the
    person what to change.
    """

    def __init__(self, width: int, height: int, minimum: int) -> None:
        self.width = width
        self.height = height
        self.minimum = minimum
        super().__init__(f"Image too small. Minimum {minimum}x{minimum} pixels required, got {width}x{height}")

    @property
    def message(self) -> str:
        return self.detail
