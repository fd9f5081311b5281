"""Fixed thresholds for reference photo enrollment."""

from __future__ import annotations

from typing import Final

MAX_FILE_SIZE: Final[int] = 5 * 1024 * 1024

TARGET_ASPECT_RATIO: Final[float] = 7 / 9
ASPECT_TOLERANCE: Final[float] = 0.10

PADDING_RATIO: Final[float] = 0.2
OUTPUT_WIDTH: Final[int] = 400
OUTPUT_HEIGHT: Final[int] = round(OUTPUT_WIDTH / TARGET_ASPECT_RATIO)
JPEG_QUALITY: Final[int] = 95

MIN_FACE_AREA: Final[float] = 0.08
MIN_CONFIDENCE: Final[float] = 0.8
MIN_IMAGE_SIDE: Final[int] = 200
