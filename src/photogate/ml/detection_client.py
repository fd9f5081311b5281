"""Detection collaborator used by the enrollment pipeline.

The pipeline only depends on the ``DetectionClient`` protocol. ``OnnxDetectionClient``
is the in-process implementation: RetinaFace for detection, an ArcFace-family
model for embeddings, and ``QualityAnalyzer`` for grading, all run on the
inference thread pool.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, TypeVar

import numpy as np

from photogate.enrollment.errors import EnrollmentError, ProcessingException
from photogate.enrollment.types import (
    BoundingBox,
    DetectionReport,
    DetectionResult,
    EmbeddingResult,
    ImageDimensions,
    QualityLevel,
    QualityReport,
    validate_embedding,
)
from photogate.ml.face_recognizer import FACE_SIZE, preprocess_faces
from photogate.ml.preprocessing import extract_face_chip, to_rgb_array
from photogate.ml.quality import QualityAnalyzer

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray
    from PIL import Image

    from photogate.ml.face_detector import RawDetection
    from photogate.ml.inference import InferencePool
    from photogate.ml.model_service import ModelService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DetectionClient(Protocol):
    """Face detection and embedding, as seen by the enrollment pipeline.

    Both calls are single-shot and may raise ``ProcessingException``.
    """

    async def detect(self, image: Image.Image) -> DetectionReport:
        """Count faces, locate the primary one and grade the photo."""
        ...

    async def embed(self, image: Image.Image) -> EmbeddingResult:
        """Embed the primary face of an already-cropped image."""
        ...


def _primary(detections: list[RawDetection]) -> RawDetection:
    return max(detections, key=lambda d: d.score)


def _normalize(detection: RawDetection, dimensions: ImageDimensions) -> BoundingBox:
    x1, y1, x2, y2 = (float(v) for v in detection.bbox[:4])
    return BoundingBox.from_pixels(x1, y1, x2, y2, dimensions)


class OnnxDetectionClient:
    def __init__(
        self,
        models: ModelService,
        pool: InferencePool,
        analyzer: QualityAnalyzer | None = None,
    ) -> None:
        self._models = models
        self._pool = pool
        self._analyzer = analyzer or QualityAnalyzer()

    async def detect(self, image: Image.Image) -> DetectionReport:
        return await self._run(self.detect_array, to_rgb_array(image))

    async def embed(self, image: Image.Image) -> EmbeddingResult:
        return await self._run(self.embed_array, to_rgb_array(image))

    # -- Synchronous stages (run on the pool) -------------------------------

    def detect_array(self, image: NDArray[np.uint8]) -> DetectionReport:
        detections = self._models.detector.detect(image)
        if not detections:
            return DetectionReport(
                detection=DetectionResult(face_count=0),
                quality=QualityReport(overall=QualityLevel.UNACCEPTABLE, issues=("No face detected",)),
            )

        dimensions = ImageDimensions(width=image.shape[1], height=image.shape[0])
        primary = _primary(detections)
        box = _normalize(primary, dimensions)
        confidence = min(max(primary.score, 0.0), 1.0)
        logger.debug("Detected %d face(s), primary score %.3f", len(detections), confidence)
        return DetectionReport(
            detection=DetectionResult(face_count=len(detections), bounding_box=box, confidence=confidence),
            quality=self._analyzer.analyze(image, box),
        )

    def embed_array(self, image: NDArray[np.uint8]) -> EmbeddingResult:
        detections = self._models.detector.detect(image)
        if not detections:
            raise ProcessingException("No face found in cropped image")

        dimensions = ImageDimensions(width=image.shape[1], height=image.shape[0])
        box = _normalize(_primary(detections), dimensions)
        quality = self._analyzer.analyze(image, box)

        recognizer = self._models.recognizer
        chip = extract_face_chip(image, box, size=FACE_SIZE)
        embedding = recognizer.get_embeddings(preprocess_faces(chip[np.newaxis, ...]))[0]
        validate_embedding(embedding, recognizer.embedding_dim)
        return EmbeddingResult(embedding=embedding.astype(np.float32), quality=quality)

    # -- Internal -----------------------------------------------------------

    async def _run(self, func: Callable[[NDArray[np.uint8]], T], image: NDArray[np.uint8]) -> T:
        try:
            return await self._pool.run(func, image)
        except EnrollmentError:
            raise
        except TimeoutError as exc:
            raise ProcessingException("Inference queue is full") from exc
        except Exception as exc:
            logger.exception("Inference failed in %s", getattr(func, "__name__", func))
            raise ProcessingException(f"Inference failed: {exc}") from exc
