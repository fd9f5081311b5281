"""Owned lifecycle for the detection and recognition models.

One ``ModelService`` is created per application and shared by every scan.
State moves ``uninitialized -> initializing -> ready`` or ``-> failed``. A
failed service stays failed until ``initialize()`` is called again
explicitly; scans never retry on their own.
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from photogate.enrollment.errors import ProcessingException
from photogate.ml.face_detector import RetinaFaceDetector
from photogate.ml.face_recognizer import ArcFaceRecognizer
from photogate.ml.model_manager import ModelTask, OnnxModelManager, get_model_spec

if TYPE_CHECKING:
    from photogate.config import Settings
    from photogate.ml.face_detector import FaceDetector
    from photogate.ml.face_recognizer import FaceRecognizer
    from photogate.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)


class ModelState(StrEnum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class ModelService:
    def __init__(self, settings: Settings, manager: ModelManager | None = None) -> None:
        self._settings = settings
        self._manager: ModelManager = manager if manager is not None else OnnxModelManager(settings)
        self._state = ModelState.UNINITIALIZED
        self._load_task: asyncio.Task[None] | None = None
        self._detector: FaceDetector | None = None
        self._recognizer: FaceRecognizer | None = None
        self._failure: str | None = None

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def failure(self) -> str | None:
        """Reason for the last failed initialization, if any."""
        return self._failure

    @property
    def manager(self) -> ModelManager:
        return self._manager

    @property
    def detector(self) -> FaceDetector:
        if self._state is not ModelState.READY or self._detector is None:
            raise ProcessingException(f"Face detection model is not ready (state={self._state})")
        return self._detector

    @property
    def recognizer(self) -> FaceRecognizer:
        if self._state is not ModelState.READY or self._recognizer is None:
            raise ProcessingException(f"Face recognition model is not ready (state={self._state})")
        return self._recognizer

    async def initialize(self) -> None:
        """Load both models. Concurrent callers share a single load.

        The load runs in a task owned by the service, so a caller that is
        cancelled or times out stops waiting without abandoning the load.
        """
        if self._state is ModelState.READY:
            return
        if self._load_task is None or self._load_task.done():
            self._load_task = asyncio.create_task(self._run_load(), name="photogate-model-load")
        await asyncio.shield(self._load_task)
        if self._state is ModelState.FAILED:
            raise ProcessingException(f"Model initialization failed: {self._failure}")

    async def _run_load(self) -> None:
        self._state = ModelState.INITIALIZING
        self._failure = None
        logger.info(
            "Initializing models (detection=%s, recognition=%s)",
            self._settings.face_detection_model,
            self._settings.face_recognition_model,
        )
        try:
            self._detector, self._recognizer = await asyncio.to_thread(self._load)
        except asyncio.CancelledError:
            self._state = ModelState.UNINITIALIZED
            raise
        except Exception as exc:
            self._state = ModelState.FAILED
            self._failure = str(exc)
            logger.exception("Model initialization failed")
            return
        self._state = ModelState.READY
        logger.info("Models ready")

    async def ensure_ready(self) -> None:
        """Initialize on first use; fail fast if a previous initialization failed."""
        if self._state is ModelState.READY:
            return
        if self._state is ModelState.FAILED:
            raise ProcessingException(f"Models unavailable: {self._failure}")
        await self.initialize()

    def shutdown(self) -> None:
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._load_task = None
        self._manager.shutdown()
        self._detector = None
        self._recognizer = None
        self._state = ModelState.UNINITIALIZED

    def _load(self) -> tuple[FaceDetector, FaceRecognizer]:
        detection_name = self._settings.face_detection_model
        recognition_name = self._settings.face_recognition_model
        get_model_spec(detection_name, ModelTask.FACE_DETECTION)
        recognition_spec = get_model_spec(recognition_name, ModelTask.FACE_RECOGNITION)

        detector = RetinaFaceDetector(self._manager.get_session(detection_name), detection_name)
        recognizer = ArcFaceRecognizer(
            self._manager.get_session(recognition_name),
            recognition_name,
            embedding_dim=recognition_spec.embedding_dim or 512,
        )
        return detector, recognizer
