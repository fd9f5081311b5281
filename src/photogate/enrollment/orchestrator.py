"""Scan state machine for reference photo enrollment.

    idle -> validating -> detecting -> quality_checking -> cropping
         -> re_embedding -> complete

Any failure moves straight to ``error``. Every call to ``submit`` starts a new
generation. Results are applied only while their generation is still the
current one; a superseded generation's late results are dropped and the
resources it allocated are released as soon as it is superseded.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import ExitStack
from dataclasses import replace
from typing import TYPE_CHECKING, Protocol, TypeVar

from photogate.enrollment.cropper import FaceCropper
from photogate.enrollment.errors import EnrollmentError, ProcessingException
from photogate.enrollment.quality_gate import QualityGate
from photogate.enrollment.types import (
    ImageDimensions,
    ScanProgress,
    ScanResult,
    ScanStage,
    ScanState,
)
from photogate.enrollment.validators import (
    AspectRatioValidator,
    FileValidator,
    validate_min_dimensions,
)
from photogate.ml.preprocessing import decode_image

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    import numpy as np
    from numpy.typing import NDArray
    from PIL import Image

    from photogate.enrollment.errors import ErrorKind
    from photogate.enrollment.types import CroppedFace, RawImageInput
    from photogate.ml.detection_client import DetectionClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Gauge that reports a failure in each stage.
_FAILURE_GAUGE: dict[ScanStage, str] = {
    ScanStage.IDLE: "detection",
    ScanStage.VALIDATING: "detection",
    ScanStage.DETECTING: "detection",
    ScanStage.QUALITY_CHECKING: "quality",
    ScanStage.CROPPING: "embedding",
    ScanStage.RE_EMBEDDING: "embedding",
}


class PhotoCallbacks(Protocol):
    """Host side of a scan: exactly one of these is called per finished generation."""

    def on_photo_accepted(self, crop: CroppedFace, embedding: NDArray[np.float32]) -> None: ...

    def on_photo_rejected(self, kind: ErrorKind, message: str) -> None: ...


class ModelReadiness(Protocol):
    async def ensure_ready(self) -> None: ...


class _Superseded(Exception):
    """Raised inside a scan whose generation is no longer current."""


class _Generation:
    """One run of the pipeline and the image resources it owns."""

    def __init__(self, number: int) -> None:
        self.number = number
        self._lock = threading.Lock()
        self._resources = ExitStack()
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def adopt(self, image: Image.Image) -> Image.Image:
        """Tie ``image`` to this generation; close it at once if already released."""
        with self._lock:
            if not self._released:
                self._resources.callback(image.close)
                return image
        image.close()
        raise _Superseded(self.number)

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
        self._resources.close()


class ScanOrchestrator:
    def __init__(
        self,
        client: DetectionClient,
        callbacks: PhotoCallbacks | None = None,
        *,
        models: ModelReadiness | None = None,
        file_validator: FileValidator | None = None,
        aspect_validator: AspectRatioValidator | None = None,
        gate: QualityGate | None = None,
        cropper: FaceCropper | None = None,
        decoder: Callable[[bytes], Image.Image] = decode_image,
        require_aspect_ratio: bool = False,
        call_timeout: float | None = None,
        on_state_change: Callable[[ScanState], None] | None = None,
    ) -> None:
        self._client = client
        self._callbacks = callbacks
        self._models = models
        self._file_validator = file_validator or FileValidator()
        self._aspect_validator = aspect_validator or AspectRatioValidator()
        self._gate = gate or QualityGate()
        self._cropper = cropper or FaceCropper()
        self._decoder = decoder
        self._require_aspect_ratio = require_aspect_ratio
        self._call_timeout = call_timeout
        self._on_state_change = on_state_change

        self._generation = 0
        self._current: _Generation | None = None
        self._state = ScanState()
        self._tasks: set[asyncio.Task[ScanState | None]] = set()

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    # -- Public API ---------------------------------------------------------

    def submit(self, raw: RawImageInput) -> asyncio.Task[ScanState | None]:
        """Start scanning ``raw``, superseding any scan in flight.

        The returned task resolves to the generation's final state, or None if
        the generation was superseded before it finished.
        """
        generation = self._begin()
        task = asyncio.get_running_loop().create_task(self._run(generation, raw))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def scan(self, raw: RawImageInput) -> ScanState | None:
        return await self.submit(raw)

    def close(self) -> None:
        """Tear down: invalidate the current generation and release its resources."""
        self._supersede()
        self._set_state(ScanState(generation=self._generation))

    # -- Pipeline -----------------------------------------------------------

    async def _run(self, generation: _Generation, raw: RawImageInput) -> ScanState | None:
        try:
            result = await self._pipeline(generation, raw)
            return self._complete(generation, result)
        except _Superseded:
            logger.debug("Dropped result of superseded scan generation %d", generation.number)
            return None
        except EnrollmentError as exc:
            return self._fail(generation, exc)
        except Exception as exc:
            logger.exception("Unexpected failure in scan generation %d", generation.number)
            return self._fail(generation, ProcessingException(str(exc)))
        finally:
            generation.release()

    async def _pipeline(self, generation: _Generation, raw: RawImageInput) -> ScanResult:
        self._file_validator.validate(raw)

        image = await self._decode(generation, raw.data)
        dimensions = ImageDimensions(width=image.width, height=image.height)
        validate_min_dimensions(dimensions)
        if self._require_aspect_ratio:
            self._aspect_validator.validate(dimensions)

        self._advance(generation, ScanStage.DETECTING, ScanProgress(overall=15), dimensions=dimensions)
        if self._models is not None:
            await self._await(generation, self._models.ensure_ready())
        report = await self._await(generation, self._client.detect(image))

        detection = report.detection
        self._advance(
            generation,
            ScanStage.QUALITY_CHECKING,
            ScanProgress(detection=100, overall=45),
            bounding_box=detection.bounding_box,
        )
        self._gate.check(detection, report.quality)
        box = detection.bounding_box
        if box is None:
            raise ProcessingException("Accepted detection has no bounding box")

        self._advance(generation, ScanStage.CROPPING, ScanProgress(detection=100, quality=100, overall=60))
        crop = self._cropper.crop(image, box)

        self._advance(generation, ScanStage.RE_EMBEDDING, ScanProgress(detection=100, quality=100, overall=75))
        cropped = await self._decode(generation, crop.data)
        embedded = await self._await(generation, self._client.embed(cropped))
        self._gate.check_quality(embedded.quality)

        return ScanResult(embedding=embedded.embedding, crop=crop, bounding_box=box)

    async def _decode(self, generation: _Generation, data: bytes) -> Image.Image:
        def decode() -> Image.Image:
            return generation.adopt(self._decoder(data))

        return await self._await(generation, asyncio.to_thread(decode))

    async def _await(self, generation: _Generation, awaitable: Awaitable[T]) -> T:
        """Await a suspension point and check the generation is still current afterwards."""
        try:
            if self._call_timeout is None:
                result = await awaitable
            else:
                result = await asyncio.wait_for(awaitable, timeout=self._call_timeout)
        except TimeoutError as exc:
            self._ensure_current(generation)
            raise ProcessingException(f"Call timed out after {self._call_timeout}s") from exc
        except Exception:
            self._ensure_current(generation)
            raise
        self._ensure_current(generation)
        return result

    # -- State --------------------------------------------------------------

    def _begin(self) -> _Generation:
        self._supersede()
        generation = _Generation(self._generation)
        self._current = generation
        self._set_state(ScanState(stage=ScanStage.VALIDATING, generation=generation.number))
        logger.debug("Started scan generation %d", generation.number)
        return generation

    def _supersede(self) -> None:
        previous = self._current
        self._generation += 1
        self._current = None
        if previous is not None and not previous.released:
            logger.debug("Scan generation %d superseded", previous.number)
            previous.release()

    def _is_current(self, generation: _Generation) -> bool:
        return self._current is generation

    def _ensure_current(self, generation: _Generation) -> None:
        if not self._is_current(generation):
            raise _Superseded(generation.number)

    def _advance(self, generation: _Generation, stage: ScanStage, progress: ScanProgress, **changes: object) -> None:
        self._ensure_current(generation)
        logger.debug("Scan generation %d -> %s", generation.number, stage)
        self._set_state(replace(self._state, stage=stage, progress=progress, **changes))

    def _complete(self, generation: _Generation, result: ScanResult) -> ScanState | None:
        if not self._is_current(generation):
            return None
        state = replace(
            self._state,
            stage=ScanStage.COMPLETE,
            progress=ScanProgress(detection=100, embedding=100, quality=100, overall=100),
            result=result,
        )
        self._set_state(state)
        logger.info(
            "Scan generation %d complete (%dx%d crop, %d-dim embedding)",
            generation.number,
            result.crop.width,
            result.crop.height,
            result.embedding.shape[0],
        )
        if self._callbacks is not None:
            self._notify(self._callbacks.on_photo_accepted, result.crop, result.embedding)
        return state

    def _fail(self, generation: _Generation, error: EnrollmentError) -> ScanState | None:
        if not self._is_current(generation):
            logger.debug("Dropped %s from superseded scan generation %d", error.kind, generation.number)
            return None
        gauge = _FAILURE_GAUGE.get(self._state.stage, "detection")
        progress = replace(self._state.progress, overall=100, **{gauge: 100})
        state = replace(self._state, stage=ScanStage.ERROR, progress=progress, error=error)
        self._set_state(state)
        logger.info("Scan generation %d rejected: %s (%s)", generation.number, error.kind, error)
        if self._callbacks is not None:
            self._notify(self._callbacks.on_photo_rejected, error.kind, error.message)
        return state

    def _set_state(self, state: ScanState) -> None:
        self._state = state
        if self._on_state_change is not None:
            self._notify(self._on_state_change, state)

    @staticmethod
    def _notify(callback: Callable[..., None], *args: object) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception("Host callback %s failed", getattr(callback, "__name__", callback))
