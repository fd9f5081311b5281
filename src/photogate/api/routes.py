"""API route definitions."""

from __future__ import annotations

import base64
import logging
from functools import partial
from http import HTTPStatus
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request, UploadFile, status
from fastapi.responses import JSONResponse

from photogate.api.dependencies import (
    get_app_settings,
    get_detection_client,
    get_inference_pool,
    get_model_service,
    verify_api_key,
)
from photogate.api.schemas import (
    EnrollmentErrorResponse,
    EnrollmentResponse,
    ErrorResponse,
    FaceBox,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
)
from photogate.enrollment.constants import MAX_FILE_SIZE
from photogate.enrollment.errors import ErrorKind, FileTooLarge
from photogate.enrollment.orchestrator import ScanOrchestrator
from photogate.enrollment.types import RawImageInput, ScanStage
from photogate.ml.model_manager import MODEL_REGISTRY, model_status
from photogate.ml.model_service import ModelState
from photogate.ml.preprocessing import decode_image

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from photogate.enrollment.types import CroppedFace

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


class _ResponseCallbacks:
    """Collects the outcome of a single scan for the HTTP response."""

    def __init__(self) -> None:
        self.crop: CroppedFace | None = None
        self.embedding: NDArray[np.float32] | None = None
        self.rejection: tuple[ErrorKind, str] | None = None

    def on_photo_accepted(self, crop: CroppedFace, embedding: NDArray[np.float32]) -> None:
        self.crop = crop
        self.embedding = embedding

    def on_photo_rejected(self, kind: ErrorKind, message: str) -> None:
        self.rejection = (kind, message)


def _rejected(kind: ErrorKind, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
        content={"detail": message, "kind": str(kind)},
    )


async def read_upload(file: UploadFile, limit: int = MAX_FILE_SIZE) -> bytes:
    """Read an upload without buffering more than ``limit + 1`` bytes.

    Raises:
        FileTooLarge: If the multipart part already reports a size above ``limit``.
    """
    if file.size is not None and file.size > limit:
        raise FileTooLarge(actual=file.size, maximum=limit)
    # One extra byte lets FileValidator see the overflow when the size is unknown.
    return await file.read(limit + 1)


def _models_unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Face recognition models are unavailable"},
    )


@router.post(
    "/enroll-photo",
    response_model=EnrollmentResponse,
    responses={
        HTTPStatus.UNPROCESSABLE_ENTITY: {"model": EnrollmentErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Validate, crop and embed a reference photo",
)
async def enroll_photo(file: UploadFile, request: Request) -> EnrollmentResponse | JSONResponse:
    """Run the enrollment scan on an uploaded photo."""
    settings = get_app_settings(request)
    models = get_model_service(request)
    if models.state is ModelState.FAILED:
        return _models_unavailable()

    try:
        data = await read_upload(file)
    except FileTooLarge as exc:
        logger.info("Rejected upload %s: %s", file.filename, exc)
        return _rejected(exc.kind, exc.message)
    raw = RawImageInput.from_bytes(data, file.content_type or "application/octet-stream")

    callbacks = _ResponseCallbacks()
    orchestrator = ScanOrchestrator(
        get_detection_client(request),
        callbacks,
        models=models,
        decoder=partial(decode_image, max_pixels=settings.max_image_pixels),
        require_aspect_ratio=settings.require_aspect_ratio,
        call_timeout=settings.inference_timeout,
    )
    try:
        state = await orchestrator.scan(raw)
    finally:
        orchestrator.close()

    if models.state is ModelState.FAILED:
        return _models_unavailable()

    if (
        state is None
        or state.stage is not ScanStage.COMPLETE
        or state.result is None
        or callbacks.crop is None
        or callbacks.embedding is None
    ):
        kind, message = callbacks.rejection or (
            ErrorKind.PROCESSING_EXCEPTION,
            "Failed to process image. Please try again.",
        )
        return _rejected(kind, message)

    box = state.result.bounding_box
    return EnrollmentResponse(
        embedding=[float(v) for v in callbacks.embedding],
        crop_image=base64.b64encode(callbacks.crop.data).decode("ascii"),
        crop_media_type=callbacks.crop.media_type,
        crop_width=callbacks.crop.width,
        crop_height=callbacks.crop.height,
        bounding_box=FaceBox(x=box.x, y=box.y, width=box.width, height=box.height),
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_app_settings(request)
    pool = get_inference_pool(request)
    models = get_model_service(request)
    return HealthResponse(
        status="ok" if models.state is not ModelState.FAILED else "degraded",
        gpu=settings.device == "cuda",
        models_state=str(models.state),
        models_loaded=models.manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available models and their status based on current configuration."""
    settings = get_app_settings(request)
    return ModelsResponse(
        models=[
            ModelInfo(
                name=spec.name,
                task=str(spec.task),
                status=str(model_status(spec, settings)),
                license=spec.license,
            )
            for spec in MODEL_REGISTRY.values()
        ]
    )
