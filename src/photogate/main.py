"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from photogate.api.routes import router
from photogate.config import Settings, get_settings
from photogate.ml.detection_client import OnnxDetectionClient
from photogate.ml.inference import InferencePool
from photogate.ml.model_service import ModelService

logger = logging.getLogger(__name__)


def init_app_state(app: FastAPI, settings: Settings, model_service: ModelService | None = None) -> None:
    """Attach the shared services every request uses."""
    inference_pool = InferencePool(settings)
    model_service = model_service if model_service is not None else ModelService(settings)
    app.state.settings = settings
    app.state.inference_pool = inference_pool
    app.state.model_service = model_service
    app.state.detection_client = OnnxDetectionClient(model_service, inference_pool)


def _log_initialization_failure(task: asyncio.Task[None]) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Models failed to load at startup; scans will be rejected until restart")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting PhotoGate (device=%s, max_concurrent=%s, detection=%s, recognition=%s)",
        settings.device,
        settings.max_concurrent,
        settings.face_detection_model,
        settings.face_recognition_model,
    )

    init_app_state(app, settings)
    model_service: ModelService = app.state.model_service
    warmup = asyncio.create_task(model_service.initialize())
    warmup.add_done_callback(_log_initialization_failure)

    logger.info("PhotoGate ready")
    yield

    logger.info("Shutting down PhotoGate")
    if not warmup.done():
        warmup.cancel()
    model_service.shutdown()
    app.state.inference_pool.shutdown()
    logger.info("PhotoGate shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="PhotoGate",
        description="Reference photo intake, face-quality gating and embedding for attendance enrollment",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run("photogate.main:app", host=settings.host, port=settings.port)
