"""Pydantic request/response schemas for the PhotoGate API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class FaceBox(BaseModel):
    """Normalized bounding box of the enrolled face in the uploaded photo."""

    x: float = Field(description="Relative bounding box x position (0.0-1.0)")
    y: float = Field(description="Relative bounding box y position (0.0-1.0)")
    width: float = Field(description="Relative bounding box width (0.0-1.0)")
    height: float = Field(description="Relative bounding box height (0.0-1.0)")


class EnrollmentResponse(BaseModel):
    """An accepted reference photo: the face crop and its embedding."""

    embedding: list[float] = Field(description="L2-normalized face embedding of the cropped photo")
    crop_image: str = Field(description="Base64-encoded JPEG face crop")
    crop_media_type: str = "image/jpeg"
    crop_width: int
    crop_height: int
    bounding_box: FaceBox


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_state: str = Field(description="Model lifecycle: 'uninitialized', 'initializing', 'ready' or 'failed'")
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = Field(description="Model task: 'face_detection' or 'face_recognition'")
    status: str = Field(description="Model status: 'active', 'available', or 'requires_license'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str


class EnrollmentErrorResponse(ErrorResponse):
    """A rejected photo: user-facing message plus the machine-readable kind."""

    kind: str
