"""Environment-based configuration for PhotoGate."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from PHOTOGATE_* environment variables.

    Pipeline thresholds (file size, aspect ratio, padding, confidence) are fixed
    constants in ``photogate.enrollment.constants`` and are not configurable here.
    """

    model_config = SettingsConfigDict(
        env_prefix="PHOTOGATE_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    face_detection_model: str = "retinaface_mobilenetv2"
    face_recognition_model: str = "auraface_v1"
    accept_insightface_license: bool = False
    models_dir: str = "models"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    inference_timeout: float | None = Field(default=30.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)

    # Enrollment policy
    require_aspect_ratio: bool = False


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
