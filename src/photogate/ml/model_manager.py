"""Model registry and ONNX session management.

Models are fetched from the Hugging Face Hub on first use and kept as one
cached InferenceSession each. InsightFace models are gated behind an explicit
license acceptance.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import ExecutionMode, GraphOptimizationLevel, InferenceSession, SessionOptions

if TYPE_CHECKING:
    from photogate.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model download and session caching."""

    def ensure_downloaded(self, model_name: str) -> Path:
        """Ensure a model is downloaded and return its file path."""
        ...

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    FACE_DETECTION = "face_detection"
    FACE_RECOGNITION = "face_recognition"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX model."""

    name: str
    repo_id: str
    filename: str
    subfolder: str | None
    task: ModelTask
    license: str
    insightface: bool
    embedding_dim: int | None = None


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "retinaface_resnet34": ModelSpec(
        name="retinaface_resnet34",
        repo_id="danielcopper/recognizex-models",
        filename="retinaface_resnet34.onnx",
        subfolder=None,
        task=ModelTask.FACE_DETECTION,
        license="MIT",
        insightface=False,
    ),
    "retinaface_mobilenetv2": ModelSpec(
        name="retinaface_mobilenetv2",
        repo_id="danielcopper/recognizex-models",
        filename="retinaface_mobilenetv2.onnx",
        subfolder=None,
        task=ModelTask.FACE_DETECTION,
        license="MIT",
        insightface=False,
    ),
    "auraface_v1": ModelSpec(
        name="auraface_v1",
        repo_id="fal/AuraFace-v1",
        filename="glintr100.onnx",
        subfolder=None,
        task=ModelTask.FACE_RECOGNITION,
        license="Apache-2.0",
        insightface=False,
        embedding_dim=512,
    ),
    "w600k_r50": ModelSpec(
        name="w600k_r50",
        repo_id="public-data/insightface",
        filename="w600k_r50.onnx",
        subfolder="models/buffalo_l",
        task=ModelTask.FACE_RECOGNITION,
        license="Non-commercial (InsightFace)",
        insightface=True,
        embedding_dim=512,
    ),
}


class ModelStatus(StrEnum):
    ACTIVE = "active"
    AVAILABLE = "available"
    REQUIRES_LICENSE = "requires_license"


def get_model_spec(model_name: str, task: ModelTask | None = None) -> ModelSpec:
    """Look up a registry entry, optionally checking that it serves ``task``."""
    try:
        spec = MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None
    if task is not None and spec.task != task:
        raise ValueError(f"Model '{model_name}' is a {spec.task} model, expected {task}")
    return spec


def model_status(spec: ModelSpec, settings: Settings) -> ModelStatus:
    """Status of a registry entry under the current configuration."""
    if spec.name in (settings.face_detection_model, settings.face_recognition_model):
        return ModelStatus.ACTIVE
    if spec.insightface and not settings.accept_insightface_license:
        return ModelStatus.REQUIRES_LICENSE
    return ModelStatus.AVAILABLE


# ---------------------------------------------------------------------------
# ONNX Runtime setup
# ---------------------------------------------------------------------------

ProviderConfig = str | tuple[str, dict[str, object]]


class ModelLicenseError(RuntimeError):
    """An InsightFace model was requested without accepting its license."""


def build_providers(settings: Settings) -> list[ProviderConfig]:
    """Execution providers for the configured device, CPU always last."""
    accelerated: dict[str, ProviderConfig] = {
        "cuda": (
            "CUDAExecutionProvider",
            {
                "device_id": 0,
                "gpu_mem_limit": settings.gpu_mem_limit,
                "arena_extend_strategy": "kSameAsRequested",
            },
        ),
        "openvino": ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
    }
    providers: list[ProviderConfig] = []
    if settings.device in accelerated:
        providers.append(accelerated[settings.device])
    providers.append("CPUExecutionProvider")
    return providers


def build_session_options(settings: Settings) -> SessionOptions:
    opts = SessionOptions()
    opts.intra_op_num_threads = settings.intra_op_threads
    opts.inter_op_num_threads = settings.inter_op_threads
    opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    opts.enable_mem_pattern = True
    opts.enable_mem_reuse = True
    if settings.device == "openvino":
        # OpenVINO applies its own graph optimizations.
        opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
    return opts


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Fetches models from the Hugging Face Hub and keeps one session per model.

    Files already present under ``models_dir`` are used as-is, so a restarted
    service does not touch the network. Each model loads under its own lock:
    two scans asking for the same model share one load, while different
    models load in parallel.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._load_locks: dict[str, threading.Lock] = {}
        self._sessions: dict[str, InferenceSession] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = build_providers(settings)
        self._session_options = build_session_options(settings)

    # -- Public API ---------------------------------------------------------

    def local_path(self, spec: ModelSpec) -> Path:
        """Where ``hf_hub_download`` places ``spec`` under ``models_dir``."""
        if spec.subfolder:
            return self._models_dir / spec.subfolder / spec.filename
        return self._models_dir / spec.filename

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return the local model file, downloading it first if needed.

        Raises:
            KeyError: If the model is not in the registry.
            ModelLicenseError: If the model needs the InsightFace license.
        """
        spec = get_model_spec(model_name)
        if spec.insightface and not self._settings.accept_insightface_license:
            raise ModelLicenseError(f"Model '{spec.name}' requires PHOTOGATE_ACCEPT_INSIGHTFACE_LICENSE=true")

        known = self._model_paths.get(model_name, self.local_path(spec))
        if known.exists():
            self._model_paths[model_name] = known
            return known

        logger.info("Downloading %s from %s", model_name, spec.repo_id)
        downloaded = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir),
            )
        )
        self._model_paths[model_name] = downloaded
        return downloaded

    def get_session(self, model_name: str) -> InferenceSession:
        """Return the session for ``model_name``, loading it on first use."""
        with self._load_lock(model_name):
            with self._lock:
                session = self._sessions.get(model_name)
            if session is not None:
                return session

            session = InferenceSession(
                str(self.ensure_downloaded(model_name)),
                sess_options=self._session_options,
                providers=self._providers,
            )
            with self._lock:
                self._sessions[model_name] = session
            logger.info("Loaded %s (providers: %s)", model_name, ", ".join(session.get_providers()))
            return session

    def get_loaded_models(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def shutdown(self) -> None:
        """Drop every cached session."""
        with self._lock:
            self._sessions.clear()
        logger.info("All model sessions released")

    # -- Internal -----------------------------------------------------------

    def _load_lock(self, model_name: str) -> threading.Lock:
        with self._lock:
            return self._load_locks.setdefault(model_name, threading.Lock())
