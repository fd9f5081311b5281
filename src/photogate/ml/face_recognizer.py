"""Face recognition (embedding) models.

Implementations: AuraFace v1 (default), ArcFace w600k_r50 (opt-in). Both take
112x112 RGB crops normalized to [-1, 1].
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

FACE_SIZE: int = 112


class FaceRecognizer(Protocol):
    """Protocol for face recognition (embedding) models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    @property
    def embedding_dim(self) -> int:
        """Return the embedding dimensionality (e.g., 512)."""
        ...

    def get_embeddings(self, face_crops: NDArray[np.float32]) -> NDArray[np.float32]:
        """Generate embeddings for a batch of face crops.

        Args:
            face_crops: Batch of preprocessed face images, shape (N, 3, 112, 112).

        Returns:
            L2-normalized embedding vectors, shape (N, embedding_dim).
        """
        ...


def preprocess_faces(chips: NDArray[np.uint8]) -> NDArray[np.float32]:
    """Convert (N, 112, 112, 3) uint8 RGB chips to the (N, 3, 112, 112) model input."""
    normalized = (chips.astype(np.float32) - 127.5) / 127.5
    return np.ascontiguousarray(normalized.transpose(0, 3, 1, 2))


class ArcFaceRecognizer:
    def __init__(self, session: InferenceSession, model_name: str, embedding_dim: int) -> None:
        self._session = session
        self._model_name = model_name
        self._embedding_dim = embedding_dim
        self._input_name = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def embedding_dim(self) -> int:
        return self._embedding_dim

    def get_embeddings(self, face_crops: NDArray[np.float32]) -> NDArray[np.float32]:
        output = self._session.run(None, {self._input_name: face_crops})[0]
        embeddings = np.asarray(output, dtype=np.float32).reshape(face_crops.shape[0], -1)
        norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
        return embeddings / np.maximum(norms, 1e-12)
