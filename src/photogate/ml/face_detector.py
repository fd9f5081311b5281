"""Face detection models.

Implementations: RetinaFace (ResNet34, MobileNetV2) exported to ONNX with
``loc``, ``conf`` and ``landms`` heads.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np
from PIL import Image

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession


@dataclass(frozen=True)
class RawDetection:
    """Raw face detection result before coordinate normalization.

    Coordinates are in pixel space of the original input image.
    """

    bbox: NDArray[np.float32]
    score: float
    landmarks: NDArray[np.float32]


class FaceDetector(Protocol):
    """Protocol for face detection models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def detect(self, image: NDArray[np.uint8]) -> list[RawDetection]:
        """Detect faces in an image.

        Args:
            image: HxWx3 RGB uint8 array.

        Returns:
            Detections above the score threshold, sorted by score (descending).
        """
        ...


# ---------------------------------------------------------------------------
# RetinaFace
# ---------------------------------------------------------------------------

_MIN_SIZES: tuple[tuple[int, int], ...] = ((16, 32), (64, 128), (256, 512))
_STEPS: tuple[int, ...] = (8, 16, 32)
_VARIANCES: tuple[float, float] = (0.1, 0.2)
_BGR_MEAN = np.array([104.0, 117.0, 123.0], dtype=np.float32)


def prior_boxes(input_height: int, input_width: int) -> NDArray[np.float32]:
    """Anchor priors as ``(cx, cy, w, h)`` rows normalized to the input size."""
    priors: list[NDArray[np.float32]] = []
    for min_sizes, step in zip(_MIN_SIZES, _STEPS, strict=True):
        rows = math.ceil(input_height / step)
        cols = math.ceil(input_width / step)
        ys, xs = np.meshgrid(np.arange(rows), np.arange(cols), indexing="ij")
        cx = (xs.reshape(-1) + 0.5) * step / input_width
        cy = (ys.reshape(-1) + 0.5) * step / input_height
        n_sizes = len(min_sizes)
        sizes = np.array(min_sizes, dtype=np.float32)
        level = np.stack(
            [
                np.repeat(cx, n_sizes),
                np.repeat(cy, n_sizes),
                np.tile(sizes / input_width, cx.shape[0]),
                np.tile(sizes / input_height, cx.shape[0]),
            ],
            axis=1,
        )
        priors.append(level.astype(np.float32))
    return np.concatenate(priors, axis=0)


def decode_boxes(loc: NDArray[np.float32], priors: NDArray[np.float32]) -> NDArray[np.float32]:
    """Decode regression offsets into normalized ``(x1, y1, x2, y2)`` boxes."""
    centers = priors[:, :2] + loc[:, :2] * _VARIANCES[0] * priors[:, 2:]
    sizes = priors[:, 2:] * np.exp(loc[:, 2:] * _VARIANCES[1])
    return np.concatenate([centers - sizes / 2, centers + sizes / 2], axis=1)


def decode_landmarks(landms: NDArray[np.float32], priors: NDArray[np.float32]) -> NDArray[np.float32]:
    """Decode five-point landmark offsets into normalized ``(x, y)`` pairs, shape (N, 5, 2)."""
    offsets = landms.reshape(-1, 5, 2)
    return priors[:, np.newaxis, :2] + offsets * _VARIANCES[0] * priors[:, np.newaxis, 2:]


def nms(boxes: NDArray[np.float32], scores: NDArray[np.float32], threshold: float) -> NDArray[np.int32]:
    """Perform NMS on boxes in (x1, y1, x2, y2) format."""
    if len(boxes) == 0:
        return np.array([], dtype=np.int32)

    x1, y1, x2, y2 = boxes[:, 0], boxes[:, 1], boxes[:, 2], boxes[:, 3]
    areas = (x2 - x1) * (y2 - y1)
    order = scores.argsort()[::-1]

    keep: list[int] = []
    while order.size > 0:
        i = int(order[0])
        keep.append(i)

        xx1 = np.maximum(x1[i], x1[order[1:]])
        yy1 = np.maximum(y1[i], y1[order[1:]])
        xx2 = np.minimum(x2[i], x2[order[1:]])
        yy2 = np.minimum(y2[i], y2[order[1:]])

        inter = np.maximum(0.0, xx2 - xx1) * np.maximum(0.0, yy2 - yy1)
        iou = inter / (areas[i] + areas[order[1:]] - inter + 1e-8)
        order = order[np.where(iou <= threshold)[0] + 1]

    return np.array(keep, dtype=np.int32)


class RetinaFaceDetector:
    """RetinaFace on a fixed-size input; boxes are mapped back to the source image."""

    def __init__(
        self,
        session: InferenceSession,
        model_name: str,
        input_size: tuple[int, int] = (640, 640),
        score_threshold: float = 0.5,
        nms_threshold: float = 0.4,
    ) -> None:
        self._session = session
        self._model_name = model_name
        self._input_size = input_size
        self._score_threshold = score_threshold
        self._nms_threshold = nms_threshold
        self._priors = prior_boxes(*input_size)
        self._input_name = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._model_name

    def preprocess(self, image: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Resize to the model input, convert to mean-subtracted BGR, NCHW."""
        height, width = self._input_size
        with Image.fromarray(image) as source, source.resize((width, height), Image.Resampling.BILINEAR) as resized:
            rgb = np.asarray(resized, dtype=np.float32)
        bgr = rgb[..., ::-1] - _BGR_MEAN
        return np.ascontiguousarray(bgr.transpose(2, 0, 1)[np.newaxis, ...], dtype=np.float32)

    def detect(self, image: NDArray[np.uint8]) -> list[RawDetection]:
        img_h, img_w = image.shape[:2]
        outputs = self._session.run(None, {self._input_name: self.preprocess(image)})
        loc, conf, landms = self._split_outputs(outputs)

        scores = conf[:, 1]
        mask = scores >= self._score_threshold
        if not np.any(mask):
            return []

        priors = self._priors[mask]
        boxes = decode_boxes(loc[mask], priors)
        points = decode_landmarks(landms[mask], priors)
        scores = scores[mask]

        scale = np.array([img_w, img_h, img_w, img_h], dtype=np.float32)
        boxes = boxes * scale
        points = points * np.array([img_w, img_h], dtype=np.float32)

        keep = nms(boxes, scores, self._nms_threshold)
        return [
            RawDetection(
                bbox=boxes[i].astype(np.float32),
                score=float(scores[i]),
                landmarks=points[i].astype(np.float32),
            )
            for i in keep
        ]

    @staticmethod
    def _split_outputs(
        outputs: list[NDArray[np.float32]],
    ) -> tuple[NDArray[np.float32], NDArray[np.float32], NDArray[np.float32]]:
        by_width: dict[int, NDArray[np.float32]] = {}
        for output in outputs:
            array = np.asarray(output, dtype=np.float32)
            by_width[array.shape[-1]] = array.reshape(-1, array.shape[-1])
        try:
            return by_width[4], by_width[2], by_width[10]
        except KeyError:
            raise ValueError(f"Unexpected RetinaFace outputs with widths {sorted(by_width)}") from None
