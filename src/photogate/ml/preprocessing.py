"""Image decoding and array conversion.

Decoding applies EXIF orientation and converts to RGB so every downstream
stage (detection, cropping, recognition) sees the picture the way the person
took it.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from photogate.enrollment.errors import ProcessingException

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from photogate.enrollment.types import BoundingBox

logger = logging.getLogger(__name__)

DEFAULT_MAX_IMAGE_PIXELS: int = 16_777_216


def decode_image(image_bytes: bytes, max_pixels: int = DEFAULT_MAX_IMAGE_PIXELS) -> Image.Image:
    """Decode raw image bytes into an upright RGB Pillow image.

    The caller owns the returned image and must close it.

    Raises:
        ProcessingException: If the bytes are not a decodable image or exceed ``max_pixels``.
    """
    try:
        opened = Image.open(io.BytesIO(image_bytes))
    except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
        raise ProcessingException(f"Failed to decode image: {exc}") from exc

    with opened:
        if opened.width * opened.height > max_pixels:
            raise ProcessingException(
                f"Image has {opened.width * opened.height} pixels, limit is {max_pixels}"
            )
        try:
            opened.load()
            upright = ImageOps.exif_transpose(opened)
        except OSError as exc:
            raise ProcessingException(f"Failed to decode image: {exc}") from exc

    if upright.mode == "RGB":
        return upright
    converted = upright.convert("RGB")
    upright.close()
    return converted


def to_rgb_array(image: Image.Image) -> NDArray[np.uint8]:
    """Return an HxWx3 uint8 copy of ``image``."""
    rgb = image if image.mode == "RGB" else image.convert("RGB")
    array = np.asarray(rgb, dtype=np.uint8).copy()
    if rgb is not image:
        rgb.close()
    return array


def extract_face_chip(image: NDArray[np.uint8], box: BoundingBox, size: int = 112) -> NDArray[np.uint8]:
    """Cut the face box out of ``image`` as a square chip of ``size`` pixels.

    The box is expanded to a square around its centre (clamped to the image)
    before resizing, so the face is not distorted.
    """
    img_h, img_w = image.shape[:2]
    cx = (box.x + box.width / 2) * img_w
    cy = (box.y + box.height / 2) * img_h
    side = max(box.width * img_w, box.height * img_h)

    left = int(round(max(cx - side / 2, 0)))
    top = int(round(max(cy - side / 2, 0)))
    right = int(round(min(cx + side / 2, img_w)))
    bottom = int(round(min(cy + side / 2, img_h)))
    if right - left < 2 or bottom - top < 2:
        raise ProcessingException("Face region too small to embed")

    with (
        Image.fromarray(np.ascontiguousarray(image[top:bottom, left:right])) as region,
        region.resize((size, size), resample=Image.Resampling.BILINEAR) as chip,
    ):
        return np.asarray(chip, dtype=np.uint8).copy()
