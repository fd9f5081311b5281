"""Tests for image decoding and face chip extraction."""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from photogate.enrollment.errors import ProcessingException
from photogate.enrollment.types import BoundingBox
from photogate.ml.preprocessing import decode_image, extract_face_chip, to_rgb_array


def _encode(image: Image.Image, fmt: str = "JPEG", **params: object) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **params)
    return buffer.getvalue()


class TestDecodeImage:
    def test_decodes_jpeg_to_rgb(self) -> None:
        data = _encode(Image.new("RGB", (300, 400), (200, 10, 10)))
        with decode_image(data) as image:
            assert image.mode == "RGB"
            assert image.size == (300, 400)

    def test_converts_alpha_to_rgb(self) -> None:
        data = _encode(Image.new("RGBA", (300, 400), (0, 0, 255, 128)), fmt="PNG")
        with decode_image(data) as image:
            assert image.mode == "RGB"

    def test_applies_exif_orientation(self) -> None:
        # Orientation 6: stored landscape, displayed rotated 90 degrees clockwise.
        exif = Image.Exif()
        exif[0x0112] = 6
        data = _encode(Image.new("RGB", (400, 300), (50, 50, 50)), exif=exif.tobytes())

        with decode_image(data) as image:
            assert image.size == (300, 400)

    def test_rejects_garbage(self) -> None:
        with pytest.raises(ProcessingException, match="Failed to decode image"):
            decode_image(b"\x00\x01 not an image")

    def test_rejects_truncated_image(self) -> None:
        noise = np.random.default_rng(0).integers(0, 256, size=(400, 300, 3), dtype=np.uint8)
        data = _encode(Image.fromarray(noise))
        with pytest.raises(ProcessingException):
            decode_image(data[: len(data) // 2])

    def test_enforces_pixel_limit(self) -> None:
        data = _encode(Image.new("RGB", (300, 400)))
        with pytest.raises(ProcessingException, match="limit is 100000"):
            decode_image(data, max_pixels=100_000)

    def test_configured_limit_governs_over_pillow_warning(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1_000)
        data = _encode(Image.new("RGB", (40, 40)), fmt="PNG")

        with pytest.warns(Image.DecompressionBombWarning), decode_image(data, max_pixels=10_000) as image:
            assert image.size == (40, 40)

    def test_processing_exception_hides_detail_from_user(self) -> None:
        with pytest.raises(ProcessingException) as exc_info:
            decode_image(b"junk")
        assert exc_info.value.message == "Failed to process image. Please try again."


class TestArrays:
    def test_to_rgb_array_shape_and_dtype(self) -> None:
        with Image.new("L", (30, 20), 128) as image:
            array = to_rgb_array(image)
        assert array.shape == (20, 30, 3)
        assert array.dtype == np.uint8

    def test_extract_face_chip_is_square(self) -> None:
        image = np.zeros((400, 300, 3), dtype=np.uint8)
        image[100:300, 100:200] = 255
        chip = extract_face_chip(image, BoundingBox(x=1 / 3, y=0.25, width=1 / 3, height=0.5), size=112)
        assert chip.shape == (112, 112, 3)
        # The face is centred, so the chip centre is bright.
        assert chip[56, 56].tolist() == [255, 255, 255]

    def test_extract_face_chip_rejects_empty_box(self) -> None:
        image = np.zeros((100, 100, 3), dtype=np.uint8)
        with pytest.raises(ProcessingException):
            extract_face_chip(image, BoundingBox(x=0.5, y=0.5, width=0.0, height=0.0))
