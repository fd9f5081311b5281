"""Tests for the face-centred portrait cropper."""

from __future__ import annotations

import io

import pytest
from PIL import Image

from photogate.enrollment.constants import OUTPUT_HEIGHT, OUTPUT_WIDTH
from photogate.enrollment.cropper import FaceCropper
from photogate.enrollment.errors import ProcessingException
from photogate.enrollment.types import BoundingBox, ImageDimensions


def _gradient(width: int, height: int, mode: str = "RGB") -> Image.Image:
    image = Image.linear_gradient("L").resize((width, height))
    return image if mode == "L" else image.convert(mode)


class TestComputeRegion:
    def test_centered_face_region(self) -> None:
        region = FaceCropper().compute_region(
            ImageDimensions(width=700, height=900),
            BoundingBox(x=0.3, y=0.2, width=0.4, height=0.5),
        )
        assert region.x == pytest.approx(154)
        assert region.y == pytest.approx(153)
        assert region.width == pytest.approx(392)
        assert region.height == pytest.approx(504)
        assert region.ratio == pytest.approx(7 / 9)

    def test_wide_region_trims_width(self) -> None:
        region = FaceCropper().compute_region(
            ImageDimensions(width=1000, height=1000),
            BoundingBox(x=0.2, y=0.4, width=0.6, height=0.2),
        )
        assert region.ratio == pytest.approx(7 / 9)
        # Height is kept, width shrinks around the centre.
        assert region.height == pytest.approx(280)
        assert region.x + region.width / 2 == pytest.approx(500)

    def test_clamped_at_image_edges(self) -> None:
        dimensions = ImageDimensions(width=700, height=900)
        region = FaceCropper().compute_region(dimensions, BoundingBox(x=0.0, y=0.0, width=0.5, height=0.5))
        assert region.x >= 0
        assert region.y >= 0
        assert region.x + region.width <= dimensions.width + 1e-6
        assert region.y + region.height <= dimensions.height + 1e-6
        assert region.ratio == pytest.approx(7 / 9)

    def test_face_at_bottom_right_stays_inside(self) -> None:
        dimensions = ImageDimensions(width=700, height=900)
        region = FaceCropper().compute_region(dimensions, BoundingBox(x=0.6, y=0.6, width=0.4, height=0.4))
        assert region.x + region.width <= dimensions.width + 1e-6
        assert region.y + region.height <= dimensions.height + 1e-6

    def test_degenerate_box_raises(self) -> None:
        with pytest.raises(ProcessingException, match="Crop region too small"):
            FaceCropper().compute_region(
                ImageDimensions(width=700, height=900),
                BoundingBox(x=0.5, y=0.5, width=0.0, height=0.0),
            )


class TestCrop:
    def test_output_is_fixed_size_jpeg(self) -> None:
        with _gradient(700, 900) as image:
            crop = FaceCropper().crop(image, BoundingBox(x=0.3, y=0.2, width=0.4, height=0.5))

        assert (crop.width, crop.height) == (400, 514)
        assert crop.media_type == "image/jpeg"
        with Image.open(io.BytesIO(crop.data)) as decoded:
            assert decoded.format == "JPEG"
            assert decoded.size == (400, 514)
            assert abs(decoded.width / decoded.height - 7 / 9) <= 0.01

    def test_crop_is_deterministic(self) -> None:
        box = BoundingBox(x=0.25, y=0.15, width=0.45, height=0.55)
        with _gradient(700, 900) as image:
            first = FaceCropper().crop(image, box)
            second = FaceCropper().crop(image, box)
        assert first.data == second.data

    def test_non_rgb_source_is_converted(self) -> None:
        with _gradient(700, 900, mode="L") as image:
            crop = FaceCropper().crop(image, BoundingBox(x=0.3, y=0.2, width=0.4, height=0.5))
            assert image.mode == "L"
        with Image.open(io.BytesIO(crop.data)) as decoded:
            assert decoded.mode == "RGB"

    def test_default_output_size(self) -> None:
        assert FaceCropper().output_size == (OUTPUT_WIDTH, OUTPUT_HEIGHT)

    def test_custom_output_width(self) -> None:
        cropper = FaceCropper(output_width=140)
        assert cropper.output_size == (140, 180)
