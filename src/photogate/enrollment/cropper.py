"""Face-centred crop to a fixed portrait size.

The crop region is the detected face box padded on every side, clamped to the
image and then trimmed to the target aspect ratio around its centre. The
region is scaled to fill the output canvas exactly and re-encoded as JPEG.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING

from PIL import Image

from photogate.enrollment.constants import (
    JPEG_QUALITY,
    OUTPUT_WIDTH,
    PADDING_RATIO,
    TARGET_ASPECT_RATIO,
)
from photogate.enrollment.errors import ProcessingException
from photogate.enrollment.types import CroppedFace, CropRegion, ImageDimensions

if TYPE_CHECKING:
    from photogate.enrollment.types import BoundingBox

logger = logging.getLogger(__name__)


class FaceCropper:
    def __init__(
        self,
        padding_ratio: float = PADDING_RATIO,
        target_ratio: float = TARGET_ASPECT_RATIO,
        output_width: int = OUTPUT_WIDTH,
        jpeg_quality: int = JPEG_QUALITY,
    ) -> None:
        self.padding_ratio = padding_ratio
        self.target_ratio = target_ratio
        self.output_width = output_width
        self.output_height = round(output_width / target_ratio)
        self.jpeg_quality = jpeg_quality

    @property
    def output_size(self) -> tuple[int, int]:
        return (self.output_width, self.output_height)

    def compute_region(self, dimensions: ImageDimensions, box: BoundingBox) -> CropRegion:
        """Map a normalized face box to the padded, ratio-corrected pixel region."""
        img_w, img_h = dimensions.width, dimensions.height

        crop_w = box.width * img_w
        crop_h = box.height * img_h
        crop_x = box.x * img_w
        crop_y = box.y * img_h

        pad_x = crop_w * self.padding_ratio
        pad_y = crop_h * self.padding_ratio
        crop_x = max(0.0, crop_x - pad_x)
        crop_y = max(0.0, crop_y - pad_y)
        crop_w = min(img_w - crop_x, crop_w + 2 * pad_x)
        crop_h = min(img_h - crop_y, crop_h + 2 * pad_y)

        if crop_w < 1 or crop_h < 1:
            raise ProcessingException(f"Crop region too small: {crop_w:.2f}x{crop_h:.2f}")

        if crop_w / crop_h > self.target_ratio:
            new_w = crop_h * self.target_ratio
            crop_x += (crop_w - new_w) / 2
            crop_w = new_w
        else:
            new_h = crop_w / self.target_ratio
            crop_y += (crop_h - new_h) / 2
            crop_h = new_h

        return CropRegion(x=crop_x, y=crop_y, width=crop_w, height=crop_h)

    def crop(self, image: Image.Image, box: BoundingBox) -> CroppedFace:
        """Render the crop region of ``image`` at the output size and encode it as JPEG."""
        dimensions = ImageDimensions(width=image.width, height=image.height)
        region = self.compute_region(dimensions, box)

        source = image if image.mode == "RGB" else image.convert("RGB")
        try:
            with source.resize(self.output_size, resample=Image.Resampling.BICUBIC, box=region.as_box()) as rendered:
                buffer = io.BytesIO()
                rendered.save(buffer, format="JPEG", quality=self.jpeg_quality)
        finally:
            if source is not image:
                source.close()

        logger.debug(
            "Cropped %dx%d region at (%.1f, %.1f) from %dx%d",
            round(region.width),
            round(region.height),
            region.x,
            region.y,
            dimensions.width,
            dimensions.height,
        )
        return CroppedFace(
            region=region,
            data=buffer.getvalue(),
            width=self.output_width,
            height=self.output_height,
        )
