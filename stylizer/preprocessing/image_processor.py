"""
Image Preprocessing

Downsamples and re-encodes uploads before they are sent to the remote
service, trading fidelity for upload size and latency.
"""

import asyncio
import io
import time
from typing import Optional, Tuple

import structlog
from PIL import Image, ImageOps, UnidentifiedImageError

from ..models.schemas import ImageSource
from ..utils.exceptions import PreprocessError
from ..utils.monitoring import PREPROCESS_DURATION, MetricsContext

logger = structlog.get_logger()

DEFAULT_MAX_DIMENSION = 800
DEFAULT_QUALITY = 85
OUTPUT_MEDIA_TYPE = "image/jpeg"


def scaled_dimensions(width: int, height: int, max_dimension: int) -> Tuple[int, int]:
    """
    Fit ``width`` x ``height`` inside a ``max_dimension`` square.

    The longer side is clamped to ``max_dimension`` and the shorter side is
    scaled with half-up rounding. Images already within bounds are returned
    unchanged; nothing is ever upscaled.
    """

    if max_dimension <= 0:
        raise ValueError("max_dimension must be positive")

    if width > height:
        if width > max_dimension:
            height = max(1, int(height * max_dimension / width + 0.5))
            width = max_dimension
    else:
        if height > max_dimension:
            width = max(1, int(width * max_dimension / height + 0.5))
            height = max_dimension

    return width, height


class ImagePreprocessor:
    """
    Lossy image optimizer.

    Decodes the source, applies EXIF orientation, downsamples so the longer
    side fits ``max_dimension`` and re-encodes as JPEG at a fixed quality.
    The input is never mutated.
    """

    def __init__(self, quality: int = DEFAULT_QUALITY, default_max_dimension: int = DEFAULT_MAX_DIMENSION):
        self.quality = quality
        self.default_max_dimension = default_max_dimension

    def inspect(self, source: ImageSource) -> Tuple[int, int]:
        """Return the oriented (width, height) of an image."""

        image = self._decode(source)
        return image.size

    def optimize(self, source: ImageSource, max_dimension: Optional[int] = None) -> ImageSource:
        """
        Shrink and re-encode an image.

        Args:
            source: Image to optimize
            max_dimension: Bound on the longer side (defaults to 800)

        Returns:
            A new JPEG ``ImageSource`` with the same filename

        Raises:
            PreprocessError: If decoding, drawing or encoding fails
        """

        max_dimension = max_dimension or self.default_max_dimension

        with MetricsContext("optimize_image", component="preprocessing", histogram=PREPROCESS_DURATION):
            image = self._decode(source)
            original_size = image.size
            target_size = scaled_dimensions(image.width, image.height, max_dimension)

            try:
                # JPEG has no alpha channel
                if image.mode != "RGB":
                    image = image.convert("RGB")
                if target_size != image.size:
                    image = image.resize(target_size, Image.Resampling.LANCZOS)
            except (OSError, ValueError) as e:
                raise PreprocessError(f"Failed to draw image: {e}") from e

            encoded = self._encode(image)

        logger.info(
            "Image optimized",
            filename=source.filename,
            original_size=original_size,
            size=target_size,
            original_bytes=source.size,
            optimized_bytes=len(encoded)
        )

        return ImageSource(
            data=encoded,
            media_type=OUTPUT_MEDIA_TYPE,
            filename=source.filename,
            last_modified=time.time(),
        )

    async def optimize_async(self, source: ImageSource, max_dimension: Optional[int] = None) -> ImageSource:
        """Run ``optimize`` in the default executor."""

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.optimize, source, max_dimension)

    def _decode(self, source: ImageSource) -> Image.Image:
        if not source.data:
            raise PreprocessError("Failed to load image: no image data")

        try:
            image = Image.open(io.BytesIO(source.data))
            image.load()
            return ImageOps.exif_transpose(image)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            raise PreprocessError(f"Failed to load image: {e}") from e

    def _encode(self, image: Image.Image) -> bytes:
        buffer = io.BytesIO()
        try:
            image.save(buffer, format="JPEG", quality=self.quality)
        except (OSError, ValueError) as e:
            raise PreprocessError(f"Failed to create blob: {e}") from e

        data = buffer.getvalue()
        if not data:
            raise PreprocessError("Failed to create blob: encoder produced no data")
        return data

