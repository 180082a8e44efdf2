"""
Photo pre-processing: downsize and JPEG-compress before upload.
"""

from __future__ import annotations

import asyncio
import base64
import io
from pathlib import Path
from typing import Union

import structlog
from PIL import Image, ImageOps, UnidentifiedImageError

from aperioesca.domain.analysis.models import ImagePayload
from aperioesca.domain.shared.errors import ImageProcessingError

logger = structlog.get_logger(__name__)

DEFAULT_MAX_WIDTH = 512
DEFAULT_QUALITY = 50


def to_rgb(img: Image.Image) -> Image.Image:
    """Flatten any mode to RGB, compositing transparency on white."""
    if img.mode in ("RGBA", "LA", "P"):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


class PillowImageProcessor:
    """
    IImageProcessor backed by Pillow.

    Resizes to at most ``max_width`` pixels wide (aspect ratio kept,
    never upscaled) and re-encodes as JPEG.
    """

    def __init__(self, max_width: int = DEFAULT_MAX_WIDTH, quality: int = DEFAULT_QUALITY) -> None:
        if max_width < 1:
            raise ValueError("max_width must be >= 1")
        if not 1 <= quality <= 95:
            raise ValueError("quality must be in 1..95")
        self.max_width = max_width
        self.quality = quality

    async def prepare(self, photo: Union[str, Path, bytes]) -> ImagePayload:
        """Resize and encode ``photo`` (file path or raw bytes)."""
        return await asyncio.to_thread(self._prepare_sync, photo)

    def _prepare_sync(self, photo: Union[str, Path, bytes]) -> ImagePayload:
        try:
            raw = photo if isinstance(photo, bytes) else Path(photo).expanduser().read_bytes()
        except OSError as exc:
            raise ImageProcessingError(f"Cannot read photo: {exc}") from exc

        try:
            with Image.open(io.BytesIO(raw)) as opened:
                img = ImageOps.exif_transpose(opened) or opened
                img = to_rgb(img)
                if img.width > self.max_width:
                    height = max(1, round(img.height * self.max_width / img.width))
                    img = img.resize((self.max_width, height), Image.Resampling.LANCZOS)
                output = io.BytesIO()
                img.save(output, format="JPEG", quality=self.quality, optimize=True)
        except Image.DecompressionBombError as exc:
            raise ImageProcessingError("Image resolution too large") from exc
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise ImageProcessingError("Unreadable or corrupted image") from exc

        jpeg = output.getvalue()
        logger.debug(
            "Photo prepared",
            original_bytes=len(raw),
            jpeg_bytes=len(jpeg),
            width=img.width,
            height=img.height,
        )
        return ImagePayload(
            data_base64=base64.b64encode(jpeg).decode("ascii"),
            mime_type="image/jpeg",
            size_bytes=len(jpeg),
        )
