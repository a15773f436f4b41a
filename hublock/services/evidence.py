"""
Evidence capture (verification layer 3).

Photos are decoded, downscaled to a maximum width and re-encoded as JPEG.
Compression runs in a worker thread so the event loop keeps serving input.
"""
import io
import base64
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Union

from PIL import Image, ImageOps, UnidentifiedImageError

from ..core.config import settings
from .errors import CaptureError

logger = logging.getLogger(__name__)

JPEG_CONTENT_TYPE = "image/jpeg"


@dataclass(frozen=True)
class CompressedImage:
    data: bytes
    width: int
    height: int
    content_type: str = JPEG_CONTENT_TYPE

    def as_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


class SkipMarker:
    """Explicit, confirmed decision to submit without a photo."""

    def __repr__(self) -> str:
        return "SKIPPED"


SKIPPED = SkipMarker()

Evidence = Union[CompressedImage, SkipMarker]


def compress_image(raw: bytes, max_width: Optional[int] = None, quality: Optional[float] = None) -> CompressedImage:
    """
    Downscale an encoded image so its width is at most `max_width` and
    re-encode it as JPEG at `quality` (0-1).

    Images already narrower than `max_width` keep their dimensions.

    Raises:
        CaptureError: the input could not be decoded or encoded
    """
    if max_width is None:
        max_width = settings.PHOTO_MAX_WIDTH
    if quality is None:
        quality = settings.PHOTO_JPEG_QUALITY
    if not raw:
        raise CaptureError("No photo data received.")

    try:
        with Image.open(io.BytesIO(raw)) as img:
            img = ImageOps.exif_transpose(img)
            if img.mode != "RGB":
                img = img.convert("RGB")

            width, height = img.size
            if width > max_width:
                scale = max_width / width
                new_size = (max_width, max(1, round(height * scale)))
                img = img.resize(new_size, Image.Resampling.LANCZOS)

            out = io.BytesIO()
            img.save(out, format="JPEG", quality=int(quality * 100))
            final_width, final_height = img.size
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning(f"Photo compression failed: {e}")
        raise CaptureError() from e

    return CompressedImage(data=out.getvalue(), width=final_width, height=final_height)


class EvidenceCapture:
    """
    Async front for compress_image. One compression at a time; a request made
    while one is running is rejected rather than queued.
    """

    def __init__(self, max_width: Optional[int] = None, quality: Optional[float] = None):
        self.max_width = max_width if max_width is not None else settings.PHOTO_MAX_WIDTH
        self.quality = quality if quality is not None else settings.PHOTO_JPEG_QUALITY
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def capture(self, raw: bytes) -> CompressedImage:
        if self._busy:
            raise CaptureError("A photo is already being processed.")
        self._busy = True
        try:
            return await asyncio.to_thread(compress_image, raw, self.max_width, self.quality)
        finally:
            self._busy = False

    def skip(self) -> SkipMarker:
        return SKIPPED
