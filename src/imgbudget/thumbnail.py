"""Small preview thumbnails with a bounded wait and a safe placeholder."""

from __future__ import annotations

import asyncio
import base64
import io

from loguru import logger
from PIL import Image, UnidentifiedImageError

from imgbudget.constants import (
    DEFAULT_THUMBNAIL_QUALITY,
    DEFAULT_THUMBNAIL_SIZE,
    DEFAULT_THUMBNAIL_TIMEOUT,
)
from imgbudget.loader import ImageLoader
from imgbudget.utils.executor import run_in_image_thread

# 64x64 light gray square with a thin outline, shown when no preview can be made
PLACEHOLDER_THUMBNAIL = (
    "data:image/svg+xml;base64,"
    "PHN2ZyB3aWR0aD0iNjQiIGhlaWdodD0iNjQiIHZpZXdCb3g9IjAgMCA2NCA2NCIgZmlsbD0ibm9uZSIg"
    "eG1sbnM9Imh0dHA6Ly93d3cudzMub3JnLzIwMDAvc3ZnIj4KPHJlY3Qgd2lkdGg9IjY0IiBoZWlnaHQ9"
    "IjY0IiBmaWxsPSIjRjNGNEY2Ii8+CjxwYXRoIGQ9Ik0yMCAyMEg0NEg0NEgyMFYyMFoiIHN0cm9rZT0i"
    "IzlDQTNBRiIgc3Ryb2tlLXdpZHRoPSIyIiBmaWxsPSJub25lIi8+Cjwvc3ZnPgo="
)


def render_thumbnail(
    image_data: bytes,
    size: int = DEFAULT_THUMBNAIL_SIZE,
    quality: int = DEFAULT_THUMBNAIL_QUALITY,
) -> bytes:
    """Decode ``image_data`` and redraw it as a ``size`` x ``size`` JPEG.

    The source is stretched to the square, matching how the preview grid
    draws it.

    Raises:
        PIL.UnidentifiedImageError: If the bytes are not a decodable image
        OSError: If decoding fails part way
    """
    with io.BytesIO(image_data) as buffer:
        img = Image.open(buffer)
        # JPEG decoder downscales while decoding
        img.draft("RGB", (size, size))
        img.load()

        if img.mode in ("RGBA", "LA", "P"):
            if img.mode == "P":
                img = img.convert("RGBA")
            background = Image.new("RGB", img.size, (255, 255, 255))
            background.paste(img, mask=img.split()[-1])
            img = background
        elif img.mode != "RGB":
            img = img.convert("RGB")

        thumb = img.resize((size, size), Image.Resampling.LANCZOS)
        out = io.BytesIO()
        thumb.save(out, format="JPEG", quality=quality)
        return out.getvalue()


class ThumbnailGenerator:
    """Produce preview data URIs for image addresses.

    Never raises for a bad image: timeouts, fetch errors and decode errors
    all yield ``PLACEHOLDER_THUMBNAIL``. Not routed through the network
    concurrency gate.
    """

    def __init__(
        self,
        loader: ImageLoader,
        size: int = DEFAULT_THUMBNAIL_SIZE,
        timeout: float = DEFAULT_THUMBNAIL_TIMEOUT,
        quality: int = DEFAULT_THUMBNAIL_QUALITY,
    ) -> None:
        self._loader = loader
        self.size = size
        self.timeout = timeout
        self.quality = quality

    async def generate(self, address: str) -> str:
        """Return a JPEG data URI preview of ``address``, or the placeholder."""
        try:
            data = await asyncio.wait_for(self._render(address), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.debug(f"Thumbnail timed out after {self.timeout}s: {address[:80]}")
            return PLACEHOLDER_THUMBNAIL
        except (UnidentifiedImageError, OSError) as e:
            logger.debug(f"Thumbnail decode failed for {address[:80]}: {e}")
            return PLACEHOLDER_THUMBNAIL
        except Exception as e:
            logger.debug(f"Thumbnail failed for {address[:80]}: {e}")
            return PLACEHOLDER_THUMBNAIL

        encoded = base64.b64encode(data).decode("ascii")
        return f"data:image/jpeg;base64,{encoded}"

    async def _render(self, address: str) -> bytes:
        image_data = await self._loader.load(address)
        return await run_in_image_thread(
            render_thumbnail, image_data, self.size, self.quality
        )
