"""Adaptive compression search: re-encode an image to fit a byte budget."""

from __future__ import annotations

import io
import math
from collections.abc import Sequence
from typing import Any, NamedTuple, Protocol

from loguru import logger
from PIL import Image, ImageOps

from imgbudget.constants import (
    DEFAULT_COMPRESSION_POLICY,
    DEFAULT_OUTPUT_FORMAT,
    EMERGENCY_QUALITY,
    EMERGENCY_SCALE,
)
from imgbudget.errors import CompressionError
from imgbudget.types import CompressionAttempt, CompressionResult
from imgbudget.utils.format import format_file_size


class PolicyEntry(NamedTuple):
    """One (scale, quality) pair tried by the search."""

    scale: float
    quality: float


POLICY: tuple[PolicyEntry, ...] = tuple(
    PolicyEntry(scale, quality) for scale, quality in DEFAULT_COMPRESSION_POLICY
)
EMERGENCY_ENTRY = PolicyEntry(EMERGENCY_SCALE, EMERGENCY_QUALITY)


class Encoder(Protocol):
    """Encode an image at the given pixel size and normalized quality."""

    def encode(
        self, image: Image.Image, width: int, height: int, quality: float
    ) -> bytes | None: ...


def target_dimensions(size: tuple[int, int], scale: float) -> tuple[int, int]:
    """Scale ``size`` by ``scale``, flooring each side.

    Flooring keeps output dimensions monotonic as scale decreases. Sides are
    clamped to one pixel because an empty raster cannot be encoded.
    """
    width, height = size
    return (
        max(1, math.floor(width * scale)),
        max(1, math.floor(height * scale)),
    )


def decode_image(image_data: bytes) -> Image.Image:
    """Decode raw bytes into a fully loaded, orientation-corrected image.

    Raises:
        CompressionError: If the bytes cannot be decoded
    """
    try:
        with io.BytesIO(image_data) as buffer:
            img = Image.open(buffer)
            img.load()
            return ImageOps.exif_transpose(img)
    except Exception as e:
        raise CompressionError(f"Cannot decode image: {e}") from e


class PillowEncoder:
    """Encode with Pillow into a lossy target format (WebP by default)."""

    def __init__(self, output_format: str = DEFAULT_OUTPUT_FORMAT, method: int = 4):
        self.output_format = output_format.upper()
        if self.output_format == "JPG":
            self.output_format = "JPEG"
        self.method = method

    def _prepare(self, image: Image.Image) -> Image.Image:
        # WebP keeps alpha; JPEG gets a white background
        if self.output_format == "JPEG":
            if image.mode in ("RGBA", "LA", "P"):
                if image.mode == "P":
                    image = image.convert("RGBA")
                background = Image.new("RGB", image.size, (255, 255, 255))
                background.paste(image, mask=image.split()[-1])
                return background
            return image if image.mode == "RGB" else image.convert("RGB")

        if image.mode in ("RGB", "RGBA"):
            return image
        has_alpha = image.mode in ("LA", "PA") or (
            image.mode == "P" and "transparency" in image.info
        )
        return image.convert("RGBA" if has_alpha else "RGB")

    def encode(
        self, image: Image.Image, width: int, height: int, quality: float
    ) -> bytes | None:
        img = self._prepare(image)
        if img.size != (width, height):
            img = img.resize((width, height), Image.Resampling.LANCZOS)

        save_kwargs: dict[str, Any] = {
            "format": self.output_format,
            "quality": max(1, min(100, round(quality * 100))),
        }
        if self.output_format == "WEBP":
            save_kwargs["method"] = self.method
        elif self.output_format == "JPEG":
            save_kwargs["optimize"] = True

        buffer = io.BytesIO()
        img.save(buffer, **save_kwargs)
        return buffer.getvalue()


class CompressionSearch:
    """Find the least destructive encoding that fits a byte budget.

    Policy entries are tried in order and the first one at or under the
    budget wins, even if a later entry would be smaller. When none fits,
    one emergency encode is made and returned whether or not it fits; the
    caller must check ``CompressionResult.within_budget``.
    """

    def __init__(
        self,
        encoder: Encoder | None = None,
        policy: Sequence[PolicyEntry] = POLICY,
        emergency: PolicyEntry = EMERGENCY_ENTRY,
    ) -> None:
        for entry in (*policy, emergency):
            if not 0 < entry.scale <= 1.0:
                raise ValueError(f"Policy scale must be in (0, 1], got {entry.scale}")
            if not 0 < entry.quality <= 1.0:
                raise ValueError(
                    f"Policy quality must be in (0, 1], got {entry.quality}"
                )
        self.encoder: Encoder = encoder or PillowEncoder()
        self.policy = tuple(policy)
        self.emergency = emergency

    def _attempt(
        self, image: Image.Image, entry: PolicyEntry
    ) -> tuple[bytes, CompressionAttempt] | None:
        width, height = target_dimensions(image.size, entry.scale)
        try:
            data = self.encoder.encode(image, width, height, entry.quality)
        except Exception as e:
            logger.debug(
                f"Encode failed at scale={entry.scale} quality={entry.quality}: {e}"
            )
            return None
        if not data:
            return None
        return data, CompressionAttempt(
            scale=entry.scale,
            quality=entry.quality,
            width=width,
            height=height,
            byte_size=len(data),
        )

    def compress(self, image: Image.Image, budget: int) -> CompressionResult:
        """Search for an encoding of ``image`` at or under ``budget`` bytes.

        Args:
            image: Decoded source image
            budget: Target maximum encoded size in bytes

        Returns:
            CompressionResult with the accepted bytes, dimensions and quality

        Raises:
            CompressionError: If every attempt, including the emergency one,
                failed to produce any bytes
        """
        attempts: list[CompressionAttempt] = []
        smallest: tuple[bytes, CompressionAttempt] | None = None

        for entry in self.policy:
            outcome = self._attempt(image, entry)
            if outcome is None:
                continue
            data, attempt = outcome
            attempts.append(attempt)
            if attempt.byte_size <= budget:
                return self._result(data, attempt, budget, attempts, emergency=False)
            if smallest is None or attempt.byte_size < smallest[1].byte_size:
                smallest = outcome

        logger.info(
            f"No policy entry met {format_file_size(budget)} "
            f"(smallest {format_file_size(smallest[1].byte_size) if smallest else 'n/a'}), "
            f"trying emergency encode"
        )
        outcome = self._attempt(image, self.emergency)
        if outcome is not None:
            attempts.append(outcome[1])
            return self._result(*outcome, budget, attempts, emergency=True)
        if smallest is not None:
            logger.warning("Emergency encode failed, using smallest policy result")
            return self._result(*smallest, budget, attempts, emergency=False)
        raise CompressionError("Every encode attempt failed")

    def _result(
        self,
        data: bytes,
        attempt: CompressionAttempt,
        budget: int,
        attempts: list[CompressionAttempt],
        emergency: bool,
    ) -> CompressionResult:
        result = CompressionResult(
            data=data,
            width=attempt.width,
            height=attempt.height,
            quality=attempt.quality,
            scale=attempt.scale,
            budget=budget,
            used_emergency=emergency,
            attempts=attempts,
        )
        if not result.within_budget:
            logger.warning(
                f"Best effort result {format_file_size(result.byte_size)} "
                f"still exceeds budget {format_file_size(budget)}"
            )
        return result


def describe_result(
    result: CompressionResult, original_size: int, source_size: tuple[int, int]
) -> str:
    """One-line human summary of a compression result."""
    reduction = round(result.reduction_ratio(original_size) * 100)
    return (
        f"{format_file_size(original_size)} -> {format_file_size(result.byte_size)} "
        f"({reduction}% reduction), "
        f"{source_size[0]}x{source_size[1]} -> {result.width}x{result.height}, "
        f"quality {round(result.quality * 100)}%"
    )
