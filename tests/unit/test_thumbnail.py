"""Tests for thumbnail.py module."""

from __future__ import annotations

import asyncio
import base64
import io
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image

from imgbudget.thumbnail import PLACEHOLDER_THUMBNAIL, ThumbnailGenerator, render_thumbnail


class TestRenderThumbnail:
    """Tests for render_thumbnail."""

    def test_renders_square_jpeg(self, png_bytes):
        data = render_thumbnail(png_bytes, size=64)
        with Image.open(io.BytesIO(data)) as img:
            assert img.format == "JPEG"
            assert img.size == (64, 64)

    def test_flattens_alpha(self, make_image):
        data = render_thumbnail(make_image(mode="RGBA"), size=32)
        with Image.open(io.BytesIO(data)) as img:
            assert img.mode == "RGB"
            assert img.size == (32, 32)


class TestThumbnailGenerator:
    """Tests for ThumbnailGenerator."""

    @pytest.mark.asyncio
    async def test_returns_jpeg_data_uri(self, png_bytes):
        loader = MagicMock()
        loader.load = AsyncMock(return_value=png_bytes)
        generator = ThumbnailGenerator(loader, size=64)

        uri = await generator.generate("https://cdn.example.com/a.png")

        assert uri.startswith("data:image/jpeg;base64,")
        payload = base64.b64decode(uri.split(",", 1)[1])
        with Image.open(io.BytesIO(payload)) as img:
            assert img.size == (64, 64)

    @pytest.mark.asyncio
    async def test_placeholder_on_load_error(self):
        loader = MagicMock()
        loader.load = AsyncMock(side_effect=ConnectionError("offline"))
        generator = ThumbnailGenerator(loader)
        assert await generator.generate("https://cdn.example.com/a.png") == PLACEHOLDER_THUMBNAIL

    @pytest.mark.asyncio
    async def test_placeholder_on_undecodable_bytes(self):
        loader = MagicMock()
        loader.load = AsyncMock(return_value=b"not an image")
        generator = ThumbnailGenerator(loader)
        assert await generator.generate("file.png") == PLACEHOLDER_THUMBNAIL

    @pytest.mark.asyncio
    async def test_placeholder_on_timeout(self, png_bytes):
        """Test that a slow load is abandoned after the timeout."""

        async def slow_load(address: str) -> bytes:
            await asyncio.sleep(5)
            return png_bytes

        loader = MagicMock()
        loader.load = slow_load
        generator = ThumbnailGenerator(loader, timeout=0.05)
        assert await generator.generate("https://slow.example.com/a.png") == PLACEHOLDER_THUMBNAIL

    def test_placeholder_is_svg_data_uri(self):
        assert PLACEHOLDER_THUMBNAIL.startswith("data:image/svg+xml;base64,")
        svg = base64.b64decode(PLACEHOLDER_THUMBNAIL.split(",", 1)[1]).decode()
        assert 'width="64"' in svg
