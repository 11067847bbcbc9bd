"""Tests for loader.py module."""

from __future__ import annotations

import base64
from pathlib import Path

import httpx
import pytest

from imgbudget.loader import (
    ImageLoader,
    decode_data_uri,
    is_remote_address,
    local_path_for,
    normalize_address,
)


class TestAddressHelpers:
    """Tests for address helper functions."""

    @pytest.mark.parametrize(
        "address,expected",
        [
            ("https://a/b.png", True),
            ("HTTP://a/b.png", True),
            ("//cdn/b.png", True),
            ("data:image/png;base64,AA==", False),
            ("/tmp/b.png", False),
            ("file:///tmp/b.png", False),
        ],
    )
    def test_is_remote(self, address, expected):
        assert is_remote_address(address) is expected

    def test_normalize(self):
        assert normalize_address("  //cdn/b.png ") == "https://cdn/b.png"
        assert normalize_address("https://cdn/b.png") == "https://cdn/b.png"

    def test_decode_data_uri(self):
        assert decode_data_uri("data:image/png;base64," + base64.b64encode(b"abc").decode()) == b"abc"
        assert decode_data_uri("data:text/plain,a%20b") == b"a b"

    def test_decode_malformed_data_uri(self):
        with pytest.raises(ValueError):
            decode_data_uri("data:image/png;base64")

    def test_local_path_for(self):
        assert local_path_for("file:///tmp/a%20b.png") == Path("/tmp/a b.png")
        assert local_path_for("/tmp/c.png") == Path("/tmp/c.png")


class TestImageLoader:
    """Tests for ImageLoader."""

    @pytest.mark.asyncio
    async def test_loads_remote(self, mock_loader_factory):
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, content=b"image-bytes")

        loader = mock_loader_factory(handler)
        assert await loader.load("//cdn.example.com/a.png") == b"image-bytes"
        assert requested == ["https://cdn.example.com/a.png"]
        await loader.client.aclose()

    @pytest.mark.asyncio
    async def test_remote_error_status(self, mock_loader_factory):
        loader = mock_loader_factory(lambda request: httpx.Response(404))
        with pytest.raises(httpx.HTTPStatusError):
            await loader.load("https://cdn.example.com/missing.png")
        await loader.client.aclose()

    @pytest.mark.asyncio
    async def test_loads_local_file(self, tmp_path: Path, png_bytes: bytes):
        path = tmp_path / "a.png"
        path.write_bytes(png_bytes)
        async with ImageLoader() as loader:
            assert await loader.load(str(path)) == png_bytes

    @pytest.mark.asyncio
    async def test_loads_data_uri(self, png_bytes: bytes):
        uri = "data:image/png;base64," + base64.b64encode(png_bytes).decode()
        async with ImageLoader() as loader:
            assert await loader.load(uri) == png_bytes

    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self):
        loader = ImageLoader()
        client = loader.client
        await loader.aclose()
        assert client.is_closed

    @pytest.mark.asyncio
    async def test_supplied_client_is_left_open(self):
        client = httpx.AsyncClient()
        loader = ImageLoader(client=client)
        await loader.aclose()
        assert not client.is_closed
        await client.aclose()
