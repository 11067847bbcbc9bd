"""Pytest configuration and fixtures."""

from __future__ import annotations

import io
import os
from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import httpx
import pytest
from PIL import Image

from imgbudget.loader import ImageLoader

# =============================================================================
# Image Fixtures
# =============================================================================


def make_image_bytes(
    size: tuple[int, int] = (120, 80),
    fmt: str = "PNG",
    mode: str = "RGB",
    noise: bool = False,
) -> bytes:
    """Encode a generated image; ``noise`` makes it hard to compress."""
    if noise:
        channels = len(mode)
        img = Image.frombytes(mode, size, os.urandom(size[0] * size[1] * channels))
    else:
        color: Any = (200, 60, 30, 255) if mode == "RGBA" else (200, 60, 30)
        img = Image.new(mode, size, color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    """Return a small solid-color PNG."""
    return make_image_bytes()


@pytest.fixture
def noisy_png_bytes() -> bytes:
    """Return a PNG of random noise (compresses poorly)."""
    return make_image_bytes((200, 200), noise=True)


@pytest.fixture
def sample_image() -> Image.Image:
    """Return a decoded 100x80 RGB image."""
    return Image.new("RGB", (100, 80), (10, 120, 200))


# =============================================================================
# Network Fixtures
# =============================================================================


@pytest.fixture
def mock_loader_factory() -> Callable[[Callable[[httpx.Request], httpx.Response]], ImageLoader]:
    """Build an ImageLoader whose client is served by an httpx.MockTransport."""

    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> ImageLoader:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ImageLoader(client=client)

    return factory


# =============================================================================
# Host Fixtures
# =============================================================================


class FakeDocument:
    """In-memory document API recording uploads and node updates."""

    def __init__(self, nodes: list[Any]) -> None:
        self.nodes = nodes
        self.uploads: list[tuple[bytes, str, str]] = []
        self.replaced: dict[str, Any] = {}
        self.fail_upload_for: set[str] = set()

    def list_nodes_with_background_image(self) -> list[Any]:
        return list(self.nodes)

    async def upload_image(self, data: bytes, filename: str, mime_type: str) -> str:
        if any(marker in filename for marker in self.fail_upload_for):
            raise RuntimeError("upload rejected")
        self.uploads.append((data, filename, mime_type))
        return f"asset://{len(self.uploads)}"

    async def replace_background_image(self, node_id: str, asset_handle: Any) -> None:
        self.replaced[node_id] = asset_handle


def canvas_node(node_id: str, url: str, name: str | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        id=node_id, name=name, background_image_address=url, background_image_name=None
    )


def content_collection(
    name: str, fields: list[tuple[str, str, str]], records: list[tuple[str, str | None, dict]]
) -> SimpleNamespace:
    field_objs = [SimpleNamespace(id=fid, name=fname, type=ftype) for fid, fname, ftype in fields]
    record_objs = [
        SimpleNamespace(id=rid, slug=slug, field_data=data) for rid, slug, data in records
    ]
    return SimpleNamespace(
        name=name,
        list_records=lambda: record_objs,
        list_fields=lambda: field_objs,
    )


class FakeContent:
    """In-memory content repository API."""

    def __init__(self, collections: list[Any], fail: bool = False) -> None:
        self.collections = collections
        self.fail = fail

    async def list_collections(self) -> list[Any]:
        if self.fail:
            raise ConnectionError("content API unreachable")
        return list(self.collections)


@pytest.fixture
def tmp_output(tmp_path: Path) -> Path:
    """Return a temporary output directory."""
    output = tmp_path / "output"
    output.mkdir()
    return output


@pytest.fixture
def make_document() -> type[FakeDocument]:
    """Return the in-memory document API class."""
    return FakeDocument


@pytest.fixture
def make_content() -> type[FakeContent]:
    """Return the in-memory content repository API class."""
    return FakeContent


@pytest.fixture
def make_node() -> Callable[..., SimpleNamespace]:
    """Return a factory for canvas nodes."""
    return canvas_node


@pytest.fixture
def make_collection() -> Callable[..., SimpleNamespace]:
    """Return a factory for content collections."""
    return content_collection


@pytest.fixture
def make_image() -> Callable[..., bytes]:
    """Return the encoded-image factory."""
    return make_image_bytes
