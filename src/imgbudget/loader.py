"""Fetch raw image bytes from remote URLs, data URIs or local paths."""

from __future__ import annotations

import base64
import binascii
from pathlib import Path
from types import TracebackType
from urllib.parse import unquote, urlparse

import httpx
from loguru import logger

from imgbudget.constants import DEFAULT_HTTP_TIMEOUT, DEFAULT_USER_AGENT

_REMOTE_PREFIXES = ("http://", "https://", "//")


def is_remote_address(address: str) -> bool:
    """Check whether resolving ``address`` needs a network fetch."""
    return address.strip().lower().startswith(_REMOTE_PREFIXES)


def normalize_address(address: str) -> str:
    """Strip whitespace and give protocol-relative URLs an https scheme."""
    address = address.strip()
    if address.startswith("//"):
        return f"https:{address}"
    return address


def decode_data_uri(address: str) -> bytes:
    """Decode a ``data:`` URI into bytes.

    Raises:
        ValueError: If the URI is malformed
    """
    header, sep, payload = address.partition(",")
    if not sep or not header.lower().startswith("data:"):
        raise ValueError("Malformed data URI")
    if header.lower().endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 payload in data URI: {e}") from e
    return unquote(payload).encode("utf-8")


def local_path_for(address: str) -> Path:
    """Turn a ``file://`` URI or plain path into a Path."""
    if address.lower().startswith("file://"):
        return Path(unquote(urlparse(address).path))
    return Path(address).expanduser()


class ImageLoader:
    """Load image bytes for any address a descriptor may carry.

    Owns an ``httpx.AsyncClient`` unless one is supplied, in which case the
    caller stays responsible for closing it.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._owns_client = client is None
        self._client = client
        self._timeout = timeout
        self._user_agent = user_agent

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": self._user_agent},
                follow_redirects=True,
                timeout=self._timeout,
            )
        return self._client

    async def load(self, address: str) -> bytes:
        """Return the full bytes behind ``address``.

        Raises:
            httpx.HTTPError: On network failure or a non-2xx response
            OSError: If a local file cannot be read
            ValueError: If a data URI is malformed
        """
        address = normalize_address(address)
        if address.lower().startswith("data:"):
            return decode_data_uri(address)
        if is_remote_address(address):
            response = await self.client.get(address)
            response.raise_for_status()
            logger.debug(f"Loaded {len(response.content)} bytes from {address[:80]}")
            return response.content
        return local_path_for(address).read_bytes()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> ImageLoader:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()
