"""Resolve the transfer size of an image with as little data as possible."""

from __future__ import annotations

import asyncio
import re

import httpx
from loguru import logger

from imgbudget.constants import RANGE_PROBE_BYTES
from imgbudget.loader import ImageLoader, is_remote_address, normalize_address
from imgbudget.utils.gate import ConcurrencyGate

_CONTENT_RANGE_TOTAL = re.compile(r"/\s*(\d+)\s*$")


def parse_content_range_total(value: str | None) -> int | None:
    """Extract the full resource length from a Content-Range header.

    Examples:
        >>> parse_content_range_total("bytes 0-1023/146515")
        146515
        >>> parse_content_range_total("bytes 0-1023/*") is None
        True
    """
    if not value:
        return None
    match = _CONTENT_RANGE_TOTAL.search(value)
    if not match:
        return None
    return int(match.group(1))


def parse_content_length(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        length = int(value.strip())
    except ValueError:
        return None
    return length if length >= 0 else None


class SizeResolver:
    """Memoized byte-size lookup, one instance per scan session.

    Strategy for remote addresses, first success wins:
        1. HEAD request, use Content-Length
        2. Ranged GET of the first bytes, use the Content-Range total
        3. Full GET, measure the decoded body

    Local and data URI addresses are measured by loading them. Every
    resolution holds a permit from the concurrency gate. Failures resolve
    to 0 and are logged, never raised.
    """

    def __init__(
        self,
        loader: ImageLoader,
        gate: ConcurrencyGate | None = None,
        range_bytes: int = RANGE_PROBE_BYTES,
    ) -> None:
        self._loader = loader
        self._gate = gate or ConcurrencyGate()
        self._range_bytes = range_bytes
        self._cache: dict[str, int] = {}
        self._pending: dict[str, asyncio.Task[int]] = {}

    @property
    def cache(self) -> dict[str, int]:
        """Resolved sizes keyed by address (read-only view by convention)."""
        return self._cache

    async def resolve(self, address: str) -> int:
        """Return the byte size of ``address``, or 0 if it cannot be determined.

        Concurrent callers for one address share a single probe task. A
        caller that is cancelled stops waiting but leaves the probe running
        for the others.
        """
        if address in self._cache:
            return self._cache[address]
        task = self._pending.get(address)
        if task is None:
            task = asyncio.create_task(self._resolve_uncached(address))
            self._pending[address] = task
            task.add_done_callback(lambda done: self._forget(address, done))
        return await asyncio.shield(task)

    def _forget(self, address: str, task: asyncio.Task[int]) -> None:
        if self._pending.get(address) is task:
            del self._pending[address]

    async def _resolve_uncached(self, address: str) -> int:
        async with self._gate:
            size = await self._probe(address)
        self._cache[address] = size
        return size

    async def _probe(self, address: str) -> int:
        target = normalize_address(address)
        if not is_remote_address(target):
            try:
                return len(await self._loader.load(target))
            except Exception as e:
                logger.warning(f"Failed to get image size for {address[:80]}: {e}")
                return 0

        client = self._loader.client
        for step in (self._probe_head, self._probe_range, self._probe_full):
            try:
                size = await step(client, target)
            except Exception as e:
                logger.debug(f"{step.__name__} failed for {target[:80]}: {e}")
                continue
            if size is not None:
                return size

        logger.warning(f"Failed to get image size for {target[:80]}")
        return 0

    async def _probe_head(self, client: httpx.AsyncClient, url: str) -> int | None:
        response = await client.head(url)
        if not response.is_success:
            return None
        length = parse_content_length(response.headers.get("content-length"))
        # Zero usually means the server did not report a length
        return length or None

    async def _probe_range(self, client: httpx.AsyncClient, url: str) -> int | None:
        headers = {"Range": f"bytes=0-{self._range_bytes - 1}"}
        # Streamed; the body is never read.
        async with client.stream("GET", url, headers=headers) as response:
            if not response.is_success:
                return None
            return parse_content_range_total(response.headers.get("content-range"))

    async def _probe_full(self, client: httpx.AsyncClient, url: str) -> int | None:
        response = await client.get(url)
        response.raise_for_status()
        return len(response.content)
