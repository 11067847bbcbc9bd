"""Chunked batch execution with coarse progress reporting."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from loguru import logger

from imgbudget.constants import DEFAULT_BATCH_CHUNK_SIZE

T = TypeVar("T")
R = TypeVar("R")

ProgressListener = Callable[[int], None]


class ScanProgress:
    """Monotonic percentage in [0, 100] for the lifetime of one scan.

    Lower values passed to ``update`` are ignored so listeners never see
    progress go backwards. Only ``reset`` moves it back to 0.
    """

    def __init__(self, listeners: Iterable[ProgressListener] | None = None) -> None:
        self._value = 0
        self._listeners: list[ProgressListener] = list(listeners or [])

    @property
    def value(self) -> int:
        return self._value

    def subscribe(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def update(self, value: float) -> int:
        """Raise progress to ``value`` (rounded, clamped) and notify listeners."""
        clamped = max(0, min(100, round(value)))
        if clamped > self._value:
            self._value = clamped
            self._emit()
        return self._value

    def reset(self) -> None:
        self._value = 0
        self._emit()

    def _emit(self) -> None:
        for listener in self._listeners:
            try:
                listener(self._value)
            except Exception as e:
                logger.debug(f"Progress listener failed: {e}")


@dataclass(frozen=True)
class ProgressBand:
    """Sub-range of the overall percentage reserved for one phase."""

    start: float = 0.0
    end: float = 100.0

    def map(self, fraction: float) -> float:
        """Map a completion fraction in [0, 1] into this band."""
        fraction = max(0.0, min(1.0, fraction))
        return self.start + fraction * (self.end - self.start)


FULL_BAND = ProgressBand(0.0, 100.0)


class BatchRunner(Generic[T, R]):
    """Run a worker over many items, one fixed-size chunk at a time.

    Items within a chunk run concurrently; the next chunk starts only once
    every task of the current chunk has settled. This caps in-flight work
    at ``chunk_size`` regardless of how many items there are.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_BATCH_CHUNK_SIZE,
        progress: ScanProgress | None = None,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        self.chunk_size = chunk_size
        self.progress = progress

    @staticmethod
    def chunk(items: Sequence[T], size: int) -> list[Sequence[T]]:
        """Split ``items`` into consecutive slices of at most ``size``."""
        return [items[i : i + size] for i in range(0, len(items), size)]

    async def run(
        self,
        items: Sequence[T],
        worker: Callable[[T], Awaitable[R | None]],
        band: ProgressBand = FULL_BAND,
    ) -> list[R]:
        """Run ``worker`` on every item and collect successful results.

        Items whose worker raises or returns None are dropped from the
        result. Result order follows chunk order; within a chunk it follows
        input order, but callers should not rely on it.

        Args:
            items: Items to process
            worker: Async callable applied to each item
            band: Percentage range to report progress into

        Returns:
            Successful, non-None worker results
        """
        results: list[R] = []
        total = len(items)
        if total == 0:
            return results

        chunks = self.chunk(items, self.chunk_size)
        done = 0
        for index, chunk in enumerate(chunks, start=1):
            settled = await asyncio.gather(
                *(worker(item) for item in chunk), return_exceptions=True
            )
            failed = 0
            for outcome in settled:
                if isinstance(outcome, BaseException):
                    failed += 1
                    logger.debug(f"Batch item failed: {outcome!r}")
                elif outcome is not None:
                    results.append(outcome)

            done += len(chunk)
            logger.debug(
                f"Chunk {index}/{len(chunks)} settled: "
                f"{len(chunk) - failed} ok, {failed} failed"
            )
            if self.progress is not None:
                self.progress.update(band.map(done / total))

        return results
