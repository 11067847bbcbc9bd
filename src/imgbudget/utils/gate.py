"""FIFO concurrency gate for outbound network probes.

``asyncio.Semaphore`` does not promise that a released permit goes to the
longest-waiting caller, so the gate keeps an explicit queue of waiter
tokens and hands a released permit straight to the head of that queue.
"""

from __future__ import annotations

import asyncio
from collections import deque
from types import TracebackType

from imgbudget.constants import DEFAULT_NETWORK_CONCURRENCY


class GateWaiter:
    """Queue token for one suspended ``acquire()`` call."""

    __slots__ = ("future", "granted")

    def __init__(self, future: asyncio.Future[None]) -> None:
        self.future = future
        self.granted = False

    def grant(self) -> bool:
        """Hand the permit to this waiter. Returns False if it already gave up."""
        if self.future.done():
            return False
        self.granted = True
        self.future.set_result(None)
        return True


class ConcurrencyGate:
    """Bound the number of simultaneously held permits to ``capacity``.

    Usage:
        gate = ConcurrencyGate(5)
        async with gate:
            await probe()

    Permits are never timed out; ``release()`` must pair every successful
    ``acquire()``, which ``async with`` guarantees even on error paths.
    """

    def __init__(self, capacity: int = DEFAULT_NETWORK_CONCURRENCY) -> None:
        if capacity < 1:
            raise ValueError(f"Gate capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._outstanding = 0
        self._waiters: deque[GateWaiter] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def outstanding(self) -> int:
        """Number of permits currently held."""
        return self._outstanding

    @property
    def waiting(self) -> int:
        """Number of callers suspended in ``acquire()``."""
        return sum(1 for w in self._waiters if not w.future.done())

    def locked(self) -> bool:
        return self._outstanding >= self._capacity

    async def acquire(self) -> None:
        """Wait until a permit is free, then take it."""
        if self._outstanding < self._capacity and not self._waiters:
            self._outstanding += 1
            return

        waiter = GateWaiter(asyncio.get_running_loop().create_future())
        self._waiters.append(waiter)
        try:
            await waiter.future
        except asyncio.CancelledError:
            if waiter.granted:
                # Permit was transferred before the cancel landed; pass it on.
                self.release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        """Return a permit, transferring it to the oldest waiter if any."""
        if self._outstanding <= 0:
            raise RuntimeError("ConcurrencyGate released more times than acquired")

        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.grant():
                # Ownership moves to the waiter; outstanding count is unchanged.
                return
        self._outstanding -= 1

    async def __aenter__(self) -> ConcurrencyGate:
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()
