"""Tests for utils/gate.py module."""

from __future__ import annotations

import asyncio

import pytest

from imgbudget.utils.gate import ConcurrencyGate


async def _settle(rounds: int = 3) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestConcurrencyGate:
    """Tests for ConcurrencyGate."""

    def test_rejects_zero_capacity(self):
        """Test that capacity below one is refused."""
        with pytest.raises(ValueError):
            ConcurrencyGate(0)

    @pytest.mark.asyncio
    async def test_eight_acquires_on_capacity_five(self):
        """Test that 5 acquires resolve immediately and 3 stay pending."""
        gate = ConcurrencyGate(5)
        tasks = [asyncio.create_task(gate.acquire()) for _ in range(8)]
        await _settle()

        assert sum(t.done() for t in tasks) == 5
        assert all(t.done() for t in tasks[:5])
        assert gate.outstanding == 5
        assert gate.waiting == 3
        assert gate.locked()

        for t in tasks[5:]:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_release_resolves_exactly_one_in_order(self):
        """Test that each release hands the permit to the oldest waiter."""
        gate = ConcurrencyGate(5)
        order: list[int] = []

        async def acquire(index: int) -> None:
            await gate.acquire()
            order.append(index)

        tasks = [asyncio.create_task(acquire(i)) for i in range(8)]
        await _settle()
        assert order == [0, 1, 2, 3, 4]

        gate.release()
        await _settle()
        assert order == [0, 1, 2, 3, 4, 5]
        assert gate.waiting == 2
        assert gate.outstanding == 5

        gate.release()
        gate.release()
        await _settle()
        assert order == [0, 1, 2, 3, 4, 5, 6, 7]
        await asyncio.gather(*tasks)

    @pytest.mark.asyncio
    async def test_release_without_waiters_frees_permit(self):
        """Test that releasing with an empty queue lowers the held count."""
        gate = ConcurrencyGate(2)
        await gate.acquire()
        gate.release()
        assert gate.outstanding == 0
        assert not gate.locked()

    def test_release_without_acquire_raises(self):
        """Test that an unmatched release is an error."""
        gate = ConcurrencyGate(1)
        with pytest.raises(RuntimeError):
            gate.release()

    @pytest.mark.asyncio
    async def test_cancelled_waiter_is_skipped(self):
        """Test that a cancelled waiter does not swallow the next permit."""
        gate = ConcurrencyGate(1)
        await gate.acquire()

        first = asyncio.create_task(gate.acquire())
        second = asyncio.create_task(gate.acquire())
        await _settle()
        first.cancel()
        await _settle()

        gate.release()
        await _settle()
        assert second.done()
        assert gate.outstanding == 1

    @pytest.mark.asyncio
    async def test_context_manager_releases_on_error(self):
        """Test that async with returns the permit when the body raises."""
        gate = ConcurrencyGate(1)
        with pytest.raises(ValueError):
            async with gate:
                assert gate.outstanding == 1
                raise ValueError("boom")
        assert gate.outstanding == 0

    @pytest.mark.asyncio
    async def test_never_exceeds_capacity(self):
        """Test that concurrent holders stay at or below capacity."""
        gate = ConcurrencyGate(3)
        active = 0
        peak = 0

        async def work() -> None:
            nonlocal active, peak
            async with gate:
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.001)
                active -= 1

        await asyncio.gather(*(work() for _ in range(20)))
        assert peak == 3
        assert gate.outstanding == 0
