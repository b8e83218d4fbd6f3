import asyncio

import pytest

from vibe_rooms.single_flight import SingleFlight


class TestSingleFlight:
    """Keyed single-flight registry."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_execution(self):
        locks = SingleFlight("test")
        runs = 0

        async def work():
            nonlocal runs
            runs += 1
            await asyncio.sleep(0.01)
            return f"result-{runs}"

        results = await asyncio.gather(*(locks.acquire_or_join("room-1", work) for _ in range(5)))

        assert runs == 1
        assert results == ["result-1"] * 5
        assert not locks.is_in_flight("room-1")

    @pytest.mark.asyncio
    async def test_failure_is_shared_and_key_is_released(self):
        locks = SingleFlight("test")
        runs = 0

        async def failing():
            nonlocal runs
            runs += 1
            await asyncio.sleep(0.01)
            raise RuntimeError("boom")

        results = await asyncio.gather(
            *(locks.acquire_or_join("k", failing) for _ in range(3)), return_exceptions=True
        )
        assert runs == 1
        assert all(isinstance(r, RuntimeError) and str(r) == "boom" for r in results)
        assert locks.keys() == []

        async def ok():
            return "ok"

        # a failed key can be retried straight away
        assert await locks.acquire_or_join("k", ok) == "ok"

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        locks = SingleFlight("test")
        started = []
        gate = asyncio.Event()

        async def work(key):
            started.append(key)
            await gate.wait()
            return key

        tasks = [asyncio.ensure_future(locks.acquire_or_join(k, lambda k=k: work(k))) for k in ("a", "b")]
        await asyncio.sleep(0.01)
        assert sorted(started) == ["a", "b"]
        assert locks.is_in_flight("a") and locks.is_in_flight("b")

        gate.set()
        assert await asyncio.gather(*tasks) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_cancelled_joiner_does_not_cancel_shared_work(self):
        locks = SingleFlight("test")
        gate = asyncio.Event()

        async def work():
            await gate.wait()
            return "done"

        first = asyncio.ensure_future(locks.acquire_or_join("k", work))
        second = asyncio.ensure_future(locks.acquire_or_join("k", work))
        await asyncio.sleep(0.01)

        second.cancel()
        await asyncio.sleep(0)
        gate.set()

        assert await first == "done"
        assert second.cancelled()
