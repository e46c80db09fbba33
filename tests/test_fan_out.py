import asyncio
import pytest

from common.utils import fan_out, unique


@pytest.mark.asyncio
async def test_fan_out_drops_failures_and_none():
    async def work(n: int):
        await asyncio.sleep(0)
        if n == 2:
            raise RuntimeError("boom")
        if n == 3:
            return None
        return n * 10

    assert await fan_out([1, 2, 3, 4], work) == [10, 40]


@pytest.mark.asyncio
async def test_fan_out_respects_concurrency_limit():
    in_flight = 0
    peak = 0

    async def work(n: int):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return n

    out = await fan_out(list(range(10)), work, concurrency=3)
    assert out == list(range(10))
    assert peak == 3


@pytest.mark.asyncio
async def test_fan_out_unbounded_runs_everything_at_once():
    started = []
    gate = asyncio.Event()

    async def work(n: int):
        started.append(n)
        if len(started) == 5:
            gate.set()
        await asyncio.wait_for(gate.wait(), timeout=1.0)
        return n

    assert await fan_out(list(range(5)), work) == list(range(5))


@pytest.mark.asyncio
async def test_fan_out_empty():
    async def work(n):
        return n
    assert await fan_out([], work) == []


def test_unique_keeps_first():
    assert unique([3, 1, 3, 2, 1]) == [3, 1, 2]
    assert unique(["aa", "ab", "ba"], key=lambda s: s[0]) == ["aa", "ba"]
