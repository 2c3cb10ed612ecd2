import asyncio
import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from utils.concurrency import gather_bounded, gather_in_batches  # noqa: E402


class _InFlightTracker:
    def __init__(self):
        self.current = 0
        self.peak = 0
        self.started: list[int] = []

    async def run(self, item: int) -> int:
        self.started.append(item)
        self.current += 1
        self.peak = max(self.peak, self.current)
        # Later items finish first so ordering cannot come from completion order.
        await asyncio.sleep(0.001 * (10 - item % 10))
        self.current -= 1
        return item * 2


@pytest.mark.asyncio
async def test_gather_bounded_caps_in_flight_and_keeps_input_order():
    tracker = _InFlightTracker()
    items = list(range(20))

    results = await gather_bounded(items, tracker.run, concurrency=6)

    assert results == [i * 2 for i in items]
    assert tracker.peak <= 6
    assert sorted(tracker.started) == items


@pytest.mark.asyncio
async def test_gather_bounded_raises_first_failure_after_all_settle():
    finished: list[int] = []

    async def op(item: int) -> int:
        await asyncio.sleep(0.001)
        if item in (2, 5):
            raise RuntimeError(f"boom {item}")
        finished.append(item)
        return item

    with pytest.raises(RuntimeError, match="boom 2"):
        await gather_bounded(list(range(8)), op, concurrency=3)

    assert sorted(finished) == [0, 1, 3, 4, 6, 7]


@pytest.mark.asyncio
async def test_gather_bounded_rejects_non_positive_concurrency():
    async def op(item):
        return item

    with pytest.raises(ValueError):
        await gather_bounded([1], op, concurrency=0)


@pytest.mark.asyncio
async def test_gather_bounded_empty_input():
    async def op(item):
        raise AssertionError("should not run")

    assert await gather_bounded([], op, concurrency=3) == []


@pytest.mark.asyncio
async def test_gather_in_batches_uses_barriers_and_pauses_between_batches(monkeypatch):
    tracker = _InFlightTracker()
    pauses: list[float] = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay):
        if delay >= 0.05:
            pauses.append(delay)
            return None
        return await real_sleep(delay)

    monkeypatch.setattr("utils.concurrency.asyncio.sleep", fake_sleep)

    results = await gather_in_batches(list(range(10)), tracker.run, batch_size=4, pause_seconds=0.05)

    assert results == [i * 2 for i in range(10)]
    assert tracker.peak <= 4
    # 3 batches -> 2 pauses, none after the last.
    assert pauses == [0.05, 0.05]


@pytest.mark.asyncio
async def test_gather_in_batches_runs_every_item_before_raising():
    seen: list[int] = []

    async def op(item: int) -> int:
        seen.append(item)
        if item == 1:
            raise ValueError("bad item")
        return item

    with pytest.raises(ValueError, match="bad item"):
        await gather_in_batches([0, 1, 2, 3, 4], op, batch_size=2)

    assert sorted(seen) == [0, 1, 2, 3, 4]
