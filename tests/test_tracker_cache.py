"""Tests for the active tracker cache and its keyed locks."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

import asyncio
import uuid
from contextlib import suppress

import pytest

from services.locks import KeyedLock
from services.tracker_cache import ActiveTracker, ActiveTrackerCache, tracker_sweep_loop


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _tracker(route_id):
    return ActiveTracker(
        tracking_id=uuid.uuid4(), route_id=route_id, driver_id=uuid.uuid4(),
        truck_id=None, started_at=None,
    )


@pytest.mark.asyncio
async def test_hold_stores_and_discards():
    cache = ActiveTrackerCache(idle_timeout=60)
    rid = uuid.uuid4()

    async with cache.hold(rid) as slot:
        assert slot.tracker is None
        slot.tracker = _tracker(rid)
    assert rid in cache
    assert cache.get(rid).route_id == rid

    async with cache.hold(rid) as slot:
        slot.discard = True
    assert rid not in cache
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_sweep_evicts_idle_entries_only():
    clock = FakeClock()
    cache = ActiveTrackerCache(idle_timeout=60, clock=clock)
    old, fresh = uuid.uuid4(), uuid.uuid4()

    async with cache.hold(old) as slot:
        slot.tracker = _tracker(old)
    clock.now += 50
    async with cache.hold(fresh) as slot:
        slot.tracker = _tracker(fresh)
    clock.now += 20

    assert cache.sweep() == [old]
    assert fresh in cache and old not in cache


@pytest.mark.asyncio
async def test_sweep_never_evicts_entry_being_written():
    clock = FakeClock()
    cache = ActiveTrackerCache(idle_timeout=60, clock=clock)
    rid = uuid.uuid4()
    async with cache.hold(rid) as slot:
        slot.tracker = _tracker(rid)

    clock.now += 120
    async with cache.hold(rid) as slot:
        assert cache.sweep() == []
        slot.tracker.next_position += 1

    # the write refreshed the entry
    assert cache.sweep() == []
    assert cache.get(rid).next_position == 1

    clock.now += 61
    assert cache.sweep() == [rid]


@pytest.mark.asyncio
async def test_sweep_skips_entry_with_waiting_writer():
    clock = FakeClock()
    cache = ActiveTrackerCache(idle_timeout=60, clock=clock)
    rid = uuid.uuid4()
    async with cache.hold(rid) as slot:
        slot.tracker = _tracker(rid)
    clock.now += 120

    release = asyncio.Event()

    async def writer():
        async with cache.hold(rid):
            await release.wait()

    first = asyncio.create_task(writer())
    second = asyncio.create_task(writer())
    await asyncio.sleep(0)
    assert cache.sweep() == []
    release.set()
    await asyncio.gather(first, second)
    assert rid in cache


@pytest.mark.asyncio
async def test_concurrent_writers_do_not_lose_updates():
    cache = ActiveTrackerCache(idle_timeout=60)
    rid = uuid.uuid4()
    async with cache.hold(rid) as slot:
        slot.tracker = _tracker(rid)

    async def bump():
        async with cache.hold(rid) as slot:
            position = slot.tracker.next_position
            await asyncio.sleep(0)
            slot.tracker.next_position = position + 1

    await asyncio.gather(*(bump() for _ in range(25)))
    assert cache.get(rid).next_position == 25


@pytest.mark.asyncio
async def test_evict():
    cache = ActiveTrackerCache(idle_timeout=60)
    rid = uuid.uuid4()
    async with cache.hold(rid) as slot:
        slot.tracker = _tracker(rid)
    assert await cache.evict(rid) is True
    assert await cache.evict(rid) is False


@pytest.mark.asyncio
async def test_sweep_loop_runs_until_cancelled():
    clock = FakeClock()
    cache = ActiveTrackerCache(idle_timeout=1, clock=clock)
    rid = uuid.uuid4()
    async with cache.hold(rid) as slot:
        slot.tracker = _tracker(rid)
    clock.now += 5

    task = asyncio.create_task(tracker_sweep_loop(cache, interval=0.01))
    await asyncio.sleep(0.05)
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task

    assert rid not in cache


@pytest.mark.asyncio
async def test_keyed_lock_releases_keys():
    locks = KeyedLock()
    async with locks.hold("a"):
        assert locks.users("a") == 1
        assert locks.users("b") == 0
        assert len(locks) == 1
    assert len(locks) == 0
    assert locks.users("a") == 0


@pytest.mark.asyncio
async def test_keyed_lock_different_keys_run_in_parallel():
    locks = KeyedLock()
    inside = asyncio.Event()

    async def hold_a():
        async with locks.hold("a"):
            await inside.wait()

    task = asyncio.create_task(hold_a())
    await asyncio.sleep(0)
    # "b" is free even though "a" is held
    async with locks.hold("b"):
        inside.set()
    await task
