"""Tests for keyed delayed tasks."""
import asyncio

import pytest

from secretchat.services.scheduler import TaskScheduler


@pytest.mark.asyncio
async def test_task_runs_after_delay_and_is_forgotten():
    scheduler = TaskScheduler()
    calls = []

    async def callback():
        calls.append("ran")

    scheduler.schedule(("job", 1), 0.01, callback)
    assert ("job", 1) in scheduler

    await asyncio.sleep(0.05)
    assert calls == ["ran"]
    assert ("job", 1) not in scheduler


@pytest.mark.asyncio
async def test_rescheduling_same_key_replaces_previous_task():
    scheduler = TaskScheduler()
    calls = []

    async def first():
        calls.append("first")

    async def second():
        calls.append("second")

    scheduler.schedule(("reap", "room"), 0.02, first)
    scheduler.schedule(("reap", "room"), 0.02, second)
    assert len(scheduler) == 1

    await asyncio.sleep(0.06)
    assert calls == ["second"]


@pytest.mark.asyncio
async def test_cancel_and_cancel_prefix():
    scheduler = TaskScheduler()
    calls = []

    async def callback():
        calls.append("ran")

    scheduler.schedule(("status", "room", "m1", "delivered"), 0.02, callback)
    scheduler.schedule(("status", "room", "m1", "read"), 0.02, callback)
    scheduler.schedule(("status", "room", "m2", "read"), 0.02, callback)
    scheduler.schedule(("reap", "room"), 0.02, callback)

    assert scheduler.cancel_prefix(("status", "room", "m1")) == 2
    assert scheduler.cancel(("reap", "room")) is True
    assert scheduler.cancel(("reap", "room")) is False
    assert scheduler.count_prefix(("status",)) == 1

    await asyncio.sleep(0.06)
    assert calls == ["ran"]


@pytest.mark.asyncio
async def test_failing_callback_is_contained():
    scheduler = TaskScheduler()
    calls = []

    async def broken():
        raise RuntimeError("boom")

    async def fine():
        calls.append("fine")

    scheduler.schedule(("a",), 0.01, broken)
    scheduler.schedule(("b",), 0.01, fine)
    await asyncio.sleep(0.05)

    assert calls == ["fine"]
    assert len(scheduler) == 0


@pytest.mark.asyncio
async def test_shutdown_cancels_everything():
    scheduler = TaskScheduler()
    calls = []

    async def callback():
        calls.append("ran")

    for i in range(3):
        scheduler.schedule(("job", i), 0.05, callback)
    await scheduler.shutdown()
    await asyncio.sleep(0.08)

    assert calls == []
    assert len(scheduler) == 0
