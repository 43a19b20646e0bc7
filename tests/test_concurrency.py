import asyncio

import pytest

from spendsync.core.concurrency import (
    drain_background_tasks,
    gather_settled,
    pending_background_tasks,
    spawn_background,
)


async def _ok(value, delay=0.0):
    await asyncio.sleep(delay)
    return value


async def _fail(message, delay=0.0):
    await asyncio.sleep(delay)
    raise RuntimeError(message)


@pytest.mark.asyncio
async def test_gather_settled_waits_for_every_outcome():
    outcomes = await gather_settled([
        _fail("first", delay=0.01),
        _ok("b", delay=0.03),
        _ok("c"),
        _fail("last"),
    ])

    assert [o.ok for o in outcomes] == [False, True, True, False]
    assert outcomes[1].value == "b"
    assert outcomes[2].value == "c"
    assert str(outcomes[0].error) == "first"
    assert isinstance(outcomes[3].error, RuntimeError)


@pytest.mark.asyncio
async def test_gather_settled_empty():
    assert await gather_settled([]) == []


@pytest.mark.asyncio
async def test_failure_does_not_cancel_siblings():
    finished = []

    async def slow():
        await asyncio.sleep(0.05)
        finished.append("slow")
        return "done"

    outcomes = await gather_settled([_fail("boom"), slow()])
    assert finished == ["slow"]
    assert outcomes[1].value == "done"


@pytest.mark.asyncio
async def test_spawn_background_is_not_awaited_by_caller():
    release = asyncio.Event()
    ran = []

    async def job():
        await release.wait()
        ran.append(True)

    spawn_background(job(), name="test_job")
    assert ran == []
    assert pending_background_tasks() >= 1

    release.set()
    await drain_background_tasks(timeout=1)
    assert ran == [True]


@pytest.mark.asyncio
async def test_spawn_background_failure_is_logged_not_raised():
    from spendsync.core.metrics import BACKGROUND_TASK_FAILURES

    before = BACKGROUND_TASK_FAILURES.labels(task="failing_job")._value.get()
    spawn_background(_fail("background boom"), name="failing_job")
    await drain_background_tasks(timeout=1)

    after = BACKGROUND_TASK_FAILURES.labels(task="failing_job")._value.get()
    assert after == before + 1
