import asyncio

import pytest

from gasto_categorizer.services.scheduler import JobScheduler, PeriodicTask


@pytest.mark.anyio
async def test_periodic_task_runs_until_stopped() -> None:
    ran = asyncio.Event()
    calls = 0

    async def job() -> None:
        nonlocal calls
        calls += 1
        ran.set()

    task = PeriodicTask("tick", job, 0.01)
    task.start()
    assert task.running
    await asyncio.wait_for(ran.wait(), timeout=1)
    await task.stop()

    assert not task.running
    assert calls >= 1


@pytest.mark.anyio
async def test_periodic_task_survives_errors() -> None:
    attempts = 0
    recovered = asyncio.Event()

    async def job() -> None:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise RuntimeError("boom")
        recovered.set()

    task = PeriodicTask("flaky", job, 0.01)
    task.error_sleep = 0.01
    task.start()
    await asyncio.wait_for(recovered.wait(), timeout=1)
    await task.stop()

    assert attempts >= 2


def test_error_backoff_is_bounded() -> None:
    async def job() -> None:
        return None

    assert PeriodicTask("fast", job, 1).error_sleep == 10
    assert PeriodicTask("mid", job, 30).error_sleep == 30
    assert PeriodicTask("slow", job, 300).error_sleep == 60


@pytest.mark.anyio
async def test_scheduler_runs_jobs_on_demand() -> None:
    async def job() -> dict[str, int]:
        return {"processed": 1}

    scheduler = JobScheduler()
    scheduler.register("delivery", job, 300)

    assert scheduler.names == ["delivery"]
    assert await scheduler.run("delivery") == {"processed": 1}
    with pytest.raises(KeyError):
        await scheduler.run("unknown")

    scheduler.start()
    await scheduler.stop()
