import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from gasto_categorizer.logger import get_logger

logger = get_logger(__name__)

JobCallable = Callable[[], Awaitable[Any]]


class PeriodicTask:
    """Runs ``job`` every ``interval_seconds`` until stopped.

    Errors are logged and followed by a back-off sleep; cancellation always
    propagates.
    """

    def __init__(self, name: str, job: JobCallable, interval_seconds: float) -> None:
        self.name = name
        self.job = job
        self.interval_seconds = interval_seconds
        self.error_sleep = max(10.0, min(60.0, interval_seconds))
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[JOBS] %s worker error", self.name)
                await asyncio.sleep(self.error_sleep)

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._task = asyncio.create_task(self._loop(), name=f"job:{self.name}")
        logger.info("[JOBS] Started %s (every %ss).", self.name, self.interval_seconds)
        return self._task

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("[JOBS] Stopped %s.", self.name)


class JobScheduler:
    def __init__(self) -> None:
        self._tasks: dict[str, PeriodicTask] = {}
        self._jobs: dict[str, JobCallable] = {}

    def register(self, name: str, job: JobCallable, interval_seconds: float) -> None:
        self._jobs[name] = job
        self._tasks[name] = PeriodicTask(name, job, interval_seconds)

    @property
    def names(self) -> list[str]:
        return list(self._jobs)

    def start(self) -> None:
        for task in self._tasks.values():
            task.start()

    async def stop(self) -> None:
        for task in self._tasks.values():
            await task.stop()

    async def run(self, name: str) -> Any:
        """Run one job immediately, outside its schedule."""
        job = self._jobs.get(name)
        if job is None:
            raise KeyError(name)
        return await job()
