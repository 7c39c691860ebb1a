"""
Background Tasks

Periodic jobs (scheduler poll, approval expiry sweep) with an explicit
lifecycle: register, start, stop. All tasks share one shutdown event, so a
single ``stop()`` ends every loop.
"""

import asyncio
import inspect
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from ...observability.logging import get_logger

logger = get_logger(__name__)


@dataclass
class PeriodicTask:
    """A callback run every ``interval_seconds``."""
    name: str
    interval_seconds: float
    callback: Callable[[], Any]
    run_immediately: bool = False
    last_run_at: Optional[datetime] = None
    run_count: int = 0
    error_count: int = 0


class BackgroundTaskRunner:
    """
    Runs registered periodic tasks until stopped.

    Callbacks may be plain functions or coroutines. A failing run is logged
    and the loop carries on with the next interval.
    """

    def __init__(self):
        self._tasks: dict[str, PeriodicTask] = {}
        self._handles: list[asyncio.Task] = []
        self._shutdown: Optional[asyncio.Event] = None

    def register(self, task: PeriodicTask) -> None:
        if self.is_running:
            raise RuntimeError("Cannot register tasks while the runner is running")
        self._tasks[task.name] = task

    @property
    def tasks(self) -> list[PeriodicTask]:
        return list(self._tasks.values())

    @property
    def is_running(self) -> bool:
        return bool(self._handles)

    async def start(self) -> None:
        if self.is_running:
            return
        self._shutdown = asyncio.Event()
        self._handles = [
            asyncio.create_task(self._loop(task), name=task.name)
            for task in self._tasks.values()
        ]
        logger.info("background_tasks_started", tasks=list(self._tasks))

    async def stop(self) -> None:
        if not self.is_running:
            return
        self._shutdown.set()
        await asyncio.gather(*self._handles, return_exceptions=True)
        self._handles = []
        logger.info("background_tasks_stopped")

    async def run_once(self, name: str) -> None:
        """Run one task's callback now, outside its schedule."""
        await self._run(self._tasks[name])

    async def _loop(self, task: PeriodicTask) -> None:
        if task.run_immediately:
            await self._run(task)

        while not self._shutdown.is_set():
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=task.interval_seconds)
            except asyncio.TimeoutError:
                await self._run(task)

    async def _run(self, task: PeriodicTask) -> None:
        try:
            result = task.callback()
            if inspect.isawaitable(result):
                await result
            task.run_count += 1
        except Exception as e:
            task.error_count += 1
            logger.error("background_task_failed", task=task.name, error=str(e))
        finally:
            task.last_run_at = datetime.now()
