"""In-process run tracking.

The tracker records which runs this process is currently driving and keeps the
background tasks that drive them. It only prevents duplicate work inside one
process; the persisted task version lock is what guarantees exclusivity.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Coroutine

__all__ = ["RunTracker"]


class RunTracker:
    """Per-process registry of claimed runs and their driving tasks.

    Attributes:
        _claimed: Ids of runs an executor loop is currently driving.
        _tasks: Background tasks by run id.
    """

    def __init__(self) -> None:
        self._claimed: set[int] = set()
        self._tasks: dict[int, asyncio.Task[Any]] = {}

    def claim(self, run_id: int) -> bool:
        """Claim a run for this process.

        Returns:
            False if the run is already claimed.
        """
        if run_id in self._claimed:
            return False
        self._claimed.add(run_id)
        return True

    def release(self, run_id: int) -> None:
        self._claimed.discard(run_id)

    def is_claimed(self, run_id: int) -> bool:
        return run_id in self._claimed

    def spawn(self, run_id: int, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Run a coroutine in the background on behalf of a run.

        Args:
            run_id: The run the coroutine drives.
            coro: The coroutine to schedule.

        Returns:
            The created task.
        """
        task = asyncio.create_task(coro)
        self._tasks[run_id] = task

        def _forget(done: asyncio.Task[Any]) -> None:
            if self._tasks.get(run_id) is done:
                del self._tasks[run_id]

        task.add_done_callback(_forget)
        return task

    def running(self) -> list[int]:
        """Return ids of runs with a live background task."""
        return [run_id for run_id, task in list(self._tasks.items()) if not task.done()]

    async def wait_idle(self) -> None:
        """Wait until every background task, including ones spawned meanwhile, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
            for run_id, task in list(self._tasks.items()):
                if task.done():
                    del self._tasks[run_id]

    async def cancel_all(self) -> None:
        """Cancel all background tasks and wait for them to finish."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._claimed.clear()
