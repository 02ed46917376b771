"""Background resume poller.

Runs left RUNNING by a crashed or restarted process have no executor driving
them. The poller periodically asks the executor to re-attach to every such run
that this process has not claimed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence

__all__ = ["ResumePoller", "Resumable"]

logger = logging.getLogger(__name__)


class Resumable(Protocol):
    """Anything able to re-attach to orphaned runs."""

    async def resume_pending_runs(self) -> Sequence[int]: ...


class ResumePoller:
    """Periodic sweep for orphaned RUNNING runs.

    Attributes:
        executor: The executor to re-attach.
        interval: Seconds between sweeps.
    """

    def __init__(self, executor: Resumable, interval: float = 15.0) -> None:
        self.executor = executor
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self) -> list[int]:
        """Run one sweep.

        Errors are logged and swallowed so that one bad sweep never stops the poller.

        Returns:
            Ids of the runs that were re-attached.
        """
        try:
            resumed = list(await self.executor.resume_pending_runs())
        except Exception:
            logger.exception("Resume sweep failed")
            return []
        if resumed:
            logger.info("Resumed %d orphaned run(s): %s", len(resumed), resumed)
        return resumed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.sweep()

    def start(self) -> None:
        """Start sweeping in the background. Calling it twice has no effect."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.debug("Resume poller started (interval %.1fs)", self.interval)

    async def stop(self) -> None:
        """Stop sweeping and wait for the background task to exit."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.debug("Resume poller stopped")
