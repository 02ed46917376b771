"""Persisted task version locks.

A task version carries ``locked_by``/``locked_at``. Acquisition is one
conditional UPDATE, so two processes racing for the same version cannot both
succeed. A lock older than the configured staleness may be reclaimed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import and_, or_, select, update

from reelflow.config import EngineConfig
from reelflow.db.models import TaskVersionModel
from reelflow.exceptions import LockConflictError, NotFoundError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

__all__ = ["LockManager"]

logger = logging.getLogger(__name__)


class LockManager:
    """Acquire, renew and release task version locks.

    None of the methods commit; the caller owns the transaction.

    Attributes:
        session: SQLAlchemy async session for database operations.
        config: Engine configuration providing the staleness window.
    """

    def __init__(self, session: AsyncSession, config: EngineConfig | None = None) -> None:
        """Initialize the lock manager.

        Args:
            session: SQLAlchemy async session.
            config: Engine configuration; defaults apply when omitted.
        """
        self.session = session
        self.config = config or EngineConfig()

    async def acquire(self, task_version_id: int, holder: str) -> str | None:
        """Acquire the lock of a task version for ``holder``.

        Succeeds when the version is unlocked, its lock is stale, or ``holder``
        already holds it.

        Args:
            task_version_id: The task version to lock.
            holder: The lock token of the acquiring run.

        Returns:
            The token the lock was reclaimed from, or None when no other holder was displaced.

        Raises:
            NotFoundError: If the task version does not exist.
            LockConflictError: If another holder owns a fresh lock.
        """
        current = await self.session.execute(
            select(TaskVersionModel.locked_by).where(TaskVersionModel.id == task_version_id)
        )
        row = current.one_or_none()
        if row is None:
            raise NotFoundError("TaskVersion", task_version_id)
        previous = row.locked_by

        now = datetime.now(timezone.utc)
        stale_before = now - self.config.lock_staleness
        stmt = (
            update(TaskVersionModel)
            .where(
                and_(
                    TaskVersionModel.id == task_version_id,
                    or_(
                        TaskVersionModel.locked_by.is_(None),
                        TaskVersionModel.locked_at.is_(None),
                        TaskVersionModel.locked_at < stale_before,
                        TaskVersionModel.locked_by == holder,
                    ),
                )
            )
            .values(locked_by=holder, locked_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            raise LockConflictError(task_version_id, previous)

        if previous and previous != holder:
            logger.warning("Reclaimed stale lock on task version %s from %s", task_version_id, previous)
            return previous
        return None

    async def renew(self, task_version_id: int, holder: str) -> bool:
        """Refresh ``locked_at`` if ``holder`` still holds the lock.

        Returns:
            True if the lock was renewed.
        """
        stmt = (
            update(TaskVersionModel)
            .where(and_(TaskVersionModel.id == task_version_id, TaskVersionModel.locked_by == holder))
            .values(locked_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def release(self, task_version_id: int, holder: str) -> bool:
        """Clear the lock if ``holder`` holds it. A lock held by anyone else is left alone.

        Returns:
            True if the lock was released.
        """
        stmt = (
            update(TaskVersionModel)
            .where(and_(TaskVersionModel.id == task_version_id, TaskVersionModel.locked_by == holder))
            .values(locked_by=None, locked_at=None)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def holder(self, task_version_id: int) -> str | None:
        """Return the token currently holding the lock, stale or not."""
        result = await self.session.execute(
            select(TaskVersionModel.locked_by).where(TaskVersionModel.id == task_version_id)
        )
        return result.scalar_one_or_none()
