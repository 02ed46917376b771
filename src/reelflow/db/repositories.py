"""Repository implementations for reelflow persistence.

This module provides async repositories for CRUD operations on the reelflow
models using advanced-alchemy's repository pattern.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from sqlalchemy import and_, func, select

from reelflow.core.types import AssetStatus, NodeRunStatus, RunStatus
from reelflow.db.models import (
    AssetModel,
    HumanReviewDecisionModel,
    NodeRunModel,
    TaskModel,
    TaskVersionModel,
    TrashRecordModel,
    WorkflowRunModel,
    WorkflowTemplateModel,
    WorkflowTemplateVersionModel,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from reelflow.core.types import AssetType

__all__ = [
    "AssetRepository",
    "HumanReviewDecisionRepository",
    "NodeRunRepository",
    "TaskRepository",
    "TaskVersionRepository",
    "TrashRecordRepository",
    "WorkflowRunRepository",
    "WorkflowTemplateRepository",
    "WorkflowTemplateVersionRepository",
]


class TaskRepository(SQLAlchemyAsyncRepository[TaskModel]):
    """Repository for tasks."""

    model_type = TaskModel


class TaskVersionRepository(SQLAlchemyAsyncRepository[TaskVersionModel]):
    """Repository for task versions."""

    model_type = TaskVersionModel


class AssetRepository(SQLAlchemyAsyncRepository[AssetModel]):
    """Repository for assets."""

    model_type = AssetModel

    async def get_latest(self, task_id: int, version_id: int, asset_type: AssetType) -> AssetModel | None:
        """Get the most recent active asset of a type for a task version.

        Args:
            task_id: The owning task.
            version_id: The owning task version.
            asset_type: The asset category.

        Returns:
            The newest matching asset or None.
        """
        stmt = (
            select(AssetModel)
            .where(
                and_(
                    AssetModel.task_id == task_id,
                    AssetModel.version_id == version_id,
                    AssetModel.type == asset_type,
                    AssetModel.status == AssetStatus.ACTIVE,
                )
            )
            .order_by(AssetModel.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_ids(self, asset_ids: Sequence[int]) -> Sequence[AssetModel]:
        """Get the assets with the given ids, in id order. Unknown ids are ignored."""
        if not asset_ids:
            return []
        stmt = select(AssetModel).where(AssetModel.id.in_(list(asset_ids))).order_by(AssetModel.id)
        result = await self.session.execute(stmt)
        return result.scalars().all()


class TrashRecordRepository(SQLAlchemyAsyncRepository[TrashRecordModel]):
    """Repository for trash records."""

    model_type = TrashRecordModel

    async def find_by_asset(self, asset_id: int) -> TrashRecordModel | None:
        stmt = select(TrashRecordModel).where(TrashRecordModel.asset_id == asset_id).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_expired(self, now: datetime) -> Sequence[TrashRecordModel]:
        """Get the records whose retention has elapsed."""
        stmt = select(TrashRecordModel).where(TrashRecordModel.expire_at <= now).order_by(TrashRecordModel.id)
        result = await self.session.execute(stmt)
        return result.scalars().all()


class WorkflowTemplateRepository(SQLAlchemyAsyncRepository[WorkflowTemplateModel]):
    """Repository for workflow templates."""

    model_type = WorkflowTemplateModel


class WorkflowTemplateVersionRepository(SQLAlchemyAsyncRepository[WorkflowTemplateVersionModel]):
    """Repository for immutable workflow template versions."""

    model_type = WorkflowTemplateVersionModel

    async def latest_version_number(self, template_id: int) -> int:
        """Return the highest version number of a template, or 0 when it has none."""
        stmt = select(func.max(WorkflowTemplateVersionModel.version)).where(
            WorkflowTemplateVersionModel.template_id == template_id
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def list_for_template(self, template_id: int) -> Sequence[WorkflowTemplateVersionModel]:
        stmt = (
            select(WorkflowTemplateVersionModel)
            .where(WorkflowTemplateVersionModel.template_id == template_id)
            .order_by(WorkflowTemplateVersionModel.version)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


class WorkflowRunRepository(SQLAlchemyAsyncRepository[WorkflowRunModel]):
    """Repository for workflow runs.

    Provides the queries the executor and the resume poller rely on.
    """

    model_type = WorkflowRunModel

    async def find_running(self) -> Sequence[WorkflowRunModel]:
        """Find every run in RUNNING status, least recently updated first.

        Returns:
            List of running runs.
        """
        stmt = (
            select(WorkflowRunModel)
            .where(WorkflowRunModel.status == RunStatus.RUNNING)
            .order_by(WorkflowRunModel.updated_at.asc(), WorkflowRunModel.id.asc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_latest(self, task_id: int, task_version_id: int) -> WorkflowRunModel | None:
        """Find the most recently created run for a task version.

        Args:
            task_id: The owning task.
            task_version_id: The subject resource.

        Returns:
            The newest run or None.
        """
        stmt = (
            select(WorkflowRunModel)
            .where(
                and_(
                    WorkflowRunModel.task_id == task_id,
                    WorkflowRunModel.task_version_id == task_version_id,
                )
            )
            .order_by(WorkflowRunModel.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_lock_token(self, token: str) -> WorkflowRunModel | None:
        stmt = select(WorkflowRunModel).where(WorkflowRunModel.lock_token == token).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class NodeRunRepository(SQLAlchemyAsyncRepository[NodeRunModel]):
    """Repository for node runs."""

    model_type = NodeRunModel

    async def find_by_run(self, run_id: int) -> Sequence[NodeRunModel]:
        """Get a run's node runs in creation order."""
        stmt = select(NodeRunModel).where(NodeRunModel.workflow_run_id == run_id).order_by(NodeRunModel.id)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_for_node(self, run_id: int, node_id: str) -> NodeRunModel | None:
        stmt = (
            select(NodeRunModel)
            .where(and_(NodeRunModel.workflow_run_id == run_id, NodeRunModel.node_id == node_id))
            .order_by(NodeRunModel.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_first_waiting(self, run_id: int) -> NodeRunModel | None:
        """Get the oldest node run of a run that waits for a human decision."""
        stmt = (
            select(NodeRunModel)
            .where(
                and_(
                    NodeRunModel.workflow_run_id == run_id,
                    NodeRunModel.status == NodeRunStatus.WAITING_HUMAN,
                )
            )
            .order_by(NodeRunModel.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class HumanReviewDecisionRepository(SQLAlchemyAsyncRepository[HumanReviewDecisionModel]):
    """Repository for the append-only human review log."""

    model_type = HumanReviewDecisionModel

    async def find_by_node_run(self, node_run_id: int) -> Sequence[HumanReviewDecisionModel]:
        stmt = (
            select(HumanReviewDecisionModel)
            .where(HumanReviewDecisionModel.node_run_id == node_run_id)
            .order_by(HumanReviewDecisionModel.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()
