"""SQLAlchemy models for reelflow persistence.

This module defines the database models the engine reads and writes:
- TaskModel / TaskVersionModel: The subject resource and its lock columns
- AssetModel / TrashRecordModel: Produced files and their trash bookkeeping
- WorkflowTemplateModel / WorkflowTemplateVersionModel: Immutable graph versions
- WorkflowRunModel / NodeRunModel: Run and per-node execution state
- HumanReviewDecisionModel: Append-only human review log
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from advanced_alchemy.base import BigIntAuditBase
from advanced_alchemy.types import DateTimeUTC
from sqlalchemy import JSON, BigInteger, Enum, ForeignKey, Index, Integer, String, Text, event, inspect
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reelflow.core.types import (
    AssetStatus,
    AssetType,
    NodeRunStatus,
    ReviewDecision,
    RunStatus,
    TaskStage,
    TaskStatus,
)

__all__ = [
    "AssetModel",
    "HumanReviewDecisionModel",
    "NodeRunModel",
    "TaskModel",
    "TaskVersionModel",
    "TrashRecordModel",
    "WorkflowRunModel",
    "WorkflowTemplateModel",
    "WorkflowTemplateVersionModel",
]


# Cross-database JSON type: uses JSONB for PostgreSQL, JSON for others (SQLite, MySQL, etc.)
JSONType = JSON().with_variant(JSONB, "postgresql")


class TaskModel(BigIntAuditBase):
    """A user's content production task.

    Attributes:
        user_id: The owning user.
        title: Display title.
        description: Free-form description.
        status: Aggregate status driven by the task's runs.
        stage: Furthest production stage reached.
        current_version_id: The version currently being worked on.
    """

    __tablename__ = "tasks"
    __table_args__ = (Index("ix_tasks_user_id", "user_id"),)

    user_id: Mapped[int] = mapped_column(BigInteger)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, native_enum=False, length=50),
        default=TaskStatus.PENDING,
    )
    stage: Mapped[TaskStage | None] = mapped_column(
        Enum(TaskStage, native_enum=False, length=50),
        nullable=True,
    )
    current_version_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    versions: Mapped[list[TaskVersionModel]] = relationship(
        back_populates="task",
        lazy="noload",
        cascade="all, delete-orphan",
    )


class TaskVersionModel(BigIntAuditBase):
    """One version of a task; the subject resource a run executes against.

    ``locked_by``/``locked_at`` form the lock that keeps at most one live run
    per version.

    Attributes:
        task_id: Foreign key to the owning task.
        version: Version number within the task.
        stage: Furthest production stage reached by this version.
        metadata_: Free-form metadata.
        locked_by: Token of the run holding the lock.
        locked_at: When the lock was acquired or last renewed.
    """

    __tablename__ = "task_versions"
    __table_args__ = (Index("ix_task_versions_task_id", "task_id"),)

    task_id: Mapped[int] = mapped_column(ForeignKey("tasks.id", ondelete="CASCADE"))
    version: Mapped[int] = mapped_column(Integer, default=1)
    stage: Mapped[TaskStage | None] = mapped_column(
        Enum(TaskStage, native_enum=False, length=50),
        nullable=True,
    )
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict)
    locked_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)

    task: Mapped[TaskModel] = relationship(back_populates="versions", lazy="noload")


class AssetModel(BigIntAuditBase):
    """A stored file belonging to a task version.

    Attributes:
        task_id: The owning task.
        version_id: The owning task version.
        type: Asset category.
        status: Current disposition.
        url: Storage locator.
        filename: Stored file name.
        filesize: Size in bytes.
        mime_type: MIME type.
        metadata_: Provenance such as the producing node's label.
        trashed_at: When the asset was trashed.
        replaced_by_id: The asset that replaced this one during review.
    """

    __tablename__ = "assets"
    __table_args__ = (
        Index("ix_assets_task_version", "task_id", "version_id"),
        Index("ix_assets_status", "status"),
    )

    task_id: Mapped[int] = mapped_column(ForeignKey("tasks.id", ondelete="CASCADE"))
    version_id: Mapped[int] = mapped_column(ForeignKey("task_versions.id", ondelete="CASCADE"))
    type: Mapped[AssetType] = mapped_column(
        Enum(AssetType, native_enum=False, length=50),
        default=AssetType.TASK_EXECUTION,
    )
    status: Mapped[AssetStatus] = mapped_column(
        Enum(AssetStatus, native_enum=False, length=50),
        default=AssetStatus.ACTIVE,
    )
    url: Mapped[str] = mapped_column(Text)
    filename: Mapped[str] = mapped_column(String(255))
    filesize: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict)
    trashed_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    replaced_by_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class TrashRecordModel(BigIntAuditBase):
    """Trash bookkeeping for a rejected asset or rejected non-asset candidates.

    Attributes:
        asset_id: The trashed asset; None for rejected non-asset candidates.
        origin_run_id: The run whose human gate rejected it.
        origin_node_id: The gate node that rejected it.
        metadata_: Decision context such as the rejection reason.
        expire_at: When the record (and its asset) may be purged.
    """

    __tablename__ = "trash_records"
    __table_args__ = (Index("ix_trash_records_expire_at", "expire_at"),)

    asset_id: Mapped[int | None] = mapped_column(ForeignKey("assets.id", ondelete="SET NULL"), nullable=True)
    origin_run_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    origin_node_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict)
    expire_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))


class WorkflowTemplateModel(BigIntAuditBase):
    """A named workflow whose graph evolves through immutable versions."""

    __tablename__ = "workflow_templates"

    name: Mapped[str] = mapped_column(String(255), index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    versions: Mapped[list[WorkflowTemplateVersionModel]] = relationship(
        back_populates="template",
        lazy="noload",
        cascade="all, delete-orphan",
    )


class WorkflowTemplateVersionModel(BigIntAuditBase):
    """An immutable snapshot of a template's graph.

    Attributes:
        template_id: Foreign key to the template.
        version: Version number, 1..n within the template.
        nodes: Node documents as authored.
        edges: Edge documents as authored.
        metadata_: Free-form metadata.
    """

    __tablename__ = "workflow_template_versions"
    __table_args__ = (
        Index("ix_workflow_template_versions_template_version", "template_id", "version", unique=True),
    )

    template_id: Mapped[int] = mapped_column(ForeignKey("workflow_templates.id", ondelete="CASCADE"))
    version: Mapped[int] = mapped_column(Integer)
    nodes: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)
    edges: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict)

    template: Mapped[WorkflowTemplateModel] = relationship(back_populates="versions", lazy="noload")


@event.listens_for(WorkflowTemplateVersionModel, "before_update")
def _reject_graph_changes(mapper: Any, connection: Any, target: WorkflowTemplateVersionModel) -> None:
    state = inspect(target)
    for attribute in ("nodes", "edges"):
        if state.attrs[attribute].history.has_changes():
            msg = "Workflow template versions are immutable; create a new version instead"
            raise ValueError(msg)


class WorkflowRunModel(BigIntAuditBase):
    """One execution of a template version against a task version.

    Attributes:
        template_version_id: The graph being executed.
        task_id: The owning task.
        task_version_id: The subject resource.
        status: Current run status.
        current_node_id: The node the run is at.
        error: Failure message of the failed node.
        input: The start node's input values.
        output: The end node's output variables.
        lock_token: Token this run holds the task version lock with.
        started_by: The user who started the run.
    """

    __tablename__ = "workflow_runs"
    __table_args__ = (
        Index("ix_workflow_runs_status", "status"),
        Index("ix_workflow_runs_task_version", "task_id", "task_version_id"),
    )

    template_version_id: Mapped[int] = mapped_column(
        ForeignKey("workflow_template_versions.id", ondelete="RESTRICT"),
    )
    task_id: Mapped[int] = mapped_column(ForeignKey("tasks.id", ondelete="CASCADE"))
    task_version_id: Mapped[int] = mapped_column(ForeignKey("task_versions.id", ondelete="CASCADE"))
    status: Mapped[RunStatus] = mapped_column(
        Enum(RunStatus, native_enum=False, length=50),
        default=RunStatus.PENDING,
    )
    current_node_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    input: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    output: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    lock_token: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    started_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    node_runs: Mapped[list[NodeRunModel]] = relationship(
        back_populates="run",
        lazy="noload",
        cascade="all, delete-orphan",
        order_by="NodeRunModel.id",
    )


class NodeRunModel(BigIntAuditBase):
    """Execution state of one node within a run.

    Attributes:
        workflow_run_id: Foreign key to the run.
        node_id: The node's id within the graph.
        node_type: The node's type.
        status: Current node run status.
        input: ``{"variables": ..., "asset_ids": [...]}`` as resolved.
        output: ``{"variables": ..., "asset_ids": [...]}`` plus handler extras.
        error: Failure message.
        retry_count: Failed attempts so far, capped.
        started_at: When the latest attempt began.
        ended_at: When the latest attempt finished.
    """

    __tablename__ = "node_runs"
    __table_args__ = (
        Index("ix_node_runs_run_node", "workflow_run_id", "node_id"),
        Index("ix_node_runs_status", "status"),
    )

    workflow_run_id: Mapped[int] = mapped_column(ForeignKey("workflow_runs.id", ondelete="CASCADE"))
    node_id: Mapped[str] = mapped_column(String(255))
    node_type: Mapped[str] = mapped_column(String(50))
    status: Mapped[NodeRunStatus] = mapped_column(
        Enum(NodeRunStatus, native_enum=False, length=50),
        default=NodeRunStatus.PENDING,
    )
    input: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    output: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)

    run: Mapped[WorkflowRunModel] = relationship(back_populates="node_runs", lazy="noload")


class HumanReviewDecisionModel(BigIntAuditBase):
    """One entry of the append-only human review log.

    Attributes:
        node_run_id: The review node run.
        user_id: Who decided.
        asset_id: The asset the decision concerns.
        decision: Approve, reject or replace.
        reason: Optional free-form reason.
    """

    __tablename__ = "human_review_decisions"
    __table_args__ = (Index("ix_human_review_decisions_node_run_id", "node_run_id"),)

    node_run_id: Mapped[int] = mapped_column(ForeignKey("node_runs.id", ondelete="CASCADE"))
    user_id: Mapped[int] = mapped_column(BigInteger)
    asset_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    decision: Mapped[ReviewDecision] = mapped_column(Enum(ReviewDecision, native_enum=False, length=50))
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
