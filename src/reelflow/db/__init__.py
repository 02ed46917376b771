"""Database persistence layer for reelflow.

This package provides the SQLAlchemy models, repositories, the persisted
task version lock, trash bookkeeping, the template service and the run
executor that drives workflow runs.
"""

from __future__ import annotations

from reelflow.db.engine import WorkflowRunExecutor
from reelflow.db.locks import LockManager
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
from reelflow.db.repositories import (
    AssetRepository,
    HumanReviewDecisionRepository,
    NodeRunRepository,
    TaskRepository,
    TaskVersionRepository,
    TrashRecordRepository,
    WorkflowRunRepository,
    WorkflowTemplateRepository,
    WorkflowTemplateVersionRepository,
)
from reelflow.db.templates import TemplateService
from reelflow.db.trash import TrashService

__all__ = [
    "AssetModel",
    "AssetRepository",
    "HumanReviewDecisionModel",
    "HumanReviewDecisionRepository",
    "LockManager",
    "NodeRunModel",
    "NodeRunRepository",
    "TaskModel",
    "TaskRepository",
    "TaskVersionModel",
    "TaskVersionRepository",
    "TemplateService",
    "TrashRecordModel",
    "TrashRecordRepository",
    "TrashService",
    "WorkflowRunExecutor",
    "WorkflowRunModel",
    "WorkflowRunRepository",
    "WorkflowTemplateModel",
    "WorkflowTemplateRepository",
    "WorkflowTemplateVersionModel",
    "WorkflowTemplateVersionRepository",
]
