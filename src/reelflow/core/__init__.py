"""Core domain model for reelflow.

This package holds the value types, the workflow definition model, the
collaborator protocols and the execution context shared by the engine and
the persistence layer.
"""

from __future__ import annotations

from reelflow.core.context import Caller, NodeContext, NodeOutcome, Services, StoredArtifact
from reelflow.core.definition import (
    ValidationIssue,
    ValidationResult,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    WorkflowVariable,
)
from reelflow.core.protocols import (
    ArtifactStorage,
    EventBus,
    GeneratedMedia,
    GenerationService,
    NodeHandler,
    PromptRenderer,
    RenderedPrompt,
)
from reelflow.core.types import (
    AssetStatus,
    AssetType,
    EdgeTransform,
    NodeRunStatus,
    NodeType,
    ReviewDecision,
    RunStatus,
    TaskStage,
    TaskStatus,
    ValueType,
)
from reelflow.core.variables import MISSING

__all__ = [
    "MISSING",
    "ArtifactStorage",
    "AssetStatus",
    "AssetType",
    "Caller",
    "EdgeTransform",
    "EventBus",
    "GeneratedMedia",
    "GenerationService",
    "NodeContext",
    "NodeHandler",
    "NodeOutcome",
    "NodeRunStatus",
    "NodeType",
    "PromptRenderer",
    "RenderedPrompt",
    "ReviewDecision",
    "RunStatus",
    "Services",
    "StoredArtifact",
    "TaskStage",
    "TaskStatus",
    "ValidationIssue",
    "ValidationResult",
    "ValueType",
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowNode",
    "WorkflowVariable",
]
