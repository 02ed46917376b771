"""Reelflow - workflow orchestration for script-to-video content production.

This package compiles user-authored graphs of typed processing steps into
persisted runs, executes them node by node, pauses for human review and
selection, recovers runs after a restart and guarantees at most one live run
per task version.

Key Features:
    - Typed node inputs and outputs with implied json/text transforms
    - Normalization and validation of authored graphs
    - Sequential execution in topological order with per-node persistence
    - Human review and breakpoint gates that pause and resume runs
    - Persisted task version locks with stale-lock reclamation
    - Dry runs of single nodes and whole unsaved graphs

Example:
    >>> from reelflow import validate_workflow, WorkflowDefinition
    >>>
    >>> definition = WorkflowDefinition.from_lists(
    ...     nodes=[{"id": "start", "type": "start"}, {"id": "end", "type": "end"}],
    ...     edges=[{"source": "start", "target": "end"}],
    ... )
    >>> validate_workflow(definition).ok
    True
"""

from __future__ import annotations

from reelflow.__metadata__ import __project__, __version__
from reelflow.config import EngineConfig
from reelflow.core import (
    Caller,
    NodeContext,
    NodeOutcome,
    Services,
    ValidationResult,
    WorkflowDefinition,
)
from reelflow.db import TemplateService, WorkflowRunExecutor
from reelflow.engine import WorkflowGraph, validate_workflow
from reelflow.exceptions import (
    AccessError,
    HumanInputError,
    InvalidTransitionError,
    LockConflictError,
    NodeExecutionError,
    NotFoundError,
    ReelflowError,
    WorkflowValidationError,
)
from reelflow.plugin import ReelflowPlugin, ReelflowPluginConfig

__all__ = (
    "AccessError",
    "Caller",
    "EngineConfig",
    "HumanInputError",
    "InvalidTransitionError",
    "LockConflictError",
    "NodeContext",
    "NodeExecutionError",
    "NodeOutcome",
    "NotFoundError",
    "ReelflowError",
    "ReelflowPlugin",
    "ReelflowPluginConfig",
    "Services",
    "TemplateService",
    "ValidationResult",
    "WorkflowDefinition",
    "WorkflowGraph",
    "WorkflowRunExecutor",
    "WorkflowValidationError",
    "__project__",
    "__version__",
    "validate_workflow",
)
