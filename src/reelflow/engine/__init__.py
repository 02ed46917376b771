"""Graph engine for reelflow.

This package normalizes and validates workflow graphs, orders them for
execution, dispatches nodes to their handlers and keeps the in-process
bookkeeping of the run executor.
"""

from __future__ import annotations

from reelflow.engine.graph import WorkflowGraph, topological_order, validate_workflow
from reelflow.engine.normalizer import normalize_workflow
from reelflow.engine.poller import ResumePoller
from reelflow.engine.registry import NodeHandlerRegistry
from reelflow.engine.stages import STAGE_ORDER, is_stage_advanced, stages_reached
from reelflow.engine.tracker import RunTracker

__all__ = [
    "STAGE_ORDER",
    "NodeHandlerRegistry",
    "ResumePoller",
    "RunTracker",
    "WorkflowGraph",
    "is_stage_advanced",
    "normalize_workflow",
    "stages_reached",
    "topological_order",
    "validate_workflow",
]
