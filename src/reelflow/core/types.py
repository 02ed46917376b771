"""Core type definitions for reelflow.

This module defines the closed sets of node types, value types and the status
enums shared by the engine, the persistence layer and the web API.
"""

from __future__ import annotations

import sys
from enum import Enum

# StrEnum backport for Python < 3.11
if sys.version_info >= (3, 11):
    from enum import StrEnum
else:

    class StrEnum(str, Enum):
        """String enumeration compatibility for Python < 3.11."""

        def __str__(self) -> str:
            return str(self.value)


__all__ = [
    "AssetStatus",
    "AssetType",
    "EdgeTransform",
    "NodeRunStatus",
    "NodeType",
    "ReviewDecision",
    "RunStatus",
    "TaskStage",
    "TaskStatus",
    "ValueType",
]


class NodeType(StrEnum):
    """Closed set of node types a workflow graph may contain."""

    START = "start"
    END = "end"
    LLM_TOOL = "llm_tool"
    LLM_PARSE_SCRIPT = "llm_parse_script"
    GENERATE_STORYBOARD = "generate_storyboard"
    GENERATE_CHARACTER_IMAGES = "generate_character_images"
    GENERATE_SCENE_IMAGE = "generate_scene_image"
    GENERATE_KEYFRAMES = "generate_keyframes"
    GENERATE_VIDEO = "generate_video"
    HUMAN_REVIEW_ASSETS = "human_review_assets"
    HUMAN_BREAKPOINT = "human_breakpoint"
    FINAL_COMPOSE = "final_compose"

    @property
    def is_human_gate(self) -> bool:
        return self in (NodeType.HUMAN_REVIEW_ASSETS, NodeType.HUMAN_BREAKPOINT)


class ValueType(StrEnum):
    """Types of the values that flow along edges."""

    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"
    ASSET_REF = "asset_ref"
    LIST_TEXT = "list<text>"
    LIST_NUMBER = "list<number>"
    LIST_BOOLEAN = "list<boolean>"
    LIST_JSON = "list<json>"
    LIST_ASSET_REF = "list<asset_ref>"


class EdgeTransform(StrEnum):
    """Value conversion applied while a value crosses an edge.

    Attributes:
        STRINGIFY: Serialize a json value into text.
        PARSE_JSON: Parse text into a json value.
    """

    STRINGIFY = "stringify"
    PARSE_JSON = "parse_json"


class RunStatus(StrEnum):
    """Lifecycle status of a workflow run.

    Attributes:
        PENDING: Created, node runs not seeded yet.
        RUNNING: Being walked by an executor.
        PAUSED: Suspended at a human gate.
        SUCCEEDED: Every node succeeded.
        FAILED: A node failed; can be retried.
        CANCELLED: Stopped explicitly; can be retried.
    """

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED)


class NodeRunStatus(StrEnum):
    """Execution status of a single node within a run."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    WAITING_HUMAN = "WAITING_HUMAN"
    PAUSED = "PAUSED"

    @property
    def is_waiting(self) -> bool:
        return self in (NodeRunStatus.WAITING_HUMAN, NodeRunStatus.PAUSED)


class TaskStage(StrEnum):
    """Coarse progress label of a task version, in forward order."""

    SCRIPT_UPLOADED = "SCRIPT_UPLOADED"
    STORYBOARD_GENERATED = "STORYBOARD_GENERATED"
    CHARACTER_DESIGNED = "CHARACTER_DESIGNED"
    SCENE_GENERATED = "SCENE_GENERATED"
    KEYFRAME_GENERATING = "KEYFRAME_GENERATING"
    KEYFRAME_COMPLETED = "KEYFRAME_COMPLETED"
    VIDEO_GENERATING = "VIDEO_GENERATING"
    VIDEO_COMPLETED = "VIDEO_COMPLETED"
    FINAL_COMPOSING = "FINAL_COMPOSING"
    COMPLETED = "COMPLETED"


class TaskStatus(StrEnum):
    """Status of the task that owns the subject resource."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class AssetStatus(StrEnum):
    """Current disposition of an asset."""

    ACTIVE = "ACTIVE"
    TRASHED = "TRASHED"
    REPLACED = "REPLACED"


class AssetType(StrEnum):
    """Kind of asset stored for a task version."""

    ORIGINAL_SCRIPT = "ORIGINAL_SCRIPT"
    TASK_EXECUTION = "TASK_EXECUTION"
    FINAL_VIDEO = "FINAL_VIDEO"


class ReviewDecision(StrEnum):
    """Entry kinds of the append-only human review log."""

    APPROVE = "APPROVE"
    REJECT = "REJECT"
    REPLACE = "REPLACE"
