"""Task stage tracking.

A task version's stage only ever moves forward. A stage is reached once every
node of the stage's node types in the graph has succeeded.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from reelflow.core.types import NodeType, TaskStage

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable

    from reelflow.core.definition import WorkflowNode

__all__ = ["STAGE_NODE_TYPES", "STAGE_ORDER", "is_stage_advanced", "stages_reached"]

STAGE_ORDER: tuple[TaskStage, ...] = tuple(TaskStage)

STAGE_NODE_TYPES: dict[TaskStage, tuple[NodeType, ...]] = {
    TaskStage.SCRIPT_UPLOADED: (NodeType.LLM_PARSE_SCRIPT,),
    TaskStage.STORYBOARD_GENERATED: (NodeType.LLM_PARSE_SCRIPT, NodeType.GENERATE_STORYBOARD),
    TaskStage.CHARACTER_DESIGNED: (NodeType.GENERATE_CHARACTER_IMAGES, NodeType.HUMAN_REVIEW_ASSETS),
    TaskStage.SCENE_GENERATED: (NodeType.GENERATE_SCENE_IMAGE,),
    TaskStage.KEYFRAME_GENERATING: (NodeType.GENERATE_KEYFRAMES,),
    TaskStage.KEYFRAME_COMPLETED: (NodeType.GENERATE_KEYFRAMES,),
    TaskStage.VIDEO_GENERATING: (NodeType.GENERATE_VIDEO,),
    TaskStage.VIDEO_COMPLETED: (NodeType.GENERATE_VIDEO,),
    TaskStage.FINAL_COMPOSING: (NodeType.FINAL_COMPOSE,),
    TaskStage.COMPLETED: (NodeType.FINAL_COMPOSE,),
}


def is_stage_advanced(current: str | None, candidate: str) -> bool:
    """Return whether moving from ``current`` to ``candidate`` keeps the stage monotonic.

    Args:
        current: The stage currently recorded, or None.
        candidate: The stage to move to.

    Returns:
        True when there is no current stage or ``candidate`` is not earlier.
    """
    if not current:
        return True
    return STAGE_ORDER.index(TaskStage(candidate)) >= STAGE_ORDER.index(TaskStage(current))


def stages_reached(nodes: Iterable[WorkflowNode], succeeded: Collection[str]) -> list[TaskStage]:
    """List the stages whose nodes have all succeeded, in stage order.

    Stages with no node of their types in the graph are never reached this way.

    Args:
        nodes: The graph's nodes.
        succeeded: Ids of the nodes that have succeeded.
    """
    node_list = list(nodes)
    reached = []
    for stage in STAGE_ORDER:
        members = [node for node in node_list if node.type in STAGE_NODE_TYPES[stage]]
        if members and all(node.id in succeeded for node in members):
            reached.append(stage)
    return reached
