"""Handlers that forward their inputs unchanged."""

from __future__ import annotations

from typing import TYPE_CHECKING

from reelflow.core.context import NodeOutcome
from reelflow.core.types import NodeType
from reelflow.handlers.base import BaseNodeHandler

if TYPE_CHECKING:
    from reelflow.core.context import NodeContext

__all__ = ["EndHandler", "StartHandler", "StoryboardHandler"]


class _PassthroughHandler(BaseNodeHandler):
    async def run(self, context: NodeContext) -> NodeOutcome:
        return NodeOutcome(value=dict(context.inputs), bind_asset_ids=False)


class StartHandler(_PassthroughHandler):
    """Expose the run input (plus declared defaults) as the start node's outputs."""

    node_type = NodeType.START


class EndHandler(_PassthroughHandler):
    """Expose the values reaching the end node; they become the run output."""

    node_type = NodeType.END


class StoryboardHandler(_PassthroughHandler):
    node_type = NodeType.GENERATE_STORYBOARD
