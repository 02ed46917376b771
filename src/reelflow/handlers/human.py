"""Human gate handlers.

A human gate either resolves immediately (``config.autoApprove`` set, or
``config.requireHuman`` explicitly false) or leaves its node run waiting for a
decision submitted through the executor's review and selection operations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from reelflow.core.context import NodeOutcome
from reelflow.core.types import NodeType
from reelflow.core.variables import MISSING
from reelflow.handlers.base import BaseNodeHandler

if TYPE_CHECKING:
    from reelflow.core.context import NodeContext

__all__ = ["BreakpointHandler", "ReviewAssetsHandler", "auto_resolves", "selection_mode"]


def auto_resolves(config: dict[str, Any]) -> bool:
    return bool(config.get("autoApprove")) or config.get("requireHuman") is False


def selection_mode(config: dict[str, Any]) -> str:
    """Return ``single`` or ``multiple`` for a breakpoint's config."""
    return config.get("selectionMode") or ("multiple" if config.get("multiSelect") else "single")


class ReviewAssetsHandler(BaseNodeHandler):
    """Wait for approval of the candidate assets, or pass them through."""

    node_type = NodeType.HUMAN_REVIEW_ASSETS

    async def run(self, context: NodeContext) -> NodeOutcome:
        if auto_resolves(context.node_config):
            return NodeOutcome(value=context.primary_input(), asset_ids=list(context.input_asset_ids))
        return NodeOutcome.waiting()


class BreakpointHandler(BaseNodeHandler):
    """Wait for a selection among the candidates.

    When auto-resolving, single mode selects the first candidate and multiple
    mode selects all of them.
    """

    node_type = NodeType.HUMAN_BREAKPOINT

    async def run(self, context: NodeContext) -> NodeOutcome:
        mode = selection_mode(context.node_config)
        if not auto_resolves(context.node_config):
            return NodeOutcome.waiting(selection_mode=mode)

        candidates = context.primary_input()
        if mode == "multiple":
            if candidates is MISSING:
                value = []
            else:
                value = candidates if isinstance(candidates, list) else [candidates]
        else:
            value = candidates[0] if isinstance(candidates, list) and candidates else candidates
        return NodeOutcome(value=value, bind_asset_ids=False)
