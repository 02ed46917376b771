"""Dry runs for authoring-time preview.

Dry runs execute handlers exactly as a real run would, but nothing is
persisted: artifacts are not written to storage, no assets are created, task
stages do not move and human gates resolve automatically. Failures are
reported in the result instead of raised.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from reelflow.config import EngineConfig
from reelflow.core.context import NodeContext
from reelflow.core.definition import WorkflowNode
from reelflow.core.types import NodeType
from reelflow.core.variables import build_output_variables
from reelflow.engine.graph import WorkflowGraph
from reelflow.engine.normalizer import normalize_node_variables
from reelflow.handlers import build_default_registry

if TYPE_CHECKING:
    from collections.abc import Mapping

    from reelflow.core.context import NodeOutcome, Services
    from reelflow.core.definition import WorkflowDefinition
    from reelflow.engine.registry import NodeHandlerRegistry

__all__ = ["NodeTestResult", "WorkflowTestResult", "test_node", "test_workflow"]

logger = logging.getLogger(__name__)


@dataclass
class NodeTestResult:
    """Result of dry-running one node.

    Attributes:
        node_id: The node that ran.
        node_type: Its type.
        inputs: The inputs it received.
        outputs: Its output variables plus handler extras; None on failure.
        error: The failure message, if it failed.
        duration_ms: Wall time spent in the handler.
    """

    node_id: str
    node_type: str
    inputs: dict[str, Any] = field(default_factory=dict)
    outputs: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "nodeType": self.node_type,
            "inputs": self.inputs,
            "outputs": self.outputs,
            "error": self.error,
            "durationMs": self.duration_ms,
        }


@dataclass
class WorkflowTestResult:
    """Result of dry-running a whole graph.

    Attributes:
        ok: Whether every node succeeded.
        end_node_id: The end node's id, if the graph has one.
        final_output: The end node's output variables.
        node_results: Per-node results in execution order.
        error: The first failure message.
        failed_node_id: The node that failed first.
        duration_ms: Wall time of the whole dry run.
    """

    ok: bool
    end_node_id: str | None = None
    final_output: dict[str, Any] = field(default_factory=dict)
    node_results: list[NodeTestResult] = field(default_factory=list)
    error: str | None = None
    failed_node_id: str | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "endNodeId": self.end_node_id,
            "finalOutput": self.final_output,
            "nodeResults": [result.to_dict() for result in self.node_results],
            "error": self.error,
            "failedNodeId": self.failed_node_id,
            "durationMs": self.duration_ms,
        }


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _preview_node(node: WorkflowNode) -> WorkflowNode:
    if node.type in (NodeType.HUMAN_REVIEW_ASSETS, NodeType.HUMAN_BREAKPOINT):
        return replace(node, config={**node.config, "autoApprove": True})
    return node


def _output_variables(node: WorkflowNode, outcome: NodeOutcome) -> dict[str, Any]:
    # Dry-run artifacts have no asset ids, so their locators stand in for them.
    locators = [artifact.locator for artifact in outcome.artifacts]
    asset_ids = outcome.asset_ids if outcome.bind_asset_ids and outcome.asset_ids else None
    use_locators = outcome.bind_asset_urls or (outcome.bind_asset_ids and not asset_ids)
    return build_output_variables(
        node,
        outcome.value,
        asset_ids=asset_ids,
        asset_urls=locators if use_locators and locators else None,
    )


async def _dry_run(
    node: WorkflowNode,
    inputs: dict[str, Any],
    services: Services,
    registry: NodeHandlerRegistry,
    config: EngineConfig,
) -> tuple[dict[str, Any], NodeOutcome]:
    node = _preview_node(node)
    handler = registry.get(node.type)
    context = NodeContext(node=node, inputs=inputs, services=services, config=config, dry_run=True)
    outcome = await handler.execute(context)
    return _output_variables(node, outcome), outcome


async def test_node(
    node_type: str,
    services: Services,
    *,
    config: Mapping[str, Any] | None = None,
    inputs: Mapping[str, Any] | None = None,
    registry: NodeHandlerRegistry | None = None,
    engine_config: EngineConfig | None = None,
) -> NodeTestResult:
    """Dry-run one node type against ad hoc config and inputs.

    Args:
        node_type: The node type to exercise.
        services: The generation, storage and prompt collaborators.
        config: The node's config.
        inputs: Input variable values.
        registry: Handler registry; the built-in handlers when omitted.
        engine_config: Engine limits.

    Returns:
        The node's outputs, or the error it raised.
    """
    if registry is None:
        registry = build_default_registry()
    node = normalize_node_variables(WorkflowNode(id="test-node", type=node_type, config=dict(config or {})))
    resolved = dict(inputs or {})
    result = NodeTestResult(node_id=node.id, node_type=str(node_type), inputs=resolved)
    started = time.perf_counter()
    try:
        variables, outcome = await _dry_run(node, resolved, services, registry, engine_config or EngineConfig())
    except Exception as exc:
        logger.info("Node test of %s failed: %s", node_type, exc)
        result.error = getattr(exc, "detail", None) or str(exc) or "Node test failed"
    else:
        result.outputs = {**variables, **outcome.extra}
    result.duration_ms = _elapsed_ms(started)
    return result


async def test_workflow(
    definition: WorkflowDefinition,
    services: Services,
    *,
    start_inputs: Mapping[str, Any] | None = None,
    registry: NodeHandlerRegistry | None = None,
    engine_config: EngineConfig | None = None,
) -> WorkflowTestResult:
    """Dry-run an unsaved graph node by node in topological order.

    Stops at the first failing node.

    Args:
        definition: The graph as authored.
        services: The generation, storage and prompt collaborators.
        start_inputs: The run input fed to the start node.
        registry: Handler registry; the built-in handlers when omitted.
        engine_config: Engine limits.

    Returns:
        The per-node results and the end node's output.
    """
    if registry is None:
        registry = build_default_registry()
    engine_config = engine_config or EngineConfig()
    graph = WorkflowGraph.from_definition(definition)
    end_node = graph.find_node(NodeType.END)
    result = WorkflowTestResult(ok=True, end_node_id=end_node.id if end_node else None)
    outputs: dict[str, dict[str, Any]] = {}
    started = time.perf_counter()

    for node_id in graph.topological_order():
        node = graph.get_node(node_id)
        if node is None:
            continue
        inputs = graph.resolve_inputs(node_id, outputs, start_inputs)
        node_result = NodeTestResult(node_id=node_id, node_type=str(node.type), inputs=inputs)
        node_started = time.perf_counter()
        try:
            variables, outcome = await _dry_run(node, inputs, services, registry, engine_config)
        except Exception as exc:
            node_result.error = getattr(exc, "detail", None) or str(exc) or "Workflow node test failed"
            node_result.duration_ms = _elapsed_ms(node_started)
            result.node_results.append(node_result)
            result.ok = False
            result.error = node_result.error
            result.failed_node_id = node_id
            break
        node_result.outputs = {**variables, **outcome.extra}
        node_result.duration_ms = _elapsed_ms(node_started)
        result.node_results.append(node_result)
        outputs[node_id] = {"variables": variables, "asset_ids": list(outcome.asset_ids)}

    if end_node is not None and end_node.id in outputs:
        result.final_output = outputs[end_node.id]["variables"]
    result.duration_ms = _elapsed_ms(started)
    return result
