"""Graph normalization.

Normalization turns an authored graph into its canonical shape: exactly the
start and end nodes the author forgot are injected, every node gets resolved
variable declarations and every edge gets explicit variable keys. It never
raises; whether the result is valid is decided by the validator.
"""

from __future__ import annotations

import copy
from dataclasses import replace

from reelflow.core.definition import WorkflowDefinition, WorkflowEdge, WorkflowNode, default_variables
from reelflow.core.types import NodeType

__all__ = [
    "NODE_SPACING",
    "ensure_start_end_nodes",
    "normalize_edges",
    "normalize_node_variables",
    "normalize_workflow",
]

NODE_SPACING = 240.0
"""Horizontal distance between an injected start/end node and the nearest authored node."""


def _free_id(preferred: str, occupied: set[str]) -> str:
    return f"{preferred}-auto" if preferred in occupied else preferred


def ensure_start_end_nodes(nodes: list[WorkflowNode]) -> list[WorkflowNode]:
    """Inject a start node and/or an end node when the graph lacks one.

    The start node is placed left of the leftmost node and the end node right
    of the rightmost node, both level with the first node.
    """
    has_start = any(node.type == NodeType.START for node in nodes)
    has_end = any(node.type == NodeType.END for node in nodes)
    if has_start and has_end:
        return list(nodes)

    occupied = {node.id for node in nodes}
    xs = [node.position.get("x", 0.0) for node in nodes]
    min_x = min(xs) if xs else 0.0
    max_x = max(xs) if xs else 600.0
    base_y = nodes[0].position.get("y", 0.0) if nodes else 0.0

    result = list(nodes)
    if not has_start:
        inputs, outputs = default_variables(NodeType.START)
        result.insert(
            0,
            WorkflowNode(
                id=_free_id("node-start", occupied),
                type=NodeType.START,
                position={"x": min_x - NODE_SPACING, "y": base_y},
                inputs=inputs,
                outputs=outputs,
            ),
        )
    if not has_end:
        inputs, outputs = default_variables(NodeType.END)
        result.append(
            WorkflowNode(
                id=_free_id("node-end", occupied),
                type=NodeType.END,
                position={"x": max_x + NODE_SPACING, "y": base_y},
                inputs=inputs,
                outputs=outputs,
            )
        )
    return result


def normalize_node_variables(node: WorkflowNode) -> WorkflowNode:
    """Resolve a node's variable declarations, falling back to its type's defaults.

    A start node has no upstream, so its outputs mirror its inputs (inputs are
    taken from declared outputs if only those were given). An end node exposes
    what it receives, so it mirrors its inputs when it declares no outputs.
    """
    default_inputs, default_outputs = default_variables(node.type)
    inputs = copy.deepcopy(node.inputs) if node.inputs else default_inputs
    outputs = copy.deepcopy(node.outputs) if node.outputs else default_outputs

    if node.type == NodeType.START:
        if not node.inputs and node.outputs:
            inputs = copy.deepcopy(node.outputs)
        outputs = copy.deepcopy(inputs)
    elif node.type == NodeType.END and not node.outputs:
        outputs = copy.deepcopy(inputs)

    return replace(node, inputs=inputs, outputs=outputs, config=dict(node.config), position=dict(node.position))


def normalize_edges(nodes: list[WorkflowNode], edges: list[WorkflowEdge]) -> list[WorkflowEdge]:
    """Resolve every edge's source output key and target input key.

    Explicit keys win, then editor handle ids, then the source's first output
    (or a start node's first input) and the target's first input.
    """
    node_map = {node.id: node for node in nodes}
    normalized = []
    for edge in edges:
        source = node_map.get(edge.source)
        target = node_map.get(edge.target)

        source_key = edge.source_output_key or edge.source_handle
        if source_key is None and source is not None:
            if source.outputs:
                source_key = source.outputs[0].key
            elif source.type == NodeType.START and source.inputs:
                source_key = source.inputs[0].key

        target_key = edge.target_input_key or edge.target_handle
        if target_key is None and target is not None and target.inputs:
            target_key = target.inputs[0].key

        normalized.append(replace(edge, source_output_key=source_key, target_input_key=target_key))
    return normalized


def normalize_workflow(definition: WorkflowDefinition) -> WorkflowDefinition:
    """Return the canonical form of a definition. The input is not modified."""
    nodes = [normalize_node_variables(node) for node in ensure_start_end_nodes(definition.nodes)]
    return WorkflowDefinition(nodes=nodes, edges=normalize_edges(nodes, definition.edges))
