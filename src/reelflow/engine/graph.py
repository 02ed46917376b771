"""Workflow graph operations: validation, ordering and input resolution.

This module provides graph-based operations over a normalized workflow
definition: structural and type validation, topological ordering for the
executor and resolution of a node's inputs from upstream outputs.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Any

from reelflow.core.definition import ValidationIssue, ValidationResult
from reelflow.core.types import EdgeTransform, NodeType
from reelflow.core.variables import MISSING, apply_default_inputs, apply_transform, check_type_compatibility
from reelflow.engine.normalizer import normalize_workflow

if TYPE_CHECKING:
    from collections.abc import Mapping

    from reelflow.core.definition import WorkflowDefinition, WorkflowEdge, WorkflowNode

__all__ = ["WorkflowGraph", "topological_order", "validate_workflow"]

_KNOWN_NODE_TYPES = {str(member) for member in NodeType}


class WorkflowGraph:
    """Graph view of a normalized workflow definition.

    Attributes:
        definition: The normalized definition this graph represents.
        _nodes: Node lookup by id (first declaration wins).
        _adjacency: Outgoing edges per node id.
        _reverse_adjacency: Incoming edges per node id.
    """

    def __init__(self, definition: WorkflowDefinition) -> None:
        """Initialize a graph from an already normalized definition.

        Args:
            definition: The normalized workflow definition.
        """
        self.definition = definition
        self._nodes: dict[str, WorkflowNode] = {}
        self._adjacency: dict[str, list[WorkflowEdge]] = {}
        self._reverse_adjacency: dict[str, list[WorkflowEdge]] = {}
        self._build_adjacency()

    def _build_adjacency(self) -> None:
        for node in self.definition.nodes:
            self._nodes.setdefault(node.id, node)
            self._adjacency.setdefault(node.id, [])
            self._reverse_adjacency.setdefault(node.id, [])

        for edge in self.definition.edges:
            self._adjacency.setdefault(edge.source, []).append(edge)
            self._reverse_adjacency.setdefault(edge.target, []).append(edge)

    @classmethod
    def from_definition(cls, definition: WorkflowDefinition) -> WorkflowGraph:
        """Normalize a definition and build its graph.

        Args:
            definition: The definition as authored.

        Returns:
            A WorkflowGraph over the normalized definition.
        """
        return cls(normalize_workflow(definition))

    @property
    def nodes(self) -> list[WorkflowNode]:
        return self.definition.nodes

    def get_node(self, node_id: str) -> WorkflowNode | None:
        return self._nodes.get(node_id)

    def find_node(self, node_type: NodeType) -> WorkflowNode | None:
        return next((node for node in self.definition.nodes if node.type == node_type), None)

    def outgoing_edges(self, node_id: str) -> list[WorkflowEdge]:
        return self._adjacency.get(node_id, [])

    def incoming_edges(self, node_id: str) -> list[WorkflowEdge]:
        return self._reverse_adjacency.get(node_id, [])

    def edge_transform(self, edge: WorkflowEdge) -> EdgeTransform | None:
        """Return the transform an edge applies.

        An explicit transform wins. Otherwise a ``json``/``text`` edge gets the
        conversion its variable types imply.
        """
        if edge.transform is not None:
            return edge.transform
        source = self.get_node(edge.source)
        target = self.get_node(edge.target)
        if source is None or target is None:
            return None
        source_var = source.get_output(edge.source_output_key)
        target_var = target.get_input(edge.target_input_key)
        if source_var is None or target_var is None:
            return None
        _, implied = check_type_compatibility(source_var.type, target_var.type)
        return implied

    def topological_order(self) -> list[str]:
        """Order node ids so that every edge points forward (Kahn's algorithm).

        Ties keep declaration order. When no complete order exists the
        declaration order is returned instead.
        """
        node_ids = list(self._nodes)
        in_degree = dict.fromkeys(node_ids, 0)
        for edge in self.definition.edges:
            if edge.source in in_degree and edge.target in in_degree:
                in_degree[edge.target] += 1

        queue = deque(node_id for node_id in node_ids if in_degree[node_id] == 0)
        order: list[str] = []
        while queue:
            current = queue.popleft()
            order.append(current)
            for edge in self.outgoing_edges(current):
                if edge.target not in in_degree:
                    continue
                in_degree[edge.target] -= 1
                if in_degree[edge.target] == 0:
                    queue.append(edge.target)

        if len(order) != len(node_ids):
            return node_ids
        return order

    def _get_reachable_nodes(self, start_id: str) -> set[str]:
        reachable: set[str] = set()
        queue = deque([start_id])
        while queue:
            current = queue.popleft()
            if current in reachable:
                continue
            reachable.add(current)
            queue.extend(edge.target for edge in self.outgoing_edges(current))
        return reachable

    def has_cycle(self) -> bool:
        """Detect a back edge with a three-colour depth-first search."""
        white, grey, black = 0, 1, 2
        colour = dict.fromkeys(self._adjacency, white)

        for root in list(colour):
            if colour[root] != white:
                continue
            colour[root] = grey
            stack = [(root, iter(self.outgoing_edges(root)))]
            while stack:
                node_id, edges = stack[-1]
                edge = next(edges, None)
                if edge is None:
                    colour[node_id] = black
                    stack.pop()
                    continue
                state = colour.get(edge.target, white)
                if state == grey:
                    return True
                if state == white:
                    colour[edge.target] = grey
                    stack.append((edge.target, iter(self.outgoing_edges(edge.target))))
        return False

    def validate(self, *, injected: bool = False) -> ValidationResult:
        """Validate the graph structure and edge types.

        Every check runs; findings accumulate rather than short-circuit.

        Args:
            injected: Whether normalization had to inject a start or end node.

        Returns:
            The validation result with errors and warnings.
        """
        result = ValidationResult()
        errors = result.errors
        nodes = self.definition.nodes
        edges = self.definition.edges

        if injected:
            result.warnings.append(
                ValidationIssue("missing_start_or_end", "Missing start/end nodes were added automatically")
            )
        starts = [node for node in nodes if node.type == NodeType.START]
        ends = [node for node in nodes if node.type == NodeType.END]
        if len(starts) != 1 or len(ends) != 1:
            errors.append(
                ValidationIssue(
                    "missing_start_or_end",
                    "A workflow must contain exactly one start node and one end node",
                    details={"start": len(starts), "end": len(ends)},
                )
            )

        seen_ids: set[str] = set()
        for node in nodes:
            if node.id in seen_ids:
                errors.append(ValidationIssue("duplicate_node_id", f"Node id '{node.id}' is used twice", node_id=node.id))
            seen_ids.add(node.id)
            if str(node.type) not in _KNOWN_NODE_TYPES:
                errors.append(
                    ValidationIssue("unknown_node_type", f"Unknown node type '{node.type}'", node_id=node.id)
                )
            output_keys = [variable.key for variable in node.outputs]
            duplicates = sorted({key for key in output_keys if output_keys.count(key) > 1})
            if duplicates:
                errors.append(
                    ValidationIssue(
                        "duplicate_output_key",
                        f"Output keys declared more than once: {', '.join(duplicates)}",
                        node_id=node.id,
                        details={"keys": duplicates},
                    )
                )

        for edge in edges:
            self._check_edge(edge, errors)

        for node in nodes:
            self._check_required_inputs(node, errors)

        if len(starts) >= 1:
            reachable = self._get_reachable_nodes(starts[0].id)
        else:
            reachable = set()
        for node in nodes:
            if node.id not in reachable:
                result.warnings.append(
                    ValidationIssue("unreachable_nodes", f"Node '{node.id}' is not reachable from start", node_id=node.id)
                )

        if self.has_cycle():
            errors.append(ValidationIssue("cycles_not_allowed", "Workflow graphs must not contain cycles"))

        return result

    def _check_edge(self, edge: WorkflowEdge, errors: list[ValidationIssue]) -> None:
        source = self.get_node(edge.source)
        target = self.get_node(edge.target)
        if source is None or target is None:
            errors.append(ValidationIssue("dangling_edge", "Edge references a missing node", edge_id=edge.id))
            return
        if source.type == NodeType.END:
            errors.append(
                ValidationIssue("dangling_edge", "The end node cannot be an edge source", node_id=source.id, edge_id=edge.id)
            )
        if target.type == NodeType.START:
            errors.append(
                ValidationIssue("dangling_edge", "The start node cannot be an edge target", node_id=target.id, edge_id=edge.id)
            )

        source_var = source.get_output(edge.source_output_key)
        target_var = target.get_input(edge.target_input_key)
        if source_var is None or target_var is None:
            errors.append(
                ValidationIssue(
                    "dangling_edge",
                    "Edge maps a variable the node does not declare",
                    edge_id=edge.id,
                    details={"sourceOutputKey": edge.source_output_key, "targetInputKey": edge.target_input_key},
                )
            )
            return

        compatible, _ = check_type_compatibility(source_var.type, target_var.type)
        if not compatible:
            errors.append(
                ValidationIssue(
                    "type_mismatch",
                    f"Type mismatch: {source_var.type} -> {target_var.type}",
                    node_id=target.id,
                    edge_id=edge.id,
                )
            )

    def _check_required_inputs(self, node: WorkflowNode, errors: list[ValidationIssue]) -> None:
        if node.type == NodeType.START:
            if not node.outputs:
                errors.append(
                    ValidationIssue(
                        "missing_required_input", "The start node must declare at least one variable", node_id=node.id
                    )
                )
            return

        incoming = self.incoming_edges(node.id)
        if node.type == NodeType.END and not incoming:
            errors.append(
                ValidationIssue("missing_required_input", "The end node needs an incoming edge", node_id=node.id)
            )
        fed_keys = {edge.target_input_key for edge in incoming}
        for variable in node.inputs:
            if variable.required and variable.key not in fed_keys and not variable.has_default:
                errors.append(
                    ValidationIssue(
                        "missing_required_input",
                        f"Missing required input: {variable.name or variable.key}",
                        node_id=node.id,
                        details={"key": variable.key},
                    )
                )

    def resolve_inputs(
        self,
        node_id: str,
        outputs: Mapping[str, Mapping[str, Any]],
        run_input: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Resolve a node's input variables from upstream node outputs.

        The start node reads the run input. Every other node reads, per
        incoming edge, the source's output variable (falling back to the
        source's asset ids), applies the edge transform and finally fills
        unset inputs from declared defaults.

        Args:
            node_id: The node whose inputs are resolved.
            outputs: Node run outputs by node id, each with ``variables`` and ``asset_ids``.
            run_input: The run's start input.

        Returns:
            Mapping of input key to value.
        """
        node = self.get_node(node_id)
        if node is None:
            return {}
        if node.type == NodeType.START:
            return apply_default_inputs(node, run_input or {})

        values: dict[str, Any] = {}
        for edge in self.incoming_edges(node_id):
            source_output = outputs.get(edge.source) or {}
            variables = source_output.get("variables") or {}
            value = variables.get(edge.source_output_key, MISSING)
            asset_ids = source_output.get("asset_ids")
            if value is MISSING and isinstance(asset_ids, list) and asset_ids:
                value = list(asset_ids)
            value = apply_transform(value, self.edge_transform(edge))
            if value is not MISSING and edge.target_input_key:
                values[edge.target_input_key] = value
        return apply_default_inputs(node, values)

    def upstream_asset_ids(self, node_id: str, outputs: Mapping[str, Mapping[str, Any]]) -> list[int]:
        """Collect the asset ids produced by a node's direct predecessors."""
        collected: list[int] = []
        for edge in self.incoming_edges(node_id):
            for asset_id in (outputs.get(edge.source) or {}).get("asset_ids") or []:
                if asset_id not in collected:
                    collected.append(asset_id)
        return collected


def validate_workflow(definition: WorkflowDefinition) -> ValidationResult:
    """Normalize and validate an authored definition without side effects.

    Args:
        definition: The definition as authored.

    Returns:
        The validation result.
    """
    injected = not (definition.has_node_type(NodeType.START) and definition.has_node_type(NodeType.END))
    return WorkflowGraph.from_definition(definition).validate(injected=injected)


def topological_order(definition: WorkflowDefinition) -> list[str]:
    """Return the execution order of a normalized definition's node ids."""
    return WorkflowGraph(definition).topological_order()
