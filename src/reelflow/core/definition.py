"""Workflow definition model.

A workflow is an ordered list of typed nodes connected by edges that map one
node's output variable onto another node's input variable. Definitions are
parsed from, and serialized back to, the JSON document stored on a template
version. Both the editor's camelCase shape (with variables nested under
``data``) and a flat snake_case shape are accepted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from reelflow.core.types import EdgeTransform, NodeType, ValueType
from reelflow.core.variables import MISSING

__all__ = [
    "DEFAULT_VARIABLES",
    "ValidationIssue",
    "ValidationResult",
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowNode",
    "WorkflowVariable",
    "default_variables",
]


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class WorkflowVariable:
    """A typed input or output slot of a node.

    Attributes:
        key: Identifier of the slot, unique within the node's inputs or outputs.
        type: The value type, one of :class:`ValueType`.
        name: Display name.
        required: Whether the slot must be fed by an edge or a default.
        default_value: Value used when nothing feeds the slot. ``MISSING`` means
            no default; ``None`` is a valid default.
    """

    key: str
    type: str = ValueType.TEXT
    name: str | None = None
    required: bool = False
    default_value: Any = MISSING

    @property
    def has_default(self) -> bool:
        return self.default_value is not MISSING

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowVariable:
        if "defaultValue" in data:
            default = data["defaultValue"]
        else:
            default = data.get("default_value", MISSING)
        return cls(
            key=data["key"],
            type=data.get("type") or ValueType.TEXT,
            name=data.get("name"),
            required=bool(data.get("required", False)),
            default_value=default,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"key": self.key, "type": str(self.type), "required": self.required}
        if self.name is not None:
            result["name"] = self.name
        if self.has_default:
            result["defaultValue"] = self.default_value
        return result


@dataclass
class WorkflowNode:
    """A node of a workflow graph.

    Attributes:
        id: Identifier, unique within the graph.
        type: The node type. Unknown types are preserved so validation can report them.
        label: Display label.
        position: Editor coordinates; presentational only.
        config: Type-specific settings (prompt template ids, counts, gate options).
        inputs: Declared input variables.
        outputs: Declared output variables.
        tool_id: Optional reference to a reusable node tool.
    """

    id: str
    type: str
    label: str | None = None
    position: dict[str, float] = field(default_factory=lambda: {"x": 0.0, "y": 0.0})
    config: dict[str, Any] = field(default_factory=dict)
    inputs: list[WorkflowVariable] = field(default_factory=list)
    outputs: list[WorkflowVariable] = field(default_factory=list)
    tool_id: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowNode:
        payload = data.get("data") or {}
        node_type = _pick(data, "type", default=None) or _pick(payload, "nodeType", "node_type", default="")
        inputs = _pick(payload, "inputs", default=None)
        if inputs is None:
            inputs = data.get("inputs") or []
        outputs = _pick(payload, "outputs", default=None)
        if outputs is None:
            outputs = data.get("outputs") or []
        position = data.get("position") or {}
        return cls(
            id=str(data["id"]),
            type=node_type,
            label=_pick(data, "label", default=None) or payload.get("label"),
            position={"x": float(position.get("x", 0)), "y": float(position.get("y", 0))},
            config=dict(_pick(payload, "config", default=None) or data.get("config") or {}),
            inputs=[WorkflowVariable.from_dict(item) for item in inputs],
            outputs=[WorkflowVariable.from_dict(item) for item in outputs],
            tool_id=_pick(payload, "toolId", "tool_id", default=None) or data.get("tool_id"),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "config": dict(self.config),
            "inputs": [variable.to_dict() for variable in self.inputs],
            "outputs": [variable.to_dict() for variable in self.outputs],
            "nodeType": str(self.type),
        }
        if self.label is not None:
            payload["label"] = self.label
        if self.tool_id is not None:
            payload["toolId"] = self.tool_id
        return {"id": self.id, "type": str(self.type), "position": dict(self.position), "data": payload}

    @property
    def display_name(self) -> str:
        return self.label or self.config.get("label") or str(self.type) or self.id

    def get_input(self, key: str | None) -> WorkflowVariable | None:
        return next((variable for variable in self.inputs if variable.key == key), None)

    def get_output(self, key: str | None) -> WorkflowVariable | None:
        return next((variable for variable in self.outputs if variable.key == key), None)


@dataclass
class WorkflowEdge:
    """A connection from one node's output variable to another node's input variable.

    Attributes:
        id: Identifier of the edge.
        source: Producing node id.
        target: Consuming node id.
        source_output_key: Output variable of the source; resolved by normalization when omitted.
        target_input_key: Input variable of the target; resolved by normalization when omitted.
        transform: Optional value conversion applied in transit.
        source_handle: Editor handle id, used as the source key when no key is given.
        target_handle: Editor handle id, used as the target key when no key is given.
    """

    id: str
    source: str
    target: str
    source_output_key: str | None = None
    target_input_key: str | None = None
    transform: EdgeTransform | None = None
    source_handle: str | None = None
    target_handle: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowEdge:
        transform = data.get("transform")
        return cls(
            id=str(data.get("id") or f"{data['source']}->{data['target']}"),
            source=str(data["source"]),
            target=str(data["target"]),
            source_output_key=_pick(data, "sourceOutputKey", "source_output_key"),
            target_input_key=_pick(data, "targetInputKey", "target_input_key"),
            transform=EdgeTransform(transform) if transform else None,
            source_handle=_pick(data, "sourceHandle", "source_handle"),
            target_handle=_pick(data, "targetHandle", "target_handle"),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"id": self.id, "source": self.source, "target": self.target}
        if self.source_output_key is not None:
            result["sourceOutputKey"] = self.source_output_key
        if self.target_input_key is not None:
            result["targetInputKey"] = self.target_input_key
        if self.transform is not None:
            result["transform"] = str(self.transform)
        if self.source_handle is not None:
            result["sourceHandle"] = self.source_handle
        if self.target_handle is not None:
            result["targetHandle"] = self.target_handle
        return result


@dataclass
class WorkflowDefinition:
    """The node and edge lists of one template version."""

    nodes: list[WorkflowNode] = field(default_factory=list)
    edges: list[WorkflowEdge] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowDefinition:
        return cls.from_lists(data.get("nodes") or [], data.get("edges") or [])

    @classmethod
    def from_lists(cls, nodes: list[dict[str, Any]], edges: list[dict[str, Any]]) -> WorkflowDefinition:
        return cls(
            nodes=[WorkflowNode.from_dict(node) for node in nodes],
            edges=[WorkflowEdge.from_dict(edge) for edge in edges],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }

    def get_node(self, node_id: str) -> WorkflowNode | None:
        return next((node for node in self.nodes if node.id == node_id), None)

    def has_node_type(self, node_type: NodeType) -> bool:
        return any(node.type == node_type for node in self.nodes)


@dataclass
class ValidationIssue:
    """A single validation finding.

    Attributes:
        code: Machine-readable issue code such as ``dangling_edge``.
        message: Human-readable description.
        node_id: The node the issue concerns, if any.
        edge_id: The edge the issue concerns, if any.
        details: Extra structured context.
    """

    code: str
    message: str
    node_id: str | None = None
    edge_id: str | None = None
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.node_id is not None:
            result["nodeId"] = self.node_id
        if self.edge_id is not None:
            result["edgeId"] = self.edge_id
        if self.details:
            result["details"] = self.details
        return result


@dataclass
class ValidationResult:
    """Outcome of validating a graph; ``ok`` is true when there are no errors."""

    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def codes(self) -> set[str]:
        return {issue.code for issue in self.errors}

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
        }


def _var(key: str, value_type: ValueType, name: str) -> WorkflowVariable:
    return WorkflowVariable(key=key, type=value_type, name=name, required=True)


DEFAULT_VARIABLES: dict[NodeType, tuple[tuple[tuple[str, ValueType, str], ...], tuple[tuple[str, ValueType, str], ...]]] = {
    NodeType.START: ((("input", ValueType.TEXT, "Input text"),), ()),
    NodeType.END: ((("result", ValueType.TEXT, "Final output"),), (("result", ValueType.TEXT, "Final output"),)),
    NodeType.LLM_TOOL: ((), ()),
    NodeType.LLM_PARSE_SCRIPT: (
        (("script", ValueType.TEXT, "Script"),),
        (("storyboard", ValueType.TEXT, "Parsed storyboard"),),
    ),
    NodeType.GENERATE_STORYBOARD: (
        (("script", ValueType.TEXT, "Script"),),
        (("storyboard", ValueType.TEXT, "Storyboard"),),
    ),
    NodeType.GENERATE_CHARACTER_IMAGES: (
        (("prompt", ValueType.TEXT, "Character prompt"),),
        (("images", ValueType.LIST_ASSET_REF, "Character images"),),
    ),
    NodeType.HUMAN_REVIEW_ASSETS: (
        (("assets", ValueType.LIST_ASSET_REF, "Candidate assets"),),
        (("assets", ValueType.LIST_ASSET_REF, "Approved assets"),),
    ),
    NodeType.HUMAN_BREAKPOINT: (
        (("candidates", ValueType.LIST_TEXT, "Candidates"),),
        (("selected", ValueType.TEXT, "Selection"),),
    ),
    NodeType.GENERATE_SCENE_IMAGE: (
        (("prompt", ValueType.TEXT, "Scene prompt"),),
        (("image", ValueType.ASSET_REF, "Scene image"),),
    ),
    NodeType.GENERATE_KEYFRAMES: (
        (("prompt", ValueType.TEXT, "Keyframe prompt"),),
        (("frames", ValueType.LIST_ASSET_REF, "Keyframes"),),
    ),
    NodeType.GENERATE_VIDEO: (
        (("prompt", ValueType.TEXT, "Video prompt"),),
        (("video", ValueType.ASSET_REF, "Video"),),
    ),
    NodeType.FINAL_COMPOSE: (
        (("assets", ValueType.LIST_ASSET_REF, "Composition assets"),),
        (("final", ValueType.ASSET_REF, "Final video"),),
    ),
}
"""Registered input and output declarations per node type, as ``(key, type, name)`` triples."""


def default_variables(node_type: str) -> tuple[list[WorkflowVariable], list[WorkflowVariable]]:
    """Return fresh copies of a node type's default inputs and outputs.

    Unknown node types have no defaults.
    """
    try:
        inputs, outputs = DEFAULT_VARIABLES[NodeType(node_type)]
    except ValueError:
        return [], []
    return [_var(*entry) for entry in inputs], [_var(*entry) for entry in outputs]
