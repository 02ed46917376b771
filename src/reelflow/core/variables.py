"""Typed value model and the coercion rules between value types.

Values cross edges as plain Python data. ``MISSING`` marks the absence of a
value, which is distinct from an explicit ``None``.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from reelflow.core.types import EdgeTransform, ValueType

if TYPE_CHECKING:
    from collections.abc import Sequence

    from reelflow.core.definition import WorkflowNode

__all__ = [
    "MISSING",
    "apply_default_inputs",
    "apply_transform",
    "build_output_variables",
    "check_type_compatibility",
    "coerce_value_for_type",
    "dump_json",
    "is_list_type",
    "list_inner_type",
    "normalize_prompt_variables",
]


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> _Missing:
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> _Missing:
        return self

    def __reduce__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()
"""Sentinel for "no value"."""


def dump_json(value: Any) -> str:
    """Serialize a value to compact JSON text."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def is_list_type(value_type: str) -> bool:
    return value_type.startswith("list<")


def list_inner_type(value_type: str) -> str | None:
    """Return the element type of a list type, or None for scalar types."""
    if not is_list_type(value_type):
        return None
    return value_type[len("list<") : -1]


def check_type_compatibility(source: str, target: str) -> tuple[bool, EdgeTransform | None]:
    """Check whether a value of type ``source`` may feed an input of type ``target``.

    Identical types are compatible as-is. ``json`` and ``text`` are compatible
    in either direction, with the conversion the edge must apply.

    Args:
        source: The producing output's type.
        target: The consuming input's type.

    Returns:
        A tuple of ``(compatible, implied_transform)``.
    """
    if source == target:
        return True, None
    if source == ValueType.JSON and target == ValueType.TEXT:
        return True, EdgeTransform.STRINGIFY
    if source == ValueType.TEXT and target == ValueType.JSON:
        return True, EdgeTransform.PARSE_JSON
    return False, None


def apply_transform(value: Any, transform: str | None) -> Any:
    """Apply an edge transform to a value.

    ``stringify`` serializes any present value. ``parse_json`` parses strings
    and yields ``MISSING`` for malformed JSON; non-string values pass through.
    """
    if value is MISSING or transform is None:
        return value
    if transform == EdgeTransform.STRINGIFY:
        return dump_json(value)
    if transform == EdgeTransform.PARSE_JSON and isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return MISSING
    return value


def _first_list(mapping: Mapping[str, Any], *keys: str) -> list[Any] | None:
    for key in keys:
        candidate = mapping.get(key)
        if isinstance(candidate, list):
            return candidate
    return None


def coerce_value_for_type(
    value_type: str,
    value: Any = MISSING,
    asset_ids: Sequence[int] | None = None,
    asset_urls: Sequence[str] | None = None,
) -> Any:
    """Normalize a produced value to the shape its declared output type expects.

    List outputs prefer stored artifacts over the raw value and wrap scalars.
    Asset references pick the first stored artifact or a url field. ``text``
    outputs JSON-serialize non-strings; ``json`` outputs parse strings when
    possible and keep the raw string otherwise.

    Args:
        value_type: The declared output type.
        value: The handler's primary value.
        asset_ids: Ids of the assets the handler produced, if any.
        asset_urls: Urls of the assets the handler produced, if any.

    Returns:
        The coerced value, or ``MISSING``.
    """
    if value_type == ValueType.LIST_ASSET_REF:
        if asset_urls:
            return list(asset_urls)
        if asset_ids:
            return list(asset_ids)
        if isinstance(value, Mapping):
            nested = _first_list(value, "mediaUrls", "images")
            if nested is not None:
                return nested
        if isinstance(value, list):
            return value
        return [value] if value is not MISSING else []

    if is_list_type(value_type):
        if isinstance(value, list):
            return value
        if asset_ids is not None:
            return list(asset_ids)
        return [value] if value is not MISSING else []

    if value_type == ValueType.ASSET_REF:
        if asset_urls:
            return asset_urls[0]
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        if asset_ids:
            return asset_ids[0]
        if isinstance(value, list):
            return value[0] if value else MISSING
        if isinstance(value, Mapping):
            if isinstance(value.get("url"), str):
                return value["url"]
            nested = _first_list(value, "mediaUrls", "images")
            if nested:
                return nested[0]
        return value

    if value_type == ValueType.TEXT and value is not MISSING and not isinstance(value, str):
        return dump_json(value)

    if value_type == ValueType.JSON and isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value

    return value


def build_output_variables(
    node: WorkflowNode,
    value: Any = MISSING,
    asset_ids: Sequence[int] | None = None,
    asset_urls: Sequence[str] | None = None,
) -> dict[str, Any]:
    """Build a node's output variables from its primary value.

    When the node declares no outputs, a mapping value is returned as-is and any
    other value becomes ``{"output": value}``. Otherwise every declared output
    takes its own key from a mapping value when present; the first output gets
    the coerced primary value and later ones are coerced from nothing.

    Args:
        node: The node whose outputs are being built.
        value: The handler's primary value.
        asset_ids: Ids of the assets the handler produced, if any.
        asset_urls: Urls of the assets the handler produced, if any.

    Returns:
        Mapping of output key to value. Keys whose value is ``MISSING`` are omitted.
    """
    if not node.outputs:
        if isinstance(value, Mapping):
            return dict(value)
        return {"output": value} if value is not MISSING else {}

    variables: dict[str, Any] = {}
    for index, output in enumerate(node.outputs):
        if isinstance(value, Mapping) and output.key in value:
            variables[output.key] = value[output.key]
            continue
        fallback = value if index == 0 else MISSING
        coerced = coerce_value_for_type(output.type, fallback, asset_ids, asset_urls)
        if coerced is not MISSING:
            variables[output.key] = coerced
    return variables


def apply_default_inputs(node: WorkflowNode, values: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Fill inputs that have no value from the node's declared defaults."""
    result = dict(values or {})
    for variable in node.inputs:
        if variable.key not in result and variable.has_default:
            result[variable.key] = variable.default_value
    return result


def normalize_prompt_variables(values: Mapping[str, Any] | None) -> dict[str, str]:
    """Turn resolved inputs into the string mapping prompt rendering expects."""
    normalized: dict[str, str] = {}
    for key, value in (values or {}).items():
        if isinstance(value, str):
            normalized[key] = value
        elif value is None or value is MISSING:
            normalized[key] = ""
        else:
            normalized[key] = dump_json(value)
    return normalized
