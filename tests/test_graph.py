"""Tests for WorkflowGraph validation, ordering and input resolution."""

from __future__ import annotations

from typing import Any

import pytest

from reelflow.core.definition import WorkflowDefinition
from reelflow.core.types import EdgeTransform
from reelflow.engine.graph import WorkflowGraph, topological_order, validate_workflow
from reelflow.engine.normalizer import normalize_workflow


def _definition(nodes: list[dict[str, Any]], edges: list[dict[str, Any]]) -> WorkflowDefinition:
    return WorkflowDefinition.from_lists(nodes, edges)


@pytest.mark.unit
class TestValidateWorkflow:
    """Tests for validate_workflow."""

    def test_valid_graph(self, text_graph: dict[str, Any]) -> None:
        result = validate_workflow(_definition(text_graph["nodes"], text_graph["edges"]))
        assert result.ok
        assert result.errors == []
        assert result.warnings == []

    def test_missing_start_and_end_are_injected_with_warning(self) -> None:
        result = validate_workflow(_definition([{"id": "w", "type": "generate_storyboard"}], []))
        assert "missing_start_or_end" in {issue.code for issue in result.warnings}
        assert "missing_start_or_end" not in result.codes()
        # the injected end node is not connected and the storyboard has no script
        assert "missing_required_input" in result.codes()

    def test_two_start_nodes(self) -> None:
        result = validate_workflow(
            _definition(
                [{"id": "s1", "type": "start"}, {"id": "s2", "type": "start"}, {"id": "e", "type": "end"}],
                [{"source": "s1", "target": "e"}],
            )
        )
        assert "missing_start_or_end" in result.codes()

    def test_duplicate_node_id(self) -> None:
        result = validate_workflow(
            _definition(
                [
                    {"id": "s", "type": "start"},
                    {"id": "w", "type": "generate_storyboard"},
                    {"id": "w", "type": "generate_storyboard"},
                    {"id": "e", "type": "end"},
                ],
                [{"source": "s", "target": "w"}, {"source": "w", "target": "e"}],
            )
        )
        assert "duplicate_node_id" in result.codes()

    def test_unknown_node_type(self) -> None:
        result = validate_workflow(
            _definition(
                [{"id": "s", "type": "start"}, {"id": "t", "type": "teleport"}, {"id": "e", "type": "end"}],
                [{"source": "s", "target": "e"}],
            )
        )
        assert "unknown_node_type" in result.codes()

    def test_duplicate_output_key(self) -> None:
        result = validate_workflow(
            _definition(
                [
                    {"id": "s", "type": "start"},
                    {
                        "id": "w",
                        "type": "llm_tool",
                        "inputs": [{"key": "input"}],
                        "outputs": [{"key": "answer"}, {"key": "answer"}],
                    },
                    {"id": "e", "type": "end"},
                ],
                [{"source": "s", "target": "w"}, {"source": "w", "target": "e"}],
            )
        )
        assert "duplicate_output_key" in result.codes()

    def test_edge_to_missing_node(self) -> None:
        result = validate_workflow(
            _definition(
                [{"id": "s", "type": "start"}, {"id": "e", "type": "end"}],
                [{"source": "s", "target": "e"}, {"source": "s", "target": "ghost"}],
            )
        )
        assert "dangling_edge" in result.codes()

    def test_edge_out_of_end_and_into_start(self) -> None:
        result = validate_workflow(
            _definition(
                [{"id": "s", "type": "start"}, {"id": "e", "type": "end"}],
                [{"source": "s", "target": "e"}, {"source": "e", "target": "s"}],
            )
        )
        messages = [issue.message for issue in result.errors if issue.code == "dangling_edge"]
        assert "The end node cannot be an edge source" in messages
        assert "The start node cannot be an edge target" in messages

    def test_edge_to_undeclared_variable(self) -> None:
        result = validate_workflow(
            _definition(
                [{"id": "s", "type": "start"}, {"id": "e", "type": "end"}],
                [{"source": "s", "target": "e", "sourceOutputKey": "nope"}],
            )
        )
        assert "dangling_edge" in result.codes()

    def test_type_mismatch(self) -> None:
        result = validate_workflow(
            _definition(
                [
                    {"id": "s", "type": "start"},
                    {"id": "c", "type": "generate_character_images"},
                    {"id": "e", "type": "end"},
                ],
                [{"source": "s", "target": "c"}, {"source": "c", "target": "e"}],
            )
        )
        assert result.codes() == {"type_mismatch"}

    def test_json_feeding_text_is_compatible(self) -> None:
        result = validate_workflow(
            _definition(
                [
                    {"id": "s", "type": "start", "inputs": [{"key": "payload", "type": "json"}]},
                    {"id": "e", "type": "end"},
                ],
                [{"source": "s", "target": "e"}],
            )
        )
        assert result.ok

    def test_missing_required_input_and_unreachable_node(self) -> None:
        result = validate_workflow(
            _definition(
                [{"id": "s", "type": "start"}, {"id": "v", "type": "generate_video"}, {"id": "e", "type": "end"}],
                [{"source": "s", "target": "e"}],
            )
        )
        assert result.codes() == {"missing_required_input"}
        assert [issue.node_id for issue in result.warnings if issue.code == "unreachable_nodes"] == ["v"]

    def test_declared_required_input_without_edge(self) -> None:
        result = validate_workflow(
            _definition(
                [
                    {"id": "s", "type": "start"},
                    {
                        "id": "tool",
                        "type": "llm_tool",
                        "inputs": [{"key": "data", "type": "text", "required": True}],
                        "outputs": [{"key": "answer", "type": "text"}],
                    },
                    {"id": "e", "type": "end"},
                ],
                [{"source": "s", "target": "e"}],
            )
        )
        assert not result.ok
        missing = [issue for issue in result.errors if issue.code == "missing_required_input"]
        assert [issue.node_id for issue in missing] == ["tool"]

    def test_required_input_with_default_is_satisfied(self) -> None:
        result = validate_workflow(
            _definition(
                [
                    {"id": "s", "type": "start"},
                    {
                        "id": "v",
                        "type": "generate_video",
                        "inputs": [{"key": "prompt", "required": True, "defaultValue": "teaser"}],
                    },
                    {
                        "id": "e",
                        "type": "end",
                        "inputs": [{"key": "result", "type": "text"}, {"key": "video", "type": "asset_ref"}],
                    },
                ],
                [{"source": "s", "target": "e"}, {"source": "v", "target": "e", "targetInputKey": "video"}],
            )
        )
        assert "missing_required_input" not in result.codes()

    def test_end_without_incoming_edge(self) -> None:
        result = validate_workflow(_definition([{"id": "s", "type": "start"}, {"id": "e", "type": "end"}], []))
        assert "missing_required_input" in result.codes()

    def test_start_without_variables(self) -> None:
        result = validate_workflow(
            _definition(
                [{"id": "s", "type": "start", "inputs": []}, {"id": "e", "type": "end"}],
                [{"source": "s", "target": "e"}],
            )
        )
        # an empty declaration falls back to the default input
        assert result.ok

    def test_cycle(self) -> None:
        result = validate_workflow(
            _definition(
                [
                    {"id": "s", "type": "start"},
                    {"id": "a", "type": "generate_storyboard"},
                    {"id": "b", "type": "generate_storyboard"},
                    {"id": "e", "type": "end"},
                ],
                [
                    {"source": "s", "target": "a"},
                    {"source": "a", "target": "b"},
                    {"source": "b", "target": "a"},
                    {"source": "b", "target": "e"},
                ],
            )
        )
        assert "cycles_not_allowed" in result.codes()

    def test_findings_accumulate(self) -> None:
        result = validate_workflow(
            _definition(
                [
                    {"id": "s", "type": "start"},
                    {"id": "t", "type": "teleport"},
                    {"id": "c", "type": "generate_character_images"},
                    {"id": "e", "type": "end"},
                ],
                [{"source": "s", "target": "c"}, {"source": "c", "target": "e"}, {"source": "c", "target": "ghost"}],
            )
        )
        assert {"unknown_node_type", "type_mismatch", "dangling_edge"} <= result.codes()


@pytest.mark.unit
class TestTopologicalOrder:
    """Tests for execution ordering."""

    def test_edges_point_forward(self) -> None:
        definition = normalize_workflow(
            _definition(
                [
                    {"id": "e", "type": "end"},
                    {"id": "b", "type": "generate_storyboard"},
                    {"id": "s", "type": "start"},
                    {"id": "a", "type": "generate_storyboard"},
                ],
                [
                    {"source": "s", "target": "a"},
                    {"source": "a", "target": "b"},
                    {"source": "b", "target": "e"},
                ],
            )
        )
        assert topological_order(definition) == ["s", "a", "b", "e"]

    def test_ties_keep_declaration_order(self) -> None:
        definition = normalize_workflow(
            _definition(
                [
                    {"id": "s", "type": "start"},
                    {"id": "x", "type": "generate_storyboard"},
                    {"id": "y", "type": "generate_storyboard"},
                    {"id": "e", "type": "end"},
                ],
                [
                    {"source": "s", "target": "x"},
                    {"source": "s", "target": "y"},
                    {"source": "x", "target": "e"},
                ],
            )
        )
        assert topological_order(definition) == ["s", "x", "y", "e"]

    def test_cycle_falls_back_to_declaration_order(self) -> None:
        definition = normalize_workflow(
            _definition(
                [
                    {"id": "s", "type": "start"},
                    {"id": "a", "type": "generate_storyboard"},
                    {"id": "b", "type": "generate_storyboard"},
                    {"id": "e", "type": "end"},
                ],
                [{"source": "a", "target": "b"}, {"source": "b", "target": "a"}],
            )
        )
        assert topological_order(definition) == ["s", "a", "b", "e"]


@pytest.mark.unit
class TestResolveInputs:
    """Tests for WorkflowGraph.resolve_inputs."""

    def test_start_reads_run_input_and_defaults(self) -> None:
        graph = WorkflowGraph.from_definition(
            _definition(
                [
                    {"id": "s", "type": "start", "inputs": [{"key": "topic"}, {"key": "tone", "defaultValue": "dry"}]},
                    {"id": "e", "type": "end"},
                ],
                [{"source": "s", "target": "e"}],
            )
        )
        assert graph.resolve_inputs("s", {}, {"topic": "space"}) == {"topic": "space", "tone": "dry"}

    def test_json_edge_is_stringified(self) -> None:
        graph = WorkflowGraph.from_definition(
            _definition(
                [
                    {"id": "s", "type": "start", "inputs": [{"key": "payload", "type": "json"}]},
                    {"id": "w", "type": "generate_storyboard"},
                    {"id": "e", "type": "end"},
                ],
                [{"source": "s", "target": "w"}, {"source": "w", "target": "e"}],
            )
        )
        [edge] = graph.incoming_edges("w")
        assert graph.edge_transform(edge) == EdgeTransform.STRINGIFY
        outputs = {"s": {"variables": {"payload": {"scene": 1}}, "asset_ids": []}}
        assert graph.resolve_inputs("w", outputs) == {"script": '{"scene":1}'}

    def test_malformed_json_leaves_input_unset(self) -> None:
        graph = WorkflowGraph.from_definition(
            _definition(
                [
                    {"id": "s", "type": "start"},
                    {"id": "w", "type": "llm_tool", "inputs": [{"key": "data", "type": "json"}]},
                    {"id": "e", "type": "end"},
                ],
                [{"source": "s", "target": "w"}],
            )
        )
        outputs = {"s": {"variables": {"input": "{broken"}, "asset_ids": []}}
        assert graph.resolve_inputs("w", outputs) == {}

    def test_asset_ids_stand_in_for_missing_variables(self) -> None:
        graph = WorkflowGraph.from_definition(
            _definition(
                [
                    {"id": "s", "type": "start"},
                    {"id": "c", "type": "generate_character_images"},
                    {"id": "r", "type": "human_review_assets"},
                    {"id": "e", "type": "end"},
                ],
                [{"source": "s", "target": "c"}, {"source": "c", "target": "r"}],
            )
        )
        outputs = {"c": {"variables": {}, "asset_ids": [7, 8]}}
        assert graph.resolve_inputs("r", outputs) == {"assets": [7, 8]}
        assert graph.upstream_asset_ids("r", outputs) == [7, 8]

    def test_unknown_node(self) -> None:
        graph = WorkflowGraph.from_definition(_definition([], []))
        assert graph.resolve_inputs("ghost", {}) == {}
