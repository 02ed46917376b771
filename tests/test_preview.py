"""Tests for node and workflow dry runs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from reelflow.config import EngineConfig
from reelflow.core.definition import WorkflowDefinition
from reelflow.engine import preview

if TYPE_CHECKING:
    from reelflow.core.context import Services
    from tests.conftest import FakeGeneration, FakeStorage


def _definition(graph: dict[str, list[dict[str, Any]]]) -> WorkflowDefinition:
    return WorkflowDefinition.from_lists(graph["nodes"], graph["edges"])


@pytest.mark.unit
class TestNodePreview:
    """Tests for dry-running a single node."""

    async def test_llm_tool(self, services: Services, storage: FakeStorage) -> None:
        result = await preview.test_node(
            "llm_tool",
            services,
            config={"promptTemplateVersionId": 1},
            inputs={"input": "owls"},
        )
        assert result.error is None
        assert result.node_id == "test-node"
        assert result.outputs["output"] == "generated text"
        assert result.outputs["rendered_prompt"] == "Write about owls"
        assert storage.objects == {}

    async def test_failure_is_reported(self, services: Services) -> None:
        result = await preview.test_node("generate_video", services, config={"duration": 20})
        assert result.outputs is None
        assert result.error == "Video duration exceeds 15s limit"

    async def test_engine_config_is_honoured(self, services: Services) -> None:
        result = await preview.test_node(
            "generate_video",
            services,
            config={"duration": 20},
            engine_config=EngineConfig(max_video_duration=60),
        )
        assert result.error is None
        assert result.outputs["video"].startswith("https://cdn.example.com/video-")

    async def test_human_gate_resolves(self, services: Services) -> None:
        result = await preview.test_node("human_breakpoint", services, inputs={"candidates": ["x", "y"]})
        assert result.outputs == {"selected": "x"}

    async def test_unknown_node_type(self, services: Services) -> None:
        result = await preview.test_node("teleport", services)
        assert result.outputs is None
        assert result.error

    async def test_to_dict(self, services: Services) -> None:
        result = await preview.test_node("start", services, inputs={"input": "hi"})
        payload = result.to_dict()
        assert payload["nodeType"] == "start"
        assert payload["outputs"] == {"input": "hi"}
        assert set(payload) == {"nodeId", "nodeType", "inputs", "outputs", "error", "durationMs"}


@pytest.mark.unit
class TestWorkflowPreview:
    """Tests for dry-running a whole graph."""

    async def test_text_graph(self, services: Services, text_graph: dict[str, Any], storage: FakeStorage) -> None:
        result = await preview.test_workflow(_definition(text_graph), services, start_inputs={"input": "tides"})
        assert result.ok
        assert result.end_node_id == "end"
        assert [node.node_id for node in result.node_results] == ["start", "writer", "end"]
        assert result.final_output == {"result": "generated text"}
        assert storage.objects == {}

    async def test_human_gates_auto_approve(
        self,
        services: Services,
        breakpoint_graph: dict[str, Any],
        generation: FakeGeneration,
        storage: FakeStorage,
    ) -> None:
        result = await preview.test_workflow(_definition(breakpoint_graph), services, start_inputs={"input": "a knight"})
        assert result.ok
        assert len(generation.calls_to("generate_image")) == 2
        assert result.final_output == {"result": "https://cdn.example.com/image-1.png"}
        assert storage.objects == {}

    async def test_stops_at_first_failure(
        self,
        services: Services,
        text_graph: dict[str, Any],
        generation: FakeGeneration,
    ) -> None:
        generation.failures["generate_text"] = 1
        result = await preview.test_workflow(_definition(text_graph), services, start_inputs={"input": "tides"})
        assert not result.ok
        assert result.failed_node_id == "writer"
        assert result.error == "generate_text provider unavailable"
        assert [node.node_id for node in result.node_results] == ["start", "writer"]
        assert result.final_output == {}

    async def test_to_dict(self, services: Services, text_graph: dict[str, Any]) -> None:
        result = await preview.test_workflow(_definition(text_graph), services)
        payload = result.to_dict()
        assert payload["ok"] is True
        assert payload["endNodeId"] == "end"
        assert payload["nodeResults"][0]["nodeId"] == "start"
