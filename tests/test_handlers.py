"""Tests for the built-in node handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from reelflow.config import EngineConfig
from reelflow.core.context import NodeContext
from reelflow.core.definition import WorkflowNode, WorkflowVariable
from reelflow.core.types import NodeRunStatus, TaskStage, ValueType
from reelflow.core.variables import MISSING
from reelflow.engine.normalizer import normalize_node_variables
from reelflow.exceptions import NodeExecutionError
from reelflow.handlers import (
    BreakpointHandler,
    CharacterImagesHandler,
    EndHandler,
    FinalComposeHandler,
    KeyframesHandler,
    LlmToolHandler,
    ParseScriptHandler,
    ReviewAssetsHandler,
    SceneImageHandler,
    StartHandler,
    VideoHandler,
    build_filename,
)
from reelflow.handlers.generation import collect_reference_urls

if TYPE_CHECKING:
    from reelflow.core.context import Services
    from tests.conftest import FakeGeneration, FakePrompts, FakeStorage


def make_context(
    services: Services,
    node_type: str,
    *,
    config: dict[str, Any] | None = None,
    inputs: dict[str, Any] | None = None,
    outputs: list[WorkflowVariable] | None = None,
    **kwargs: Any,
) -> NodeContext:
    node = normalize_node_variables(
        WorkflowNode(id=f"{node_type}-1", type=node_type, config=config or {}, outputs=outputs or [])
    )
    return NodeContext(
        node=node,
        inputs=inputs or {},
        services=services,
        config=kwargs.pop("engine_config", EngineConfig()),
        run_id=kwargs.pop("run_id", 10),
        task_id=kwargs.pop("task_id", 1),
        task_version_id=kwargs.pop("task_version_id", 2),
        **kwargs,
    )


@pytest.mark.unit
class TestHelpers:
    """Tests for handler helpers."""

    def test_build_filename_is_storage_safe(self) -> None:
        filename = build_filename("Hero shot/1 é", "png")
        assert filename.startswith("Hero_shot_1_")
        assert filename.endswith(".png")
        assert "/" not in filename

    def test_build_filename_truncates_long_prefixes(self) -> None:
        assert len(build_filename("x" * 200, "txt").split("_")[0]) == 50

    def test_build_filename_is_unique_within_a_millisecond(self) -> None:
        names = {build_filename("hero", "png") for _ in range(20)}
        assert len(names) == 20

    def test_collect_reference_urls_flattens_lists(self) -> None:
        values = {
            "a": "https://cdn/1.png",
            "b": ["data:image/png;base64,AA", "plain", ["http://cdn/2.png"]],
            "c": "https://cdn/1.png",
            "d": 3,
        }
        assert collect_reference_urls(values) == ["https://cdn/1.png", "data:image/png;base64,AA", "http://cdn/2.png"]


@pytest.mark.unit
class TestPassthroughHandlers:
    """Tests for start and end handlers."""

    async def test_start_forwards_inputs(self, services: Services) -> None:
        outcome = await StartHandler().execute(make_context(services, "start", inputs={"input": "a hero"}))
        assert outcome.value == {"input": "a hero"}
        assert outcome.bind_asset_ids is False

    async def test_end_forwards_inputs(self, services: Services) -> None:
        outcome = await EndHandler().execute(make_context(services, "end", inputs={"result": "done"}))
        assert outcome.value == {"result": "done"}


@pytest.mark.unit
class TestLlmToolHandler:
    """Tests for LlmToolHandler."""

    async def test_requires_prompt_template(self, services: Services) -> None:
        with pytest.raises(NodeExecutionError, match="LLM tool missing prompt template version"):
            await LlmToolHandler().execute(make_context(services, "llm_tool"))

    async def test_text_generation(
        self,
        services: Services,
        generation: FakeGeneration,
        storage: FakeStorage,
    ) -> None:
        context = make_context(
            services,
            "llm_tool",
            config={"promptTemplateVersionId": 1, "maxTokens": 50},
            inputs={"input": "lighthouses"},
            outputs=[WorkflowVariable(key="answer", type=ValueType.TEXT)],
        )
        outcome = await LlmToolHandler().execute(context)

        [call] = generation.calls_to("generate_text")
        assert call["prompt"] == "Write about lighthouses"
        assert call["max_tokens"] == 50
        assert call["temperature"] == 0.7
        assert outcome.value == "generated text"
        assert outcome.extra["rendered_prompt"] == "Write about lighthouses"
        assert outcome.extra["missing_variables"] == []
        [artifact] = outcome.artifacts
        assert artifact.mime_type == "text/plain; charset=utf-8"
        assert artifact.locator.startswith("memory://tasks/1/versions/2/runs/10/")
        assert storage.objects[artifact.locator] == b"generated text"

    async def test_missing_variables_are_reported(self, services: Services) -> None:
        context = make_context(services, "llm_tool", config={"promptTemplateVersionId": 2})
        outcome = await LlmToolHandler().execute(context)
        assert outcome.extra["missing_variables"] == ["subject"]

    async def test_system_prompt(self, services: Services, generation: FakeGeneration, prompts: FakePrompts) -> None:
        prompts.templates[3] = "You are terse."
        context = make_context(services, "llm_tool", config={"promptTemplateVersionId": 1, "systemPromptVersionId": 3})
        await LlmToolHandler().execute(context)
        assert generation.calls_to("generate_text")[0]["system_prompt"] == "You are terse."

    async def test_json_output_is_parsed(self, services: Services, generation: FakeGeneration) -> None:
        generation.text_response = '{"scenes": 3}'
        context = make_context(
            services,
            "llm_tool",
            config={"promptTemplateVersionId": 1},
            outputs=[WorkflowVariable(key="data", type=ValueType.JSON)],
        )
        outcome = await LlmToolHandler().execute(context)
        assert outcome.value == {"scenes": 3}
        assert outcome.artifacts[0].filename.endswith(".json")

    async def test_unparseable_json_output_is_stored_as_text(
        self, services: Services, generation: FakeGeneration
    ) -> None:
        generation.text_response = "not json"
        context = make_context(
            services,
            "llm_tool",
            config={"promptTemplateVersionId": 1},
            outputs=[WorkflowVariable(key="data", type=ValueType.JSON)],
        )
        outcome = await LlmToolHandler().execute(context)
        assert outcome.value == "not json"
        assert outcome.artifacts[0].filename.endswith(".txt")

    async def test_json_list_output(self, services: Services, generation: FakeGeneration) -> None:
        generation.text_response = '[{"a": 1}, {"a": 2}]'
        context = make_context(
            services,
            "llm_tool",
            config={"promptTemplateVersionId": 1},
            outputs=[WorkflowVariable(key="rows", type=ValueType.LIST_JSON)],
        )
        outcome = await LlmToolHandler().execute(context)
        assert outcome.value == [{"a": 1}, {"a": 2}]
        assert outcome.artifacts[0].mime_type == "application/x-ndjson"

    async def test_url_list_output_copies_each_url(self, services: Services, generation: FakeGeneration) -> None:
        generation.text_response = "https://cdn/a.png\nsome commentary\nhttps://cdn/b.png"
        context = make_context(
            services,
            "llm_tool",
            config={"promptTemplateVersionId": 1, "providerType": "text"},
            outputs=[WorkflowVariable(key="refs", type=ValueType.LIST_ASSET_REF)],
        )
        outcome = await LlmToolHandler().execute(context)
        assert generation.calls_to("generate_image") == []
        assert len(outcome.artifacts) == 2
        assert [artifact.metadata["originalUrl"] for artifact in outcome.artifacts] == [
            "https://cdn/a.png",
            "https://cdn/b.png",
        ]
        assert outcome.value == [artifact.locator for artifact in outcome.artifacts]
        assert outcome.bind_asset_ids is False

    async def test_url_output_copies_the_url(self, services: Services, generation: FakeGeneration) -> None:
        generation.text_response = "  https://cdn/poster.png \n"
        context = make_context(
            services,
            "llm_tool",
            config={"promptTemplateVersionId": 1, "providerType": "text"},
            outputs=[WorkflowVariable(key="poster", type=ValueType.ASSET_REF)],
        )
        outcome = await LlmToolHandler().execute(context)
        [artifact] = outcome.artifacts
        assert artifact.metadata["originalUrl"] == "https://cdn/poster.png"
        assert outcome.value == artifact.locator

    async def test_empty_url_output_leaves_value_unset(self, services: Services, generation: FakeGeneration) -> None:
        generation.text_response = "   "
        context = make_context(
            services,
            "llm_tool",
            config={"promptTemplateVersionId": 1, "providerType": "text"},
            outputs=[WorkflowVariable(key="poster", type=ValueType.ASSET_REF)],
        )
        outcome = await LlmToolHandler().execute(context)
        assert outcome.artifacts == []
        assert outcome.value is MISSING

    async def test_image_provider(self, services: Services, generation: FakeGeneration) -> None:
        context = make_context(
            services,
            "llm_tool",
            config={"promptTemplateVersionId": 1, "providerType": "image", "outputCount": 2},
            inputs={"input": "a dragon", "ref": "https://cdn/style.png"},
        )
        outcome = await LlmToolHandler().execute(context)
        calls = generation.calls_to("generate_image")
        assert len(calls) == 2
        assert calls[0]["refs"] == ["https://cdn/style.png"]
        assert len(outcome.artifacts) == 2
        assert outcome.bind_asset_urls is True
        assert outcome.value == [artifact.locator for artifact in outcome.artifacts]

    async def test_asset_outputs_imply_image_provider(self, services: Services, generation: FakeGeneration) -> None:
        context = make_context(
            services,
            "llm_tool",
            config={"promptTemplateVersionId": 1},
            outputs=[WorkflowVariable(key="art", type=ValueType.ASSET_REF)],
        )
        await LlmToolHandler().execute(context)
        assert generation.calls_to("generate_image")
        assert not generation.calls_to("generate_text")

    async def test_video_provider(self, services: Services, generation: FakeGeneration) -> None:
        context = make_context(services, "llm_tool", config={"promptTemplateVersionId": 1, "providerType": "video"})
        outcome = await LlmToolHandler().execute(context)
        assert len(generation.calls_to("generate_video")) == 1
        assert outcome.artifacts[0].mime_type == "video/mp4"


@pytest.mark.unit
class TestParseScriptHandler:
    """Tests for ParseScriptHandler."""

    async def test_parses_input_script(self, services: Services, generation: FakeGeneration) -> None:
        context = make_context(services, "llm_parse_script", inputs={"script": "INT. LAB - NIGHT"})
        outcome = await ParseScriptHandler().execute(context)
        assert generation.calls_to("parse_script")[0]["text"] == "INT. LAB - NIGHT"
        assert outcome.value == generation.storyboard
        assert outcome.artifacts[0].filename == "storyboard.json"

    async def test_falls_back_to_stored_script(self, services: Services, generation: FakeGeneration) -> None:
        async def load_script() -> str:
            return "EXT. BEACH - DAY"

        context = make_context(services, "llm_parse_script", load_script=load_script)
        await ParseScriptHandler().execute(context)
        assert generation.calls_to("parse_script")[0]["text"] == "EXT. BEACH - DAY"

    async def test_no_script(self, services: Services) -> None:
        async def load_script() -> None:
            return None

        context = make_context(services, "llm_parse_script", load_script=load_script)
        with pytest.raises(NodeExecutionError, match="No script asset found"):
            await ParseScriptHandler().execute(context)

    def test_stage_after(self) -> None:
        assert ParseScriptHandler.stage_after == TaskStage.STORYBOARD_GENERATED


@pytest.mark.unit
class TestImageHandlers:
    """Tests for character, scene and keyframe handlers."""

    async def test_character_images_use_output_count(self, services: Services, generation: FakeGeneration) -> None:
        context = make_context(
            services,
            "generate_character_images",
            config={"outputCount": 3},
            inputs={"prompt": "a knight"},
        )
        outcome = await CharacterImagesHandler().execute(context)
        assert len(generation.calls_to("generate_image")) == 3
        assert generation.calls_to("generate_image")[0]["prompt"] == "a knight"
        assert len(outcome.artifacts) == 3
        assert outcome.artifacts[0].metadata == {"nodeName": "generate_character_images"}

    async def test_scene_image_is_single(self, services: Services) -> None:
        outcome = await SceneImageHandler().execute(make_context(services, "generate_scene_image"))
        assert isinstance(outcome.value, str)
        assert outcome.value == outcome.artifacts[0].locator

    async def test_prompt_falls_back_to_config_when_template_is_incomplete(
        self, services: Services, generation: FakeGeneration
    ) -> None:
        context = make_context(
            services,
            "generate_scene_image",
            config={"promptTemplateVersionId": 2, "prompt": "a castle"},
        )
        await SceneImageHandler().execute(context)
        assert generation.calls_to("generate_image")[0]["prompt"] == "a castle"

    async def test_prompt_from_rendered_template(self, services: Services, generation: FakeGeneration) -> None:
        context = make_context(
            services,
            "generate_scene_image",
            config={"promptTemplateVersionId": 2, "variables": {"subject": "a harbour"}},
        )
        await SceneImageHandler().execute(context)
        assert generation.calls_to("generate_image")[0]["prompt"] == "Draw a harbour"

    async def test_keyframes_mark_generating_stage_first(self, services: Services) -> None:
        stages: list[TaskStage] = []

        async def mark_stage(stage: TaskStage) -> None:
            stages.append(stage)

        await KeyframesHandler().execute(make_context(services, "generate_keyframes", mark_stage=mark_stage))
        assert stages == [TaskStage.KEYFRAME_GENERATING]

    async def test_dry_run_stores_nothing(self, services: Services, storage: FakeStorage) -> None:
        stages: list[TaskStage] = []

        async def mark_stage(stage: TaskStage) -> None:
            stages.append(stage)

        context = make_context(services, "generate_keyframes", mark_stage=mark_stage, dry_run=True)
        outcome = await KeyframesHandler().execute(context)
        assert storage.objects == {}
        assert stages == []
        assert outcome.artifacts[0].locator.startswith("https://cdn.example.com/")

    async def test_provider_failure_propagates(self, services: Services, generation: FakeGeneration) -> None:
        generation.failures["generate_image"] = 1
        with pytest.raises(RuntimeError, match="provider unavailable"):
            await SceneImageHandler().execute(make_context(services, "generate_scene_image"))


@pytest.mark.unit
class TestVideoHandler:
    """Tests for VideoHandler."""

    async def test_default_duration(self, services: Services, generation: FakeGeneration) -> None:
        outcome = await VideoHandler().execute(make_context(services, "generate_video", inputs={"prompt": "chase"}))
        call = generation.calls_to("generate_video")[0]
        assert call["duration"] == 10
        assert call["prompt"] == "chase"
        assert outcome.artifacts[0].metadata["duration"] == 10

    async def test_duration_limit(self, services: Services, generation: FakeGeneration) -> None:
        context = make_context(services, "generate_video", config={"duration": 20})
        with pytest.raises(NodeExecutionError) as exc_info:
            await VideoHandler().execute(context)
        assert exc_info.value.detail == "Video duration exceeds 15s limit"
        assert not generation.calls_to("generate_video")

    async def test_limit_is_configurable(self, services: Services) -> None:
        context = make_context(
            services,
            "generate_video",
            config={"duration": 20},
            engine_config=EngineConfig(max_video_duration=30),
        )
        outcome = await VideoHandler().execute(context)
        assert outcome.artifacts[0].metadata["duration"] == 20


@pytest.mark.unit
class TestFinalComposeHandler:
    """Tests for FinalComposeHandler."""

    async def test_manifest(self, services: Services, storage: FakeStorage) -> None:
        context = make_context(services, "final_compose", inputs={"assets": [4, 5]}, input_asset_ids=[4, 5])
        outcome = await FinalComposeHandler().execute(context)
        [artifact] = outcome.artifacts
        assert artifact.filename == "final.json"
        assert b'"inputAssetIds": [\n    4,\n    5\n  ]' in storage.objects[artifact.locator]


@pytest.mark.unit
class TestHumanGateHandlers:
    """Tests for the review and breakpoint handlers."""

    async def test_review_waits_by_default(self, services: Services) -> None:
        outcome = await ReviewAssetsHandler().execute(make_context(services, "human_review_assets"))
        assert outcome.status == NodeRunStatus.WAITING_HUMAN

    async def test_review_passes_through_when_human_not_required(self, services: Services) -> None:
        context = make_context(
            services,
            "human_review_assets",
            config={"requireHuman": False},
            inputs={"assets": [1, 2]},
            input_asset_ids=[1, 2],
        )
        outcome = await ReviewAssetsHandler().execute(context)
        assert outcome.status == NodeRunStatus.SUCCEEDED
        assert outcome.value == [1, 2]
        assert outcome.asset_ids == [1, 2]

    async def test_breakpoint_waits_with_mode(self, services: Services) -> None:
        context = make_context(services, "human_breakpoint", config={"multiSelect": True})
        outcome = await BreakpointHandler().execute(context)
        assert outcome.status == NodeRunStatus.WAITING_HUMAN
        assert outcome.extra == {"selection_mode": "multiple"}

    async def test_auto_approved_single_selects_first(self, services: Services) -> None:
        context = make_context(
            services,
            "human_breakpoint",
            config={"autoApprove": True},
            inputs={"candidates": ["a", "b"]},
        )
        outcome = await BreakpointHandler().execute(context)
        assert outcome.value == "a"

    async def test_auto_approved_multiple_selects_all(self, services: Services) -> None:
        context = make_context(
            services,
            "human_breakpoint",
            config={"autoApprove": True, "selectionMode": "multiple"},
            inputs={"candidates": "only"},
        )
        outcome = await BreakpointHandler().execute(context)
        assert outcome.value == ["only"]

    async def test_auto_approved_without_candidates(self, services: Services) -> None:
        context = make_context(services, "human_breakpoint", config={"autoApprove": True})
        outcome = await BreakpointHandler().execute(context)
        assert outcome.value is MISSING
