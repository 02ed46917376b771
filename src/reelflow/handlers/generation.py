"""Handlers that call the generation back end.

Each handler renders or resolves its prompt, calls the generation service and
writes what it produced to storage. The executor turns the stored artifacts
into assets and binds them to the node's output variables.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from reelflow.core.context import NodeOutcome
from reelflow.core.types import NodeType, TaskStage, ValueType
from reelflow.core.variables import MISSING, dump_json
from reelflow.exceptions import NodeExecutionError
from reelflow.handlers.base import BaseNodeHandler, build_filename

if TYPE_CHECKING:
    from reelflow.core.context import NodeContext, StoredArtifact

__all__ = [
    "CharacterImagesHandler",
    "FinalComposeHandler",
    "KeyframesHandler",
    "LlmToolHandler",
    "ParseScriptHandler",
    "SceneImageHandler",
    "VideoHandler",
    "collect_reference_urls",
]

logger = logging.getLogger(__name__)

_JSON_MIME = "application/json"
_JSONL_MIME = "application/x-ndjson"
_TEXT_MIME = "text/plain; charset=utf-8"
_MEDIA_PROVIDERS = ("image", "video")


def collect_reference_urls(values: dict[str, Any]) -> list[str]:
    """Collect every url-looking string among input values, flattening lists."""
    urls: list[str] = []
    stack = list(values.values())
    while stack:
        value = stack.pop(0)
        if isinstance(value, list):
            stack[0:0] = value
        elif isinstance(value, str) and value.startswith(("http://", "https://", "data:")) and value not in urls:
            urls.append(value)
    return urls


def _locators(artifacts: list[StoredArtifact]) -> list[str]:
    return [artifact.locator for artifact in artifacts]


class LlmToolHandler(BaseNodeHandler):
    """Run a configurable LLM tool.

    The node's ``config`` must carry ``promptTemplateVersionId``. When the
    tool produces media (``config.providerType`` of ``image`` or ``video``, or
    asset reference outputs with no provider type set) the rendered prompt is
    sent to image or video generation ``outputCount`` times. Otherwise the
    rendered prompt goes to text generation and the answer is stored in the
    shape its first output type declares.
    """

    node_type = NodeType.LLM_TOOL

    def _provider_type(self, context: NodeContext) -> str:
        configured = context.node_config.get("providerType")
        if configured:
            return str(configured)
        if any(output.type in (ValueType.ASSET_REF, ValueType.LIST_ASSET_REF) for output in context.node.outputs):
            return "image"
        return "text"

    async def run(self, context: NodeContext) -> NodeOutcome:
        node = context.node
        config = context.node_config
        template_version_id = config.get("promptTemplateVersionId")
        if not template_version_id:
            raise NodeExecutionError(node.id, "LLM tool missing prompt template version")

        prompt, missing = await self.render_template(context, template_version_id, context.inputs)
        if missing:
            logger.debug("Node %s rendered with missing variables: %s", node.id, missing)
        system_prompt = None
        if config.get("systemPromptVersionId"):
            system_prompt, _ = await self.render_template(context, config["systemPromptVersionId"], context.inputs)

        provider_type = self._provider_type(context)
        if provider_type in _MEDIA_PROVIDERS:
            return await self._generate_media(context, prompt, provider_type)

        text = await context.services.generation.generate_text(
            prompt,
            config.get("model"),
            system_prompt=system_prompt,
            max_tokens=config.get("maxTokens", context.config.llm_max_tokens),
            temperature=config.get("temperature", context.config.llm_temperature),
        )
        return await self._store_text(context, text, extra={"rendered_prompt": prompt, "missing_variables": missing})

    async def _generate_media(self, context: NodeContext, prompt: str, provider_type: str) -> NodeOutcome:
        config = context.node_config
        refs = collect_reference_urls(context.inputs)
        count = int(config.get("outputCount") or context.config.default_image_count)
        if provider_type == "image":
            artifacts = await self.generate_images(context, prompt, count, refs)
        else:
            artifacts = []
            for _ in range(count):
                media = await context.services.generation.generate_video(prompt, config.get("model"), refs or None)
                if not media:
                    raise NodeExecutionError(context.node.id, "Generation provider returned no media")
                artifacts.append(await self.store_media(context, media[0], "video"))
        urls = _locators(artifacts)
        return NodeOutcome(value=urls, artifacts=artifacts, bind_asset_urls=True, extra={"rendered_prompt": prompt})

    async def _store_text(self, context: NodeContext, text: str, extra: dict[str, Any]) -> NodeOutcome:
        node = context.node
        name = node.display_name
        output_type = node.outputs[0].type if node.outputs else ValueType.TEXT
        artifacts: list[StoredArtifact] = []
        value: Any = text

        if output_type == ValueType.JSON:
            try:
                value = json.loads(text)
            except ValueError:
                artifacts.append(await self._store_plain(context, text))
            else:
                content = json.dumps(value, ensure_ascii=False, indent=2)
                artifacts.append(await context.store(content.encode(), build_filename(name, "json"), mime_type=_JSON_MIME))
        elif output_type == ValueType.LIST_JSON:
            try:
                parsed = json.loads(text)
            except ValueError:
                artifacts.append(await self._store_plain(context, text))
            else:
                value = parsed if isinstance(parsed, list) else [parsed]
                content = "\n".join(dump_json(item) for item in value)
                artifacts.append(
                    await context.store(content.encode(), build_filename(name, "jsonl"), mime_type=_JSONL_MIME)
                )
        elif output_type == ValueType.ASSET_REF:
            value = MISSING
            if text.strip():
                artifact = await context.store(text.strip(), build_filename(name, "bin"), metadata={"originalUrl": text.strip()})
                artifacts.append(artifact)
                value = artifact.locator
        elif output_type == ValueType.LIST_ASSET_REF:
            try:
                parsed = json.loads(text)
                urls = parsed if isinstance(parsed, list) else [parsed]
            except ValueError:
                urls = [line.strip() for line in text.splitlines() if line.strip().startswith("http")]
            value = []
            for url in urls:
                if isinstance(url, str) and url.strip():
                    artifact = await context.store(url.strip(), build_filename(name, "bin"), metadata={"originalUrl": url})
                    artifacts.append(artifact)
                    value.append(artifact.locator)
        else:
            artifacts.append(await self._store_plain(context, text))

        return NodeOutcome(value=value, artifacts=artifacts, bind_asset_ids=False, extra=extra)

    async def _store_plain(self, context: NodeContext, text: str) -> StoredArtifact:
        return await context.store(text.encode(), build_filename(context.node.display_name, "txt"), mime_type=_TEXT_MIME)


class ParseScriptHandler(BaseNodeHandler):
    """Parse a script into a storyboard and store it as ``storyboard.json``.

    The script comes from the ``script``, ``input`` or ``text`` input, else
    from the task version's latest original script.
    """

    node_type = NodeType.LLM_PARSE_SCRIPT
    stage_after = TaskStage.STORYBOARD_GENERATED

    async def run(self, context: NodeContext) -> NodeOutcome:
        script = next(
            (
                context.inputs[key]
                for key in ("script", "input", "text")
                if isinstance(context.inputs.get(key), str) and context.inputs[key]
            ),
            None,
        )
        if script is None and context.load_script is not None:
            script = await context.load_script()
        if not script:
            raise NodeExecutionError(context.node.id, "No script asset found")

        parsed = await context.services.generation.parse_script(script, context.node_config)
        content = json.dumps(parsed, ensure_ascii=False, indent=2).encode()
        artifact = await context.store(content, "storyboard.json", mime_type=_JSON_MIME)
        return NodeOutcome(value=parsed, artifacts=[artifact])


class _ImageHandler(BaseNodeHandler):
    fallback_prompt: str = "Image"
    single: bool = False

    def image_count(self, context: NodeContext) -> int:
        return 1

    async def run(self, context: NodeContext) -> NodeOutcome:
        prompt = await self.resolve_prompt(context, self.fallback_prompt)
        artifacts = await self.generate_images(context, prompt, self.image_count(context))
        urls = _locators(artifacts)
        value = urls[0] if self.single and urls else urls
        return NodeOutcome(value=value, artifacts=artifacts, bind_asset_urls=True)


class CharacterImagesHandler(_ImageHandler):
    """Generate ``config.outputCount`` character design images."""

    node_type = NodeType.GENERATE_CHARACTER_IMAGES
    stage_after = TaskStage.CHARACTER_DESIGNED
    fallback_prompt = "Character design"

    def image_count(self, context: NodeContext) -> int:
        return int(context.node_config.get("outputCount") or context.config.default_image_count)


class SceneImageHandler(_ImageHandler):
    node_type = NodeType.GENERATE_SCENE_IMAGE
    stage_after = TaskStage.SCENE_GENERATED
    fallback_prompt = "Scene image"
    single = True


class KeyframesHandler(_ImageHandler):
    node_type = NodeType.GENERATE_KEYFRAMES
    stage_before = TaskStage.KEYFRAME_GENERATING
    stage_after = TaskStage.KEYFRAME_COMPLETED
    fallback_prompt = "Keyframe"


class VideoHandler(BaseNodeHandler):
    """Generate a storyboard video.

    ``config.duration`` defaults to the engine's default duration and may not
    exceed its limit.
    """

    node_type = NodeType.GENERATE_VIDEO
    stage_before = TaskStage.VIDEO_GENERATING
    stage_after = TaskStage.VIDEO_COMPLETED

    async def run(self, context: NodeContext) -> NodeOutcome:
        prompt = await self.resolve_prompt(context, "Storyboard video")
        duration = int(context.node_config.get("duration") or context.config.default_video_duration)
        if duration > context.config.max_video_duration:
            raise NodeExecutionError(
                context.node.id, f"Video duration exceeds {context.config.max_video_duration}s limit"
            )
        media = await context.services.generation.generate_video(
            prompt, context.node_config.get("model"), duration=duration
        )
        if not media:
            raise NodeExecutionError(context.node.id, "Generation provider returned no media")
        artifact = await self.store_media(context, media[0], "video")
        artifact.metadata["duration"] = duration
        return NodeOutcome(artifacts=[artifact])


class FinalComposeHandler(BaseNodeHandler):
    """Store a composition manifest of the assets reaching the node."""

    node_type = NodeType.FINAL_COMPOSE
    stage_before = TaskStage.FINAL_COMPOSING

    async def run(self, context: NodeContext) -> NodeOutcome:
        primary = context.primary_input()
        manifest = {
            "status": "final_compose",
            "assets": primary if primary is not MISSING else [],
            "inputAssetIds": list(context.input_asset_ids),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        content = json.dumps(manifest, ensure_ascii=False, indent=2).encode()
        artifact = await context.store(content, "final.json", mime_type=_JSON_MIME)
        return NodeOutcome(artifacts=[artifact])
