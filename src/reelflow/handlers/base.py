"""Base node handler implementation for reelflow."""

from __future__ import annotations

import re
import time
from uuid import uuid4
from typing import TYPE_CHECKING, Any

from reelflow.core.variables import normalize_prompt_variables
from reelflow.exceptions import NodeExecutionError

if TYPE_CHECKING:
    from reelflow.core.context import NodeContext, NodeOutcome, StoredArtifact
    from reelflow.core.protocols import GeneratedMedia
    from reelflow.core.types import NodeType, TaskStage

__all__ = ["BaseNodeHandler", "build_filename"]

_UNSAFE_FILENAME_CHARS = re.compile(r"[^\w-]")

_MEDIA_DEFAULTS = {
    "image": ("png", "image/png"),
    "video": ("mp4", "video/mp4"),
}


def build_filename(prefix: str, extension: str) -> str:
    """Build a unique, storage-safe filename from a node label."""
    safe_prefix = _UNSAFE_FILENAME_CHARS.sub("_", prefix)[:50]
    return f"{safe_prefix}_{int(time.time() * 1000)}_{uuid4().hex[:8]}.{extension}"


class BaseNodeHandler:
    """Base implementation with common functionality for all node handlers.

    Subclass this and implement :meth:`run`. The executor dispatches to
    :meth:`execute`, which marks ``stage_before`` first; ``stage_after`` is
    applied by the executor once the node's success has been persisted.
    """

    node_type: NodeType
    """The node type this handler serves."""

    stage_before: TaskStage | None = None
    """Stage the task enters when the node starts executing."""

    stage_after: TaskStage | None = None
    """Stage the task enters once the node has succeeded."""

    async def execute(self, context: NodeContext) -> NodeOutcome:
        """Execute the node with the given context.

        Args:
            context: The node execution context.

        Returns:
            The outcome of the node.
        """
        if self.stage_before is not None:
            await context.advance_stage(self.stage_before)
        return await self.run(context)

    async def run(self, context: NodeContext) -> NodeOutcome:
        """Implement the node's behaviour.

        Raises:
            NotImplementedError: Must be implemented by subclasses.
        """
        msg = f"Handler for {self.node_type} must implement run()"
        raise NotImplementedError(msg)

    async def render_template(
        self,
        context: NodeContext,
        template_version_id: int,
        variables: dict[str, Any],
    ) -> tuple[str, list[str]]:
        """Render a prompt template version with the given variables.

        Returns:
            The rendered text and the names of the variables that had no value.
        """
        rendered = await context.services.prompts.render(template_version_id, normalize_prompt_variables(variables))
        return rendered.rendered, list(rendered.missing_variables)

    async def resolve_prompt(self, context: NodeContext, fallback: str) -> str:
        """Pick the generation prompt for a media node.

        The ``prompt`` input wins, then a fully rendered prompt template, then
        ``config.prompt``, then ``fallback``.
        """
        prompt = context.inputs.get("prompt")
        if isinstance(prompt, str) and prompt.strip():
            return prompt

        config = context.node_config
        template_version_id = config.get("promptTemplateVersionId")
        if template_version_id:
            variables = {**context.inputs, **(config.get("variables") or {})}
            rendered, missing = await self.render_template(context, template_version_id, variables)
            if not missing:
                return rendered
        return config.get("prompt") or fallback

    async def store_media(self, context: NodeContext, media: GeneratedMedia, kind: str) -> StoredArtifact:
        """Store one generated image or video.

        Raw bytes are uploaded; a remote url is handed to storage to copy.

        Raises:
            NodeExecutionError: If the provider returned neither bytes nor a url.
        """
        extension, default_mime = _MEDIA_DEFAULTS[kind]
        filename = build_filename(context.node.display_name, extension)
        if media.data is not None:
            content: bytes | str = media.data
        elif media.url:
            content = media.url
        else:
            raise NodeExecutionError(context.node.id, "No media data available")
        return await context.store(
            content,
            filename,
            mime_type=media.mime_type or default_mime,
            metadata={"nodeName": context.node.display_name},
        )

    async def generate_images(
        self,
        context: NodeContext,
        prompt: str,
        count: int,
        refs: list[str] | None = None,
    ) -> list[StoredArtifact]:
        """Generate and store ``count`` images, one provider call each.

        Raises:
            NodeExecutionError: If the provider returns no media.
        """
        artifacts = []
        model = context.node_config.get("model")
        for _ in range(count):
            media = await context.services.generation.generate_image(prompt, model, refs or None, count=1)
            if not media:
                raise NodeExecutionError(context.node.id, "Generation provider returned no media")
            artifacts.append(await self.store_media(context, media[0], "image"))
        return artifacts
