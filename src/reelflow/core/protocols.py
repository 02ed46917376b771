"""Collaborator protocols for reelflow.

The engine depends on these structural interfaces for AI generation, binary
storage, prompt rendering and event publishing. Concrete implementations live
in the host application.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from reelflow.core.context import NodeContext, NodeOutcome
    from reelflow.core.types import NodeType

__all__ = [
    "ArtifactStorage",
    "EventBus",
    "GeneratedMedia",
    "GenerationService",
    "NodeHandler",
    "PromptRenderer",
    "RenderedPrompt",
]


@dataclass
class GeneratedMedia:
    """One image or video returned by a generation provider.

    Exactly one of ``url`` and ``data`` is normally set.

    Attributes:
        url: Remote location of the generated file.
        data: Raw bytes of the generated file.
        mime_type: MIME type reported by the provider.
    """

    url: str | None = None
    data: bytes | None = None
    mime_type: str | None = None


@dataclass
class RenderedPrompt:
    """Result of rendering a prompt template version.

    Attributes:
        rendered: The rendered prompt text.
        missing_variables: Template variables that had no value.
    """

    rendered: str
    missing_variables: list[str] = field(default_factory=list)


@runtime_checkable
class GenerationService(Protocol):
    """Text, image and video generation back end.

    Any exception raised by these methods is treated as a node failure.
    """

    async def generate_text(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        """Generate text for a prompt."""
        ...

    async def generate_image(
        self,
        prompt: str,
        model: str | None = None,
        refs: Sequence[str] | None = None,
        *,
        count: int = 1,
    ) -> list[GeneratedMedia]:
        """Generate ``count`` images, optionally guided by reference image urls."""
        ...

    async def generate_video(
        self,
        prompt: str,
        model: str | None = None,
        refs: Sequence[str] | None = None,
        *,
        duration: int | None = None,
    ) -> list[GeneratedMedia]:
        """Generate a video of ``duration`` seconds."""
        ...

    async def parse_script(self, text: str, config: Mapping[str, Any] | None = None) -> Any:
        """Parse a script into a structured storyboard."""
        ...


@runtime_checkable
class ArtifactStorage(Protocol):
    """Binary asset storage."""

    async def store(
        self,
        content: bytes | str,
        name: str,
        *,
        content_type: str | None = None,
        folder: str | None = None,
    ) -> str:
        """Store bytes, or copy a remote url when ``content`` is a string, and return a locator."""
        ...

    async def delete(self, locator: str) -> None:
        """Delete a stored object."""
        ...

    async def read_text(self, locator: str) -> str:
        """Read a stored object as text."""
        ...


@runtime_checkable
class PromptRenderer(Protocol):
    """Prompt template rendering."""

    async def render(self, template_version_id: int, variables: Mapping[str, str]) -> RenderedPrompt:
        """Render a prompt template version with string variables."""
        ...


@runtime_checkable
class EventBus(Protocol):
    """Receiver of run lifecycle events such as ``run.started`` or ``node.failed``."""

    async def emit(self, event_type: str, **kwargs: Any) -> None: ...


@runtime_checkable
class NodeHandler(Protocol):
    """Executes one node type.

    Attributes:
        node_type: The node type this handler serves.
    """

    node_type: NodeType

    async def execute(self, context: NodeContext) -> NodeOutcome:
        """Run the node and describe what it produced.

        Raises:
            NodeExecutionError: When a precondition is violated.
            Exception: Any collaborator failure; the executor records it on the node run.
        """
        ...
