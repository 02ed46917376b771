"""Node execution context.

This module provides the dataclasses exchanged between the executor and node
handlers: what a handler receives, what it produces, and who is calling.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from reelflow.core.types import AssetType, NodeRunStatus, TaskStage
from reelflow.core.variables import MISSING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from reelflow.config import EngineConfig
    from reelflow.core.definition import WorkflowNode
    from reelflow.core.protocols import ArtifactStorage, GenerationService, PromptRenderer

__all__ = ["Caller", "NodeContext", "NodeOutcome", "Services", "StoredArtifact"]


@dataclass
class Caller:
    """The user on whose behalf an operation runs.

    Attributes:
        user_id: The user's id.
        is_admin: Administrators may act on any task.
    """

    user_id: int
    is_admin: bool = False


@dataclass
class Services:
    """External collaborators available to node handlers."""

    generation: GenerationService
    storage: ArtifactStorage
    prompts: PromptRenderer


@dataclass
class StoredArtifact:
    """A file produced by a node, already written to storage.

    The executor turns each artifact into an asset row owned by the run's task version.

    Attributes:
        locator: Storage locator (usually a url).
        filename: Name of the stored file.
        mime_type: MIME type of the file.
        size: Size in bytes, when known.
        asset_type: Asset category to record.
        metadata: Extra data stored on the asset.
    """

    locator: str
    filename: str
    mime_type: str | None = None
    size: int | None = None
    asset_type: AssetType = AssetType.TASK_EXECUTION
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class NodeOutcome:
    """What a handler produced.

    Attributes:
        status: ``SUCCEEDED``, or ``WAITING_HUMAN`` for a gate awaiting a decision.
        value: The primary value, turned into output variables by the executor.
        artifacts: Files written to storage during execution.
        asset_ids: Existing assets the output refers to.
        bind_asset_ids: Offer asset ids to output coercion.
        bind_asset_urls: Offer artifact locators to output coercion.
        extra: Additional keys merged into the node run output.
    """

    status: NodeRunStatus = NodeRunStatus.SUCCEEDED
    value: Any = MISSING
    artifacts: list[StoredArtifact] = field(default_factory=list)
    asset_ids: list[int] = field(default_factory=list)
    bind_asset_ids: bool = True
    bind_asset_urls: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def waiting(cls, **extra: Any) -> NodeOutcome:
        return cls(status=NodeRunStatus.WAITING_HUMAN, extra=extra)


@dataclass
class NodeContext:
    """Everything a handler may use while executing one node.

    Attributes:
        node: The normalized node being executed.
        inputs: Resolved input variables.
        input_asset_ids: Asset ids produced by upstream nodes.
        services: External collaborators.
        config: Engine limits.
        run_id: The run being executed; None during dry runs.
        task_id: Owning task; None during dry runs.
        task_version_id: Subject resource; None during dry runs.
        dry_run: Preview mode; nothing is persisted and human gates resolve automatically.
        load_script: Reads the task version's latest original script, if any.
        mark_stage: Advances the task stage; a no-op during dry runs.
    """

    node: WorkflowNode
    inputs: dict[str, Any]
    services: Services
    config: EngineConfig
    input_asset_ids: list[int] = field(default_factory=list)
    run_id: int | None = None
    task_id: int | None = None
    task_version_id: int | None = None
    dry_run: bool = False
    load_script: Callable[[], Awaitable[str | None]] | None = None
    mark_stage: Callable[[TaskStage], Awaitable[None]] | None = None

    @property
    def node_config(self) -> dict[str, Any]:
        return self.node.config

    def primary_input(self) -> Any:
        """Value of the node's first declared input, or all inputs when none is declared."""
        if not self.node.inputs:
            return dict(self.inputs)
        return self.inputs.get(self.node.inputs[0].key, MISSING)

    async def advance_stage(self, stage: TaskStage) -> None:
        if self.mark_stage is not None and not self.dry_run:
            await self.mark_stage(stage)

    async def store(
        self,
        content: bytes | str,
        filename: str,
        *,
        mime_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> StoredArtifact:
        """Write content (bytes or a remote url) to storage.

        During dry runs nothing is written and remote urls are returned as-is.
        """
        size = len(content) if isinstance(content, bytes) else None
        if self.dry_run:
            locator = content if isinstance(content, str) else f"preview://{filename}"
        else:
            folder = f"tasks/{self.task_id}/versions/{self.task_version_id}/runs/{self.run_id}"
            locator = await self.services.storage.store(content, filename, content_type=mime_type, folder=folder)
        return StoredArtifact(
            locator=locator,
            filename=filename,
            mime_type=mime_type,
            size=size,
            metadata=dict(metadata or {}),
        )
