"""Data Transfer Objects for the reelflow web API.

This module defines DTOs for serializing and deserializing templates, runs,
node runs and human gate decisions in REST API requests and responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from litestar.datastructures import UploadFile

if TYPE_CHECKING:
    from reelflow.db.models import (
        AssetModel,
        NodeRunModel,
        WorkflowRunModel,
        WorkflowTemplateModel,
        WorkflowTemplateVersionModel,
    )

__all__ = [
    "AssetDTO",
    "CreateTemplateDTO",
    "CreateTemplateVersionDTO",
    "GraphDTO",
    "HumanSelectDTO",
    "NodeRunDTO",
    "ReviewDecisionDTO",
    "ReviewUploadDTO",
    "StartRunDTO",
    "TemplateDTO",
    "TemplateListDTO",
    "TemplateVersionDTO",
    "TestNodeDTO",
    "TestWorkflowDTO",
    "WorkflowRunDTO",
]


@dataclass
class StartRunDTO:
    """DTO for starting a run.

    Attributes:
        task_id: The owning task.
        task_version_id: The task version the run executes against.
        template_version_id: The template version to execute.
        input: Values for the start node.
    """

    task_id: int
    task_version_id: int
    template_version_id: int
    input: dict[str, Any] | None = None


@dataclass
class WorkflowRunDTO:
    """DTO for a workflow run.

    Attributes:
        id: Run ID.
        template_version_id: The executed template version.
        task_id: The owning task.
        task_version_id: The subject task version.
        status: Current run status.
        current_node_id: The node the run is at.
        error: Failure message, if the run failed.
        input: Start node input values.
        output: End node output variables.
        created_at: When the run was created.
        updated_at: When the run last changed.
    """

    id: int
    template_version_id: int
    task_id: int
    task_version_id: int
    status: str
    current_node_id: str | None
    error: str | None
    input: dict[str, Any] | None
    output: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, run: WorkflowRunModel) -> WorkflowRunDTO:
        return cls(
            id=run.id,
            template_version_id=run.template_version_id,
            task_id=run.task_id,
            task_version_id=run.task_version_id,
            status=str(run.status),
            current_node_id=run.current_node_id,
            error=run.error,
            input=run.input,
            output=run.output,
            created_at=run.created_at,
            updated_at=run.updated_at,
        )


@dataclass
class NodeRunDTO:
    """DTO for a node run.

    Attributes:
        id: Node run ID.
        node_id: The node's id within the graph.
        node_type: The node's type.
        status: Current node run status.
        input: Resolved input variables and asset ids.
        output: Output variables and asset ids.
        error: Failure message, if the node failed.
        retry_count: Failed attempts so far.
        started_at: When the latest attempt began.
        ended_at: When the latest attempt finished.
    """

    id: int
    node_id: str
    node_type: str
    status: str
    input: dict[str, Any] | None
    output: dict[str, Any] | None
    error: str | None
    retry_count: int
    started_at: datetime | None = None
    ended_at: datetime | None = None

    @classmethod
    def from_model(cls, node_run: NodeRunModel) -> NodeRunDTO:
        return cls(
            id=node_run.id,
            node_id=node_run.node_id,
            node_type=node_run.node_type,
            status=str(node_run.status),
            input=node_run.input,
            output=node_run.output,
            error=node_run.error,
            retry_count=node_run.retry_count,
            started_at=node_run.started_at,
            ended_at=node_run.ended_at,
        )


@dataclass
class AssetDTO:
    """DTO for an asset offered at a human gate."""

    id: int
    type: str
    status: str
    url: str
    filename: str
    mime_type: str | None = None
    filesize: int | None = None
    replaced_by_id: int | None = None

    @classmethod
    def from_model(cls, asset: AssetModel) -> AssetDTO:
        return cls(
            id=asset.id,
            type=str(asset.type),
            status=str(asset.status),
            url=asset.url,
            filename=asset.filename,
            mime_type=asset.mime_type,
            filesize=asset.filesize,
            replaced_by_id=asset.replaced_by_id,
        )


@dataclass
class HumanSelectDTO:
    """DTO for resolving a human breakpoint.

    Attributes:
        node_run_id: The breakpoint node run; the oldest waiting one when omitted.
        selected_indices: Positions of the chosen candidates.
        selected_asset_ids: Ids of the chosen asset candidates. Wins over indices.
        metadata: Decision context stored with trashed candidates.
    """

    node_run_id: int | None = None
    selected_indices: list[int] | None = None
    selected_asset_ids: list[int] | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class ReviewDecisionDTO:
    """DTO for an asset review decision."""

    approved_asset_ids: list[int] = field(default_factory=list)
    rejected_asset_ids: list[int] = field(default_factory=list)
    reason: str | None = None


@dataclass
class ReviewUploadDTO:
    """Multipart form for uploading a replacement review candidate.

    Attributes:
        file: The uploaded file.
        replace_asset_id: The candidate the upload replaces, if any.
    """

    file: UploadFile
    replace_asset_id: int | None = None


@dataclass
class CreateTemplateDTO:
    name: str
    description: str | None = None


@dataclass
class TemplateDTO:
    id: int
    name: str
    description: str | None
    created_by: int | None
    created_at: datetime

    @classmethod
    def from_model(cls, template: WorkflowTemplateModel) -> TemplateDTO:
        return cls(
            id=template.id,
            name=template.name,
            description=template.description,
            created_by=template.created_by,
            created_at=template.created_at,
        )


@dataclass
class TemplateListDTO:
    items: list[TemplateDTO]
    total: int


@dataclass
class GraphDTO:
    """DTO for an unsaved workflow graph.

    Attributes:
        nodes: Node documents.
        edges: Edge documents.
    """

    nodes: list[dict[str, Any]]
    edges: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class CreateTemplateVersionDTO:
    nodes: list[dict[str, Any]]
    edges: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, Any] | None = None


@dataclass
class TemplateVersionDTO:
    """DTO for an immutable template version.

    Attributes:
        id: Version ID.
        template_id: The owning template.
        version: Version number within the template.
        nodes: Node documents as authored.
        edges: Edge documents as authored.
        metadata: Free-form metadata.
        created_at: When the version was saved.
    """

    id: int
    template_id: int
    version: int
    nodes: list[dict[str, Any]]
    edges: list[dict[str, Any]]
    metadata: dict[str, Any]
    created_at: datetime

    @classmethod
    def from_model(cls, version: WorkflowTemplateVersionModel) -> TemplateVersionDTO:
        return cls(
            id=version.id,
            template_id=version.template_id,
            version=version.version,
            nodes=version.nodes,
            edges=version.edges,
            metadata=version.metadata_,
            created_at=version.created_at,
        )


@dataclass
class TestNodeDTO:
    """DTO for dry-running a single node type."""

    node_type: str
    config: dict[str, Any] | None = None
    inputs: dict[str, Any] | None = None


@dataclass
class TestWorkflowDTO:
    """DTO for dry-running an unsaved graph."""

    nodes: list[dict[str, Any]]
    edges: list[dict[str, Any]] = field(default_factory=list)
    start_inputs: dict[str, Any] | None = None
