"""REST API controllers for reelflow.

This module provides four controller classes:
- WorkflowTemplateController: Author templates and their immutable versions
- PreviewController: Validate and dry-run unsaved graphs
- WorkflowRunController: Start, monitor, cancel and retry runs
- HumanReviewController: Resolve asset review gates
"""

from __future__ import annotations

from typing import Annotated, Any, ClassVar

from litestar import Controller, get, post
from litestar.enums import RequestEncodingType
from litestar.params import Body, Parameter
from litestar.status_codes import HTTP_200_OK

from reelflow.core.context import Caller  # noqa: TC001 - needed for DI
from reelflow.db.engine import WorkflowRunExecutor  # noqa: TC001 - needed for DI
from reelflow.db.templates import TemplateService  # noqa: TC001 - needed for DI
from reelflow.web.dto import (
    AssetDTO,
    CreateTemplateDTO,
    CreateTemplateVersionDTO,
    GraphDTO,
    HumanSelectDTO,
    NodeRunDTO,
    ReviewDecisionDTO,
    ReviewUploadDTO,
    StartRunDTO,
    TemplateDTO,
    TemplateListDTO,
    TemplateVersionDTO,
    TestNodeDTO,
    TestWorkflowDTO,
    WorkflowRunDTO,
)

__all__ = [
    "HumanReviewController",
    "PreviewController",
    "WorkflowRunController",
    "WorkflowTemplateController",
]


class WorkflowTemplateController(Controller):
    """API controller for workflow templates.

    Tags: Workflow Templates
    """

    path = "/templates"
    tags: ClassVar[list[str]] = ["Workflow Templates"]

    @get("/")
    async def list_templates(
        self,
        template_service: TemplateService,
        limit: int = Parameter(default=50, ge=1, le=200, description="Page size"),
        offset: int = Parameter(default=0, ge=0, description="Page offset"),
    ) -> TemplateListDTO:
        """List templates, newest first."""
        templates, total = await template_service.list_templates(limit=limit, offset=offset)
        return TemplateListDTO(items=[TemplateDTO.from_model(template) for template in templates], total=total)

    @post("/")
    async def create_template(
        self,
        data: CreateTemplateDTO,
        template_service: TemplateService,
        caller: Caller,
    ) -> TemplateDTO:
        """Create an empty template owned by the caller."""
        template = await template_service.create_template(
            data.name,
            data.description,
            created_by=caller.user_id,
        )
        return TemplateDTO.from_model(template)

    @get("/{template_id:int}")
    async def get_template(self, template_id: int, template_service: TemplateService) -> TemplateDTO:
        return TemplateDTO.from_model(await template_service.get_template(template_id))

    @get("/{template_id:int}/versions")
    async def list_versions(self, template_id: int, template_service: TemplateService) -> list[TemplateVersionDTO]:
        await template_service.get_template(template_id)
        versions = await template_service.list_versions(template_id)
        return [TemplateVersionDTO.from_model(version) for version in versions]

    @post("/{template_id:int}/versions")
    async def create_version(
        self,
        template_id: int,
        data: CreateTemplateVersionDTO,
        template_service: TemplateService,
    ) -> TemplateVersionDTO:
        """Save a graph as the template's next version.

        A graph with validation errors is rejected with 422 and its issues.

        Args:
            template_id: The template to extend.
            data: The graph to save.
            template_service: Injected template service.

        Returns:
            The created version.
        """
        version = await template_service.create_version(template_id, data.nodes, data.edges, data.metadata)
        return TemplateVersionDTO.from_model(version)

    @get("/versions/{version_id:int}")
    async def get_version(self, version_id: int, template_service: TemplateService) -> TemplateVersionDTO:
        return TemplateVersionDTO.from_model(await template_service.get_version(version_id))

    @post("/versions/{version_id:int}/validate", status_code=HTTP_200_OK)
    async def validate_version(self, version_id: int, template_service: TemplateService) -> dict[str, Any]:
        """Re-validate a stored version."""
        result = await template_service.validate_version(version_id)
        return result.to_dict()


class PreviewController(Controller):
    """API controller for authoring-time checks that never persist anything.

    Tags: Workflow Preview
    """

    path = "/preview"
    tags: ClassVar[list[str]] = ["Workflow Preview"]

    @post("/validate", status_code=HTTP_200_OK)
    async def validate_graph(self, data: GraphDTO, run_executor: WorkflowRunExecutor) -> dict[str, Any]:
        """Validate an unsaved graph.

        Returns:
            ``{"ok", "errors", "warnings"}``.
        """
        return run_executor.validate(data.nodes, data.edges).to_dict()

    @post("/node", status_code=HTTP_200_OK)
    async def test_node(self, data: TestNodeDTO, run_executor: WorkflowRunExecutor) -> dict[str, Any]:
        """Dry-run one node type against ad hoc config and inputs.

        Handler failures are reported in the result, not as an error response.
        """
        result = await run_executor.test_node(data.node_type, config=data.config, inputs=data.inputs)
        return result.to_dict()

    @post("/workflow", status_code=HTTP_200_OK)
    async def test_workflow(self, data: TestWorkflowDTO, run_executor: WorkflowRunExecutor) -> dict[str, Any]:
        """Dry-run an unsaved graph in topological order."""
        result = await run_executor.test_workflow(data.nodes, data.edges, data.start_inputs)
        return result.to_dict()


class WorkflowRunController(Controller):
    """API controller for workflow runs.

    Provides endpoints for starting, inspecting and controlling runs, and for
    resolving human breakpoints.

    Tags: Workflow Runs
    """

    path = "/runs"
    tags: ClassVar[list[str]] = ["Workflow Runs"]

    @post("/")
    async def start_run(
        self,
        data: StartRunDTO,
        run_executor: WorkflowRunExecutor,
        caller: Caller,
    ) -> WorkflowRunDTO:
        """Start a run of a template version against a task version.

        Execution continues in the background; poll the run for progress.

        Args:
            data: Run start parameters.
            run_executor: Injected run executor.
            caller: The acting user.

        Returns:
            The started run.
        """
        run = await run_executor.start_run(
            data.task_id,
            data.task_version_id,
            data.template_version_id,
            caller,
            inputs=data.input,
        )
        return WorkflowRunDTO.from_model(run)

    @get("/latest")
    async def get_latest_run(
        self,
        run_executor: WorkflowRunExecutor,
        caller: Caller,
        task_id: int = Parameter(description="The owning task"),
        task_version_id: int = Parameter(description="The task version"),
    ) -> WorkflowRunDTO:
        """Get the newest run of a task version."""
        return WorkflowRunDTO.from_model(await run_executor.get_latest_run(task_id, task_version_id, caller))

    @get("/{run_id:int}")
    async def get_run(self, run_id: int, run_executor: WorkflowRunExecutor, caller: Caller) -> WorkflowRunDTO:
        return WorkflowRunDTO.from_model(await run_executor.get_run(run_id, caller))

    @get("/{run_id:int}/node-runs")
    async def list_node_runs(
        self,
        run_id: int,
        run_executor: WorkflowRunExecutor,
        caller: Caller,
    ) -> list[NodeRunDTO]:
        node_runs = await run_executor.list_node_runs(run_id, caller)
        return [NodeRunDTO.from_model(node_run) for node_run in node_runs]

    @post("/{run_id:int}/cancel", status_code=HTTP_200_OK)
    async def cancel_run(self, run_id: int, run_executor: WorkflowRunExecutor, caller: Caller) -> WorkflowRunDTO:
        """Cancel a run and release its task version."""
        return WorkflowRunDTO.from_model(await run_executor.cancel_run(run_id, caller))

    @post("/{run_id:int}/retry", status_code=HTTP_200_OK)
    async def retry_run(self, run_id: int, run_executor: WorkflowRunExecutor, caller: Caller) -> WorkflowRunDTO:
        """Retry a failed or cancelled run from its first unfinished node."""
        return WorkflowRunDTO.from_model(await run_executor.retry_run(run_id, caller))

    @post("/{run_id:int}/human-select", status_code=HTTP_200_OK)
    async def submit_human_select(
        self,
        run_id: int,
        data: HumanSelectDTO,
        run_executor: WorkflowRunExecutor,
        caller: Caller,
    ) -> WorkflowRunDTO:
        """Resolve a waiting breakpoint and resume the run.

        Args:
            run_id: The paused run.
            data: The selection.
            run_executor: Injected run executor.
            caller: The acting user.

        Returns:
            The resumed run.
        """
        run = await run_executor.submit_human_select(
            run_id,
            caller,
            node_run_id=data.node_run_id,
            selected_indices=data.selected_indices,
            selected_asset_ids=data.selected_asset_ids,
            metadata=data.metadata,
        )
        return WorkflowRunDTO.from_model(run)


class HumanReviewController(Controller):
    """API controller for asset review gates.

    Tags: Human Review
    """

    path = "/reviews"
    tags: ClassVar[list[str]] = ["Human Review"]

    @get("/{node_run_id:int}/assets")
    async def get_review_assets(
        self,
        node_run_id: int,
        run_executor: WorkflowRunExecutor,
        caller: Caller,
    ) -> list[AssetDTO]:
        assets = await run_executor.get_review_assets(node_run_id, caller)
        return [AssetDTO.from_model(asset) for asset in assets]

    @post("/{node_run_id:int}/decision", status_code=HTTP_200_OK)
    async def submit_review_decision(
        self,
        node_run_id: int,
        data: ReviewDecisionDTO,
        run_executor: WorkflowRunExecutor,
        caller: Caller,
    ) -> NodeRunDTO:
        """Record approvals and rejections; the run stays paused until continued."""
        node_run = await run_executor.submit_review_decision(
            node_run_id,
            caller,
            approved_asset_ids=data.approved_asset_ids,
            rejected_asset_ids=data.rejected_asset_ids,
            reason=data.reason,
        )
        return NodeRunDTO.from_model(node_run)

    @post("/{node_run_id:int}/upload")
    async def upload_review_asset(
        self,
        node_run_id: int,
        data: Annotated[ReviewUploadDTO, Body(media_type=RequestEncodingType.MULTI_PART)],
        run_executor: WorkflowRunExecutor,
        caller: Caller,
    ) -> AssetDTO:
        """Upload a replacement candidate for a review gate."""
        content = await data.file.read()
        asset = await run_executor.upload_review_asset(
            node_run_id,
            caller,
            content,
            data.file.filename,
            mime_type=data.file.content_type,
            replace_asset_id=data.replace_asset_id,
        )
        return AssetDTO.from_model(asset)

    @post("/{node_run_id:int}/continue", status_code=HTTP_200_OK)
    async def continue_review(
        self,
        node_run_id: int,
        run_executor: WorkflowRunExecutor,
        caller: Caller,
    ) -> WorkflowRunDTO:
        """Complete the review gate and resume the run."""
        return WorkflowRunDTO.from_model(await run_executor.continue_review(node_run_id, caller))
