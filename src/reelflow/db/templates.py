"""Workflow template service.

Templates are named graphs. Every save appends a new immutable version,
numbered 1..n, and a save that does not validate is rejected.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from advanced_alchemy.filters import LimitOffset, OrderBy

from reelflow.core.definition import WorkflowDefinition
from reelflow.db.models import WorkflowTemplateModel, WorkflowTemplateVersionModel
from reelflow.db.repositories import WorkflowTemplateRepository, WorkflowTemplateVersionRepository
from reelflow.engine.graph import validate_workflow
from reelflow.exceptions import NotFoundError, WorkflowValidationError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reelflow.core.definition import ValidationResult

__all__ = ["TemplateService"]

logger = logging.getLogger(__name__)


class TemplateService:
    """Create and read workflow templates and their versions.

    Attributes:
        session_maker: Factory for the sessions each operation runs in.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def create_template(
        self,
        name: str,
        description: str | None = None,
        *,
        created_by: int | None = None,
    ) -> WorkflowTemplateModel:
        """Create an empty template.

        Args:
            name: Display name.
            description: Free-form description.
            created_by: The creating user.

        Returns:
            The created template.
        """
        async with self.session_maker() as session:
            repo = WorkflowTemplateRepository(session=session)
            template = await repo.add(
                WorkflowTemplateModel(name=name, description=description, created_by=created_by),
                auto_commit=True,
            )
        logger.info("Created workflow template %s (%s)", template.id, name)
        return template

    async def list_templates(self, *, limit: int = 50, offset: int = 0) -> tuple[Sequence[WorkflowTemplateModel], int]:
        """List templates, newest first.

        Returns:
            The page of templates and the total count.
        """
        async with self.session_maker() as session:
            repo = WorkflowTemplateRepository(session=session)
            return await repo.list_and_count(
                LimitOffset(limit=limit, offset=offset),
                OrderBy(field_name="id", sort_order="desc"),
            )

    async def get_template(self, template_id: int) -> WorkflowTemplateModel:
        """Get a template.

        Raises:
            NotFoundError: If the template does not exist.
        """
        async with self.session_maker() as session:
            template = await WorkflowTemplateRepository(session=session).get_one_or_none(id=template_id)
        if template is None:
            raise NotFoundError("WorkflowTemplate", template_id)
        return template

    async def create_version(
        self,
        template_id: int,
        nodes: list[dict[str, Any]],
        edges: list[dict[str, Any]],
        metadata: dict[str, Any] | None = None,
    ) -> WorkflowTemplateVersionModel:
        """Validate a graph and store it as the template's next version.

        The graph is stored as authored; normalization is repeated on every read.

        Args:
            template_id: The template to extend.
            nodes: Node documents.
            edges: Edge documents.
            metadata: Free-form metadata.

        Returns:
            The created version.

        Raises:
            NotFoundError: If the template does not exist.
            WorkflowValidationError: If the graph has validation errors.
        """
        result = validate_workflow(WorkflowDefinition.from_lists(nodes, edges))
        if not result.ok:
            raise WorkflowValidationError(result.errors)

        async with self.session_maker() as session:
            if await WorkflowTemplateRepository(session=session).get_one_or_none(id=template_id) is None:
                raise NotFoundError("WorkflowTemplate", template_id)
            repo = WorkflowTemplateVersionRepository(session=session)
            number = await repo.latest_version_number(template_id) + 1
            version = await repo.add(
                WorkflowTemplateVersionModel(
                    template_id=template_id,
                    version=number,
                    nodes=list(nodes),
                    edges=list(edges),
                    metadata_=dict(metadata or {}),
                ),
                auto_commit=True,
            )
        logger.info("Saved version %d of workflow template %s", number, template_id)
        return version

    async def get_version(self, version_id: int) -> WorkflowTemplateVersionModel:
        """Get a template version.

        Raises:
            NotFoundError: If the version does not exist.
        """
        async with self.session_maker() as session:
            version = await WorkflowTemplateVersionRepository(session=session).get_one_or_none(id=version_id)
        if version is None:
            raise NotFoundError("WorkflowTemplateVersion", version_id)
        return version

    async def list_versions(self, template_id: int) -> Sequence[WorkflowTemplateVersionModel]:
        async with self.session_maker() as session:
            return await WorkflowTemplateVersionRepository(session=session).list_for_template(template_id)

    async def validate_version(self, version_id: int) -> ValidationResult:
        """Re-validate a stored version."""
        version = await self.get_version(version_id)
        return validate_workflow(WorkflowDefinition.from_lists(version.nodes, version.edges))
