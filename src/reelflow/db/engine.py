"""Persistent run executor.

This module provides the executor that turns a stored template version into a
run against a task version, walks it node by node in topological order and
persists every transition, together with the human gate operations that
resume paused runs.

Each operation opens its own session. Node handlers are always awaited with no
transaction open, so a slow provider call never holds a database write lock.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from functools import partial
from pathlib import PurePath
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from sqlalchemy import update

from reelflow.config import EngineConfig
from reelflow.core.context import NodeContext
from reelflow.core.definition import WorkflowDefinition
from reelflow.core.types import (
    AssetStatus,
    AssetType,
    NodeRunStatus,
    NodeType,
    ReviewDecision,
    RunStatus,
    TaskStage,
    TaskStatus,
)
from reelflow.core.variables import build_output_variables
from reelflow.db.locks import LockManager
from reelflow.db.models import (
    AssetModel,
    HumanReviewDecisionModel,
    NodeRunModel,
    TaskModel,
    WorkflowRunModel,
)
from reelflow.db.repositories import (
    AssetRepository,
    NodeRunRepository,
    TaskRepository,
    TaskVersionRepository,
    WorkflowRunRepository,
    WorkflowTemplateVersionRepository,
)
from reelflow.db.trash import TrashService
from reelflow.engine import preview
from reelflow.engine.graph import WorkflowGraph, validate_workflow
from reelflow.engine.stages import is_stage_advanced, stages_reached
from reelflow.engine.tracker import RunTracker
from reelflow.exceptions import (
    AccessError,
    HumanInputError,
    InvalidTransitionError,
    LockConflictError,
    NodeExecutionError,
    NotFoundError,
    WorkflowValidationError,
)
from reelflow.handlers import build_default_registry, build_filename
from reelflow.handlers.human import selection_mode

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reelflow.core.context import Caller, NodeOutcome, Services
    from reelflow.core.definition import ValidationResult, WorkflowNode
    from reelflow.core.protocols import EventBus, NodeHandler
    from reelflow.db.models import TaskVersionModel, WorkflowTemplateVersionModel
    from reelflow.engine.registry import NodeHandlerRegistry

__all__ = ["WorkflowRunExecutor"]

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _error_message(exc: Exception) -> str:
    if isinstance(exc, NodeExecutionError):
        return exc.detail
    return str(exc) or exc.__class__.__name__


class WorkflowRunExecutor:
    """Execution engine for workflow runs with database persistence.

    At most one live run exists per task version, enforced by the persisted
    task version lock. Runs are driven by background tasks of this process;
    runs left RUNNING by another process are picked up again through
    :meth:`resume_pending_runs`.

    Attributes:
        session_maker: Factory for the sessions each operation runs in. It must
            be configured with ``expire_on_commit=False``.
        services: Generation, storage and prompt collaborators.
        registry: Node handlers by node type.
        config: Engine limits and intervals.
        event_bus: Optional event bus for emitting run events.
        tracker: In-process bookkeeping of the runs being driven.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        services: Services,
        registry: NodeHandlerRegistry | None = None,
        config: EngineConfig | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        """Initialize the run executor.

        Args:
            session_maker: Async session factory.
            services: External collaborators used by node handlers.
            registry: Handler registry; the built-in handlers when omitted.
            config: Engine configuration; defaults apply when omitted.
            event_bus: Optional event bus for events.
        """
        self.session_maker = session_maker
        self.services = services
        self.registry = registry or build_default_registry()
        self.config = config or EngineConfig()
        self.event_bus = event_bus
        self.tracker = RunTracker()

    async def _emit(self, event_type: str, **kwargs: Any) -> None:
        if self.event_bus:
            await self.event_bus.emit(event_type, **kwargs)

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    async def _ensure_access(
        self,
        session: AsyncSession,
        task_id: int,
        task_version_id: int,
        caller: Caller,
    ) -> tuple[TaskModel, TaskVersionModel]:
        task = await TaskRepository(session=session).get_one_or_none(id=task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        version = await TaskVersionRepository(session=session).get_one_or_none(id=task_version_id)
        if version is None or version.task_id != task_id:
            raise NotFoundError("TaskVersion", task_version_id)
        if task.user_id != caller.user_id and not caller.is_admin:
            raise AccessError(caller.user_id, task_id)
        return task, version

    async def _require_run(self, session: AsyncSession, run_id: int, caller: Caller) -> WorkflowRunModel:
        run = await WorkflowRunRepository(session=session).get_one_or_none(id=run_id)
        if run is None:
            raise NotFoundError("WorkflowRun", run_id)
        await self._ensure_access(session, run.task_id, run.task_version_id, caller)
        return run

    async def _require_node_run(
        self,
        session: AsyncSession,
        node_run_id: int,
        caller: Caller,
    ) -> tuple[NodeRunModel, WorkflowRunModel]:
        node_run = await NodeRunRepository(session=session).get_one_or_none(id=node_run_id)
        if node_run is None:
            raise NotFoundError("NodeRun", node_run_id)
        run = await self._require_run(session, node_run.workflow_run_id, caller)
        return node_run, run

    async def _template_version(self, session: AsyncSession, template_version_id: int) -> WorkflowTemplateVersionModel:
        version = await WorkflowTemplateVersionRepository(session=session).get_one_or_none(id=template_version_id)
        if version is None:
            raise NotFoundError("WorkflowTemplateVersion", template_version_id)
        return version

    async def _load_graph(self, session: AsyncSession, template_version_id: int) -> WorkflowGraph:
        version = await self._template_version(session, template_version_id)
        return WorkflowGraph.from_definition(WorkflowDefinition.from_lists(version.nodes, version.edges))

    async def _set_task_status(self, session: AsyncSession, task_id: int, status: TaskStatus) -> None:
        await session.execute(update(TaskModel).where(TaskModel.id == task_id).values(status=status))

    async def _apply_stage(self, session: AsyncSession, task_id: int, task_version_id: int, stage: TaskStage) -> None:
        version = await TaskVersionRepository(session=session).get_one_or_none(id=task_version_id)
        if version is None or not is_stage_advanced(version.stage, stage):
            return
        version.stage = stage
        await session.execute(update(TaskModel).where(TaskModel.id == task_id).values(stage=stage))

    def _schedule(self, run_id: int) -> None:
        if not self.tracker.is_claimed(run_id):
            self.tracker.spawn(run_id, self.execute_run(run_id))

    async def _abandon(self, session: AsyncSession, token: str, task_version_id: int) -> None:
        if not self.config.abandon_reclaimed_runs:
            return
        previous = await WorkflowRunRepository(session=session).find_by_lock_token(token)
        if previous is None or previous.status.is_terminal:
            return
        previous.status = RunStatus.CANCELLED
        previous.error = f"Abandoned: the lock on task version {task_version_id} was reclaimed by a newer run"
        logger.warning("Cancelled run %s after its stale lock was reclaimed", previous.id)

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    async def start_run(
        self,
        task_id: int,
        task_version_id: int,
        template_version_id: int,
        caller: Caller,
        inputs: Mapping[str, Any] | None = None,
    ) -> WorkflowRunModel:
        """Start a run of a template version against a task version.

        Access and validation are checked before anything is written; the lock
        is acquired before the run row exists.

        Args:
            task_id: The owning task.
            task_version_id: The subject resource.
            template_version_id: The graph to execute.
            caller: The user starting the run.
            inputs: Values for the start node.

        Returns:
            The created run, already RUNNING.

        Raises:
            NotFoundError: If the task, version or template version does not exist.
            AccessError: If the caller may not act on the task.
            WorkflowValidationError: If the graph does not validate.
            LockConflictError: If the task version already has a live run.
        """
        async with self.session_maker() as session:
            await self._ensure_access(session, task_id, task_version_id, caller)
            template_version = await self._template_version(session, template_version_id)
            definition = WorkflowDefinition.from_lists(template_version.nodes, template_version.edges)
            validation = validate_workflow(definition)
            if not validation.ok:
                raise WorkflowValidationError(validation.errors)
            graph = WorkflowGraph.from_definition(definition)
            order = graph.topological_order()

            token = f"run-{uuid4().hex}"
            try:
                reclaimed = await LockManager(session, self.config).acquire(task_version_id, token)
            except LockConflictError:
                await session.rollback()
                raise
            if reclaimed:
                await self._abandon(session, reclaimed, task_version_id)

            run = WorkflowRunModel(
                template_version_id=template_version_id,
                task_id=task_id,
                task_version_id=task_version_id,
                status=RunStatus.PENDING,
                input=dict(inputs or {}),
                lock_token=token,
                started_by=caller.user_id,
            )
            session.add(run)
            await session.flush()
            session.add_all(
                NodeRunModel(
                    workflow_run_id=run.id,
                    node_id=node.id,
                    node_type=str(node.type),
                    status=NodeRunStatus.PENDING,
                    retry_count=0,
                )
                for node in graph.nodes
            )
            run.status = RunStatus.RUNNING
            run.current_node_id = order[0] if order else None
            await self._set_task_status(session, task_id, TaskStatus.PROCESSING)
            await session.commit()

        logger.info("Started run %s of template version %s on task version %s", run.id, template_version_id, task_version_id)
        await self._emit("run.started", run_id=run.id, task_version_id=task_version_id)
        self._schedule(run.id)
        return run

    async def get_run(self, run_id: int, caller: Caller) -> WorkflowRunModel:
        """Get a run.

        Raises:
            NotFoundError: If the run does not exist.
            AccessError: If the caller may not see it.
        """
        async with self.session_maker() as session:
            return await self._require_run(session, run_id, caller)

    async def get_latest_run(self, task_id: int, task_version_id: int, caller: Caller) -> WorkflowRunModel:
        """Get the newest run of a task version.

        Raises:
            NotFoundError: If the task version has no run.
            AccessError: If the caller may not see it.
        """
        async with self.session_maker() as session:
            await self._ensure_access(session, task_id, task_version_id, caller)
            run = await WorkflowRunRepository(session=session).find_latest(task_id, task_version_id)
        if run is None:
            raise NotFoundError("WorkflowRun", f"task version {task_version_id}")
        return run

    async def list_node_runs(self, run_id: int, caller: Caller) -> Sequence[NodeRunModel]:
        async with self.session_maker() as session:
            await self._require_run(session, run_id, caller)
            return await NodeRunRepository(session=session).find_by_run(run_id)

    async def cancel_run(self, run_id: int, caller: Caller) -> WorkflowRunModel:
        """Cancel a run and release its lock.

        A handler already in flight is not interrupted; its result is discarded.

        Raises:
            InvalidTransitionError: If the run already succeeded or was cancelled.
        """
        async with self.session_maker() as session:
            run = await self._require_run(session, run_id, caller)
            if run.status in (RunStatus.SUCCEEDED, RunStatus.CANCELLED):
                raise InvalidTransitionError(run.id, run.status, "run already finished")
            run.status = RunStatus.CANCELLED
            if run.lock_token:
                await LockManager(session, self.config).release(run.task_version_id, run.lock_token)
            await self._set_task_status(session, run.task_id, TaskStatus.CANCELLED)
            await session.commit()

        logger.info("Cancelled run %s", run_id)
        await self._emit("run.cancelled", run_id=run_id)
        return run

    async def retry_run(self, run_id: int, caller: Caller) -> WorkflowRunModel:
        """Resume a failed or cancelled run, skipping nodes that already succeeded.

        Raises:
            InvalidTransitionError: If the run is neither failed nor cancelled.
            LockConflictError: If another run now holds the task version.
        """
        async with self.session_maker() as session:
            run = await self._require_run(session, run_id, caller)
            if run.status not in (RunStatus.FAILED, RunStatus.CANCELLED):
                raise InvalidTransitionError(run.id, run.status, "only failed or cancelled runs can be retried")
            token = run.lock_token or f"run-{uuid4().hex}"
            try:
                reclaimed = await LockManager(session, self.config).acquire(run.task_version_id, token)
            except LockConflictError:
                await session.rollback()
                raise
            if reclaimed:
                await self._abandon(session, reclaimed, run.task_version_id)
            run.lock_token = token
            run.status = RunStatus.RUNNING
            run.error = None
            await self._set_task_status(session, run.task_id, TaskStatus.PROCESSING)
            await session.commit()

        logger.info("Retrying run %s", run_id)
        await self._emit("run.retried", run_id=run_id)
        self._schedule(run_id)
        return run

    # ------------------------------------------------------------------
    # Execution loop
    # ------------------------------------------------------------------

    async def execute_run(self, run_id: int) -> None:
        """Walk a RUNNING run until it pauses, fails, succeeds or stops being RUNNING.

        Calling it for a run this process already drives has no effect.

        Args:
            run_id: The run to drive.
        """
        if not self.tracker.claim(run_id):
            return
        try:
            async with self.session_maker() as session:
                run = await WorkflowRunRepository(session=session).get_one_or_none(id=run_id)
                if run is None or run.status != RunStatus.RUNNING:
                    return
                graph = await self._load_graph(session, run.template_version_id)

            for node_id in graph.topological_order():
                if not await self._step(run_id, graph, node_id):
                    return
            await self._complete(run_id, graph)
        except Exception:
            logger.exception("Executor loop of run %s stopped unexpectedly", run_id)
        finally:
            self.tracker.release(run_id)

    async def _pause(self, session: AsyncSession, run: WorkflowRunModel, node_id: str) -> None:
        run.status = RunStatus.PAUSED
        run.current_node_id = node_id
        await self._set_task_status(session, run.task_id, TaskStatus.PAUSED)

    async def _step(self, run_id: int, graph: WorkflowGraph, node_id: str) -> bool:
        """Execute one node of a run. Returns whether the walk continues."""
        node = graph.get_node(node_id)
        if node is None:
            return True

        async with self.session_maker() as session:
            run = await WorkflowRunRepository(session=session).get_one_or_none(id=run_id)
            if run is None or run.status != RunStatus.RUNNING:
                return False
            node_runs = await NodeRunRepository(session=session).find_by_run(run_id)
            node_run = next((item for item in node_runs if item.node_id == node_id), None)
            if node_run is None or node_run.status == NodeRunStatus.SUCCEEDED:
                return True

            if node_run.status.is_waiting:
                await self._pause(session, run, node_id)
                await session.commit()
                logger.info("Run %s paused at node %s", run_id, node_id)
                await self._emit("run.paused", run_id=run_id, node_id=node_id)
                return False

            if node_run.retry_count >= self.config.max_retries:
                await self._fail(session, run, node_run, "Retry limit exceeded for node")
                await session.commit()
                await self._emit("run.failed", run_id=run_id, node_id=node_id)
                return False

            outputs = {item.node_id: item.output or {} for item in node_runs if item.status == NodeRunStatus.SUCCEEDED}
            inputs = graph.resolve_inputs(node_id, outputs, run.input)
            input_asset_ids = graph.upstream_asset_ids(node_id, outputs)
            node_run.status = NodeRunStatus.RUNNING
            node_run.started_at = _now()
            node_run.ended_at = None
            node_run.error = None
            node_run.input = {"variables": inputs, "asset_ids": input_asset_ids}
            run.current_node_id = node_id
            await self._set_task_status(session, run.task_id, TaskStatus.PROCESSING)
            await session.commit()
            node_run_id = node_run.id
            task_id, task_version_id = run.task_id, run.task_version_id

        logger.debug("Run %s executing node %s (%s)", run_id, node_id, node.type)
        try:
            handler = self.registry.get(node.type)
            context = NodeContext(
                node=node,
                inputs=inputs,
                services=self.services,
                config=self.config,
                input_asset_ids=input_asset_ids,
                run_id=run_id,
                task_id=task_id,
                task_version_id=task_version_id,
                load_script=partial(self._load_script, task_id, task_version_id),
                mark_stage=partial(self._mark_stage, task_id, task_version_id),
            )
            outcome = await handler.execute(context)
        except Exception as exc:
            return await self._record_failure(run_id, node_run_id, node_id, exc)
        return await self._record_outcome(run_id, node_run_id, graph, node, handler, outcome)

    async def _fail(self, session: AsyncSession, run: WorkflowRunModel, node_run: NodeRunModel, message: str) -> None:
        node_run.status = NodeRunStatus.FAILED
        node_run.error = message
        node_run.ended_at = _now()
        run.status = RunStatus.FAILED
        run.error = message
        run.current_node_id = node_run.node_id
        await self._set_task_status(session, run.task_id, TaskStatus.FAILED)
        if run.lock_token:
            await LockManager(session, self.config).release(run.task_version_id, run.lock_token)
        logger.warning("Run %s failed at node %s: %s", run.id, node_run.node_id, message)

    async def _record_failure(self, run_id: int, node_run_id: int, node_id: str, exc: Exception) -> bool:
        message = _error_message(exc)
        async with self.session_maker() as session:
            run = await WorkflowRunRepository(session=session).get(run_id)
            node_run = await NodeRunRepository(session=session).get(node_run_id)
            if run.status != RunStatus.RUNNING:
                node_run.status = NodeRunStatus.PENDING
                await session.commit()
                logger.info("Discarded failure of node %s: run %s is %s", node_id, run_id, run.status)
                return False
            node_run.retry_count = min(node_run.retry_count + 1, self.config.max_retries)
            await self._fail(session, run, node_run, message)
            await session.commit()
        await self._emit("node.failed", run_id=run_id, node_id=node_id, error=message)
        await self._emit("run.failed", run_id=run_id, node_id=node_id)
        return False

    async def _discard_artifacts(self, outcome: NodeOutcome) -> None:
        for artifact in outcome.artifacts:
            try:
                await self.services.storage.delete(artifact.locator)
            except Exception:
                logger.warning("Failed to delete discarded artifact %s", artifact.locator, exc_info=True)

    async def _record_outcome(
        self,
        run_id: int,
        node_run_id: int,
        graph: WorkflowGraph,
        node: WorkflowNode,
        handler: NodeHandler,
        outcome: NodeOutcome,
    ) -> bool:
        async with self.session_maker() as session:
            run = await WorkflowRunRepository(session=session).get(run_id)
            node_run = await NodeRunRepository(session=session).get(node_run_id)
            if run.status != RunStatus.RUNNING:
                node_run.status = NodeRunStatus.PENDING
                await session.commit()
                logger.info("Discarded result of node %s: run %s is %s", node.id, run_id, run.status)
                await self._discard_artifacts(outcome)
                return False

            created = [
                AssetModel(
                    task_id=run.task_id,
                    version_id=run.task_version_id,
                    type=artifact.asset_type,
                    status=AssetStatus.ACTIVE,
                    url=artifact.locator,
                    filename=artifact.filename,
                    filesize=artifact.size,
                    mime_type=artifact.mime_type,
                    metadata_={**artifact.metadata, "runId": run_id, "nodeId": node.id},
                )
                for artifact in outcome.artifacts
            ]
            session.add_all(created)
            await session.flush()
            asset_ids = list(dict.fromkeys([*outcome.asset_ids, *(asset.id for asset in created)]))

            if outcome.status == NodeRunStatus.WAITING_HUMAN:
                node_run.status = NodeRunStatus.WAITING_HUMAN
                node_run.output = {"asset_ids": asset_ids, **outcome.extra}
                await self._pause(session, run, node.id)
                await session.commit()
                logger.info("Run %s waiting for a human decision at node %s", run_id, node.id)
                await self._emit("node.waiting", run_id=run_id, node_id=node.id)
                return False

            variables = build_output_variables(
                node,
                outcome.value,
                asset_ids=asset_ids if outcome.bind_asset_ids and asset_ids else None,
                asset_urls=[asset.url for asset in created] if outcome.bind_asset_urls and created else None,
            )
            node_run.status = NodeRunStatus.SUCCEEDED
            node_run.output = {"variables": variables, "asset_ids": asset_ids, **outcome.extra}
            node_run.ended_at = _now()
            if node.type == NodeType.END:
                run.output = variables
            if run.lock_token:
                await LockManager(session, self.config).renew(run.task_version_id, run.lock_token)

            succeeded = {
                item.node_id
                for item in await NodeRunRepository(session=session).find_by_run(run_id)
                if item.status == NodeRunStatus.SUCCEEDED
            }
            succeeded.add(node.id)
            stage_after = getattr(handler, "stage_after", None)
            stages = [stage_after] if stage_after else []
            for stage in [*stages, *stages_reached(graph.nodes, succeeded)]:
                await self._apply_stage(session, run.task_id, run.task_version_id, stage)
            await session.commit()

        await self._emit("node.succeeded", run_id=run_id, node_id=node.id)
        return True

    async def _complete(self, run_id: int, graph: WorkflowGraph) -> None:
        async with self.session_maker() as session:
            run = await WorkflowRunRepository(session=session).get(run_id)
            if run.status != RunStatus.RUNNING:
                return
            if run.output is None:
                end_node = graph.find_node(NodeType.END)
                end_run = (
                    await NodeRunRepository(session=session).find_for_node(run_id, end_node.id) if end_node else None
                )
                run.output = dict(((end_run.output if end_run else None) or {}).get("variables") or {})
            run.status = RunStatus.SUCCEEDED
            run.current_node_id = None
            run.error = None
            await self._apply_stage(session, run.task_id, run.task_version_id, TaskStage.COMPLETED)
            await self._set_task_status(session, run.task_id, TaskStatus.COMPLETED)
            if run.lock_token:
                await LockManager(session, self.config).release(run.task_version_id, run.lock_token)
            await session.commit()

        logger.info("Run %s succeeded", run_id)
        await self._emit("run.completed", run_id=run_id)

    async def _load_script(self, task_id: int, task_version_id: int) -> str | None:
        async with self.session_maker() as session:
            asset = await AssetRepository(session=session).get_latest(task_id, task_version_id, AssetType.ORIGINAL_SCRIPT)
        if asset is None:
            return None
        return await self.services.storage.read_text(asset.url)

    async def _mark_stage(self, task_id: int, task_version_id: int, stage: TaskStage) -> None:
        async with self.session_maker() as session:
            await self._apply_stage(session, task_id, task_version_id, stage)
            await session.commit()

    async def resume_pending_runs(self) -> list[int]:
        """Re-attach to RUNNING runs that no executor loop of this process drives.

        Returns:
            Ids of the runs that were scheduled.
        """
        async with self.session_maker() as session:
            runs = await WorkflowRunRepository(session=session).find_running()
        resumed = []
        for run in runs:
            if self.tracker.is_claimed(run.id) or run.id in self.tracker.running():
                continue
            self._schedule(run.id)
            resumed.append(run.id)
        return resumed

    async def wait_for_idle(self) -> None:
        """Wait until every background executor loop has finished."""
        await self.tracker.wait_idle()

    async def shutdown(self) -> None:
        """Cancel every background executor loop."""
        await self.tracker.cancel_all()

    # ------------------------------------------------------------------
    # Human gates
    # ------------------------------------------------------------------

    def _require_waiting(self, node_run: NodeRunModel) -> None:
        if not node_run.status.is_waiting:
            msg = f"Node run {node_run.id} is not waiting for a human decision"
            raise HumanInputError(msg)

    def _require_resumable(self, run: WorkflowRunModel) -> None:
        if run.status not in (RunStatus.PAUSED, RunStatus.RUNNING):
            raise InvalidTransitionError(run.id, run.status, "only paused runs can be resumed")

    async def _resume(self, session: AsyncSession, run: WorkflowRunModel) -> None:
        run.status = RunStatus.RUNNING
        await self._set_task_status(session, run.task_id, TaskStatus.PROCESSING)
        await session.commit()
        logger.info("Run %s resumed", run.id)
        await self._emit("run.resumed", run_id=run.id)
        self._schedule(run.id)

    async def get_review_assets(self, node_run_id: int, caller: Caller) -> Sequence[AssetModel]:
        """Get the candidate assets of a review node run.

        The candidates are the node run's input asset ids, else the ids in its
        first list-valued input variable.
        """
        async with self.session_maker() as session:
            node_run, _ = await self._require_node_run(session, node_run_id, caller)
            node_input = node_run.input or {}
            lists = [value for value in (node_input.get("variables") or {}).values() if isinstance(value, list)]
            candidates = node_input.get("asset_ids") or (lists[0] if lists else [])
            asset_ids = [item for item in candidates if isinstance(item, int) and not isinstance(item, bool)]
            return await AssetRepository(session=session).find_by_ids(asset_ids)

    async def submit_review_decision(
        self,
        node_run_id: int,
        caller: Caller,
        approved_asset_ids: Sequence[int] = (),
        rejected_asset_ids: Sequence[int] = (),
        reason: str | None = None,
    ) -> NodeRunModel:
        """Record approvals and rejections for a waiting review node.

        Approved assets are re-activated, rejected ones trashed, and every
        decision appended to the review log. The run stays paused until
        :meth:`continue_review`.

        Raises:
            HumanInputError: If the node run is not a waiting review.
        """
        approved = list(approved_asset_ids)
        rejected = list(rejected_asset_ids)
        async with self.session_maker() as session:
            node_run, run = await self._require_node_run(session, node_run_id, caller)
            if node_run.node_type != NodeType.HUMAN_REVIEW_ASSETS:
                msg = f"Node run {node_run_id} is not an asset review"
                raise HumanInputError(msg)
            self._require_waiting(node_run)
            graph = await self._load_graph(session, run.template_version_id)
            node = graph.get_node(node_run.node_id)

            assets = AssetRepository(session=session)
            trash = TrashService(session, self.config)
            for asset in await assets.find_by_ids(approved):
                await trash.restore_asset(asset)
                session.add(
                    HumanReviewDecisionModel(
                        node_run_id=node_run_id,
                        user_id=caller.user_id,
                        asset_id=asset.id,
                        decision=ReviewDecision.APPROVE,
                        reason=reason,
                    )
                )
            for asset in await assets.find_by_ids(rejected):
                await trash.trash_asset(
                    asset,
                    origin_run_id=run.id,
                    origin_node_id=node_run.node_id,
                    metadata={"reason": reason},
                )
                session.add(
                    HumanReviewDecisionModel(
                        node_run_id=node_run_id,
                        user_id=caller.user_id,
                        asset_id=asset.id,
                        decision=ReviewDecision.REJECT,
                        reason=reason,
                    )
                )

            variables = build_output_variables(node, approved, asset_ids=approved or None) if node else {}
            node_run.output = {
                "variables": variables,
                "asset_ids": approved,
                "approved_asset_ids": approved,
                "rejected_asset_ids": rejected,
            }
            await session.commit()
        return node_run

    async def upload_review_asset(
        self,
        node_run_id: int,
        caller: Caller,
        content: bytes,
        filename: str,
        *,
        mime_type: str | None = None,
        replace_asset_id: int | None = None,
        asset_type: AssetType = AssetType.TASK_EXECUTION,
    ) -> AssetModel:
        """Upload a replacement candidate to a waiting review node.

        The replaced asset is marked REPLACED and the new asset takes its place
        among the node run's candidates.

        Raises:
            HumanInputError: If the node run is not waiting.
        """
        async with self.session_maker() as session:
            node_run, run = await self._require_node_run(session, node_run_id, caller)
            self._require_waiting(node_run)

            path = PurePath(filename)
            stored_name = build_filename(f"review_{path.stem}", path.suffix.lstrip(".") or "bin")
            folder = f"tasks/{run.task_id}/versions/{run.task_version_id}/{asset_type}"
            locator = await self.services.storage.store(content, stored_name, content_type=mime_type, folder=folder)

            asset = AssetModel(
                task_id=run.task_id,
                version_id=run.task_version_id,
                type=asset_type,
                status=AssetStatus.ACTIVE,
                url=locator,
                filename=filename,
                filesize=len(content),
                mime_type=mime_type,
                metadata_={"source": "human_review"},
            )
            session.add(asset)
            await session.flush()

            if replace_asset_id is not None:
                original = await AssetRepository(session=session).get_one_or_none(id=replace_asset_id)
                if original is not None:
                    original.status = AssetStatus.REPLACED
                    original.replaced_by_id = asset.id

            node_input = dict(node_run.input or {})
            candidates = list(node_input.get("asset_ids") or [])
            if replace_asset_id is not None and replace_asset_id in candidates:
                candidates[candidates.index(replace_asset_id)] = asset.id
            else:
                candidates.append(asset.id)
            node_input["asset_ids"] = candidates
            node_run.input = node_input

            session.add(
                HumanReviewDecisionModel(
                    node_run_id=node_run_id,
                    user_id=caller.user_id,
                    asset_id=asset.id,
                    decision=ReviewDecision.REPLACE,
                )
            )
            await session.commit()
        return asset

    async def continue_review(self, node_run_id: int, caller: Caller) -> WorkflowRunModel:
        """Complete a review node once a decision was submitted and resume the run.

        Raises:
            HumanInputError: If the node run is not waiting or no decision was submitted.
            InvalidTransitionError: If the run is no longer paused.
        """
        async with self.session_maker() as session:
            node_run, run = await self._require_node_run(session, node_run_id, caller)
            self._require_waiting(node_run)
            self._require_resumable(run)
            if "approved_asset_ids" not in (node_run.output or {}):
                msg = f"Submit a review decision for node run {node_run_id} before continuing"
                raise HumanInputError(msg)
            node_run.status = NodeRunStatus.SUCCEEDED
            node_run.ended_at = _now()
            await self._resume(session, run)
        return run

    async def submit_human_select(
        self,
        run_id: int,
        caller: Caller,
        *,
        node_run_id: int | None = None,
        selected_indices: Sequence[int] | None = None,
        selected_asset_ids: Sequence[int] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> WorkflowRunModel:
        """Resolve a waiting breakpoint with a selection among its candidates.

        Explicit asset ids win over indices. Selected assets are re-activated,
        unselected asset candidates trashed, and unselected non-asset
        candidates recorded in a single trash record.

        Args:
            run_id: The paused run.
            caller: The deciding user.
            node_run_id: The breakpoint node run; the oldest waiting one when omitted.
            selected_indices: Positions of the chosen candidates.
            selected_asset_ids: Ids of the chosen asset candidates.
            metadata: Decision context stored on trash records.

        Returns:
            The resumed run.

        Raises:
            NotFoundError: If no waiting node run exists.
            HumanInputError: If the node is not a waiting breakpoint, the selection is empty
                or no selected asset is a candidate.
            InvalidTransitionError: If the run is no longer paused.
        """
        async with self.session_maker() as session:
            run = await self._require_run(session, run_id, caller)
            node_runs = NodeRunRepository(session=session)
            if node_run_id is not None:
                node_run = await node_runs.get_one_or_none(id=node_run_id, workflow_run_id=run_id)
            else:
                node_run = await node_runs.find_first_waiting(run_id)
            if node_run is None:
                raise NotFoundError("NodeRun", node_run_id or "waiting human breakpoint")
            self._require_waiting(node_run)
            self._require_resumable(run)

            graph = await self._load_graph(session, run.template_version_id)
            node = graph.get_node(node_run.node_id)
            if node is None or node.type != NodeType.HUMAN_BREAKPOINT:
                msg = f"Node '{node_run.node_id}' is not a human breakpoint"
                raise HumanInputError(msg)

            node_input = node_run.input or {}
            variables = node_input.get("variables") or {}
            input_key = node.inputs[0].key if node.inputs else None
            candidates = variables.get(input_key) if input_key else None
            if candidates is None:
                candidates = node_input.get("asset_ids") or []
            if not isinstance(candidates, list):
                candidates = [candidates]

            if selected_asset_ids:
                selected = [item for item in selected_asset_ids if item in candidates]
                if not selected:
                    msg = "Selected assets are not candidates of this breakpoint"
                    raise HumanInputError(msg)
            else:
                selected = [candidates[index] for index in selected_indices or () if 0 <= index < len(candidates)]
            if not selected:
                msg = "No selection provided"
                raise HumanInputError(msg)

            unselected = [item for item in candidates if item not in selected]
            asset_candidates = [item for item in candidates if isinstance(item, int) and not isinstance(item, bool)]
            trash = TrashService(session, self.config)
            for asset in await AssetRepository(session=session).find_by_ids(asset_candidates):
                if asset.id in selected:
                    await trash.restore_asset(asset)
                else:
                    await trash.trash_asset(
                        asset,
                        origin_run_id=run_id,
                        origin_node_id=node_run.node_id,
                        metadata=metadata,
                    )
            rejected_values = [item for item in unselected if not isinstance(item, int) or isinstance(item, bool)]
            if rejected_values:
                await trash.create_record(
                    origin_run_id=run_id,
                    origin_node_id=node_run.node_id,
                    metadata={"rejected": rejected_values, **(metadata or {})},
                )

            value = selected if selection_mode(node.config) == "multiple" else selected[0]
            selected_ids = [item for item in selected if isinstance(item, int) and not isinstance(item, bool)]
            node_run.output = {
                "variables": build_output_variables(node, value),
                "asset_ids": selected_ids,
            }
            node_run.status = NodeRunStatus.SUCCEEDED
            node_run.ended_at = _now()
            await self._resume(session, run)
        return run

    # ------------------------------------------------------------------
    # Authoring-time helpers
    # ------------------------------------------------------------------

    def validate(self, nodes: list[dict[str, Any]], edges: list[dict[str, Any]]) -> ValidationResult:
        """Validate a candidate graph without saving it."""
        return validate_workflow(WorkflowDefinition.from_lists(nodes, edges))

    async def test_node(
        self,
        node_type: str,
        config: Mapping[str, Any] | None = None,
        inputs: Mapping[str, Any] | None = None,
    ) -> preview.NodeTestResult:
        """Dry-run one node type; see :func:`reelflow.engine.preview.test_node`."""
        return await preview.test_node(
            node_type,
            self.services,
            config=config,
            inputs=inputs,
            registry=self.registry,
            engine_config=self.config,
        )

    async def test_workflow(
        self,
        nodes: list[dict[str, Any]],
        edges: list[dict[str, Any]],
        start_inputs: Mapping[str, Any] | None = None,
    ) -> preview.WorkflowTestResult:
        """Dry-run an unsaved graph; see :func:`reelflow.engine.preview.test_workflow`."""
        return await preview.test_workflow(
            WorkflowDefinition.from_lists(nodes, edges),
            self.services,
            start_inputs=start_inputs,
            registry=self.registry,
            engine_config=self.config,
        )

    async def purge_trash(self) -> int:
        """Purge expired trash through the storage collaborator."""
        async with self.session_maker() as session:
            purged = await TrashService(session, self.config).purge_expired(self.services.storage)
            await session.commit()
        if purged:
            logger.info("Purged %d expired trash record(s)", purged)
        return purged
