"""Shared test fixtures for the reelflow test suite."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from reelflow.core.context import Caller, Services
from reelflow.core.protocols import GeneratedMedia, RenderedPrompt
from reelflow.core.types import NodeRunStatus, RunStatus
from reelflow.db.engine import WorkflowRunExecutor
from reelflow.db.models import (
    NodeRunModel,
    TaskModel,
    TaskVersionModel,
    WorkflowRunModel,
    WorkflowTemplateModel,
    WorkflowTemplateVersionModel,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator, Mapping, Sequence
    from pathlib import Path


# =============================================================================
# Collaborator fakes
# =============================================================================


class FakeGeneration:
    """In-memory generation back end.

    ``failures`` maps a method name to how many upcoming calls of it raise.
    While ``gate`` is set, image calls announce themselves on ``waiting`` and
    block until the gate opens.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.failures: dict[str, int] = {}
        self.text_response = "generated text"
        self.storyboard: Any = {"scenes": [{"id": 1, "summary": "Opening shot"}]}
        self.gate: asyncio.Event | None = None
        self.waiting = asyncio.Event()
        self._counter = 0

    def _record(self, name: str, **kwargs: Any) -> None:
        self.calls.append((name, kwargs))
        remaining = self.failures.get(name, 0)
        if remaining:
            self.failures[name] = remaining - 1
            msg = f"{name} provider unavailable"
            raise RuntimeError(msg)

    def _media(self, kind: str, extension: str) -> GeneratedMedia:
        self._counter += 1
        return GeneratedMedia(url=f"https://cdn.example.com/{kind}-{self._counter}.{extension}")

    def calls_to(self, name: str) -> list[dict[str, Any]]:
        return [kwargs for called, kwargs in self.calls if called == name]

    async def generate_text(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        self._record(
            "generate_text",
            prompt=prompt,
            model=model,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return self.text_response

    async def generate_image(
        self,
        prompt: str,
        model: str | None = None,
        refs: Sequence[str] | None = None,
        *,
        count: int = 1,
    ) -> list[GeneratedMedia]:
        self._record("generate_image", prompt=prompt, model=model, refs=refs, count=count)
        if self.gate is not None:
            self.waiting.set()
            await self.gate.wait()
        return [self._media("image", "png") for _ in range(count)]

    async def generate_video(
        self,
        prompt: str,
        model: str | None = None,
        refs: Sequence[str] | None = None,
        *,
        duration: int | None = None,
    ) -> list[GeneratedMedia]:
        self._record("generate_video", prompt=prompt, model=model, refs=refs, duration=duration)
        return [self._media("video", "mp4")]

    async def parse_script(self, text: str, config: Mapping[str, Any] | None = None) -> Any:
        self._record("parse_script", text=text, config=config)
        return self.storyboard


class FakeStorage:
    """Dictionary-backed artifact storage."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes | str] = {}
        self.deleted: list[str] = []
        self.fail_deletes = False

    async def store(
        self,
        content: bytes | str,
        name: str,
        *,
        content_type: str | None = None,
        folder: str | None = None,
    ) -> str:
        locator = f"memory://{folder}/{name}" if folder else f"memory://{name}"
        self.objects[locator] = content
        return locator

    async def delete(self, locator: str) -> None:
        if self.fail_deletes:
            msg = f"cannot delete {locator}"
            raise OSError(msg)
        self.deleted.append(locator)
        self.objects.pop(locator, None)

    async def read_text(self, locator: str) -> str:
        content = self.objects[locator]
        return content.decode() if isinstance(content, bytes) else content


class FakePrompts:
    """Prompt renderer substituting ``{{name}}`` placeholders."""

    _PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")

    def __init__(self) -> None:
        self.templates: dict[int, str] = {}

    async def render(self, template_version_id: int, variables: Mapping[str, str]) -> RenderedPrompt:
        template = self.templates.get(template_version_id, "")
        missing: list[str] = []

        def substitute(match: re.Match[str]) -> str:
            name = match.group(1)
            if name not in variables:
                missing.append(name)
                return ""
            return variables[name]

        return RenderedPrompt(rendered=self._PLACEHOLDER.sub(substitute, template), missing_variables=missing)


class MockEventBus:
    """Mock event bus for testing."""

    def __init__(self) -> None:
        """Initialize mock event bus."""
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def emit(self, event_type: str, **kwargs: Any) -> None:
        """Emit an event."""
        self.events.append((event_type, kwargs))

    def types(self) -> list[str]:
        return [event_type for event_type, _ in self.events]


@pytest.fixture
def generation() -> FakeGeneration:
    """Create the fake generation back end."""
    return FakeGeneration()


@pytest.fixture
def storage() -> FakeStorage:
    """Create the fake artifact storage."""
    return FakeStorage()


@pytest.fixture
def prompts() -> FakePrompts:
    """Create the fake prompt renderer with a few templates.

    Returns:
        FakePrompts with templates 1 (``Write about {{input}}``) and
        2 (``Draw {{subject}}``).
    """
    renderer = FakePrompts()
    renderer.templates[1] = "Write about {{input}}"
    renderer.templates[2] = "Draw {{subject}}"
    return renderer


@pytest.fixture
def services(generation: FakeGeneration, storage: FakeStorage, prompts: FakePrompts) -> Services:
    """Bundle the fakes into a Services instance."""
    return Services(generation=generation, storage=storage, prompts=prompts)


@pytest.fixture
def mock_event_bus() -> MockEventBus:
    """Create mock event bus.

    Returns:
        MockEventBus instance
    """
    return MockEventBus()


# =============================================================================
# Callers
# =============================================================================


@pytest.fixture
def owner() -> Caller:
    """The user who owns the seeded task."""
    return Caller(user_id=1)


@pytest.fixture
def stranger() -> Caller:
    return Caller(user_id=2)


@pytest.fixture
def admin() -> Caller:
    return Caller(user_id=99, is_admin=True)


# =============================================================================
# Graphs
# =============================================================================


@pytest.fixture
def text_graph() -> dict[str, list[dict[str, Any]]]:
    """start -> llm_tool -> end, all text."""
    return {
        "nodes": [
            {"id": "start", "type": "start"},
            {
                "id": "writer",
                "type": "llm_tool",
                "config": {"promptTemplateVersionId": 1},
                "inputs": [{"key": "input", "type": "text", "required": True}],
                "outputs": [{"key": "answer", "type": "text"}],
            },
            {"id": "end", "type": "end"},
        ],
        "edges": [
            {"source": "start", "target": "writer"},
            {"source": "writer", "target": "end"},
        ],
    }


@pytest.fixture
def breakpoint_graph() -> dict[str, list[dict[str, Any]]]:
    """start -> character images -> human breakpoint -> end."""
    return {
        "nodes": [
            {"id": "start", "type": "start"},
            {"id": "hero", "type": "generate_character_images", "config": {"outputCount": 2}},
            {
                "id": "pick",
                "type": "human_breakpoint",
                "inputs": [{"key": "candidates", "type": "list<asset_ref>", "required": True}],
                "outputs": [{"key": "selected", "type": "asset_ref"}],
            },
            {"id": "end", "type": "end", "inputs": [{"key": "result", "type": "asset_ref", "required": True}]},
        ],
        "edges": [
            {"source": "start", "target": "hero"},
            {"source": "hero", "target": "pick"},
            {"source": "pick", "target": "end"},
        ],
    }


@pytest.fixture
def review_graph() -> dict[str, list[dict[str, Any]]]:
    """start -> character images -> asset review -> end."""
    return {
        "nodes": [
            {"id": "start", "type": "start"},
            {"id": "hero", "type": "generate_character_images", "config": {"outputCount": 2}},
            {"id": "review", "type": "human_review_assets"},
            {
                "id": "end",
                "type": "end",
                "inputs": [{"key": "result", "type": "list<asset_ref>", "required": True}],
            },
        ],
        "edges": [
            {"source": "start", "target": "hero"},
            {"source": "hero", "target": "review"},
            {"source": "review", "target": "end"},
        ],
    }


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def db_engine(tmp_path: Path):
    """Create an async SQLite engine on a temporary file.

    A file database lets the executor's background sessions and the test's
    own sessions see the same data.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'reelflow.db'}", echo=False)

    # Enable foreign keys for SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(TaskModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(db_engine) -> async_sessionmaker[AsyncSession]:
    """Create session factory."""
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def async_session(session_maker: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Create an async session for testing."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def seeded_task(session_maker: async_sessionmaker[AsyncSession]) -> dict[str, Any]:
    """Seed a task owned by user 1 with one version.

    Returns:
        Dict with ``task`` and ``version``.
    """
    async with session_maker() as session:
        task = TaskModel(user_id=1, title="Pilot episode")
        session.add(task)
        await session.flush()
        version = TaskVersionModel(task_id=task.id, version=1, metadata_={})
        session.add(version)
        await session.commit()
    return {"task": task, "version": version}


@pytest.fixture
def make_template_version(session_maker: async_sessionmaker[AsyncSession]):
    """Factory storing a graph as a template version without validating it."""

    async def _make(graph: dict[str, list[dict[str, Any]]], name: str = "pipeline") -> WorkflowTemplateVersionModel:
        async with session_maker() as session:
            template = WorkflowTemplateModel(name=name)
            session.add(template)
            await session.flush()
            version = WorkflowTemplateVersionModel(
                template_id=template.id,
                version=1,
                nodes=graph["nodes"],
                edges=graph["edges"],
                metadata_={},
            )
            session.add(version)
            await session.commit()
        return version

    return _make


@pytest.fixture
def make_orphan_run(session_maker: async_sessionmaker[AsyncSession]):
    """Factory inserting a RUNNING run with pending node runs and no executor attached."""

    async def _make(
        task: TaskModel,
        version: TaskVersionModel,
        template_version: WorkflowTemplateVersionModel,
        inputs: dict[str, Any],
    ) -> WorkflowRunModel:
        async with session_maker() as session:
            run = WorkflowRunModel(
                template_version_id=template_version.id,
                task_id=task.id,
                task_version_id=version.id,
                status=RunStatus.RUNNING,
                input=inputs,
            )
            session.add(run)
            await session.flush()
            session.add_all(
                NodeRunModel(
                    workflow_run_id=run.id,
                    node_id=node["id"],
                    node_type=node["type"],
                    status=NodeRunStatus.PENDING,
                    retry_count=0,
                )
                for node in template_version.nodes
            )
            await session.commit()
        return run

    return _make


@pytest.fixture
async def executor(
    session_maker: async_sessionmaker[AsyncSession],
    services: Services,
    mock_event_bus: MockEventBus,
) -> AsyncIterator[WorkflowRunExecutor]:
    """Create a run executor wired to the fakes and the test database."""
    run_executor = WorkflowRunExecutor(session_maker, services, event_bus=mock_event_bus)
    yield run_executor
    await run_executor.shutdown()


@pytest.fixture(autouse=True)
def propagate_reelflow_logs() -> Iterator[None]:
    """Keep ``reelflow`` records reaching caplog after an app reconfigured logging."""
    logger = logging.getLogger("reelflow")
    previous = logger.propagate
    logger.propagate = True
    yield
    logger.propagate = previous


def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers.

    Args:
        config: Pytest config object
    """
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
