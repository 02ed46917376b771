"""Litestar plugin for reelflow integration.

This module provides the ReelflowPlugin, which wires the run executor and the
template service into a Litestar application, registers the REST API and
runs the resume poller for the lifetime of the app.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from litestar.di import Provide
from litestar.exceptions import ImproperlyConfiguredException
from litestar.logging import LoggingConfig
from litestar.plugins import InitPluginProtocol

from reelflow.db.engine import WorkflowRunExecutor
from reelflow.db.templates import TemplateService
from reelflow.engine.poller import ResumePoller

if TYPE_CHECKING:
    from litestar.config.app import AppConfig
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reelflow.config import EngineConfig
    from reelflow.core.context import Services
    from reelflow.core.protocols import EventBus
    from reelflow.engine.registry import NodeHandlerRegistry

__all__ = ["ReelflowPlugin", "ReelflowPluginConfig"]


_LOGGER_NAME = "reelflow"


@dataclass
class ReelflowPluginConfig:
    """Configuration for the ReelflowPlugin.

    Attributes:
        session_maker: Async session factory, configured with
            ``expire_on_commit=False``. Required unless ``executor`` is given.
        services: Generation, storage and prompt collaborators. Required unless
            ``executor`` is given.
        engine_config: Optional engine limits and intervals.
        registry: Optional handler registry; the built-in handlers when omitted.
        event_bus: Optional receiver of run events.
        executor: Optional pre-configured WorkflowRunExecutor.
        enable_api: Whether to enable the REST API endpoints. Defaults to True.
        api_path_prefix: URL path prefix for all reelflow API endpoints.
        api_guards: List of Litestar guards to apply to all API endpoints.
        api_tags: OpenAPI tags to apply to API endpoints.
        include_api_in_schema: Whether to include API endpoints in the OpenAPI schema.
        enable_poller: Whether to run the resume poller while the app is up.
        log_level: Level of the ``reelflow`` logger registered on the app's
            LoggingConfig. None leaves the app's logging untouched.
    """

    session_maker: async_sessionmaker[AsyncSession] | None = None
    services: Services | None = None
    engine_config: EngineConfig | None = None
    registry: NodeHandlerRegistry | None = None
    event_bus: EventBus | None = None
    executor: WorkflowRunExecutor | None = None
    enable_api: bool = True
    api_path_prefix: str = "/reelflow"
    api_guards: list[Any] = field(default_factory=list)
    api_tags: list[str] = field(default_factory=lambda: ["Reelflow"])
    include_api_in_schema: bool = True
    enable_poller: bool = True
    log_level: str | None = "INFO"


class ReelflowPlugin(InitPluginProtocol):
    """Litestar plugin for reelflow.

    Provides dependency injection for the WorkflowRunExecutor
    (``run_executor``), the TemplateService (``template_service``) and the
    acting user (``caller``, read from the ``X-User-Id``/``X-User-Admin``
    headers), and starts the resume poller on app startup.

    Example:
        Basic usage::

            from litestar import Litestar
            from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

            from reelflow import ReelflowPlugin, ReelflowPluginConfig, Services

            engine = create_async_engine("postgresql+asyncpg://localhost/reelflow")
            app = Litestar(
                plugins=[
                    ReelflowPlugin(
                        config=ReelflowPluginConfig(
                            session_maker=async_sessionmaker(engine, expire_on_commit=False),
                            services=Services(generation=..., storage=..., prompts=...),
                        )
                    )
                ]
            )
    """

    __slots__ = ("_config", "_executor", "_poller", "_templates")

    def __init__(self, config: ReelflowPluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or ReelflowPluginConfig()
        self._executor: WorkflowRunExecutor | None = None
        self._templates: TemplateService | None = None
        self._poller: ResumePoller | None = None

    @property
    def executor(self) -> WorkflowRunExecutor:
        """Get the run executor.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._executor is None:
            msg = "ReelflowPlugin has not been initialized. Access executor after app startup."
            raise RuntimeError(msg)
        return self._executor

    @property
    def templates(self) -> TemplateService:
        """Get the template service.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._templates is None:
            msg = "ReelflowPlugin has not been initialized. Access templates after app startup."
            raise RuntimeError(msg)
        return self._templates

    @property
    def poller(self) -> ResumePoller | None:
        return self._poller

    def _build_executor(self) -> WorkflowRunExecutor:
        config = self._config
        if config.executor is not None:
            return config.executor
        if config.session_maker is None or config.services is None:
            msg = "ReelflowPluginConfig needs either an executor or both session_maker and services"
            raise ImproperlyConfiguredException(msg)
        return WorkflowRunExecutor(
            config.session_maker,
            config.services,
            registry=config.registry,
            config=config.engine_config,
            event_bus=config.event_bus,
        )

    async def _on_startup(self) -> None:
        if self._poller is not None:
            self._poller.start()

    async def _on_shutdown(self) -> None:
        if self._poller is not None:
            await self._poller.stop()
        if self._executor is not None:
            await self._executor.shutdown()

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Initialize the plugin when the Litestar app starts.

        This method:
        1. Creates or uses the provided WorkflowRunExecutor
        2. Creates the TemplateService on the executor's session factory
        3. Adds dependency providers to the app config
        4. Optionally registers the REST API controllers and exception handler
        5. Registers lifespan hooks that start and stop the resume poller

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.
        """
        self._executor = self._build_executor()
        self._templates = TemplateService(self._executor.session_maker)
        if self._config.enable_poller:
            self._poller = ResumePoller(self._executor, interval=self._executor.config.poll_interval)

        def provide_executor() -> WorkflowRunExecutor:
            return self._executor  # type: ignore[return-value]

        def provide_templates() -> TemplateService:
            return self._templates  # type: ignore[return-value]

        app_config.dependencies["run_executor"] = Provide(provide_executor, sync_to_thread=False)
        app_config.dependencies["template_service"] = Provide(provide_templates, sync_to_thread=False)

        if self._config.enable_api:
            from litestar import Router

            from reelflow.exceptions import ReelflowError
            from reelflow.web.controllers import (
                HumanReviewController,
                PreviewController,
                WorkflowRunController,
                WorkflowTemplateController,
            )
            from reelflow.web.dependencies import provide_caller
            from reelflow.web.exceptions import reelflow_error_handler

            app_config.dependencies["caller"] = Provide(provide_caller)

            router = Router(
                path=self._config.api_path_prefix,
                route_handlers=[
                    WorkflowTemplateController,
                    PreviewController,
                    WorkflowRunController,
                    HumanReviewController,
                ],
                guards=self._config.api_guards,
                tags=self._config.api_tags,
                include_in_schema=self._config.include_api_in_schema,
            )
            app_config.route_handlers.append(router)
            app_config.exception_handlers[ReelflowError] = reelflow_error_handler  # type: ignore[assignment]

        logging_config = app_config.logging_config
        if self._config.log_level is not None and isinstance(logging_config, LoggingConfig):
            logging_config.loggers.setdefault(
                _LOGGER_NAME,
                {"level": self._config.log_level, "handlers": ["queue_listener"], "propagate": False},
            )

        app_config.on_startup.append(self._on_startup)
        app_config.on_shutdown.append(self._on_shutdown)
        return app_config
