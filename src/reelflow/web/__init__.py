"""Web layer for reelflow.

This package provides the REST API controllers, DTOs, dependency providers
and exception handlers. They are registered by
:class:`reelflow.plugin.ReelflowPlugin` when ``enable_api`` is set (the
default).

Example:
    Basic usage::

        from litestar import Litestar
        from reelflow import ReelflowPlugin, ReelflowPluginConfig

        app = Litestar(
            plugins=[
                ReelflowPlugin(
                    config=ReelflowPluginConfig(
                        session_maker=session_maker,
                        services=services,
                        api_path_prefix="/reelflow",
                    )
                ),
            ],
        )
"""

from __future__ import annotations

from reelflow.web.controllers import (
    HumanReviewController,
    PreviewController,
    WorkflowRunController,
    WorkflowTemplateController,
)
from reelflow.web.dependencies import provide_caller
from reelflow.web.exceptions import reelflow_error_handler

__all__ = [
    "HumanReviewController",
    "PreviewController",
    "WorkflowRunController",
    "WorkflowTemplateController",
    "provide_caller",
    "reelflow_error_handler",
]
