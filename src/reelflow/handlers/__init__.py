"""Built-in node handlers for reelflow."""

from __future__ import annotations

from reelflow.engine.registry import NodeHandlerRegistry
from reelflow.handlers.base import BaseNodeHandler, build_filename
from reelflow.handlers.generation import (
    CharacterImagesHandler,
    FinalComposeHandler,
    KeyframesHandler,
    LlmToolHandler,
    ParseScriptHandler,
    SceneImageHandler,
    VideoHandler,
)
from reelflow.handlers.human import BreakpointHandler, ReviewAssetsHandler
from reelflow.handlers.passthrough import EndHandler, StartHandler, StoryboardHandler

__all__ = [
    "BaseNodeHandler",
    "BreakpointHandler",
    "CharacterImagesHandler",
    "EndHandler",
    "FinalComposeHandler",
    "KeyframesHandler",
    "LlmToolHandler",
    "ParseScriptHandler",
    "ReviewAssetsHandler",
    "SceneImageHandler",
    "StartHandler",
    "StoryboardHandler",
    "VideoHandler",
    "build_default_registry",
    "build_filename",
]

DEFAULT_HANDLERS = (
    StartHandler,
    EndHandler,
    LlmToolHandler,
    ParseScriptHandler,
    StoryboardHandler,
    CharacterImagesHandler,
    SceneImageHandler,
    KeyframesHandler,
    VideoHandler,
    ReviewAssetsHandler,
    BreakpointHandler,
    FinalComposeHandler,
)


def build_default_registry() -> NodeHandlerRegistry:
    """Create a registry with a handler for every built-in node type."""
    registry = NodeHandlerRegistry()
    for handler_class in DEFAULT_HANDLERS:
        registry.register(handler_class())
    return registry
