"""Node handler registry.

This module provides the registry the executor dispatches through: one handler
per node type.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reelflow.core.protocols import NodeHandler

__all__ = ["NodeHandlerRegistry"]


class NodeHandlerRegistry:
    """Registry mapping node types to their handlers.

    Attributes:
        _handlers: Map of node type to handler instance.
    """

    def __init__(self) -> None:
        """Initialize an empty handler registry."""
        self._handlers: dict[str, NodeHandler] = {}

    def register(self, handler: NodeHandler) -> None:
        """Register a handler under its ``node_type``.

        A later registration for the same node type replaces the earlier one.

        Args:
            handler: The handler to register.

        Example:
            >>> registry = NodeHandlerRegistry()
            >>> registry.register(StartHandler())
        """
        self._handlers[str(handler.node_type)] = handler

    def get(self, node_type: str) -> NodeHandler:
        """Retrieve the handler for a node type.

        Args:
            node_type: The node type.

        Returns:
            The registered handler.

        Raises:
            KeyError: If no handler is registered for the node type.
        """
        key = str(node_type)
        if key not in self._handlers:
            msg = f"No handler registered for node type '{key}'"
            raise KeyError(msg)
        return self._handlers[key]

    def has_handler(self, node_type: str) -> bool:
        return str(node_type) in self._handlers

    def node_types(self) -> list[str]:
        """Return the registered node types in registration order."""
        return list(self._handlers)
