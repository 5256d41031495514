"""
Tool registry with dispatch table for the MCP server.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .types import HandlerFunc, ToolResult

if TYPE_CHECKING:
    from ..bridge import BrowserBridge
    from ..config import BridgeConfig

logger = logging.getLogger("mcp.browser_control.registry")


class ToolRegistry:
    """Registry for tool handlers with an agent-connection gate."""

    def __init__(self) -> None:
        # name -> (handler, requires_connection)
        self._handlers: dict[str, tuple[HandlerFunc, bool]] = {}

    def register(self, name: str, handler: HandlerFunc, requires_connection: bool = True) -> None:
        self._handlers[name] = (handler, requires_connection)

    def get(self, name: str) -> tuple[HandlerFunc, bool] | None:
        return self._handlers.get(name)

    def has(self, name: str) -> bool:
        return name in self._handlers

    def dispatch(
        self,
        name: str,
        bridge: BrowserBridge,
        config: BridgeConfig,
        arguments: dict[str, Any],
    ) -> ToolResult:
        """Dispatch a tool call; bridge errors propagate to the caller."""
        handler_info = self._handlers.get(name)
        if handler_info is None:
            raise KeyError(f"Unknown tool: {name}")

        handler, requires_connection = handler_info
        if requires_connection and not bridge.is_connected():
            # Allow a short wait: the agent may still be dialing right after startup.
            if config.connect_timeout > 0:
                bridge.wait_for_connection(timeout=config.connect_timeout)
            if not bridge.is_connected():
                logger.info("tool_blocked: %s agent not connected", name)
                return ToolResult.error(
                    "Browser agent is not connected",
                    tool=name,
                    suggestion="Start browser-control-agent with the same shared secret and ports, then retry",
                    details={"ports": ",".join(str(p) for p in config.ports)},
                )

        return handler(bridge, config, arguments)

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers.keys())

    def __len__(self) -> int:
        return len(self._handlers)


def create_default_registry() -> ToolRegistry:
    from .handlers import TOOL_HANDLERS

    registry = ToolRegistry()
    for name, handler in TOOL_HANDLERS.items():
        registry.register(name, handler)
    return registry


__all__ = ["ToolRegistry", "create_default_registry"]
