"""
MCP server that controls the user's browser through the authenticated bridge.

This module provides the stdio entry point and JSON-RPC handling; tool
dispatch lives in server/registry.py.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable
from typing import Any

from .bridge import BrowserBridge
from .config import BridgeConfig
from .errors import BridgeError, PrimitiveError, RequestTimeoutError, ToolArgumentError, TransportError
from .server.contract import (
    DEFAULT_PROTOCOL_VERSION,
    LATEST_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    initialize_result,
    select_protocol,
    tools_list,
)
from .server.registry import create_default_registry
from .server.types import ToolResult

logger = logging.getLogger("mcp.browser_control")

__all__ = [
    "SUPPORTED_PROTOCOL_VERSIONS",
    "LATEST_PROTOCOL_VERSION",
    "DEFAULT_PROTOCOL_VERSION",
    "McpServer",
    "main",
]


def _write_message(payload: dict[str, Any]) -> None:
    """Write JSON-RPC message to stdout."""
    data = json.dumps(payload, ensure_ascii=False)
    sys.stdout.buffer.write((data + "\n").encode())
    sys.stdout.buffer.flush()


def _read_message() -> dict[str, Any] | None:
    """Read one JSON-RPC message from stdin; ``None`` at EOF."""
    while True:
        line = sys.stdin.buffer.readline()
        if not line:
            return None
        line = line.strip()
        if not line:
            continue
        try:
            msg = json.loads(line.decode())
        except ValueError:
            logger.error("jsonrpc_malformed: %.200r", line)
            continue
        return msg if isinstance(msg, dict) else {}


class McpServer:
    """MCP server with registry-based tool dispatch."""

    def __init__(
        self,
        config: BridgeConfig | None = None,
        bridge: BrowserBridge | None = None,
        *,
        send: Callable[[dict[str, Any]], None] = _write_message,
        start_bridge: bool = True,
    ) -> None:
        self.config = config or BridgeConfig.from_env()
        self.bridge = bridge or BrowserBridge(self.config)
        self.registry = create_default_registry()
        self._send = send
        self.bridge_error: str | None = None

        if start_bridge:
            try:
                # Do not block initialize on the agent; tools wait for it instead.
                self.bridge.start(wait_timeout=0.5)
            except BridgeError as exc:
                self.bridge_error = str(exc)
                logger.error("bridge_start_failed: %s", exc)

    def close(self) -> None:
        self.bridge.stop()

    def handle_initialize(self, request_id: Any, params: dict[str, Any] | None = None) -> None:
        requested = (params or {}).get("protocolVersion") if isinstance(params, dict) else None
        protocol = select_protocol(requested)
        self._send({"jsonrpc": "2.0", "id": request_id, "result": initialize_result(protocol)})

    def handle_list_tools(self, request_id: Any) -> None:
        self._send({"jsonrpc": "2.0", "id": request_id, "result": {"tools": tools_list()}})

    def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        logger.info("tool=%s args=%s", name, sorted(arguments))
        try:
            if not name:
                return ToolResult.error("Missing tool name")
            if not self.registry.has(name):
                return ToolResult.error(f"Unknown tool: {name}", tool=name)
            if self.bridge_error:
                return ToolResult.error(
                    self.bridge_error,
                    tool=name,
                    suggestion="Fix the bridge configuration (browser-control-init) and restart the server",
                )
            return self.registry.dispatch(name, self.bridge, self.config, arguments)
        except ToolArgumentError as e:
            logger.info("tool_error tool=%s reason=%s", e.tool, e.reason)
            return ToolResult.error(e.reason, tool=e.tool, suggestion=e.suggestion or None, details=e.details)
        except RequestTimeoutError as e:
            logger.warning("tool_timeout tool=%s %s", name, e)
            return ToolResult.error(
                str(e),
                tool=name,
                suggestion="The browser did not answer in time; check the tab still exists and retry",
            )
        except (TransportError, PrimitiveError) as e:
            logger.info("bridge_error tool=%s %s", name, e)
            return ToolResult.error(str(e), tool=name)
        except Exception as exc:  # noqa: BLE001
            logger.exception("tool_call_failed")
            return ToolResult.error(str(exc) or type(exc).__name__, tool=name)

    def handle_call_tool(self, request_id: Any, name: str, arguments: dict[str, Any]) -> None:
        result = self.call_tool(name, arguments if isinstance(arguments, dict) else {})
        self._send(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "result": {"content": result.to_content_list(), "isError": result.is_error},
            }
        )

    def dispatch(self, message: dict[str, Any]) -> None:
        """Dispatch an incoming JSON-RPC message to the matching handler."""
        if not message:
            return

        method = message.get("method")
        request_id = message.get("id")
        params = message.get("params") or {}

        if method == "initialize":
            self.handle_initialize(request_id, params)
        elif isinstance(method, str) and method.startswith("notifications/"):
            return
        elif method == "tools/list":
            self.handle_list_tools(request_id)
        elif method == "tools/call":
            name = params.get("name")
            arguments = params.get("arguments") or {}
            self.handle_call_tool(request_id, name or "", arguments)
        elif method == "ping":
            self._send({"jsonrpc": "2.0", "id": request_id, "result": {}})
        elif request_id is not None:
            self._send(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "error": {"code": -32601, "message": f"Method {method} not found"},
                }
            )


def main() -> None:
    """Main entry point for the MCP server."""
    # stdout carries the protocol; logs go to stderr.
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    server = McpServer()
    try:
        while True:
            message = _read_message()
            if message is None:
                break
            server.dispatch(message)
    finally:
        server.close()


if __name__ == "__main__":
    main()
