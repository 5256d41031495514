"""
Type definitions for MCP server responses and handlers.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..bridge import BrowserBridge
    from ..config import BridgeConfig


@dataclass(slots=True)
class ToolContent:
    """Single text item in a tool response."""

    text: str
    type: str = "text"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass(slots=True)
class ToolResult:
    """Result of a tool execution."""

    content: list[ToolContent] = field(default_factory=list)
    is_error: bool = False
    # Raw payload for tests and logs; not part of the MCP wire format.
    data: Any | None = None

    @classmethod
    def text(cls, text: str, *, data: Any | None = None) -> ToolResult:
        return cls(content=[ToolContent(text=text or "")], data=data)

    @classmethod
    def texts(cls, items: list[str], *, data: Any | None = None) -> ToolResult:
        """One content item per entry (tab, history item, link...)."""
        return cls(content=[ToolContent(text=t) for t in items], data=data)

    @classmethod
    def error(
        cls,
        message: str,
        *,
        tool: str | None = None,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> ToolResult:
        payload: dict[str, Any] = {"ok": False, "error": message}
        lines = [f"Error: {message}"]
        if tool:
            payload["tool"] = tool
            lines[0] = f"Error ({tool}): {message}"
        if suggestion:
            payload["suggestion"] = suggestion
            lines.append(f"Suggestion: {suggestion}")
        if details:
            payload["details"] = details
            lines.extend(f"{k}: {v}" for k, v in details.items())
        return cls(content=[ToolContent(text="\n".join(lines))], is_error=True, data=payload)

    def to_content_list(self) -> list[dict[str, Any]]:
        """Convert to MCP content list format."""
        return [c.to_dict() for c in self.content]


HandlerFunc = Callable[["BrowserBridge", "BridgeConfig", dict[str, Any]], ToolResult]
