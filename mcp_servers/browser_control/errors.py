"""Error taxonomy for the browser control bridge.

Authentication failures are deliberately absent: a frame with a bad signature
is dropped at the channel boundary and never surfaces as an exception.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class BridgeError(Exception):
    pass


class ConfigError(BridgeError):
    pass


class ProtocolError(BridgeError):
    """A payload does not match the command/result vocabulary."""


class TransportError(BridgeError):
    """No open endpoint, connection refused, or the peer dropped mid-flight."""


class RequestTimeoutError(BridgeError):
    """No matching result arrived before the caller's deadline."""

    def __init__(self, kind: str, timeout: float) -> None:
        super().__init__(f"No reply for {kind} within {timeout:.1f}s")
        self.kind = kind
        self.timeout = timeout


class PrimitiveError(BridgeError):
    """The browser-side operation itself failed (e.g. tab not found)."""


@dataclass
class ToolArgumentError(Exception):
    """Structured argument error for AI callers."""

    tool: str
    reason: str
    suggestion: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        if self.suggestion:
            return f"[{self.tool}] {self.reason}. Suggestion: {self.suggestion}"
        return f"[{self.tool}] {self.reason}"


__all__ = [
    "BridgeError",
    "ConfigError",
    "PrimitiveError",
    "ProtocolError",
    "RequestTimeoutError",
    "ToolArgumentError",
    "TransportError",
]
