"""Front-end request/response over the transport group.

``RequestGateway.call`` turns one typed command into one result: it issues a
fresh correlation id, fans the command out to every open endpoint and waits
for the first matching reply. Later duplicates (one per extra endpoint) find
no pending entry and are dropped by the tracker.

Failure modes are distinct so callers can react to them:

- ``TransportError``: nothing open to send on, every send failed, or the
  endpoint(s) carrying the request dropped before a reply came back.
- ``RequestTimeoutError``: no reply within the deadline (including a command
  the agent rejected silently, like a non-https ``open-tab``).
- ``PrimitiveError``: the agent answered with an ``error`` result.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .correlation import CorrelationTracker
from .errors import PrimitiveError, ProtocolError, RequestTimeoutError, TransportError
from .protocol import Command, Result, parse_result
from .transport import ChannelState, TransportEndpoint, TransportGroup

logger = logging.getLogger("mcp.browser_control.gateway")

DEFAULT_REQUEST_TIMEOUT = 15.0


class RequestGateway:
    def __init__(
        self,
        transports: TransportGroup,
        tracker: CorrelationTracker | None = None,
        *,
        default_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self.transports = transports
        self.tracker = tracker or CorrelationTracker()
        self.default_timeout = float(default_timeout)
        self.replies_dropped = 0
        for endpoint in transports:
            endpoint.add_state_listener(self._on_state_change)
            endpoint.set_message_handler(self.handle_payload)

    @property
    def pending_count(self) -> int:
        return len(self.tracker)

    async def call(self, command: Command, *, timeout: float | None = None) -> Result:
        deadline = self.default_timeout if timeout is None else max(0.0, float(timeout))
        targets = self.transports.open_endpoints()
        if not targets:
            raise TransportError("Browser agent not connected (no open endpoint)")

        loop = asyncio.get_running_loop()
        correlation_id = self.tracker.new_id()
        future: asyncio.Future = loop.create_future()
        # Registered before sending: a fast reply must find its entry.
        self.tracker.register(correlation_id, future, endpoints=[ep.name for ep in targets])
        try:
            delivered = await self.transports.send(command.to_payload(correlation_id), endpoints=targets)
            if not delivered:
                raise TransportError(f"Failed to send {command.kind}: no endpoint accepted the frame")
            logger.debug("request_sent: cmd=%s id=%s via=%s", command.kind, correlation_id, ",".join(delivered))
            try:
                result: Result = await asyncio.wait_for(future, timeout=deadline)
            except asyncio.TimeoutError as exc:
                logger.warning("request_timeout: cmd=%s id=%s after %.1fs", command.kind, correlation_id, deadline)
                raise RequestTimeoutError(command.kind, deadline) from exc
        finally:
            self.tracker.discard(correlation_id)

        if result.is_error:
            raise PrimitiveError(str(result.get("message") or f"{command.kind} failed"))
        if result.resource != command.result_resource:
            raise ProtocolError(f"Expected {command.result_resource!r} for {command.kind}, got {result.resource!r}")
        return result

    async def handle_payload(self, endpoint: TransportEndpoint, payload: dict[str, Any]) -> None:
        if "cmd" in payload:
            # Only the agent executes commands.
            logger.warning("command_ignored: %s sent cmd=%s to the front-end", endpoint.name, payload.get("cmd"))
            return
        try:
            result = parse_result(payload)
        except ProtocolError as exc:
            logger.error("result_malformed: %s %s", endpoint.name, exc)
            return
        if not self.tracker.resolve(result.correlation_id, result):
            self.replies_dropped += 1

    def _on_state_change(self, endpoint: TransportEndpoint, old: ChannelState, new: ChannelState) -> None:
        if new is not ChannelState.DISCONNECTED or old not in (ChannelState.OPEN, ChannelState.CLOSING):
            return
        rejected = self.tracker.reject_endpoint(
            endpoint.name,
            TransportError(f"Browser agent disconnected ({endpoint.name})"),
        )
        if rejected:
            logger.warning("pending_rejected: %s count=%d", endpoint.name, rejected)

    def close(self) -> int:
        return self.tracker.reject_all(TransportError("Gateway closed"))


__all__ = ["DEFAULT_REQUEST_TIMEOUT", "RequestGateway"]
