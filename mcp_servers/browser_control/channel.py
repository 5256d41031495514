"""Authenticated send/receive over one websocket connection."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from .signature import MessageSigner

logger = logging.getLogger("mcp.browser_control.channel")

PayloadHandler = Callable[[dict[str, Any]], Awaitable[None]]


class AuthenticatedChannel:
    """Signs everything it sends and verifies everything it receives.

    ``ws`` is a websockets connection (or anything exposing ``state``,
    ``send(str)``, ``close()`` and async iteration over text frames).
    """

    def __init__(self, ws: Any, signer: MessageSigner, *, name: str = "channel") -> None:
        self._ws = ws
        self._signer = signer
        self.name = name
        self.frames_rejected = 0

    @property
    def is_open(self) -> bool:
        return getattr(self._ws, "state", None) is State.OPEN

    async def send(self, payload: dict[str, Any]) -> bool:
        """Send one signed frame. Returns False (and logs) instead of raising."""
        if not self.is_open:
            logger.error("send_skipped: %s socket is not open", self.name)
            return False
        try:
            frame = self._signer.seal(payload)
        except (TypeError, ValueError) as exc:
            logger.error("send_skipped: %s payload not serialisable: %s", self.name, exc)
            return False
        try:
            await self._ws.send(frame)
        except (ConnectionClosed, OSError) as exc:
            logger.error("send_failed: %s %s", self.name, exc)
            return False
        return True

    async def serve(self, handler: PayloadHandler) -> None:
        """Deliver verified payloads to ``handler`` until the socket closes."""
        try:
            async for raw in self._ws:
                payload = self._signer.open_frame(raw)
                if payload is None:
                    self.frames_rejected += 1
                    continue
                try:
                    await handler(payload)
                except Exception:  # noqa: BLE001
                    logger.exception("handler_failed: %s", self.name)
        except ConnectionClosed as exc:
            logger.info("channel_closed: %s code=%s", self.name, getattr(exc.rcvd, "code", None))

    async def close(self) -> None:
        with contextlib.suppress(Exception):
            await self._ws.close()


__all__ = ["AuthenticatedChannel", "PayloadHandler"]
