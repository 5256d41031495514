"""Reconnecting websocket endpoints.

Each endpoint runs the same small state machine::

    disconnected -> connecting -> open
    open -> disconnected            (socket closed / errored)
    connecting -> disconnected      (connect failed)
    open -> closing -> disconnected (local stop, or the peer was replaced)

From ``disconnected`` a fixed-interval retry re-enters ``connecting``. The
retry is unbounded on purpose: the peer may come back at any time.

The agent dials (``DialingTransport``), the front-end listens
(``ListeningTransport``). Several endpoints on distinct ports may run side by
side; ``TransportGroup`` treats the system as connected when any of them is
open and fans sends out to every open one.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Iterator
from enum import Enum
from typing import Any

from websockets.asyncio.client import connect
from websockets.asyncio.server import serve

from .channel import AuthenticatedChannel
from .signature import MessageSigner

logger = logging.getLogger("mcp.browser_control.transport")

DEFAULT_RETRY_INTERVAL = 2.0
MAX_FRAME_BYTES = 4_000_000


class ChannelState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


StateListener = Callable[["TransportEndpoint", ChannelState, ChannelState], None]
MessageHandler = Callable[["TransportEndpoint", dict[str, Any]], Awaitable[None]]


class TransportEndpoint:
    """Owns one socket slot: its channel, its state and the retry loop."""

    def __init__(self, name: str, signer: MessageSigner, *, retry_interval: float = DEFAULT_RETRY_INTERVAL) -> None:
        self.name = name
        self.retry_interval = max(0.01, float(retry_interval))
        self._signer = signer
        self._state = ChannelState.DISCONNECTED
        self._channel: AuthenticatedChannel | None = None
        self._listeners: list[StateListener] = []
        self._handler: MessageHandler | None = None
        self._opened = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._stopping = False
        self._last_error: str | None = None
        self._opened_at_ms: int | None = None

    # ─────────────────────────────────────────────────────────────────────────
    # State
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ChannelState.OPEN and self._channel is not None

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def set_message_handler(self, handler: MessageHandler | None) -> None:
        self._handler = handler

    def status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            **({"openedAtMs": self._opened_at_ms} if self._opened_at_ms and self.is_open else {}),
            **({"lastError": self._last_error} if self._last_error else {}),
        }

    def _set_state(self, new: ChannelState) -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        if new is ChannelState.OPEN:
            self._opened_at_ms = int(time.time() * 1000)
            self._opened.set()
        else:
            self._opened.clear()
        # Redial churn (connecting <-> disconnected every interval) stays at debug.
        level = logging.INFO if ChannelState.OPEN in (old, new) else logging.DEBUG
        logger.log(level, "state_changed: %s %s -> %s", self.name, old.value, new.value)
        for listener in list(self._listeners):
            try:
                listener(self, old, new)
            except Exception:  # noqa: BLE001
                logger.exception("state_listener_failed: %s", self.name)

    async def wait_open(self, timeout: float) -> bool:
        if self.is_open:
            return True
        try:
            await asyncio.wait_for(self._opened.wait(), timeout=max(0.0, float(timeout)))
        except asyncio.TimeoutError:
            return self.is_open
        return self.is_open

    # ─────────────────────────────────────────────────────────────────────────
    # I/O
    # ─────────────────────────────────────────────────────────────────────────

    async def send(self, payload: dict[str, Any]) -> bool:
        channel = self._channel
        if self._state is not ChannelState.OPEN or channel is None:
            logger.error("send_skipped: %s is %s", self.name, self._state.value)
            return False
        return await channel.send(payload)

    async def attach(self, ws: Any) -> None:
        """Serve one connection until it closes.

        A second ``attach`` while a channel is live replaces it: the old
        socket is closed and the endpoint passes through ``closing`` and
        ``disconnected`` before opening again.
        """
        if self._channel is not None:
            await self._retire_channel()
        self._set_state(ChannelState.CONNECTING)
        channel = AuthenticatedChannel(ws, self._signer, name=self.name)
        self._channel = channel
        self._last_error = None
        self._set_state(ChannelState.OPEN)
        try:
            await channel.serve(self._deliver)
        finally:
            if self._channel is channel:
                self._channel = None
                self._set_state(ChannelState.DISCONNECTED)

    async def _deliver(self, payload: dict[str, Any]) -> None:
        handler = self._handler
        if handler is None:
            logger.warning("payload_unhandled: %s has no message handler", self.name)
            return
        await handler(self, payload)

    async def _retire_channel(self) -> None:
        channel = self._channel
        if channel is None:
            return
        self._channel = None
        self._set_state(ChannelState.CLOSING)
        await channel.close()
        self._set_state(ChannelState.DISCONNECTED)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def start(self) -> None:
        if type(self)._run is TransportEndpoint._run:
            raise TypeError(f"{type(self).__name__} has no connect loop; pass sockets to attach() instead")
        if self._task is not None and not self._task.done():
            return
        self._stopping = False
        self._task = asyncio.create_task(self._run(), name=f"transport:{self.name}")

    async def stop(self) -> None:
        self._stopping = True
        await self._retire_channel()
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._set_state(ChannelState.DISCONNECTED)

    async def _run(self) -> None:
        """Connect loop of the dialing and listening endpoints."""
        raise NotImplementedError


class DialingTransport(TransportEndpoint):
    """Agent side: dial the front-end, redial at a fixed interval forever."""

    def __init__(
        self,
        url: str,
        signer: MessageSigner,
        *,
        name: str | None = None,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        open_timeout: float = 5.0,
    ) -> None:
        super().__init__(name or url, signer, retry_interval=retry_interval)
        self.url = url
        self.open_timeout = float(open_timeout)

    async def _run(self) -> None:
        while not self._stopping:
            self._set_state(ChannelState.CONNECTING)
            try:
                ws = await connect(
                    self.url,
                    open_timeout=self.open_timeout,
                    ping_interval=None,
                    max_size=MAX_FRAME_BYTES,
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                # Refused / timed out / bad handshake: all retried the same way.
                self._last_error = str(exc) or type(exc).__name__
                logger.debug("connect_failed: %s %s", self.name, self._last_error)
                self._set_state(ChannelState.DISCONNECTED)
            else:
                try:
                    await self.attach(ws)
                finally:
                    with contextlib.suppress(Exception):
                        await ws.close()
            if not self._stopping:
                await asyncio.sleep(self.retry_interval)


class ListeningTransport(TransportEndpoint):
    """Front-end side: listen on one port and accept one agent at a time."""

    def __init__(
        self,
        host: str,
        port: int,
        signer: MessageSigner,
        *,
        name: str | None = None,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
    ) -> None:
        super().__init__(name or f"{host}:{port}", signer, retry_interval=retry_interval)
        self.host = host
        self.port = int(port)
        self._server: Any | None = None

    @property
    def listening(self) -> bool:
        return self._server is not None

    @property
    def bound_port(self) -> int | None:
        server = self._server
        if server is None:
            return None
        for sock in server.sockets:
            return int(sock.getsockname()[1])
        return None

    def status(self) -> dict[str, Any]:
        return {**super().status(), "listening": self.listening, "port": self.bound_port or self.port}

    async def _run(self) -> None:
        while not self._stopping:
            try:
                self._server = await serve(
                    self.attach,
                    self.host,
                    self.port,
                    ping_interval=None,
                    max_size=MAX_FRAME_BYTES,
                )
            except OSError as exc:
                # Port busy or not permitted; another endpoint may still work.
                self._last_error = str(exc)
                logger.warning("bind_failed: %s %s", self.name, exc)
                await asyncio.sleep(self.retry_interval)
                continue
            logger.info("listening: %s port=%s", self.name, self.bound_port)
            try:
                await self._server.wait_closed()
            finally:
                self._server = None

    async def stop(self) -> None:
        self._stopping = True
        await self._retire_channel()
        server = self._server
        if server is not None:
            server.close()
            with contextlib.suppress(Exception):
                await server.wait_closed()
        await super().stop()


class TransportGroup:
    """Independent endpoints treated as one logical link."""

    def __init__(self, endpoints: Iterable[TransportEndpoint]) -> None:
        self._endpoints = list(endpoints)
        names = [ep.name for ep in self._endpoints]
        if len(set(names)) != len(names):
            raise ValueError(f"transport endpoint names must be unique: {names}")

    def __iter__(self) -> Iterator[TransportEndpoint]:
        return iter(self._endpoints)

    def __len__(self) -> int:
        return len(self._endpoints)

    def open_endpoints(self) -> list[TransportEndpoint]:
        return [ep for ep in self._endpoints if ep.is_open]

    def is_connected(self) -> bool:
        return any(ep.is_open for ep in self._endpoints)

    def status(self) -> list[dict[str, Any]]:
        return [ep.status() for ep in self._endpoints]

    async def send(self, payload: dict[str, Any], endpoints: Iterable[TransportEndpoint] | None = None) -> list[str]:
        """Send to every open endpoint (or the given ones); return where it went."""
        targets = list(endpoints) if endpoints is not None else self.open_endpoints()
        delivered: list[str] = []
        for ep in targets:
            if await ep.send(payload):
                delivered.append(ep.name)
        return delivered

    async def wait_open(self, timeout: float) -> bool:
        deadline = time.monotonic() + max(0.0, float(timeout))
        while True:
            if self.is_connected():
                return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(0.02)

    async def start(self) -> None:
        for ep in self._endpoints:
            await ep.start()

    async def stop(self) -> None:
        for ep in self._endpoints:
            await ep.stop()


__all__ = [
    "DEFAULT_RETRY_INTERVAL",
    "ChannelState",
    "DialingTransport",
    "ListeningTransport",
    "MessageHandler",
    "StateListener",
    "TransportEndpoint",
    "TransportGroup",
]
