"""Synchronous facade over the front-end side of the bridge.

The MCP stdio loop is blocking. The listening endpoints, the gateway and every
pending request live on a private asyncio loop in a daemon thread; callers
submit coroutines with ``run()`` and block on the result.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import logging
import threading
import time
from collections.abc import Coroutine
from typing import Any, TypeVar

from .client import BrowserApi
from .config import BridgeConfig
from .errors import RequestTimeoutError, TransportError
from .gateway import RequestGateway
from .signature import MessageSigner
from .transport import ListeningTransport, TransportGroup

logger = logging.getLogger("mcp.browser_control.bridge")

T = TypeVar("T")


class BrowserBridge:
    def __init__(self, config: BridgeConfig) -> None:
        self.config = config
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._transports: TransportGroup | None = None
        self._gateway: RequestGateway | None = None
        self._api: BrowserApi | None = None

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        t = self._thread
        return bool(t is not None and t.is_alive() and self._loop is not None)

    @property
    def api(self) -> BrowserApi:
        api = self._api
        if api is None:
            raise TransportError("Browser bridge is not running")
        return api

    @property
    def transports(self) -> TransportGroup | None:
        return self._transports

    def start(self, *, wait_timeout: float = 5.0, require_listening: bool = False) -> None:
        """Start listening on every configured port.

        Returns once at least one port is bound or ``wait_timeout`` passes. A
        busy port is retried in the background; ``require_listening`` turns
        "nothing bound yet" into an error instead.
        """
        with self._lock:
            if self.running:
                return
            signer = MessageSigner(self.config.require_secret())
            loop = asyncio.new_event_loop()
            thread = threading.Thread(target=self._run_thread, args=(loop,), name="mcp-browser-bridge", daemon=True)
            self._loop = loop
            self._thread = thread
        thread.start()
        asyncio.run_coroutine_threadsafe(self._start_async(signer), loop).result(timeout=max(1.0, wait_timeout))

        deadline = time.time() + max(0.05, float(wait_timeout))
        while time.time() < deadline:
            if self._listening_ports():
                break
            time.sleep(0.05)
        bound = self._listening_ports()
        if bound:
            logger.info("bridge_started: ports=%s", ",".join(str(p) for p in bound))
            return
        errors = [s.get("lastError") for s in self.status().get("endpoints", []) if s.get("lastError")]
        if require_listening:
            self.stop()
            detail = f": {errors[-1]}" if errors else ""
            raise TransportError(f"Browser bridge could not bind any of {self.config.ports}{detail}")
        logger.warning("bridge_not_listening: ports=%s (retrying in background)", self.config.ports)

    def stop(self, *, timeout: float = 2.0) -> None:
        with self._lock:
            loop = self._loop
            thread = self._thread
            self._loop = None
            self._thread = None
        if loop is None:
            return
        with contextlib.suppress(Exception):
            asyncio.run_coroutine_threadsafe(self._shutdown_async(), loop).result(timeout=timeout)
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=timeout)
        self._api = None
        self._gateway = None
        self._transports = None
        logger.info("bridge_stopped")

    def _run_thread(self, loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_forever()
        finally:
            loop.close()

    async def _start_async(self, signer: MessageSigner) -> None:
        endpoints = [
            ListeningTransport(
                self.config.host,
                port,
                signer,
                name=f"listen:{port}",
                retry_interval=self.config.retry_interval,
            )
            for port in self.config.ports
        ]
        transports = TransportGroup(endpoints)
        gateway = RequestGateway(transports, default_timeout=self.config.request_timeout)
        self._transports = transports
        self._gateway = gateway
        self._api = BrowserApi(gateway)
        await transports.start()

    async def _shutdown_async(self) -> None:
        gateway = self._gateway
        if gateway is not None:
            gateway.close()
        transports = self._transports
        if transports is not None:
            await transports.stop()

    # ─────────────────────────────────────────────────────────────────────────
    # Status
    # ─────────────────────────────────────────────────────────────────────────

    def _listening_ports(self) -> list[int]:
        transports = self._transports
        if transports is None:
            return []
        return [
            ep.bound_port
            for ep in transports
            if isinstance(ep, ListeningTransport) and ep.listening and ep.bound_port is not None
        ]

    def is_connected(self) -> bool:
        transports = self._transports
        return bool(transports is not None and transports.is_connected())

    def wait_for_connection(self, *, timeout: float = 5.0) -> bool:
        deadline = time.time() + max(0.0, float(timeout))
        while True:
            if self.is_connected():
                return True
            if time.time() >= deadline:
                return False
            time.sleep(0.05)

    def status(self) -> dict[str, Any]:
        transports = self._transports
        gateway = self._gateway
        return {
            "running": self.running,
            "connected": self.is_connected(),
            "host": self.config.host,
            "endpoints": transports.status() if transports is not None else [],
            **({"pending": gateway.pending_count} if gateway is not None else {}),
        }

    # ─────────────────────────────────────────────────────────────────────────
    # Calls
    # ─────────────────────────────────────────────────────────────────────────

    def run(self, coro: Coroutine[Any, Any, T], *, timeout: float | None = None) -> T:
        """Run ``coro`` on the bridge loop and block for its result."""
        loop = self._loop
        if loop is None or not self.running:
            coro.close()
            raise TransportError("Browser bridge is not running")
        # The gateway enforces the request deadline; this one only guards the thread hop.
        limit = float(timeout) if timeout is not None else self.config.request_timeout + 5.0
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return future.result(timeout=limit)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            raise RequestTimeoutError("bridge call", limit) from exc


__all__ = ["BrowserBridge"]
