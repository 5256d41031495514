"""Browser-side agent: dial the MCP front-end and execute its commands.

Run as ``browser-control-agent`` next to a Chrome started with
``--remote-debugging-port``. The agent keeps one dialing endpoint per
configured port and redials forever, so the front-end can be (re)started in
any order.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any

from .cdp_browser import CdpBrowser
from .config import BridgeConfig, parse_ports
from .dispatcher import CommandDispatcher
from .errors import ConfigError
from .primitives import BrowserPrimitives
from .signature import MessageSigner
from .transport import DialingTransport, TransportEndpoint, TransportGroup

logger = logging.getLogger("mcp.browser_control.agent")


class BrowserAgent:
    def __init__(
        self,
        config: BridgeConfig,
        browser: BrowserPrimitives,
        *,
        endpoints: list[TransportEndpoint] | None = None,
    ) -> None:
        self.config = config
        self.browser = browser
        self.dispatcher = CommandDispatcher(
            browser,
            max_content_length=config.max_content_length,
            history_max_results=config.history_max_results,
        )
        if endpoints is None:
            signer = MessageSigner(config.require_secret())
            endpoints = [
                DialingTransport(
                    f"ws://{config.host}:{port}",
                    signer,
                    name=f"agent:{port}",
                    retry_interval=config.retry_interval,
                )
                for port in config.ports
            ]
        self.transports = TransportGroup(endpoints)
        for endpoint in self.transports:
            endpoint.set_message_handler(self._on_message)

    async def _on_message(self, endpoint: TransportEndpoint, payload: dict[str, Any]) -> None:
        if "cmd" not in payload:
            logger.debug("payload_ignored: %s sent a non-command", endpoint.name)
            return
        # The result goes back on the endpoint the command arrived on.
        self.dispatcher.submit(payload, endpoint.send)

    def status(self) -> dict[str, Any]:
        return {"endpoints": self.transports.status(), "inFlight": self.dispatcher.in_flight}

    async def start(self) -> None:
        await self.transports.start()
        logger.info("agent_started: %s", ", ".join(ep.name for ep in self.transports))

    async def stop(self) -> None:
        await self.transports.stop()
        await self.dispatcher.drain()
        await self.browser.close()
        logger.info("agent_stopped")

    async def run_forever(self) -> None:
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="browser-control-agent",
        description="Connect a Chrome DevTools endpoint to the browser-control MCP server.",
    )
    parser.add_argument("--host", default=None, help="front-end host (MCP_BRIDGE_HOST)")
    parser.add_argument("--ports", default=None, help="comma-separated front-end ports (MCP_BRIDGE_PORTS)")
    parser.add_argument("--cdp-host", default=None, help="DevTools host (MCP_CDP_HOST)")
    parser.add_argument("--cdp-port", type=int, default=None, help="DevTools port (MCP_CDP_PORT)")
    parser.add_argument("--profile", default=None, help="browser profile dir for history (MCP_BROWSER_PROFILE)")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = BridgeConfig.from_env()
        if args.host:
            config.host = args.host
        if args.ports:
            config.ports = parse_ports(args.ports) or config.ports
        if args.cdp_host:
            config.cdp_host = args.cdp_host
        if args.cdp_port:
            config.cdp_port = args.cdp_port
        if args.profile:
            config.profile_path = args.profile
        config.require_secret()
    except ConfigError as exc:
        logger.error("config_invalid: %s", exc)
        return 2

    browser = CdpBrowser(config.cdp_host, config.cdp_port, profile_path=config.profile_path)
    agent = BrowserAgent(config, browser)
    try:
        asyncio.run(agent.run_forever())
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
