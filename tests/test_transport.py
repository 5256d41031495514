from __future__ import annotations

import asyncio
import contextlib
import socket
from typing import Any

import pytest

from conftest import SECRET, FakeBrowser, free_port, socket_pair


def test_dialer_and_listener_exchange_signed_payloads() -> None:
    from mcp_servers.browser_control.signature import MessageSigner
    from mcp_servers.browser_control.transport import ChannelState, DialingTransport, ListeningTransport

    port = free_port()

    async def _main() -> None:
        signer = MessageSigner(SECRET)
        listener = ListeningTransport("127.0.0.1", port, signer, retry_interval=0.05)
        dialer = DialingTransport(f"ws://127.0.0.1:{port}", signer, retry_interval=0.05)
        received: list[dict[str, Any]] = []

        async def _on_message(_ep: Any, payload: dict[str, Any]) -> None:
            received.append(payload)

        listener.set_message_handler(_on_message)
        await listener.start()
        await dialer.start()
        try:
            assert await dialer.wait_open(3.0)
            assert await listener.wait_open(3.0)
            assert listener.status()["listening"] is True
            assert await dialer.send({"resource": "tabs", "correlationId": "x-1", "tabs": []}) is True
            for _ in range(100):
                if received:
                    break
                await asyncio.sleep(0.01)
            assert received == [{"resource": "tabs", "correlationId": "x-1", "tabs": []}]
        finally:
            await dialer.stop()
            await listener.stop()
        assert dialer.state is ChannelState.DISCONNECTED
        assert listener.state is ChannelState.DISCONNECTED

    asyncio.run(_main())


def test_reconnect_drains_pending_and_reopens(fake_browser: FakeBrowser) -> None:
    from mcp_servers.browser_control.agent import BrowserAgent
    from mcp_servers.browser_control.config import BridgeConfig
    from mcp_servers.browser_control.errors import TransportError
    from mcp_servers.browser_control.gateway import RequestGateway
    from mcp_servers.browser_control.protocol import GetTabContent, OpenTab
    from mcp_servers.browser_control.signature import MessageSigner
    from mcp_servers.browser_control.transport import DialingTransport, ListeningTransport, TransportGroup

    port = free_port()
    fake_browser.add_tab(1, "https://slow.example", text="slow")
    fake_browser.extract_delay = 0.5

    async def _main() -> None:
        signer = MessageSigner(SECRET)
        listener = ListeningTransport("127.0.0.1", port, signer, retry_interval=0.05)
        gateway = RequestGateway(TransportGroup([listener]), default_timeout=5.0)
        dialer = DialingTransport(f"ws://127.0.0.1:{port}", signer, retry_interval=0.05)
        agent = BrowserAgent(BridgeConfig(secret=SECRET), fake_browser, endpoints=[dialer])

        await listener.start()
        await agent.start()
        try:
            assert await listener.wait_open(3.0)
            pending = [asyncio.create_task(gateway.call(GetTabContent(tab_id=1))) for _ in range(3)]
            await asyncio.sleep(0.1)
            assert gateway.pending_count == 3

            await listener.stop()
            for task in pending:
                with pytest.raises(TransportError):
                    await asyncio.wait_for(task, timeout=2.0)
            assert gateway.pending_count == 0

            # The agent keeps redialing; the endpoint re-opens once it is reachable again.
            await listener.start()
            assert await listener.wait_open(3.0)
            assert await dialer.wait_open(3.0)
            result = await gateway.call(OpenTab(url="https://example.com"))
            assert result.get("tabId") == 42
        finally:
            await agent.stop()
            await listener.stop()

    asyncio.run(_main())


def test_listener_retries_bind_until_port_is_free() -> None:
    from mcp_servers.browser_control.signature import MessageSigner
    from mcp_servers.browser_control.transport import ListeningTransport

    port = free_port()
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(("127.0.0.1", port))
    blocker.listen(1)

    async def _main() -> None:
        listener = ListeningTransport("127.0.0.1", port, MessageSigner(SECRET), retry_interval=0.05)
        await listener.start()
        try:
            await asyncio.sleep(0.2)
            status = listener.status()
            assert status["listening"] is False
            assert isinstance(status.get("lastError"), str) and status["lastError"]

            blocker.close()
            for _ in range(100):
                if listener.listening:
                    break
                await asyncio.sleep(0.02)
            assert listener.listening
            assert listener.bound_port == port
        finally:
            await listener.stop()

    try:
        asyncio.run(_main())
    finally:
        with contextlib.suppress(Exception):
            blocker.close()


def test_dialer_keeps_retrying_while_nothing_listens() -> None:
    from mcp_servers.browser_control.signature import MessageSigner
    from mcp_servers.browser_control.transport import ChannelState, DialingTransport

    port = free_port()

    async def _main() -> None:
        dialer = DialingTransport(f"ws://127.0.0.1:{port}", MessageSigner(SECRET), retry_interval=0.02)
        seen: list[ChannelState] = []
        dialer.add_state_listener(lambda _ep, _old, new: seen.append(new))
        await dialer.start()
        await asyncio.sleep(0.3)
        await dialer.stop()
        # Several connect attempts, none of them ever opened.
        assert seen.count(ChannelState.CONNECTING) >= 3
        assert ChannelState.OPEN not in seen
        assert await dialer.send({"cmd": "get-tab-list", "correlationId": "c"}) is False

    asyncio.run(_main())


def test_group_reports_connected_if_any_endpoint_is_open() -> None:
    from mcp_servers.browser_control.signature import MessageSigner
    from mcp_servers.browser_control.transport import TransportEndpoint, TransportGroup

    async def _main() -> None:
        signer = MessageSigner(SECRET)
        a = TransportEndpoint("a", signer)
        b = TransportEndpoint("b", signer)
        group = TransportGroup([a, b])
        assert not group.is_connected()
        assert await group.wait_open(0.05) is False

        left, _right = socket_pair()
        task = asyncio.create_task(b.attach(left))
        await asyncio.sleep(0.01)
        assert group.is_connected()
        assert [ep.name for ep in group.open_endpoints()] == ["b"]
        assert await group.send({"cmd": "get-tab-list", "correlationId": "c"}) == ["b"]
        await left.close()
        await asyncio.wait_for(task, timeout=1.0)
        assert not group.is_connected()

    asyncio.run(_main())

    with pytest.raises(ValueError):
        TransportGroup([TransportEndpoint("dup", MessageSigner(SECRET)), TransportEndpoint("dup", MessageSigner(SECRET))])


def test_plain_endpoint_refuses_to_start() -> None:
    from mcp_servers.browser_control.signature import MessageSigner
    from mcp_servers.browser_control.transport import ChannelState, TransportEndpoint

    async def _main() -> None:
        endpoint = TransportEndpoint("manual", MessageSigner(SECRET))
        with pytest.raises(TypeError, match="attach"):
            await endpoint.start()
        assert endpoint.state is ChannelState.DISCONNECTED
        assert endpoint.status()["state"] == "disconnected"

    asyncio.run(_main())
