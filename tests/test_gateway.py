from __future__ import annotations

import asyncio

import pytest

from conftest import SECRET, FakeBrowser, socket_pair


def _wire(browser: FakeBrowser, *, names: tuple[str, ...] = ("front",), default_timeout: float = 2.0):
    from mcp_servers.browser_control.agent import BrowserAgent
    from mcp_servers.browser_control.config import BridgeConfig
    from mcp_servers.browser_control.gateway import RequestGateway
    from mcp_servers.browser_control.signature import MessageSigner
    from mcp_servers.browser_control.transport import TransportEndpoint, TransportGroup

    signer = MessageSigner(SECRET)
    fronts = [TransportEndpoint(name, signer) for name in names]
    gateway = RequestGateway(TransportGroup(fronts), default_timeout=default_timeout)
    backs = [TransportEndpoint(f"agent-{name}", signer) for name in names]
    agent = BrowserAgent(BridgeConfig(secret=SECRET), browser, endpoints=backs)
    return gateway, fronts, backs, agent


async def _attach(front, back):  # type: ignore[no-untyped-def]
    a, b = socket_pair()
    tasks = [asyncio.create_task(front.attach(a)), asyncio.create_task(back.attach(b))]
    await asyncio.sleep(0.01)
    return a, tasks


def test_call_resolves_with_matching_result(fake_browser: FakeBrowser) -> None:
    from mcp_servers.browser_control.protocol import OpenTab

    async def _main() -> None:
        gateway, fronts, backs, agent = _wire(fake_browser)
        sock, _tasks = await _attach(fronts[0], backs[0])
        result = await gateway.call(OpenTab(url="https://example.com"))
        assert result.resource == "opened-tab-id"
        assert result.get("tabId") == 42
        assert gateway.pending_count == 0
        await sock.close()
        await agent.stop()

    asyncio.run(_main())


def test_no_open_endpoint_fails_fast(fake_browser: FakeBrowser) -> None:
    from mcp_servers.browser_control.errors import TransportError
    from mcp_servers.browser_control.protocol import GetTabList

    async def _main() -> None:
        gateway, _fronts, _backs, _agent = _wire(fake_browser)
        with pytest.raises(TransportError):
            await gateway.call(GetTabList(), timeout=5.0)
        assert gateway.pending_count == 0

    asyncio.run(_main())


def test_error_result_raises_primitive_error(fake_browser: FakeBrowser) -> None:
    from mcp_servers.browser_control.errors import PrimitiveError
    from mcp_servers.browser_control.protocol import GetTabContent

    async def _main() -> None:
        gateway, fronts, backs, agent = _wire(fake_browser)
        sock, _tasks = await _attach(fronts[0], backs[0])
        with pytest.raises(PrimitiveError, match="No tab with id 404"):
            await gateway.call(GetTabContent(tab_id=404))
        await sock.close()
        await agent.stop()

    asyncio.run(_main())


def test_timeout_is_isolated_and_late_reply_is_dropped(fake_browser: FakeBrowser) -> None:
    from mcp_servers.browser_control.errors import RequestTimeoutError
    from mcp_servers.browser_control.protocol import GetTabContent, GetTabList

    fake_browser.add_tab(1, "https://slow.example", text="slow page")
    fake_browser.extract_delay = 0.3

    async def _main() -> None:
        gateway, fronts, backs, agent = _wire(fake_browser)
        sock, _tasks = await _attach(fronts[0], backs[0])

        slow = asyncio.create_task(gateway.call(GetTabContent(tab_id=1), timeout=0.1))
        fast = await gateway.call(GetTabList(), timeout=1.0)
        assert [t["id"] for t in fast.get("tabs")] == [1]

        with pytest.raises(RequestTimeoutError) as excinfo:
            await slow
        assert excinfo.value.kind == "get-tab-content"
        assert gateway.pending_count == 0

        # The agent still finishes; its reply no longer matches anything.
        await agent.dispatcher.drain()
        await asyncio.sleep(0.02)
        assert gateway.replies_dropped == 1
        assert gateway.pending_count == 0

        await sock.close()
        await agent.stop()

    asyncio.run(_main())


def test_disconnect_rejects_pending_requests(fake_browser: FakeBrowser) -> None:
    from mcp_servers.browser_control.errors import TransportError
    from mcp_servers.browser_control.protocol import GetTabContent
    from mcp_servers.browser_control.transport import ChannelState

    fake_browser.add_tab(1, "https://slow.example", text="slow page")
    fake_browser.extract_delay = 0.3

    async def _main() -> None:
        gateway, fronts, backs, agent = _wire(fake_browser)
        sock, _tasks = await _attach(fronts[0], backs[0])

        pending = asyncio.create_task(gateway.call(GetTabContent(tab_id=1), timeout=5.0))
        await asyncio.sleep(0.05)
        assert gateway.pending_count == 1

        await sock.close()
        with pytest.raises(TransportError):
            await asyncio.wait_for(pending, timeout=1.0)
        assert fronts[0].state is ChannelState.DISCONNECTED
        assert gateway.pending_count == 0
        await agent.stop()

    asyncio.run(_main())


def test_replacing_the_peer_cycles_through_closing(fake_browser: FakeBrowser) -> None:
    from mcp_servers.browser_control.errors import TransportError
    from mcp_servers.browser_control.protocol import GetTabContent, OpenTab

    fake_browser.add_tab(1, "https://slow.example", text="slow page")
    fake_browser.extract_delay = 0.3

    async def _main() -> None:
        gateway, fronts, backs, agent = _wire(fake_browser)
        transitions: list[tuple[str, str]] = []
        fronts[0].add_state_listener(lambda _ep, old, new: transitions.append((old.value, new.value)))

        first, _ = await _attach(fronts[0], backs[0])
        pending = asyncio.create_task(gateway.call(GetTabContent(tab_id=1), timeout=5.0))
        await asyncio.sleep(0.05)

        # A second agent connection on the same endpoint replaces the first.
        second, _ = await _attach(fronts[0], backs[0])
        with pytest.raises(TransportError):
            await asyncio.wait_for(pending, timeout=1.0)
        assert transitions[-4:] == [
            ("open", "closing"),
            ("closing", "disconnected"),
            ("disconnected", "connecting"),
            ("connecting", "open"),
        ]

        result = await gateway.call(OpenTab(url="https://example.com"))
        assert result.get("tabId") == 42
        await first.close()
        await second.close()
        await agent.stop()

    asyncio.run(_main())


def test_fan_out_executes_once_and_resolves_once(fake_browser: FakeBrowser) -> None:
    from mcp_servers.browser_control.protocol import OpenTab

    async def _main() -> None:
        gateway, fronts, backs, agent = _wire(fake_browser, names=("p1", "p2"))
        s1, _ = await _attach(fronts[0], backs[0])
        s2, _ = await _attach(fronts[1], backs[1])
        assert gateway.transports.is_connected()

        result = await gateway.call(OpenTab(url="https://example.com"))
        assert result.get("tabId") == 42
        await asyncio.sleep(0.02)
        # One agent behind both endpoints runs the command once.
        assert fake_browser.called("create_tab") == ["https://example.com"]
        assert gateway.replies_dropped == 0

        await s1.close()
        await s2.close()
        await agent.stop()

    asyncio.run(_main())


def test_dropping_the_endpoint_that_ran_the_command_rejects_the_call(
    fake_browser: FakeBrowser, monkeypatch: pytest.MonkeyPatch
) -> None:
    from mcp_servers.browser_control.errors import TransportError
    from mcp_servers.browser_control.protocol import GetTabContent, OpenTab

    fake_browser.add_tab(1, "https://slow.example", text="slow page")
    fake_browser.extract_delay = 0.5

    async def _main() -> None:
        gateway, fronts, backs, agent = _wire(fake_browser, names=("p1", "p2"))
        ran_on: list[str] = []
        submit = agent.dispatcher.submit

        def _recording_submit(payload, reply):  # type: ignore[no-untyped-def]
            task = submit(payload, reply)
            if task is not None:
                ran_on.append(reply.__self__.name)
            return task

        monkeypatch.setattr(agent.dispatcher, "submit", _recording_submit)
        sockets = {}
        for front, back in zip(fronts, backs):
            sockets[back.name], _ = await _attach(front, back)

        pending = asyncio.create_task(gateway.call(GetTabContent(tab_id=1), timeout=5.0))
        await asyncio.sleep(0.05)
        assert len(ran_on) == 1
        assert fake_browser.called("extract_page") == [(1, True)]

        # The other endpoint stays open, but its copy was deduplicated and will never be answered.
        await sockets[ran_on[0]].close()
        with pytest.raises(TransportError):
            await asyncio.wait_for(pending, timeout=1.0)
        assert gateway.pending_count == 0
        assert gateway.transports.is_connected()

        result = await gateway.call(OpenTab(url="https://example.com"), timeout=2.0)
        assert result.get("tabId") == 42

        for sock in sockets.values():
            await sock.close()
        await agent.stop()

    asyncio.run(_main())


def test_duplicate_replies_from_two_agents_resolve_once() -> None:
    from mcp_servers.browser_control.protocol import GetTabList

    first_browser = FakeBrowser()
    second_browser = FakeBrowser()
    first_browser.add_tab(1, "https://one")
    second_browser.add_tab(2, "https://two")

    async def _main() -> None:
        gateway, fronts, backs1, agent1 = _wire(first_browser, names=("p1", "p2"))
        _g2, _f2, backs2, agent2 = _wire(second_browser, names=("p1", "p2"))
        s1, _ = await _attach(fronts[0], backs1[0])
        s2, _ = await _attach(fronts[1], backs2[1])

        result = await gateway.call(GetTabList())
        assert len(result.get("tabs")) == 1
        await asyncio.sleep(0.05)
        assert gateway.replies_dropped == 1

        await s1.close()
        await s2.close()
        await agent1.stop()
        await agent2.stop()

    asyncio.run(_main())


def test_close_rejects_everything_pending(fake_browser: FakeBrowser) -> None:
    from mcp_servers.browser_control.errors import TransportError
    from mcp_servers.browser_control.protocol import GetTabContent

    fake_browser.add_tab(1, "https://slow.example", text="slow page")
    fake_browser.extract_delay = 0.2

    async def _main() -> None:
        gateway, fronts, backs, agent = _wire(fake_browser)
        sock, _ = await _attach(fronts[0], backs[0])
        calls = [asyncio.create_task(gateway.call(GetTabContent(tab_id=1))) for _ in range(3)]
        await asyncio.sleep(0.05)
        assert gateway.close() == 3
        for task in calls:
            with pytest.raises(TransportError):
                await task
        await sock.close()
        await agent.stop()

    asyncio.run(_main())
