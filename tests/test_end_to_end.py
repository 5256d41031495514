from __future__ import annotations

import asyncio
import threading
from typing import Any

import pytest

from conftest import SECRET, FakeBrowser, free_port


class _AgentThread:
    """Runs a BrowserAgent on its own event loop, like the separate agent process."""

    def __init__(self, config: Any, browser: FakeBrowser) -> None:
        self.config = config
        self.browser = browser
        self.ready = threading.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop: asyncio.Event | None = None
        self._thread = threading.Thread(target=self._run, name="test-agent", daemon=True)

    def _run(self) -> None:
        asyncio.run(self._main())

    async def _main(self) -> None:
        from mcp_servers.browser_control.agent import BrowserAgent

        self._loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        agent = BrowserAgent(self.config, self.browser)
        await agent.start()
        self.ready.set()
        try:
            await self._stop.wait()
        finally:
            await agent.stop()

    def start(self) -> None:
        self._thread.start()
        assert self.ready.wait(5.0)

    def stop(self) -> None:
        if self._loop is not None and self._stop is not None:
            self._loop.call_soon_threadsafe(self._stop.set)
        self._thread.join(timeout=5.0)


@pytest.fixture
def linked(fake_browser: FakeBrowser):  # type: ignore[no-untyped-def]
    from mcp_servers.browser_control.bridge import BrowserBridge
    from mcp_servers.browser_control.config import BridgeConfig

    config = BridgeConfig(
        secret=SECRET,
        ports=[free_port()],
        retry_interval=0.05,
        request_timeout=5.0,
        connect_timeout=3.0,
    )
    bridge = BrowserBridge(config)
    bridge.start(wait_timeout=3.0, require_listening=True)
    agent = _AgentThread(config, fake_browser)
    agent.start()
    try:
        assert bridge.wait_for_connection(timeout=5.0)
        yield bridge, fake_browser
    finally:
        agent.stop()
        bridge.stop()


def test_open_tab_round_trip(linked) -> None:  # type: ignore[no-untyped-def]
    bridge, browser = linked
    assert bridge.run(bridge.api.open_tab("https://example.com")) == 42
    assert browser.called("create_tab") == ["https://example.com"]
    status = bridge.status()
    assert status["connected"] is True
    assert status["pending"] == 0
    assert [ep["state"] for ep in status["endpoints"]] == ["open"]


def test_large_page_is_read_in_windows(linked) -> None:  # type: ignore[no-untyped-def]
    bridge, browser = linked
    text = "".join(chr(ord("a") + (i % 26)) for i in range(120_000))
    links = [{"url": "https://example.com/next", "text": "Next"}, {"url": "http://plain.example", "text": "x"}]
    browser.add_tab(7, "https://long.example", "Long", text=text, links=links)

    first = bridge.run(bridge.api.get_tab_content(7, 0))
    assert first.is_truncated is True
    assert first.total_length == 120_000
    assert first.text == text[:50_000]
    assert first.links == [{"text": "Next", "url": "https://example.com/next"}]

    second = bridge.run(bridge.api.get_tab_content(7, first.end))
    assert second.offset == 50_000
    assert second.is_truncated is True
    assert second.links is None
    assert second.text == text[50_000:100_000]

    third = bridge.run(bridge.api.get_tab_content(7, second.end))
    assert third.is_truncated is False
    assert first.text + second.text + third.text == text


def test_mcp_tool_calls_through_the_bridge(linked) -> None:  # type: ignore[no-untyped-def]
    from mcp_servers.browser_control.main import McpServer

    bridge, browser = linked
    browser.add_tab(3, "https://docs.example", "Docs", text="y" * 60_000)
    out: list[dict[str, Any]] = []
    server = McpServer(bridge.config, bridge, send=out.append, start_bridge=False)

    server.dispatch(
        {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "tools/call",
            "params": {"name": "get-tab-web-content", "arguments": {"tabId": 3}},
        }
    )
    result = out[-1]["result"]
    assert result["isError"] is False
    texts = [c["text"] for c in result["content"]]
    assert "includes character range 0-50000 out of 60000" in texts[0]
    assert texts[1] == "y" * 50_000

    server.dispatch(
        {
            "jsonrpc": "2.0",
            "id": 2,
            "method": "tools/call",
            "params": {"name": "get-tab-web-content", "arguments": {"tabId": 999}},
        }
    )
    failed = out[-1]["result"]
    assert failed["isError"] is True
    assert "No tab with id 999" in failed["content"][0]["text"]


def test_rejected_open_tab_times_out_without_hanging(linked) -> None:  # type: ignore[no-untyped-def]
    from mcp_servers.browser_control.errors import RequestTimeoutError
    from mcp_servers.browser_control.protocol import OpenTab

    bridge, browser = linked
    gateway = bridge.api.gateway
    # Bypasses the tool-level https check to exercise the agent's silent drop.
    with pytest.raises(RequestTimeoutError):
        bridge.run(gateway.call(OpenTab(url="http://example.com"), timeout=0.3))
    assert browser.called("create_tab") == []
    assert bridge.status()["pending"] == 0
