from __future__ import annotations

import asyncio
import socket
from typing import Any

import pytest
from websockets.protocol import State

from mcp_servers.browser_control.errors import PrimitiveError
from mcp_servers.browser_control.primitives import BrowserPrimitives, PageSnapshot

SECRET = "test-shared-secret"


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])


class MemorySocket:
    """In-process stand-in for a websockets connection (one side of a pair)."""

    def __init__(self) -> None:
        self.state = State.OPEN
        self.inbox: asyncio.Queue[str | None] = asyncio.Queue()
        self.peer: MemorySocket | None = None
        self.sent: list[str] = []

    async def send(self, frame: str) -> None:
        if self.state is not State.OPEN:
            raise OSError("socket closed")
        self.sent.append(frame)
        if self.peer is not None and self.peer.state is State.OPEN:
            await self.peer.inbox.put(frame)

    async def close(self) -> None:
        for sock in (self, self.peer):
            if sock is not None and sock.state is State.OPEN:
                sock.state = State.CLOSED
                sock.inbox.put_nowait(None)

    def __aiter__(self) -> MemorySocket:
        return self

    async def __anext__(self) -> str:
        item = await self.inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item


def socket_pair() -> tuple[MemorySocket, MemorySocket]:
    a, b = MemorySocket(), MemorySocket()
    a.peer, b.peer = b, a
    return a, b


class FakeBrowser(BrowserPrimitives):
    """Scriptable browser: tabs live in a dict, every call is recorded."""

    def __init__(self) -> None:
        self.next_tab_id = 42
        self.tabs: dict[int, dict[str, Any]] = {}
        self.pages: dict[int, PageSnapshot] = {}
        self.history: list[dict[str, Any]] = []
        self.calls: list[tuple[str, Any]] = []
        self.extract_delay = 0.0
        self.fail_remove: set[int] = set()
        self.groups = 0

    def add_tab(self, tab_id: int, url: str, title: str = "", *, text: str = "", links: list | None = None) -> None:
        self.tabs[tab_id] = {"id": tab_id, "url": url, "title": title}
        self.pages[tab_id] = PageSnapshot(text=text, links=list(links or []))

    def _require(self, tab_id: int) -> None:
        if tab_id not in self.tabs:
            raise PrimitiveError(f"No tab with id {tab_id}")

    async def create_tab(self, url: str) -> int:
        self.calls.append(("create_tab", url))
        tab_id = self.next_tab_id
        self.next_tab_id += 1
        self.add_tab(tab_id, url)
        return tab_id

    async def remove_tab(self, tab_id: int) -> None:
        self.calls.append(("remove_tab", tab_id))
        if tab_id in self.fail_remove:
            raise PrimitiveError(f"cannot close {tab_id}")
        self._require(tab_id)
        del self.tabs[tab_id]

    async def query_tabs(self) -> list[dict[str, Any]]:
        self.calls.append(("query_tabs", None))
        return [dict(t) for t in self.tabs.values()]

    async def search_history(self, text: str, max_results: int) -> list[dict[str, Any]]:
        self.calls.append(("search_history", (text, max_results)))
        items = [h for h in self.history if text in h.get("url", "") or text in h.get("title", "")]
        return items[:max_results]

    async def extract_page(self, tab_id: int, *, include_links: bool = True) -> PageSnapshot:
        self.calls.append(("extract_page", (tab_id, include_links)))
        if self.extract_delay:
            await asyncio.sleep(self.extract_delay)
        self._require(tab_id)
        snap = self.pages[tab_id]
        return snap if include_links else PageSnapshot(text=snap.text)

    async def move_tab(self, tab_id: int, index: int) -> None:
        self.calls.append(("move_tab", (tab_id, index)))
        self._require(tab_id)

    async def find_in_page(self, tab_id: int, phrase: str) -> int:
        self.calls.append(("find_in_page", (tab_id, phrase)))
        self._require(tab_id)
        return self.pages[tab_id].text.count(phrase) if phrase else 0

    async def activate_tab(self, tab_id: int) -> None:
        self.calls.append(("activate_tab", tab_id))

    async def highlight(self, tab_id: int, phrase: str) -> None:
        self.calls.append(("highlight", (tab_id, phrase)))

    async def group_tabs(self, tab_ids: list[int], *, collapsed: bool, color: str, title: str) -> int:
        self.calls.append(("group_tabs", (list(tab_ids), collapsed, color, title)))
        self.groups += 1
        return 100 + self.groups

    def called(self, name: str) -> list[Any]:
        return [args for call, args in self.calls if call == name]


@pytest.fixture
def fake_browser() -> FakeBrowser:
    return FakeBrowser()
