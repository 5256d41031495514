"""Typed async API over ``RequestGateway`` (one method per command kind)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .gateway import RequestGateway
from .protocol import (
    CloseTabs,
    FindHighlight,
    GetBrowserRecentHistory,
    GetTabContent,
    GetTabList,
    GroupTabs,
    OpenTab,
    ReorderTabs,
)


@dataclass(frozen=True)
class TabContent:
    tab_id: int
    offset: int
    is_truncated: bool
    text: str
    total_length: int
    links: list[dict[str, str]] | None = field(default=None)

    @property
    def end(self) -> int:
        return self.offset + len(self.text)


def _int_list(value: Any) -> list[int]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, int) and not isinstance(v, bool)]


class BrowserApi:
    def __init__(self, gateway: RequestGateway, *, timeout: float | None = None) -> None:
        self.gateway = gateway
        self.timeout = timeout

    async def open_tab(self, url: str) -> int:
        result = await self.gateway.call(OpenTab(url=url), timeout=self.timeout)
        return int(result.get("tabId"))

    async def close_tabs(self, tab_ids: list[int]) -> list[int]:
        result = await self.gateway.call(CloseTabs(tab_ids=tuple(tab_ids)), timeout=self.timeout)
        return _int_list(result.get("tabIds"))

    async def get_tab_list(self) -> list[dict[str, Any]]:
        result = await self.gateway.call(GetTabList(), timeout=self.timeout)
        tabs = result.get("tabs")
        return [t for t in tabs if isinstance(t, dict)] if isinstance(tabs, list) else []

    async def get_browser_recent_history(self, search_query: str | None = None) -> list[dict[str, Any]]:
        result = await self.gateway.call(GetBrowserRecentHistory(search_query=search_query), timeout=self.timeout)
        items = result.get("historyItems")
        return [i for i in items if isinstance(i, dict)] if isinstance(items, list) else []

    async def get_tab_content(self, tab_id: int, offset: int = 0) -> TabContent:
        result = await self.gateway.call(GetTabContent(tab_id=tab_id, offset=offset), timeout=self.timeout)
        links = result.get("links")
        return TabContent(
            tab_id=int(result.get("tabId", tab_id)),
            offset=int(result.get("offset", offset)),
            is_truncated=bool(result.get("isTruncated")),
            text=str(result.get("fullText") or ""),
            total_length=int(result.get("totalLength") or 0),
            links=links if isinstance(links, list) else None,
        )

    async def reorder_tabs(self, tab_order: list[int]) -> list[int]:
        result = await self.gateway.call(ReorderTabs(tab_order=tuple(tab_order)), timeout=self.timeout)
        return _int_list(result.get("tabOrder"))

    async def find_highlight(self, tab_id: int, query_phrase: str) -> int:
        result = await self.gateway.call(FindHighlight(tab_id=tab_id, query_phrase=query_phrase), timeout=self.timeout)
        return int(result.get("noOfResults") or 0)

    async def group_tabs(
        self,
        tab_ids: list[int],
        *,
        is_collapsed: bool = False,
        group_color: str = "grey",
        group_title: str = "New Group",
    ) -> int:
        command = GroupTabs(
            tab_ids=tuple(tab_ids),
            is_collapsed=is_collapsed,
            group_color=group_color,
            group_title=group_title,
        )
        result = await self.gateway.call(command, timeout=self.timeout)
        return int(result.get("groupId"))


__all__ = ["BrowserApi", "TabContent"]
