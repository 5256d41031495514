"""Contract for the browser operations the agent can execute.

Implementations raise ``PrimitiveError`` when an operation fails (unknown
tab, unsupported operation, script failure).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class PageSnapshot:
    """Text and links of a page as rendered *now*."""

    text: str
    links: list[dict[str, Any]] = field(default_factory=list)


class BrowserPrimitives(ABC):
    @abstractmethod
    async def create_tab(self, url: str) -> int: ...

    @abstractmethod
    async def remove_tab(self, tab_id: int) -> None: ...

    @abstractmethod
    async def query_tabs(self) -> list[dict[str, Any]]:
        """Tabs as dicts with at least ``id``, ``url``, ``title``; ``lastAccessed`` (epoch ms) when known."""

    @abstractmethod
    async def search_history(self, text: str, max_results: int) -> list[dict[str, Any]]:
        """History items (``url``, ``title``, ``lastVisitTime`` epoch ms), newest first."""

    @abstractmethod
    async def extract_page(self, tab_id: int, *, include_links: bool = True) -> PageSnapshot: ...

    @abstractmethod
    async def move_tab(self, tab_id: int, index: int) -> None: ...

    @abstractmethod
    async def find_in_page(self, tab_id: int, phrase: str) -> int:
        """Case-sensitive match count of ``phrase`` in the page text."""

    @abstractmethod
    async def activate_tab(self, tab_id: int) -> None: ...

    @abstractmethod
    async def highlight(self, tab_id: int, phrase: str) -> None: ...

    @abstractmethod
    async def group_tabs(self, tab_ids: list[int], *, collapsed: bool, color: str, title: str) -> int: ...

    async def close(self) -> None:
        return None


__all__ = ["BrowserPrimitives", "PageSnapshot"]
