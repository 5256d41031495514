"""Agent-side command routing.

Every command kind maps to exactly one handler; the table is checked against
``COMMAND_TYPES`` when the dispatcher is built, so a new kind without a
handler fails at startup instead of being dropped at runtime.

Commands run as independent tasks: a slow ``get-tab-content`` never holds
up a ``get-tab-list`` issued after it, and results may come back out of order.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Any

from .errors import PrimitiveError, ProtocolError
from .pager import DEFAULT_MAX_CONTENT_LENGTH, filter_links, page_text
from .primitives import BrowserPrimitives
from .protocol import (
    COMMAND_TYPES,
    CloseTabs,
    FindHighlight,
    GetBrowserRecentHistory,
    GetTabContent,
    GetTabList,
    GroupTabs,
    InboundCommand,
    OpenTab,
    ReorderTabs,
    Result,
    parse_command,
)

logger = logging.getLogger("mcp.browser_control.dispatcher")

DEFAULT_HISTORY_MAX_RESULTS = 200
# Correlation ids remembered for duplicate suppression (fan-out over several endpoints).
SEEN_IDS_LIMIT = 4096

Reply = Callable[[dict[str, Any]], Awaitable[bool]]
Handler = Callable[[Any], Awaitable[Any]]


class CommandDispatcher:
    def __init__(
        self,
        browser: BrowserPrimitives,
        *,
        max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH,
        history_max_results: int = DEFAULT_HISTORY_MAX_RESULTS,
    ) -> None:
        self.browser = browser
        self.max_content_length = int(max_content_length)
        self.history_max_results = int(history_max_results)
        self._handlers: dict[str, Handler] = {
            OpenTab.kind: self._open_tab,
            CloseTabs.kind: self._close_tabs,
            GetTabList.kind: self._get_tab_list,
            GetBrowserRecentHistory.kind: self._get_recent_history,
            GetTabContent.kind: self._get_tab_content,
            ReorderTabs.kind: self._reorder_tabs,
            FindHighlight.kind: self._find_highlight,
            GroupTabs.kind: self._group_tabs,
        }
        missing = sorted(set(COMMAND_TYPES) - set(self._handlers))
        if missing:
            raise RuntimeError(f"CommandDispatcher has no handler for: {', '.join(missing)}")
        self._tasks: set[asyncio.Task] = set()
        self._seen: OrderedDict[str, None] = OrderedDict()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def submit(self, payload: dict[str, Any], reply: Reply) -> asyncio.Task | None:
        """Decode ``payload`` and schedule it; malformed commands are logged and dropped."""
        try:
            inbound = parse_command(payload)
        except ProtocolError as exc:
            logger.error("command_dropped: %s", exc)
            return None
        if inbound.correlation_id in self._seen:
            # Same command delivered on another endpoint; it already ran once.
            logger.debug("command_duplicate: %s", inbound.correlation_id)
            return None
        self._seen[inbound.correlation_id] = None
        if len(self._seen) > SEEN_IDS_LIMIT:
            self._seen.popitem(last=False)
        task = asyncio.create_task(
            self.execute(inbound, reply),
            name=f"command:{inbound.command.kind}:{inbound.correlation_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def execute(self, inbound: InboundCommand, reply: Reply) -> Result | None:
        command = inbound.command
        handler = self._handlers[command.kind]
        try:
            fields = await handler(command)
        except PrimitiveError as exc:
            logger.warning("primitive_failed: cmd=%s %s", command.kind, exc)
            result = Result.failure(command, inbound.correlation_id, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("command_failed: cmd=%s", command.kind)
            result = Result.failure(command, inbound.correlation_id, str(exc) or type(exc).__name__)
        else:
            if fields is None:
                return None
            result = Result.for_command(command, inbound.correlation_id, **fields)
        if not await reply(result.to_payload()):
            logger.warning("result_undelivered: cmd=%s id=%s", command.kind, inbound.correlation_id)
        return result

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ─────────────────────────────────────────────────────────────────────────
    # Handlers
    # ─────────────────────────────────────────────────────────────────────────

    async def _open_tab(self, command: OpenTab) -> dict[str, Any] | None:
        if not command.url.startswith("https://"):
            # Security boundary: no result is sent, the caller times out.
            logger.error("open_tab_rejected: only https:// URLs may be opened (got %.80s)", command.url)
            return None
        tab_id = await self.browser.create_tab(command.url)
        return {"tabId": tab_id}

    async def _close_tabs(self, command: CloseTabs) -> dict[str, Any]:
        closed = 0
        for tab_id in command.tab_ids:
            try:
                await self.browser.remove_tab(tab_id)
                closed += 1
            except Exception as exc:  # noqa: BLE001
                logger.warning("close_tab_failed: tab=%s %s", tab_id, exc)
        logger.info("tabs_closed: %d/%d", closed, len(command.tab_ids))
        return {"tabIds": list(command.tab_ids)}

    async def _get_tab_list(self, command: GetTabList) -> dict[str, Any]:
        return {"tabs": await self.browser.query_tabs()}

    async def _get_recent_history(self, command: GetBrowserRecentHistory) -> dict[str, Any]:
        items = await self.browser.search_history(command.search_query or "", self.history_max_results)
        return {"historyItems": [item for item in items if isinstance(item, dict) and item.get("url")]}

    async def _get_tab_content(self, command: GetTabContent) -> dict[str, Any]:
        # Links are only extracted for the first window of a document.
        first_page = command.offset == 0
        snapshot = await self.browser.extract_page(command.tab_id, include_links=first_page)
        window = page_text(snapshot.text, command.offset, self.max_content_length)
        fields: dict[str, Any] = {
            "tabId": command.tab_id,
            "offset": window.offset,
            "isTruncated": window.is_truncated,
            "fullText": window.text,
            "totalLength": window.total_length,
        }
        if first_page:
            fields["links"] = filter_links(snapshot.links)
        return fields

    async def _reorder_tabs(self, command: ReorderTabs) -> dict[str, Any]:
        for index, tab_id in enumerate(command.tab_order):
            try:
                await self.browser.move_tab(tab_id, index)
            except Exception as exc:  # noqa: BLE001
                logger.warning("move_tab_failed: tab=%s index=%d %s", tab_id, index, exc)
        return {"tabOrder": list(command.tab_order)}

    async def _find_highlight(self, command: FindHighlight) -> dict[str, Any]:
        count = await self.browser.find_in_page(command.tab_id, command.query_phrase)
        if count > 0:
            await self.browser.activate_tab(command.tab_id)
            await self.browser.highlight(command.tab_id, command.query_phrase)
        return {"noOfResults": count}

    async def _group_tabs(self, command: GroupTabs) -> dict[str, Any]:
        group_id = await self.browser.group_tabs(
            list(command.tab_ids),
            collapsed=command.is_collapsed,
            color=command.group_color,
            title=command.group_title,
        )
        return {"groupId": group_id}


__all__ = ["DEFAULT_HISTORY_MAX_RESULTS", "SEEN_IDS_LIMIT", "CommandDispatcher", "Reply"]
