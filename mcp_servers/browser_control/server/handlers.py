"""Tool handlers: validate arguments, call the bridge, render text for the model."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from ..errors import ToolArgumentError
from ..pager import TabContentWindow, describe_window
from ..protocol import GROUP_COLORS
from .definitions import DEFAULT_TAB_LIST_LIMIT, MAX_TAB_LIST_LIMIT
from .types import HandlerFunc, ToolResult

if TYPE_CHECKING:
    from ..bridge import BrowserBridge
    from ..config import BridgeConfig


# ─────────────────────────────────────────────────────────────────────────────
# Formatting
# ─────────────────────────────────────────────────────────────────────────────

_MINUTE = 60
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR


def _relative(seconds: float) -> str:
    s = abs(seconds)
    if s < 45:
        return "a few seconds"
    if s < 90:
        return "a minute"
    if s < 45 * _MINUTE:
        return f"{round(s / _MINUTE)} minutes"
    if s < 90 * _MINUTE:
        return "an hour"
    if s < 22 * _HOUR:
        return f"{round(s / _HOUR)} hours"
    if s < 36 * _HOUR:
        return "a day"
    if s < 26 * _DAY:
        return f"{round(s / _DAY)} days"
    if s < 46 * _DAY:
        return "a month"
    if s < 320 * _DAY:
        return f"{round(s / (30 * _DAY))} months"
    if s < 548 * _DAY:
        return "a year"
    return f"{round(s / (365 * _DAY))} years"


def humanize_since(epoch_ms: Any, *, now_ms: int | None = None) -> str:
    """``"3 hours ago"`` style label; ``"unknown"`` when there is no timestamp."""
    if isinstance(epoch_ms, bool) or not isinstance(epoch_ms, (int, float)) or epoch_ms <= 0:
        return "unknown"
    now = int(time.time() * 1000) if now_ms is None else now_ms
    delta = (now - float(epoch_ms)) / 1000.0
    label = _relative(delta)
    return f"in {label}" if delta < 0 else f"{label} ago"


# ─────────────────────────────────────────────────────────────────────────────
# Argument validation
# ─────────────────────────────────────────────────────────────────────────────


def _int_arg(tool: str, args: dict[str, Any], key: str, default: int | None = None) -> int:
    value = args.get(key, default)
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ToolArgumentError(tool=tool, reason=f"'{key}' must be an integer", details={key: value})
    return value


def _int_list_arg(tool: str, args: dict[str, Any], key: str) -> list[int]:
    value = args.get(key)
    if not isinstance(value, list):
        raise ToolArgumentError(
            tool=tool, reason=f"'{key}' must be a list of tab ids", suggestion="Get ids from get-list-of-open-tabs"
        )
    out: list[int] = []
    for item in value:
        if isinstance(item, float) and item.is_integer():
            item = int(item)
        if isinstance(item, bool) or not isinstance(item, int):
            raise ToolArgumentError(tool=tool, reason=f"'{key}' must only contain integers", details={key: value})
        out.append(item)
    return out


def _str_arg(tool: str, args: dict[str, Any], key: str, default: str | None = None) -> str:
    value = args.get(key, default)
    if not isinstance(value, str):
        raise ToolArgumentError(tool=tool, reason=f"'{key}' must be a string")
    return value


# ─────────────────────────────────────────────────────────────────────────────
# Handlers
# ─────────────────────────────────────────────────────────────────────────────


def handle_open_tab(bridge: BrowserBridge, config: BridgeConfig, args: dict[str, Any]) -> ToolResult:
    tool = "open-browser-tab"
    url = _str_arg(tool, args, "url").strip()
    if not url.startswith("https://"):
        # The agent drops these without replying; fail here instead of timing out.
        raise ToolArgumentError(
            tool=tool,
            reason="Only https:// URLs can be opened",
            suggestion="Use the https:// form of the address",
            details={"url": url},
        )
    tab_id = bridge.run(bridge.api.open_tab(url))
    return ToolResult.text(f"{url} opened in tab id {tab_id}", data={"tabId": tab_id})


def handle_close_tabs(bridge: BrowserBridge, config: BridgeConfig, args: dict[str, Any]) -> ToolResult:
    tab_ids = _int_list_arg("close-browser-tabs", args, "tabIds")
    closed = bridge.run(bridge.api.close_tabs(tab_ids))
    return ToolResult.text("Closed tabs", data={"tabIds": closed})


def handle_list_tabs(bridge: BrowserBridge, config: BridgeConfig, args: dict[str, Any]) -> ToolResult:
    tool = "get-list-of-open-tabs"
    offset = _int_arg(tool, args, "offset", 0)
    if offset < 0:
        raise ToolArgumentError(tool=tool, reason="'offset' must be >= 0", details={"offset": offset})
    limit = min(max(1, _int_arg(tool, args, "limit", DEFAULT_TAB_LIST_LIMIT)), MAX_TAB_LIST_LIMIT)

    tabs = bridge.run(bridge.api.get_tab_list())
    total = len(tabs)
    page = tabs[offset : offset + limit]
    has_more = offset + limit < total
    header = f"Showing tabs {offset + 1}-{offset + len(page)} of {total} total tabs"
    if has_more:
        header += f" (use offset={offset + limit} to see more)"
    lines = [header]
    for tab in page:
        lines.append(
            f"tab id={tab.get('id')}, tab url={tab.get('url')}, tab title={tab.get('title')}, "
            f"last accessed={humanize_since(tab.get('lastAccessed'))}"
        )
    return ToolResult.texts(lines, data={"total": total, "tabs": page})


def handle_history(bridge: BrowserBridge, config: BridgeConfig, args: dict[str, Any]) -> ToolResult:
    query = args.get("searchQuery")
    if query is not None and not isinstance(query, str):
        raise ToolArgumentError(tool="get-recent-browser-history", reason="'searchQuery' must be a string")
    items = bridge.run(bridge.api.get_browser_recent_history(query or None))
    if not items:
        hint = "Try without a searchQuery" if query else ""
        return ToolResult.text(f"No history found. {hint}".rstrip(), data={"historyItems": []})
    return ToolResult.texts(
        [
            f'url={item.get("url")}, title="{item.get("title") or ""}", '
            f"lastVisitTime={humanize_since(item.get('lastVisitTime'))}"
            for item in items
        ],
        data={"historyItems": items},
    )


def handle_tab_content(bridge: BrowserBridge, config: BridgeConfig, args: dict[str, Any]) -> ToolResult:
    tool = "get-tab-web-content"
    tab_id = _int_arg(tool, args, "tabId")
    offset = _int_arg(tool, args, "offset", 0)
    if offset < 0:
        raise ToolArgumentError(tool=tool, reason="'offset' must be >= 0", details={"offset": offset})

    content = bridge.run(bridge.api.get_tab_content(tab_id, offset))
    items: list[str] = []
    if content.is_truncated or content.offset > 0:
        window = TabContentWindow(
            text=content.text,
            is_truncated=content.is_truncated,
            offset=content.offset,
            total_length=content.total_length,
        )
        items.append(
            f"The following text content is truncated due to size ({describe_window(window)}). "
            "If you want to read characters beyond this range, please use the 'get-tab-web-content' tool "
            "with an offset."
        )
    items.append(content.text)
    if content.offset == 0 and content.links:
        items.extend(f"Link text: {link.get('text')}, Link URL: {link.get('url')}" for link in content.links)
    return ToolResult.texts(
        items,
        data={
            "tabId": content.tab_id,
            "offset": content.offset,
            "isTruncated": content.is_truncated,
            "totalLength": content.total_length,
        },
    )


def handle_reorder_tabs(bridge: BrowserBridge, config: BridgeConfig, args: dict[str, Any]) -> ToolResult:
    order = _int_list_arg("reorder-browser-tabs", args, "tabOrder")
    new_order = bridge.run(bridge.api.reorder_tabs(order))
    return ToolResult.text(f"Tabs reordered: {', '.join(str(t) for t in new_order)}", data={"tabOrder": new_order})


def handle_find_highlight(bridge: BrowserBridge, config: BridgeConfig, args: dict[str, Any]) -> ToolResult:
    tool = "find-highlight-in-browser-tab"
    tab_id = _int_arg(tool, args, "tabId")
    phrase = _str_arg(tool, args, "queryPhrase")
    if not phrase:
        raise ToolArgumentError(tool=tool, reason="'queryPhrase' must not be empty")
    count = bridge.run(bridge.api.find_highlight(tab_id, phrase))
    return ToolResult.text(f"Number of results found and highlighted in the tab: {count}", data={"noOfResults": count})


def handle_group_tabs(bridge: BrowserBridge, config: BridgeConfig, args: dict[str, Any]) -> ToolResult:
    tool = "group-browser-tabs"
    tab_ids = _int_list_arg(tool, args, "tabIds")
    collapsed = args.get("isCollapsed", False)
    if not isinstance(collapsed, bool):
        raise ToolArgumentError(tool=tool, reason="'isCollapsed' must be a boolean")
    color = _str_arg(tool, args, "groupColor", "grey")
    if color not in GROUP_COLORS:
        raise ToolArgumentError(
            tool=tool,
            reason=f"Unsupported group color: {color}",
            suggestion=f"Use one of: {', '.join(GROUP_COLORS)}",
        )
    title = _str_arg(tool, args, "groupTitle", "New Group")
    group_id = bridge.run(
        bridge.api.group_tabs(tab_ids, is_collapsed=collapsed, group_color=color, group_title=title)
    )
    return ToolResult.text(
        f'Created tab group "{title}" with {len(tab_ids)} tabs (group ID: {group_id})',
        data={"groupId": group_id},
    )


TOOL_HANDLERS: dict[str, HandlerFunc] = {
    "open-browser-tab": handle_open_tab,
    "close-browser-tabs": handle_close_tabs,
    "get-list-of-open-tabs": handle_list_tabs,
    "get-recent-browser-history": handle_history,
    "get-tab-web-content": handle_tab_content,
    "reorder-browser-tabs": handle_reorder_tabs,
    "find-highlight-in-browser-tab": handle_find_highlight,
    "group-browser-tabs": handle_group_tabs,
}

__all__ = ["TOOL_HANDLERS", "humanize_since"]
