"""Tool schema definitions."""

from __future__ import annotations

from typing import Any

from ..protocol import GROUP_COLORS

MAX_TAB_LIST_LIMIT = 500
DEFAULT_TAB_LIST_LIMIT = 100

_SCHEMA = "http://json-schema.org/draft-07/schema#"

OPEN_TAB_TOOL: dict[str, Any] = {
    "name": "open-browser-tab",
    "description": "Open a new tab in the user's browser (useful when the user asks to open a website). "
    "Only https:// URLs are opened.",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {"url": {"type": "string", "description": "https:// URL to open"}},
        "required": ["url"],
        "additionalProperties": False,
    },
}

CLOSE_TABS_TOOL: dict[str, Any] = {
    "name": "close-browser-tabs",
    "description": "Close tabs in the user's browser by tab IDs",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {"tabIds": {"type": "array", "items": {"type": "integer"}}},
        "required": ["tabIds"],
        "additionalProperties": False,
    },
}

LIST_TABS_TOOL: dict[str, Any] = {
    "name": "get-list-of-open-tabs",
    "description": "Get the list of open tabs in the user's browser. "
    "Use offset and limit parameters for pagination when there are many tabs.",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {
            "offset": {
                "type": "integer",
                "minimum": 0,
                "default": 0,
                "description": "Starting index for pagination (0-based, must be >= 0)",
            },
            "limit": {
                "type": "integer",
                "default": DEFAULT_TAB_LIST_LIMIT,
                "description": f"Maximum number of tabs to return (default: {DEFAULT_TAB_LIST_LIMIT}, "
                f"max: {MAX_TAB_LIST_LIMIT})",
            },
        },
        "additionalProperties": False,
    },
}

HISTORY_TOOL: dict[str, Any] = {
    "name": "get-recent-browser-history",
    "description": "Get the list of recent browser history (to get all, don't use searchQuery)",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {"searchQuery": {"type": "string"}},
        "additionalProperties": False,
    },
}

TAB_CONTENT_TOOL: dict[str, Any] = {
    "name": "get-tab-web-content",
    "description": """Get the full text content of the webpage and the list of links in the webpage, by tab ID.
Use "offset" only for larger documents when the first call was truncated and if you require more content in order to assist the user.""",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {
            "tabId": {"type": "integer"},
            "offset": {"type": "integer", "minimum": 0, "default": 0},
        },
        "required": ["tabId"],
        "additionalProperties": False,
    },
}

REORDER_TABS_TOOL: dict[str, Any] = {
    "name": "reorder-browser-tabs",
    "description": "Change the order of open browser tabs",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {"tabOrder": {"type": "array", "items": {"type": "integer"}}},
        "required": ["tabOrder"],
        "additionalProperties": False,
    },
}

FIND_HIGHLIGHT_TOOL: dict[str, Any] = {
    "name": "find-highlight-in-browser-tab",
    "description": "Find and highlight text in a browser tab (use a query phrase that exists in the web content)",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {
            "tabId": {"type": "integer"},
            "queryPhrase": {"type": "string"},
        },
        "required": ["tabId", "queryPhrase"],
        "additionalProperties": False,
    },
}

GROUP_TABS_TOOL: dict[str, Any] = {
    "name": "group-browser-tabs",
    "description": "Organize opened browser tabs in a new tab group",
    "inputSchema": {
        "$schema": _SCHEMA,
        "type": "object",
        "properties": {
            "tabIds": {"type": "array", "items": {"type": "integer"}},
            "isCollapsed": {"type": "boolean", "default": False},
            "groupColor": {"type": "string", "enum": list(GROUP_COLORS), "default": "grey"},
            "groupTitle": {"type": "string", "default": "New Group"},
        },
        "required": ["tabIds"],
        "additionalProperties": False,
    },
}

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    OPEN_TAB_TOOL,
    CLOSE_TABS_TOOL,
    LIST_TABS_TOOL,
    HISTORY_TOOL,
    TAB_CONTENT_TOOL,
    REORDER_TABS_TOOL,
    FIND_HIGHLIGHT_TOOL,
    GROUP_TABS_TOOL,
]

__all__ = ["DEFAULT_TAB_LIST_LIMIT", "MAX_TAB_LIST_LIMIT", "TOOL_DEFINITIONS"]
