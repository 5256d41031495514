"""Command/result vocabulary shared by the front-end and the agent.

Envelopes are plain dicts on the wire:

- command: ``{"cmd": "<kind>", "correlationId": "...", <args>}``
- result:  ``{"resource": "<name>", "correlationId": "...", <fields>}``

The set of command kinds is closed. Adding one means adding a dataclass here
*and* a handler in the dispatcher; the dispatcher refuses to start when a
kind has no handler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

from .errors import ProtocolError

GROUP_COLORS: tuple[str, ...] = ("grey", "blue", "red", "yellow", "green", "pink", "purple", "cyan", "orange")

ERROR_RESOURCE = "error"


def _require_int(payload: dict[str, Any], key: str) -> int:
    value = payload.get(key)
    # bool is an int subclass; a tab id of True is a schema error, not tab 1.
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProtocolError(f"'{key}' must be an integer")
    return value


def _require_int_list(payload: dict[str, Any], key: str) -> list[int]:
    value = payload.get(key)
    if not isinstance(value, list):
        raise ProtocolError(f"'{key}' must be a list of integers")
    out: list[int] = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, int):
            raise ProtocolError(f"'{key}' must be a list of integers")
        out.append(item)
    return out


def _require_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise ProtocolError(f"'{key}' must be a string")
    return value


@dataclass(frozen=True)
class Command:
    kind: ClassVar[str] = ""
    result_resource: ClassVar[str] = ""

    def arguments(self) -> dict[str, Any]:
        return {}

    def to_payload(self, correlation_id: str) -> dict[str, Any]:
        return {"cmd": self.kind, "correlationId": correlation_id, **self.arguments()}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Command:
        return cls()


@dataclass(frozen=True)
class OpenTab(Command):
    kind: ClassVar[str] = "open-tab"
    result_resource: ClassVar[str] = "opened-tab-id"

    url: str = ""

    def arguments(self) -> dict[str, Any]:
        return {"url": self.url}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> OpenTab:
        return cls(url=_require_str(payload, "url"))


@dataclass(frozen=True)
class CloseTabs(Command):
    kind: ClassVar[str] = "close-tabs"
    result_resource: ClassVar[str] = "tabs-closed"

    tab_ids: tuple[int, ...] = ()

    def arguments(self) -> dict[str, Any]:
        return {"tabIds": list(self.tab_ids)}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> CloseTabs:
        return cls(tab_ids=tuple(_require_int_list(payload, "tabIds")))


@dataclass(frozen=True)
class GetTabList(Command):
    kind: ClassVar[str] = "get-tab-list"
    result_resource: ClassVar[str] = "tabs"


@dataclass(frozen=True)
class GetBrowserRecentHistory(Command):
    kind: ClassVar[str] = "get-browser-recent-history"
    result_resource: ClassVar[str] = "history"

    search_query: str | None = None

    def arguments(self) -> dict[str, Any]:
        return {"searchQuery": self.search_query} if self.search_query is not None else {}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> GetBrowserRecentHistory:
        query = payload.get("searchQuery")
        if query is not None and not isinstance(query, str):
            raise ProtocolError("'searchQuery' must be a string")
        return cls(search_query=query)


@dataclass(frozen=True)
class GetTabContent(Command):
    kind: ClassVar[str] = "get-tab-content"
    result_resource: ClassVar[str] = "tab-content"

    tab_id: int = 0
    offset: int = 0

    def arguments(self) -> dict[str, Any]:
        return {"tabId": self.tab_id, "offset": self.offset}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> GetTabContent:
        offset = payload.get("offset")
        if offset is None:
            offset = 0
        elif isinstance(offset, bool) or not isinstance(offset, int):
            raise ProtocolError("'offset' must be an integer")
        return cls(tab_id=_require_int(payload, "tabId"), offset=max(0, offset))


@dataclass(frozen=True)
class ReorderTabs(Command):
    kind: ClassVar[str] = "reorder-tabs"
    result_resource: ClassVar[str] = "tabs-reordered"

    tab_order: tuple[int, ...] = ()

    def arguments(self) -> dict[str, Any]:
        return {"tabOrder": list(self.tab_order)}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ReorderTabs:
        return cls(tab_order=tuple(_require_int_list(payload, "tabOrder")))


@dataclass(frozen=True)
class FindHighlight(Command):
    kind: ClassVar[str] = "find-highlight"
    result_resource: ClassVar[str] = "find-highlight-result"

    tab_id: int = 0
    query_phrase: str = ""

    def arguments(self) -> dict[str, Any]:
        return {"tabId": self.tab_id, "queryPhrase": self.query_phrase}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> FindHighlight:
        return cls(tab_id=_require_int(payload, "tabId"), query_phrase=_require_str(payload, "queryPhrase"))


@dataclass(frozen=True)
class GroupTabs(Command):
    kind: ClassVar[str] = "group-tabs"
    result_resource: ClassVar[str] = "new-tab-group"

    tab_ids: tuple[int, ...] = ()
    is_collapsed: bool = False
    group_color: str = "grey"
    group_title: str = "New Group"

    def arguments(self) -> dict[str, Any]:
        return {
            "tabIds": list(self.tab_ids),
            "isCollapsed": self.is_collapsed,
            "groupColor": self.group_color,
            "groupTitle": self.group_title,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> GroupTabs:
        collapsed = payload.get("isCollapsed", False)
        if not isinstance(collapsed, bool):
            raise ProtocolError("'isCollapsed' must be a boolean")
        color = _require_str(payload, "groupColor")
        if color not in GROUP_COLORS:
            raise ProtocolError(f"'groupColor' must be one of {', '.join(GROUP_COLORS)}")
        return cls(
            tab_ids=tuple(_require_int_list(payload, "tabIds")),
            is_collapsed=collapsed,
            group_color=color,
            group_title=_require_str(payload, "groupTitle"),
        )


COMMAND_TYPES: dict[str, type[Command]] = {
    cls.kind: cls
    for cls in (
        OpenTab,
        CloseTabs,
        GetTabList,
        GetBrowserRecentHistory,
        GetTabContent,
        ReorderTabs,
        FindHighlight,
        GroupTabs,
    )
}

RESULT_RESOURCES: frozenset[str] = frozenset(cls.result_resource for cls in COMMAND_TYPES.values()) | {ERROR_RESOURCE}


@dataclass(frozen=True)
class InboundCommand:
    """A decoded command plus the correlation id it must be answered with."""

    correlation_id: str
    command: Command


def parse_command(payload: Any) -> InboundCommand:
    if not isinstance(payload, dict):
        raise ProtocolError("command payload must be an object")
    correlation_id = payload.get("correlationId")
    if not isinstance(correlation_id, str) or not correlation_id:
        raise ProtocolError("command is missing 'correlationId'")
    kind = payload.get("cmd")
    cls = COMMAND_TYPES.get(kind) if isinstance(kind, str) else None
    if cls is None:
        raise ProtocolError(f"unknown command kind: {kind!r}")
    return InboundCommand(correlation_id=correlation_id, command=cls.from_payload(payload))


@dataclass(frozen=True)
class Result:
    resource: str
    correlation_id: str
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.resource == ERROR_RESOURCE

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)

    def to_payload(self) -> dict[str, Any]:
        return {**self.fields, "resource": self.resource, "correlationId": self.correlation_id}

    @classmethod
    def for_command(cls, command: Command, correlation_id: str, **fields: Any) -> Result:
        return cls(resource=command.result_resource, correlation_id=correlation_id, fields=fields)

    @classmethod
    def failure(cls, command: Command, correlation_id: str, message: str) -> Result:
        return cls(
            resource=ERROR_RESOURCE,
            correlation_id=correlation_id,
            fields={"cmd": command.kind, "message": message},
        )


def parse_result(payload: Any) -> Result:
    if not isinstance(payload, dict):
        raise ProtocolError("result payload must be an object")
    correlation_id = payload.get("correlationId")
    if not isinstance(correlation_id, str) or not correlation_id:
        raise ProtocolError("result is missing 'correlationId'")
    resource = payload.get("resource")
    if not isinstance(resource, str) or resource not in RESULT_RESOURCES:
        raise ProtocolError(f"unknown result resource: {resource!r}")
    fields = {k: v for k, v in payload.items() if k not in {"resource", "correlationId"}}
    return Result(resource=resource, correlation_id=correlation_id, fields=fields)


__all__ = [
    "COMMAND_TYPES",
    "ERROR_RESOURCE",
    "GROUP_COLORS",
    "RESULT_RESOURCES",
    "CloseTabs",
    "Command",
    "FindHighlight",
    "GetBrowserRecentHistory",
    "GetTabContent",
    "GetTabList",
    "GroupTabs",
    "InboundCommand",
    "OpenTab",
    "ReorderTabs",
    "Result",
    "parse_command",
    "parse_result",
]
