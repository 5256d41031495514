"""Deterministic windows over large page text.

A caller that received a truncated window asks again with
``offset = window.offset + len(window.text)`` until ``is_truncated`` is False.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

DEFAULT_MAX_CONTENT_LENGTH = 50_000


@dataclass(frozen=True)
class TabContentWindow:
    text: str
    is_truncated: bool
    offset: int
    total_length: int

    @property
    def end(self) -> int:
        return self.offset + len(self.text)

    @property
    def next_offset(self) -> int | None:
        return self.end if self.is_truncated else None


def page_text(full_text: str, offset: int = 0, max_length: int = DEFAULT_MAX_CONTENT_LENGTH) -> TabContentWindow:
    total = len(full_text)
    start = min(max(0, int(offset)), total)
    size = max(0, int(max_length))
    text = full_text[start : start + size]
    return TabContentWindow(
        text=text,
        is_truncated=start + len(text) < total,
        offset=start,
        total_length=total,
    )


def filter_links(raw_links: Iterable[Any]) -> list[dict[str, str]]:
    """Keep labelled https links without fragments, as ``{"text", "url"}``."""
    out: list[dict[str, str]] = []
    for link in raw_links:
        if not isinstance(link, dict):
            continue
        url = link.get("url")
        text = link.get("text")
        if not isinstance(url, str) or not isinstance(text, str):
            continue
        text = text.strip()
        if not text or not url.startswith("https://") or "#" in url:
            continue
        out.append({"text": text, "url": url})
    return out


def describe_window(window: TabContentWindow) -> str:
    return f"includes character range {window.offset}-{window.end} out of {window.total_length}"


__all__ = ["DEFAULT_MAX_CONTENT_LENGTH", "TabContentWindow", "describe_window", "filter_links", "page_text"]
