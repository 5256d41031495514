"""Browser primitives over the Chrome DevTools Protocol.

Tab lifecycle goes through the DevTools HTTP endpoints (``/json/list``,
``/json/new``, ``/json/close``, ``/json/activate``); page reads and in-page
find/highlight go through ``Runtime.evaluate`` on the tab's own websocket.
History is read from the profile's ``History`` SQLite database (copied first,
Chrome keeps it locked).

CDP identifies tabs by opaque target ids. Callers get small integers instead;
the mapping lives as long as this object.

Reordering tabs and tab groups are not exposed by CDP: those primitives raise
``PrimitiveError`` and the dispatcher reports them like any other failure.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import sqlite3
import tempfile
import threading
import time
from contextlib import closing, suppress
from pathlib import Path
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

import websocket

from .errors import PrimitiveError
from .primitives import BrowserPrimitives, PageSnapshot

logger = logging.getLogger("mcp.browser_control.cdp_browser")

# Chrome stores times as microseconds since 1601-01-01 UTC.
_CHROME_EPOCH_DELTA_US = 11_644_473_600_000_000

PAGE_SNAPSHOT_JS = """
(() => {
  const body = document.body;
  const text = body ? body.innerText : "";
  let links = [];
  if (__INCLUDE_LINKS__) {
    links = Array.from(document.querySelectorAll("a[href]")).map((el) => ({
      url: el.href,
      text: (el.innerText || "").trim() || el.getAttribute("aria-label") || el.getAttribute("title") || "",
    }));
  }
  return { text, links };
})()
"""

FIND_COUNT_JS = """
((phrase) => {
  const text = document.body ? document.body.innerText : "";
  if (!phrase) return 0;
  let count = 0;
  let idx = text.indexOf(phrase);
  while (idx !== -1) {
    count += 1;
    idx = text.indexOf(phrase, idx + phrase.length);
  }
  return count;
})(__PHRASE__)
"""

HIGHLIGHT_JS = """
((phrase) => {
  document.querySelectorAll("mark[data-browser-control]").forEach((m) => {
    m.replaceWith(document.createTextNode(m.textContent));
  });
  if (!phrase || !document.body) return 0;
  document.body.normalize();
  const skip = new Set(["SCRIPT", "STYLE", "NOSCRIPT", "TEXTAREA"]);
  const walker = document.createTreeWalker(document.body, NodeFilter.SHOW_TEXT);
  const nodes = [];
  while (walker.nextNode()) {
    const node = walker.currentNode;
    if (node.parentElement && skip.has(node.parentElement.tagName)) continue;
    if (node.nodeValue.includes(phrase)) nodes.push(node);
  }
  let first = null;
  let marked = 0;
  for (const node of nodes) {
    const parts = node.nodeValue.split(phrase);
    const frag = document.createDocumentFragment();
    parts.forEach((part, i) => {
      if (part) frag.appendChild(document.createTextNode(part));
      if (i < parts.length - 1) {
        const mark = document.createElement("mark");
        mark.dataset.browserControl = "1";
        mark.textContent = phrase;
        frag.appendChild(mark);
        first = first || mark;
        marked += 1;
      }
    });
    node.replaceWith(frag);
  }
  if (first) first.scrollIntoView({ block: "center" });
  return marked;
})(__PHRASE__)
"""


def chrome_time_to_epoch_ms(raw: Any) -> int | None:
    if not isinstance(raw, int) or raw <= 0:
        return None
    return (raw - _CHROME_EPOCH_DELTA_US) // 1000


class CdpConnection:
    """Blocking CDP websocket connection to one page target."""

    def __init__(self, ws_url: str, timeout: float = 5.0) -> None:
        # Chrome rejects DevTools sockets that carry an Origin header unless
        # started with --remote-allow-origins.
        self.ws = websocket.create_connection(ws_url, timeout=timeout, suppress_origin=True)
        self.ws_url = ws_url
        self.timeout = timeout
        self._next_id = 1

    def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        msg_id = self._next_id
        self._next_id += 1
        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params
        try:
            self.ws.send(json.dumps(msg))
        except Exception as exc:  # noqa: BLE001
            raise PrimitiveError(f"CDP send failed: {exc}") from exc
        return self._recv_until(msg_id)

    def _recv_until(self, expected_id: int) -> dict[str, Any]:
        deadline = time.time() + self.timeout
        while True:
            remaining = deadline - time.time()
            if remaining <= 0:
                raise PrimitiveError("CDP response timed out")
            try:
                self.ws.settimeout(min(0.5, remaining))
                raw = self.ws.recv()
            except websocket.WebSocketTimeoutException:
                continue
            except Exception as exc:  # noqa: BLE001
                raise PrimitiveError(f"CDP receive failed: {exc}") from exc
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                continue
            # Events interleave with responses; only the matching id matters here.
            if not isinstance(data, dict) or data.get("id") != expected_id:
                continue
            if "error" in data:
                raise PrimitiveError(f"CDP error: {data['error']}")
            result = data.get("result")
            return result if isinstance(result, dict) else {}

    def evaluate(self, expression: str) -> Any:
        res = self.send(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
        )
        details = res.get("exceptionDetails")
        if isinstance(details, dict):
            text = details.get("text") or "script exception"
            raise PrimitiveError(f"Page script failed: {text}")
        value = res.get("result")
        return value.get("value") if isinstance(value, dict) else None

    def close(self) -> None:
        with suppress(Exception):
            self.ws.close()


class CdpBrowser(BrowserPrimitives):
    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 9222,
        *,
        profile_path: str | None = None,
        timeout: float = 5.0,
    ) -> None:
        self.base_url = f"http://{host}:{int(port)}"
        self.profile_path = profile_path
        self.timeout = float(timeout)
        # Sync helpers run in worker threads (asyncio.to_thread).
        self._lock = threading.Lock()
        self._target_by_tab: dict[int, str] = {}
        self._tab_by_target: dict[str, int] = {}
        self._next_tab_id = 1
        self._last_accessed: dict[int, int] = {}

    # ─────────────────────────────────────────────────────────────────────────
    # Tab id mapping
    # ─────────────────────────────────────────────────────────────────────────

    def _tab_id_for(self, target_id: str) -> int:
        with self._lock:
            tab_id = self._tab_by_target.get(target_id)
            if tab_id is None:
                tab_id = self._next_tab_id
                self._next_tab_id += 1
                self._tab_by_target[target_id] = tab_id
                self._target_by_tab[tab_id] = target_id
            return tab_id

    def _forget(self, tab_id: int) -> None:
        with self._lock:
            target_id = self._target_by_tab.pop(tab_id, None)
            if target_id is not None:
                self._tab_by_target.pop(target_id, None)
            self._last_accessed.pop(tab_id, None)

    def _target_for(self, tab_id: int) -> str:
        with self._lock:
            target_id = self._target_by_tab.get(tab_id)
        if target_id is None:
            # Ids are only known after a listing; refresh once before giving up.
            self._targets()
            with self._lock:
                target_id = self._target_by_tab.get(tab_id)
        if target_id is None:
            raise PrimitiveError(f"No tab with id {tab_id}")
        return target_id

    # ─────────────────────────────────────────────────────────────────────────
    # DevTools HTTP endpoints
    # ─────────────────────────────────────────────────────────────────────────

    def _request(self, path: str, *, method: str = "GET") -> str:
        req = Request(self.base_url + path, method=method)
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                return resp.read().decode("utf-8", errors="replace")
        except HTTPError as exc:
            raise PrimitiveError(f"DevTools {path.split('?')[0]} failed: HTTP {exc.code}") from exc
        except (URLError, TimeoutError, OSError) as exc:
            raise PrimitiveError(f"DevTools endpoint unreachable at {self.base_url}: {exc}") from exc

    def _json(self, path: str, *, method: str = "GET") -> Any:
        raw = self._request(path, method=method)
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise PrimitiveError(f"DevTools {path.split('?')[0]} returned invalid JSON") from exc

    def _targets(self) -> list[dict[str, Any]]:
        data = self._json("/json/list")
        pages = [t for t in data if isinstance(t, dict) and t.get("type") == "page"] if isinstance(data, list) else []
        for target in pages:
            if isinstance(target.get("id"), str):
                self._tab_id_for(target["id"])
        return pages

    def _connect(self, tab_id: int) -> CdpConnection:
        target_id = self._target_for(tab_id)
        target = next((t for t in self._targets() if t.get("id") == target_id), None)
        if target is None:
            self._forget(tab_id)
            raise PrimitiveError(f"No tab with id {tab_id}")
        ws_url = target.get("webSocketDebuggerUrl")
        if not isinstance(ws_url, str) or not ws_url:
            raise PrimitiveError(f"Tab {tab_id} is attached to another debugger")
        try:
            return CdpConnection(ws_url, timeout=self.timeout)
        except Exception as exc:  # noqa: BLE001
            raise PrimitiveError(f"Failed to attach to tab {tab_id}: {exc}") from exc

    def _evaluate(self, tab_id: int, expression: str) -> Any:
        conn = self._connect(tab_id)
        try:
            return conn.evaluate(expression)
        finally:
            conn.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Sync implementations
    # ─────────────────────────────────────────────────────────────────────────

    def _create_tab_sync(self, url: str) -> int:
        target = self._json("/json/new?" + quote(url, safe=":/?&=%#+@,;"), method="PUT")
        if not isinstance(target, dict) or not isinstance(target.get("id"), str):
            raise PrimitiveError("DevTools did not return the new tab")
        tab_id = self._tab_id_for(target["id"])
        with self._lock:
            self._last_accessed[tab_id] = int(time.time() * 1000)
        logger.info("tab_created: id=%s target=%s", tab_id, target["id"])
        return tab_id

    def _remove_tab_sync(self, tab_id: int) -> None:
        target_id = self._target_for(tab_id)
        self._request(f"/json/close/{target_id}")
        self._forget(tab_id)
        logger.info("tab_closed: id=%s", tab_id)

    def _query_tabs_sync(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for index, target in enumerate(self._targets()):
            tab_id = self._tab_id_for(str(target.get("id")))
            with self._lock:
                last = self._last_accessed.get(tab_id)
            out.append(
                {
                    "id": tab_id,
                    "index": index,
                    "url": target.get("url") or "",
                    "title": target.get("title") or "",
                    **({"lastAccessed": last} if last else {}),
                }
            )
        return out

    def _history_db(self) -> Path:
        if not self.profile_path:
            raise PrimitiveError("History is unavailable: no browser profile configured (MCP_BROWSER_PROFILE)")
        root = Path(self.profile_path).expanduser()
        for candidate in (root / "History", root / "Default" / "History"):
            if candidate.is_file():
                return candidate
        raise PrimitiveError(f"No History database under {root}")

    def _search_history_sync(self, text: str, max_results: int) -> list[dict[str, Any]]:
        source = self._history_db()
        with tempfile.TemporaryDirectory(prefix="browser-control-history-") as tmp:
            copy = Path(tmp) / "History"
            try:
                shutil.copyfile(source, copy)
            except OSError as exc:
                raise PrimitiveError(f"Failed to read {source}: {exc}") from exc
            pattern = f"%{text}%"
            try:
                with closing(sqlite3.connect(str(copy))) as db:
                    rows = db.execute(
                        "SELECT url, title, last_visit_time FROM urls "
                        "WHERE hidden = 0 AND (? = '' OR url LIKE ? OR title LIKE ?) "
                        "ORDER BY last_visit_time DESC LIMIT ?",
                        (text, pattern, pattern, int(max_results)),
                    ).fetchall()
            except sqlite3.Error as exc:
                raise PrimitiveError(f"History query failed: {exc}") from exc
        logger.debug("history_queried: %d rows (query=%r)", len(rows), text)
        return [
            {"url": url, "title": title or "", "lastVisitTime": chrome_time_to_epoch_ms(visited)}
            for url, title, visited in rows
        ]

    def _extract_page_sync(self, tab_id: int, include_links: bool) -> PageSnapshot:
        expression = PAGE_SNAPSHOT_JS.replace("__INCLUDE_LINKS__", "true" if include_links else "false")
        value = self._evaluate(tab_id, expression)
        if not isinstance(value, dict):
            raise PrimitiveError(f"Tab {tab_id} returned no page content")
        text = value.get("text") if isinstance(value.get("text"), str) else ""
        links = value.get("links") if isinstance(value.get("links"), list) else []
        return PageSnapshot(text=text, links=links)

    def _find_sync(self, tab_id: int, phrase: str) -> int:
        value = self._evaluate(tab_id, FIND_COUNT_JS.replace("__PHRASE__", json.dumps(phrase)))
        return int(value) if isinstance(value, (int, float)) else 0

    def _activate_sync(self, tab_id: int) -> None:
        self._request(f"/json/activate/{self._target_for(tab_id)}")
        with self._lock:
            self._last_accessed[tab_id] = int(time.time() * 1000)

    def _highlight_sync(self, tab_id: int, phrase: str) -> None:
        self._evaluate(tab_id, HIGHLIGHT_JS.replace("__PHRASE__", json.dumps(phrase)))

    # ─────────────────────────────────────────────────────────────────────────
    # BrowserPrimitives
    # ─────────────────────────────────────────────────────────────────────────

    async def create_tab(self, url: str) -> int:
        return await asyncio.to_thread(self._create_tab_sync, url)

    async def remove_tab(self, tab_id: int) -> None:
        await asyncio.to_thread(self._remove_tab_sync, tab_id)

    async def query_tabs(self) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._query_tabs_sync)

    async def search_history(self, text: str, max_results: int) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._search_history_sync, text, max_results)

    async def extract_page(self, tab_id: int, *, include_links: bool = True) -> PageSnapshot:
        return await asyncio.to_thread(self._extract_page_sync, tab_id, include_links)

    async def move_tab(self, tab_id: int, index: int) -> None:
        raise PrimitiveError("Moving tabs is not supported over the DevTools protocol")

    async def find_in_page(self, tab_id: int, phrase: str) -> int:
        return await asyncio.to_thread(self._find_sync, tab_id, phrase)

    async def activate_tab(self, tab_id: int) -> None:
        await asyncio.to_thread(self._activate_sync, tab_id)

    async def highlight(self, tab_id: int, phrase: str) -> None:
        await asyncio.to_thread(self._highlight_sync, tab_id, phrase)

    async def group_tabs(self, tab_ids: list[int], *, collapsed: bool, color: str, title: str) -> int:
        raise PrimitiveError("Tab groups are not available over the DevTools protocol")


__all__ = ["CdpBrowser", "CdpConnection", "chrome_time_to_epoch_ms"]
