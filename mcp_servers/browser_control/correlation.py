"""Correlation ids and the pending-request table of the issuing side."""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("mcp.browser_control.correlation")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class PendingRequest:
    correlation_id: str
    future: asyncio.Future
    issued_at_ms: int = field(default_factory=_now_ms)
    endpoints: frozenset[str] = frozenset()


class CorrelationTracker:
    """Issues correlation ids and matches replies back to waiting futures.

    Not thread-safe: every method must run on the event loop that owns the
    futures. A pending entry is fulfilled at most once; anything arriving for
    an id that is no longer pending is logged and ignored.
    """

    def __init__(self, *, prefix: str | None = None) -> None:
        self._prefix = prefix or secrets.token_hex(4)
        self._next_id = 1
        self._pending: dict[str, PendingRequest] = {}

    def new_id(self) -> str:
        cid = f"{self._prefix}-{self._next_id}"
        self._next_id += 1
        return cid

    def register(self, correlation_id: str, future: asyncio.Future, *, endpoints: Iterable[str] = ()) -> PendingRequest:
        if correlation_id in self._pending:
            raise ValueError(f"correlation id already pending: {correlation_id}")
        entry = PendingRequest(correlation_id=correlation_id, future=future, endpoints=frozenset(endpoints))
        self._pending[correlation_id] = entry
        return entry

    def resolve(self, correlation_id: str, result: Any) -> bool:
        entry = self._pending.pop(correlation_id, None)
        if entry is None:
            logger.debug("reply_unmatched: %s", correlation_id)
            return False
        if entry.future.done():
            return False
        entry.future.set_result(result)
        return True

    def reject(self, correlation_id: str, exc: BaseException) -> bool:
        entry = self._pending.pop(correlation_id, None)
        if entry is None:
            logger.debug("reject_unmatched: %s", correlation_id)
            return False
        if entry.future.done():
            return False
        entry.future.set_exception(exc)
        return True

    def discard(self, correlation_id: str) -> PendingRequest | None:
        return self._pending.pop(correlation_id, None)

    def reject_endpoint(self, endpoint: str, exc: BaseException) -> int:
        """Reject every pending request that was sent through ``endpoint``.

        A copy that also went out on another endpoint does not keep the request
        alive: the agent answers only on the endpoint that ran the command.
        """
        affected = [cid for cid, entry in self._pending.items() if endpoint in entry.endpoints]
        return sum(1 for cid in affected if self.reject(cid, exc))

    def reject_all(self, exc: BaseException) -> int:
        return sum(1 for cid in list(self._pending) if self.reject(cid, exc))

    def __contains__(self, correlation_id: object) -> bool:
        return correlation_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)


__all__ = ["CorrelationTracker", "PendingRequest"]
