"""Keyed message authentication for bridge frames.

Wire frame: ``{"payload": <envelope>, "signature": <hex HMAC-SHA256>}``.
The signature covers the canonical serialisation of ``payload`` (sorted keys,
compact separators, UTF-8), so both peers must produce byte-identical JSON
for the same envelope.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any

logger = logging.getLogger("mcp.browser_control.signature")


def canonical_bytes(payload: Any) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _key(secret: str | bytes) -> bytes:
    return secret.encode("utf-8") if isinstance(secret, str) else bytes(secret)


def sign(payload_bytes: bytes, secret: str | bytes) -> str:
    """Deterministic HMAC-SHA256 hex digest of ``payload_bytes``."""
    return hmac.new(_key(secret), payload_bytes, hashlib.sha256).hexdigest()


def verify(payload_bytes: Any, signature: Any, secret: Any) -> bool:
    """Constant-time check of ``signature``. Never raises.

    An empty signature or an empty secret never verifies, so a missing or
    mis-provisioned secret cannot turn into an authentication bypass.
    """
    if not isinstance(signature, str) or not signature:
        return False
    if not isinstance(secret, (str, bytes)) or not secret:
        return False
    if not isinstance(payload_bytes, (bytes, bytearray)):
        return False
    try:
        expected = sign(bytes(payload_bytes), secret)
        return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))
    except Exception:  # noqa: BLE001
        return False


class MessageSigner:
    """Holds the pre-shared secret and seals/opens wire frames."""

    __slots__ = ("_secret",)

    def __init__(self, secret: str) -> None:
        if not isinstance(secret, str) or not secret.strip():
            raise ValueError("MessageSigner requires a non-empty shared secret")
        self._secret = secret

    def __repr__(self) -> str:
        return "MessageSigner(secret=<redacted>)"

    def sign_payload(self, payload: Any) -> str:
        return sign(canonical_bytes(payload), self._secret)

    def verify_payload(self, payload: Any, signature: Any) -> bool:
        try:
            data = canonical_bytes(payload)
        except (TypeError, ValueError):
            return False
        return verify(data, signature, self._secret)

    def seal(self, payload: dict[str, Any]) -> str:
        """Serialise one signed frame ready for the socket."""
        frame = {"payload": payload, "signature": self.sign_payload(payload)}
        return json.dumps(frame, separators=(",", ":"), ensure_ascii=False)

    def open_frame(self, raw: str | bytes) -> dict[str, Any] | None:
        """Parse and verify one frame; ``None`` means drop it."""
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("frame_malformed: %s", exc)
            return None
        if not isinstance(frame, dict) or not isinstance(frame.get("payload"), dict):
            logger.warning("frame_malformed: expected an object with a payload object")
            return None
        payload = frame["payload"]
        if not self.verify_payload(payload, frame.get("signature")):
            logger.warning("frame_rejected: invalid signature (tampering or mismatched secret)")
            return None
        return payload


__all__ = ["MessageSigner", "canonical_bytes", "sign", "verify"]
