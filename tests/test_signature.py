from __future__ import annotations

import json


def test_sign_is_deterministic_and_verifies() -> None:
    from mcp_servers.browser_control.signature import sign, verify

    data = b'{"cmd":"get-tab-list","correlationId":"a-1"}'
    sig = sign(data, "secret")
    assert sig == sign(data, "secret")
    assert len(sig) == 64
    assert verify(data, sig, "secret") is True
    assert verify(data, sig, "other-secret") is False


def test_single_bit_mutation_fails_verification() -> None:
    from mcp_servers.browser_control.signature import sign, verify

    data = bytearray(b'{"tabId":7,"offset":0}')
    sig = sign(bytes(data), "k")
    for i in range(len(data)):
        mutated = bytearray(data)
        mutated[i] ^= 0x01
        assert verify(bytes(mutated), sig, "k") is False


def test_verify_never_raises_on_garbage() -> None:
    from mcp_servers.browser_control.signature import sign, verify

    sig = sign(b"x", "k")
    assert verify(b"x", "", "k") is False
    assert verify(b"x", None, "k") is False
    assert verify(b"x", sig, "") is False
    assert verify("x", sig, "k") is False
    assert verify(b"x", "not-hex-é", "k") is False


def test_canonical_bytes_ignore_key_order() -> None:
    from mcp_servers.browser_control.signature import canonical_bytes

    a = canonical_bytes({"b": 1, "a": "ü"})
    b = canonical_bytes({"a": "ü", "b": 1})
    assert a == b == '{"a":"ü","b":1}'.encode()


def test_message_signer_seal_and_open() -> None:
    from mcp_servers.browser_control.signature import MessageSigner

    signer = MessageSigner("s3cret")
    frame = signer.seal({"cmd": "get-tab-list", "correlationId": "x-1"})
    assert signer.open_frame(frame) == {"cmd": "get-tab-list", "correlationId": "x-1"}

    tampered = json.loads(frame)
    tampered["payload"]["cmd"] = "close-tabs"
    assert signer.open_frame(json.dumps(tampered)) is None
    assert MessageSigner("other").open_frame(frame) is None
    assert signer.open_frame("not json") is None
    assert signer.open_frame('{"payload": "nope", "signature": "00"}') is None
    assert "s3cret" not in repr(signer)


def test_message_signer_rejects_empty_secret() -> None:
    import pytest

    from mcp_servers.browser_control.signature import MessageSigner

    with pytest.raises(ValueError):
        MessageSigner("  ")
