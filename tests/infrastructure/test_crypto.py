"""Tests for session payload encryption."""

from __future__ import annotations

import pytest

from bsky_cli.infrastructure.crypto import (
    KEY_LENGTH,
    NONCE_LENGTH,
    TAG_LENGTH,
    PayloadError,
    decrypt,
    derive_key,
    encrypt,
)

KEY = bytes(range(KEY_LENGTH))


def test_encrypt_produces_three_lowercase_hex_parts() -> None:
    payload = encrypt('{"did": "did:plc:abc"}', KEY)

    nonce, tag, ciphertext = payload.split(":")
    assert len(bytes.fromhex(nonce)) == NONCE_LENGTH
    assert len(bytes.fromhex(tag)) == TAG_LENGTH
    assert ciphertext == ciphertext.lower()
    assert decrypt(payload, KEY) == '{"did": "did:plc:abc"}'


def test_encrypt_uses_a_fresh_nonce_per_call() -> None:
    first = encrypt("same", KEY)
    second = encrypt("same", KEY)

    assert first.split(":")[0] != second.split(":")[0]
    assert first != second


def test_decrypt_with_a_different_key_fails_integrity_check() -> None:
    payload = encrypt("secret", KEY)

    with pytest.raises(PayloadError, match="Integrity check failed"):
        decrypt(payload, bytes(KEY_LENGTH))


@pytest.mark.parametrize(
    "payload",
    [
        "",
        "abc",
        "00:11",
        "00:11:22:33",
        "zz" * NONCE_LENGTH + ":" + "00" * TAG_LENGTH + ":00",
        "AA" * NONCE_LENGTH + ":" + "00" * TAG_LENGTH + ":00",
        "00" * 4 + ":" + "00" * TAG_LENGTH + ":00",
    ],
)
def test_decrypt_rejects_malformed_framing(payload: str) -> None:
    with pytest.raises(PayloadError):
        decrypt(payload, KEY)


def test_derive_key_is_deterministic_and_material_dependent() -> None:
    first = derive_key(b"/home/alice|alice|bsky-cli-v1")
    again = derive_key(b"/home/alice|alice|bsky-cli-v1")
    other = derive_key(b"/home/bob|bob|bsky-cli-v1")

    assert first == again
    assert len(first) == KEY_LENGTH
    assert first != other
