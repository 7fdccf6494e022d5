"""Authenticated encryption for the session file.

The key is derived with scrypt from stable per-installation material (home
directory and login name), so the same installation always reproduces it
without storing it anywhere. This protects against casual inspection of the
config directory, not against a compromised local account.

Payload format (all lowercase hex, colon-delimited):

    <12-byte nonce>:<16-byte GCM tag>:<ciphertext>
"""

from __future__ import annotations

import getpass
import os
import re
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16
_SCRYPT_SALT = b"bsky-cli/session/v1"
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1
_HEX_RE = re.compile(r"[0-9a-f]+")


class PayloadError(ValueError):
    """Raised when an encrypted payload cannot be authenticated or decoded."""


def installation_key_material() -> bytes:
    """Return stable identity material for this user on this machine."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = str(os.getuid()) if hasattr(os, "getuid") else "unknown"
    return f"{Path.home()}|{user}|bsky-cli-v1".encode()


def derive_key(material: bytes) -> bytes:
    """Derive a 256-bit key from `material` with scrypt."""
    kdf = Scrypt(salt=_SCRYPT_SALT, length=KEY_LENGTH, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P)
    return kdf.derive(material)


def encrypt(plaintext: str, key: bytes) -> str:
    """Encrypt `plaintext` with AES-256-GCM under a fresh random nonce."""
    nonce = os.urandom(NONCE_LENGTH)
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt(payload: str, key: bytes) -> str:
    """Authenticate and decrypt a payload produced by `encrypt`.

    Raises:
        PayloadError: if the framing is wrong or the integrity tag does not
            verify (tampering, corruption, or a different key).
    """
    parts = payload.split(":")
    if len(parts) != 3:
        raise PayloadError("Invalid encrypted data format")
    if not all(_HEX_RE.fullmatch(part) for part in parts[:2]) or (
        parts[2] and not _HEX_RE.fullmatch(parts[2])
    ):
        raise PayloadError("Encrypted data is not lowercase hex")
    try:
        nonce, tag, ciphertext = (bytes.fromhex(part) for part in parts)
    except ValueError as exc:
        raise PayloadError("Encrypted data is not valid hex") from exc
    if len(nonce) != NONCE_LENGTH or len(tag) != TAG_LENGTH:
        raise PayloadError("Invalid nonce or tag length")
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as exc:
        raise PayloadError("Integrity check failed") from exc
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise PayloadError("Decrypted data is not UTF-8") from exc
