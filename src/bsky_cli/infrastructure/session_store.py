"""Encrypted on-disk storage for the single session record.

Usage example:
    from pathlib import Path

    from bsky_cli.infrastructure.session_store import EncryptedSessionStore

    store = EncryptedSessionStore(Path("~/.config/bluesky-cli/session.json").expanduser())
    record = store.read()  # None when logged out
"""

from __future__ import annotations

from datetime import UTC
from pathlib import Path
from typing import override

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..domain import SessionRecord
from ..exceptions import SessionDecodeError, SessionStoreError
from ..observability import get_logger
from ..protocols import SessionStore
from .crypto import PayloadError, decrypt, derive_key, encrypt, installation_key_material
from .filesystem import check_private_file, write_private_file

logger = get_logger("bsky_cli.infrastructure.session_store")

_CLEARED_MARKER = ""


class _SessionPayloadModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    did: str = Field(min_length=1)
    handle: str = Field(min_length=1)
    access_jwt: str = Field(alias="accessJwt", min_length=1)
    refresh_jwt: str = Field(alias="refreshJwt", min_length=1)
    last_used: AwareDatetime = Field(alias="lastUsed")
    service: str = Field(min_length=1)


class EncryptedSessionStore(SessionStore):
    """Session store backed by one AES-256-GCM encrypted file.

    An empty file is the canonical "logged out" marker. Non-empty content
    that fails authentication or schema validation raises
    SessionDecodeError; it is never partially recovered.
    """

    def __init__(self, path: Path, *, key: bytes | None = None) -> None:
        self._path = path
        self._key = key

    @property
    def path(self) -> Path:
        return self._path

    def _cipher_key(self) -> bytes:
        if self._key is None:
            self._key = derive_key(installation_key_material())
        return self._key

    @override
    def read(self) -> SessionRecord | None:
        if not self._path.exists():
            return None
        check_private_file(self._path)
        try:
            payload = self._path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise SessionDecodeError(str(self._path), "file is not text", exc) from exc
        except OSError as exc:
            raise SessionStoreError("read", str(self._path), exc) from exc

        if not payload.strip():
            return None

        try:
            plaintext = decrypt(payload, self._cipher_key())
        except PayloadError as exc:
            raise SessionDecodeError(str(self._path), str(exc), exc) from exc
        try:
            model = _SessionPayloadModel.model_validate_json(plaintext)
        except PydanticValidationError as exc:
            raise SessionDecodeError(str(self._path), "unexpected session schema", exc) from exc

        return SessionRecord(
            did=model.did,
            handle=model.handle,
            access_jwt=model.access_jwt,
            refresh_jwt=model.refresh_jwt,
            last_used=model.last_used,
            service=model.service,
        )

    @override
    def write(self, record: SessionRecord) -> None:
        last_used = record.last_used
        if last_used.tzinfo is None:
            last_used = last_used.replace(tzinfo=UTC)
        try:
            model = _SessionPayloadModel(
                did=record.did,
                handle=record.handle,
                access_jwt=record.access_jwt,
                refresh_jwt=record.refresh_jwt,
                last_used=last_used,
                service=record.service,
            )
        except PydanticValidationError as exc:
            raise SessionStoreError("write", str(self._path), exc) from exc
        plaintext = model.model_dump_json(by_alias=True)
        self._write(encrypt(plaintext, self._cipher_key()), action="write")
        logger.debug("Session written for %s", record.did)

    @override
    def clear(self) -> None:
        if not self._path.exists():
            return
        self._write(_CLEARED_MARKER, action="clear")
        logger.debug("Session cleared at %s", self._path)

    def _write(self, content: str, *, action: str) -> None:
        try:
            write_private_file(self._path, content)
        except OSError as exc:
            raise SessionStoreError(action, str(self._path), exc) from exc
