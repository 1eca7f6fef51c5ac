"""Session persistence for addingcat.

The signed-in session survives restarts by living in the system keyring.
Each piece is written as its own entry under the ``addingcat`` service:

  - access_token   (chunked when the backend rejects the full JWT)
  - refresh_token
  - session_meta   small JSON: user_id, email, expires_at, user_metadata

Functions:
  - save_session(identity) -> None
  - load_session() -> Optional[Identity]
  - clear_session() -> None
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError, PasswordSetError

from .config import KEYRING_SERVICE
from .data_models import Identity

SERVICE_NAME = KEYRING_SERVICE
# Size of each chunk in bytes when splitting large values for keyring storage.
# Windows Credential Manager rejects long credentials; Supabase JWTs often are.
_CHUNK_SIZE = 1000
_TOKEN_KEYS = ("access_token", "refresh_token")
_META_KEY = "session_meta"

logger = logging.getLogger("addingcat.auth_storage")


def _store_chunked_value(key_base: str, value: str) -> None:
    """Store a potentially-large string by splitting it into base64-encoded
    chunks written under {key_base}.part{i}, with the part count stored at
    {key_base}.parts.
    """
    _delete_chunked_value(key_base)

    data = value.encode("utf-8")

    # Try progressively smaller chunk sizes until the backend accepts them
    sizes_to_try = [_CHUNK_SIZE, 512, 256]
    last_exc = None
    for chunk_size in sizes_to_try:
        parts = [data[i : i + chunk_size] for i in range(0, len(data), chunk_size)]
        written_parts = []
        try:
            for idx, part in enumerate(parts):
                part_key = f"{key_base}.part{idx}"
                keyring.set_password(SERVICE_NAME, part_key, base64.b64encode(part).decode("ascii"))
                written_parts.append(part_key)
            keyring.set_password(SERVICE_NAME, f"{key_base}.parts", str(len(parts)))
            logger.debug("stored %s in %d chunk(s) (chunk_size=%d)", key_base, len(parts), chunk_size)
            return
        except KeyringError as e:
            last_exc = e
            logger.debug("chunked write with chunk_size=%d failed: %s", chunk_size, e)
            for pk in written_parts:
                _delete_quietly(pk)
            _delete_quietly(f"{key_base}.parts")

    logger.error("all chunked write attempts failed for %s", key_base)
    raise last_exc


def _read_chunked_value(key_base: str) -> Optional[str]:
    """Reassemble a value stored by _store_chunked_value, or None."""
    count_s = keyring.get_password(SERVICE_NAME, f"{key_base}.parts")
    if not count_s:
        return None
    try:
        count = int(count_s)
    except ValueError:
        logger.debug("invalid parts index for %s: %r", key_base, count_s)
        return None

    parts = []
    for i in range(count):
        b64 = keyring.get_password(SERVICE_NAME, f"{key_base}.part{i}")
        if b64 is None:
            # missing part -> treat the whole value as absent
            logger.warning("missing chunk %s.part%d; ignoring stored %s", key_base, i, key_base)
            return None
        parts.append(base64.b64decode(b64.encode("ascii")))
    return b"".join(parts).decode("utf-8")


def _delete_chunked_value(key_base: str) -> None:
    count_s = keyring.get_password(SERVICE_NAME, f"{key_base}.parts")
    if not count_s:
        return
    try:
        count = int(count_s)
    except ValueError:
        count = 0
    for i in range(count):
        _delete_quietly(f"{key_base}.part{i}")
    _delete_quietly(f"{key_base}.parts")


def _delete_quietly(key: str) -> None:
    try:
        keyring.delete_password(SERVICE_NAME, key)
    except PasswordDeleteError:
        pass


def _write_token(key: str, value: str) -> None:
    # Single write first; fall back to chunks when the backend refuses the size
    try:
        keyring.set_password(SERVICE_NAME, key, value)
        _delete_chunked_value(key)
    except PasswordSetError:
        logger.debug("single %s write failed; attempting chunked storage", key)
        _delete_quietly(key)
        _store_chunked_value(key, value)


def _read_token(key: str) -> Optional[str]:
    value = keyring.get_password(SERVICE_NAME, key)
    if value:
        return value
    return _read_chunked_value(key)


def save_session(identity: Identity) -> None:
    """Persist the session so the next start can resume it."""
    _write_token("access_token", identity.access_token)
    if identity.refresh_token:
        _write_token("refresh_token", identity.refresh_token)
    else:
        _delete_quietly("refresh_token")
        _delete_chunked_value("refresh_token")
    meta = {
        "user_id": identity.user_id,
        "email": identity.email,
        "expires_at": identity.expires_at,
        "user_metadata": identity.user_metadata,
    }
    keyring.set_password(SERVICE_NAME, _META_KEY, json.dumps(meta))
    logger.debug("saved session for user %s", identity.user_id)


def load_session() -> Optional[Identity]:
    """Return the stored session, or None when nothing usable is stored."""
    access = _read_token("access_token")
    meta_raw = keyring.get_password(SERVICE_NAME, _META_KEY)
    if not access or not meta_raw:
        return None
    try:
        meta = json.loads(meta_raw)
    except ValueError:
        logger.warning("stored session metadata is not valid JSON; ignoring it")
        return None
    if not meta.get("user_id"):
        return None

    return Identity(
        user_id=meta["user_id"],
        access_token=access,
        refresh_token=_read_token("refresh_token") or "",
        expires_at=meta.get("expires_at"),
        email=meta.get("email"),
        user_metadata=meta.get("user_metadata") or {},
    )


def clear_session() -> None:
    """Remove every stored session entry (missing entries are fine)."""
    for key in _TOKEN_KEYS:
        _delete_quietly(key)
        _delete_chunked_value(key)
    _delete_quietly(_META_KEY)
    logger.debug("cleared stored session")
