"""
Credential storage — encrypt / decrypt the Whoop credential at rest.

Uses AES-256-GCM from the ``cryptography`` library under a locally
generated key that lives next to the credential file::

    <storage_dir>/.encryption_key   hex-encoded 32-byte key
    <storage_dir>/tokens.json       {"iv": hex, "data": hex}

Both files are replaced atomically on every write and end up owner
read/write only (0600).  Reading fails closed: a missing key, a tampered
envelope or a garbled file all look exactly like "never authenticated".
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import secrets
import tempfile
from pathlib import Path
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from config.settings import Settings
from utils.schemas import Credential, Envelope

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12
FILE_MODE = 0o600
DIR_MODE = 0o700

# AES-GCM associated data.
_ASSOCIATED_DATA = b"whoop-credential-v1"


# ── File helpers (blocking; always called through asyncio.to_thread) ────


def _ensure_dir(path: Path) -> None:
    path.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)


def _write_temp(path: Path, data: bytes) -> str:
    """Write ``data`` to a fresh 0600 temp file beside ``path`` and return its name."""
    _ensure_dir(path)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise
    return tmp


def _write_atomic(path: Path, data: bytes) -> None:
    tmp = _write_temp(path, data)
    try:
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise
    os.chmod(path, FILE_MODE)


def _create_exclusive(path: Path, data: bytes) -> bool:
    """
    Publish ``data`` at ``path`` only if nothing is there yet.

    The content is fully written before it becomes visible, so a concurrent
    reader never sees a half-written file.  Returns False if another writer
    got there first.
    """
    tmp = _write_temp(path, data)
    try:
        os.link(tmp, path)
    except FileExistsError:
        return False
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
    os.chmod(path, FILE_MODE)
    return True


def _read_bytes(path: Path) -> Optional[bytes]:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def _read_key_file(path: Path) -> Optional[bytes]:
    """Return the key, None if the file does not exist, ValueError if it is malformed."""
    raw = _read_bytes(path)
    if raw is None:
        return None
    key = bytes.fromhex(raw.decode("ascii").strip())
    if len(key) != KEY_SIZE:
        raise ValueError(f"encryption key must be {KEY_SIZE} bytes, got {len(key)}")
    return key


class CredentialStore:
    """Persists exactly one Credential for the installation."""

    def __init__(self, settings: Settings):
        self.token_path: Path = settings.token_path
        self.key_path: Path = settings.key_path

    # ── Key ─────────────────────────────────────────────────────────────

    async def load_or_create_key(self) -> bytes:
        """
        Return the persisted key, generating and persisting a new random
        256-bit key on first use.
        """
        return await asyncio.to_thread(self._load_or_create_key)

    def _load_or_create_key(self) -> bytes:
        try:
            key = _read_key_file(self.key_path)
        except ValueError:
            logger.warning(
                "Encryption key at %s is unreadable — replacing it; "
                "any stored credential becomes unusable",
                self.key_path,
            )
            key = AESGCM.generate_key(bit_length=256)
            _write_atomic(self.key_path, key.hex().encode("ascii"))
            return key

        if key is not None:
            return key

        key = AESGCM.generate_key(bit_length=256)
        if _create_exclusive(self.key_path, key.hex().encode("ascii")):
            logger.info("Generated new credential encryption key at %s", self.key_path)
            return key

        # Another caller created the key between our read and our write.
        existing = _read_key_file(self.key_path)
        if existing is None:
            raise RuntimeError(f"Encryption key at {self.key_path} vanished during creation")
        return existing

    # ── Envelope ────────────────────────────────────────────────────────

    async def encrypt(self, plaintext: bytes) -> Envelope:
        """Encrypt under the loaded key with a fresh random IV."""
        key = await self.load_or_create_key()
        iv = secrets.token_bytes(NONCE_SIZE)
        ciphertext = AESGCM(key).encrypt(iv, plaintext, _ASSOCIATED_DATA)
        return Envelope(iv=iv, ciphertext=ciphertext)

    async def decrypt(self, envelope: Envelope) -> Optional[Credential]:
        """
        Decrypt and parse an envelope.

        Returns None for every failure (missing or bad key, tag mismatch,
        invalid JSON, schema mismatch).
        """
        try:
            key = await asyncio.to_thread(_read_key_file, self.key_path)
        except (OSError, ValueError) as exc:
            logger.warning("Encryption key unreadable (%s); treating credential as absent", type(exc).__name__)
            return None

        if key is None:
            logger.warning("Credential file present but no encryption key; treating credential as absent")
            return None

        try:
            plaintext = AESGCM(key).decrypt(envelope.iv, envelope.ciphertext, _ASSOCIATED_DATA)
            return Credential.model_validate_json(plaintext)
        except (InvalidTag, ValueError) as exc:
            logger.warning("Stored credential could not be decrypted (%s); treating as absent", type(exc).__name__)
            return None

    # ── Credential ──────────────────────────────────────────────────────

    async def save_credential(self, credential: Credential) -> None:
        envelope = await self.encrypt(credential.model_dump_json().encode("utf-8"))
        data = json.dumps(envelope.to_file_dict()).encode("utf-8")
        await asyncio.to_thread(_write_atomic, self.token_path, data)
        logger.info("Credential saved (expires_at=%s)", credential.expires_at.isoformat())

    async def load_credential(self) -> Optional[Credential]:
        """Return the stored Credential, or None if absent, empty or corrupted."""
        try:
            raw = await asyncio.to_thread(_read_bytes, self.token_path)
        except OSError as exc:
            logger.warning("Credential file unreadable (%s); treating as absent", type(exc).__name__)
            return None

        if not raw:
            return None

        try:
            envelope = Envelope.from_file_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Credential file malformed (%s); treating as absent", type(exc).__name__)
            return None

        return await self.decrypt(envelope)
