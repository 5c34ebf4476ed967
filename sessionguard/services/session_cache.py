"""
Encrypted Session Cache Service.

Persists the durable subset of ``SessionState`` under a single storage
key so that a restart resumes the authenticated session.  The MFA
challenge, recovery-window and reset bookkeeping are never written.

Security model
--------------
- The encryption key is derived at runtime from machine identity
  (hostname + OS username, plus an optional configured passphrase) via
  PBKDF2-HMAC-SHA256 with a per-machine random salt.  The key is
  **never** persisted.
- Payloads are encrypted with AES-256-GCM (confidentiality and
  integrity).
- Removing the storage key is equivalent to logout.

Stored envelope (JSON)::

    {"v": 1, "nonce": "<hex>", "tag": "<hex>", "ciphertext": "<hex>"}

With encryption disabled the durable record itself is stored as JSON.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import socket
import stat
from pathlib import Path
from typing import Optional

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2
from pydantic import ValidationError

from sessionguard.database import KeyValueStorage
from sessionguard.logger import StructuredLogger
from sessionguard.models.session_models import (
    SessionState,
    deserialize_session,
    serialize_session,
)

_ENVELOPE_VERSION: int = 1


class SessionCacheService:
    """Reads and writes the persisted session record.

    Parameters
    ----------
    storage:
        Durable key-value storage.
    logger:
        Structured JSON logger.
    storage_key:
        Key the record lives under.
    encrypt:
        Wrap the record in an AES-256-GCM envelope.
    salt_path:
        Location of the per-machine salt file (defaults to
        ``~/.sessionguard_session_salt``).
    passphrase:
        Optional extra secret mixed into the key material.
    iterations:
        PBKDF2 iteration count.
    """

    _PBKDF2_ITERATIONS: int = 600_000
    _KEY_LENGTH: int = 32  # 256 bits
    _SALT_LENGTH: int = 32

    def __init__(
        self,
        storage: KeyValueStorage,
        logger: StructuredLogger,
        storage_key: str = "auth",
        encrypt: bool = True,
        salt_path: Optional[Path] = None,
        passphrase: str = "",
        iterations: Optional[int] = None,
    ) -> None:
        self._storage: KeyValueStorage = storage
        self._logger: StructuredLogger = logger
        self._storage_key: str = storage_key
        self._encrypt: bool = encrypt
        self._salt_path: Path = salt_path or Path.home() / ".sessionguard_session_salt"
        self._passphrase: str = passphrase
        self._iterations: int = iterations or self._PBKDF2_ITERATIONS
        self._key: Optional[bytes] = None

    @property
    def storage_key(self) -> str:
        return self._storage_key

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def save(self, state: SessionState) -> bool:
        """Persist the durable fields of *state*.

        Returns
        -------
        bool
            ``False`` when encryption or the storage write failed.  The
            error is logged, not raised: losing persistence only costs a
            re-login after restart.
        """
        document: str = serialize_session(state)

        if self._encrypt:
            try:
                document = self._seal(document)
            except Exception as exc:
                self._logger.warning("Failed to encrypt session record: %s", exc)
                return False

        try:
            self._storage.set(self._storage_key, document)
        except Exception as exc:
            self._logger.warning("Failed to write session record: %s", exc)
            return False

        self._logger.debug(
            "Session record persisted.",
            extra={"event": "SESSION_PERSISTED", "user_id": state.user_id},
        )
        return True

    def load(self) -> Optional[SessionState]:
        """Load the persisted session, or ``None``.

        ``None`` is returned when no record exists, when decryption fails
        (corrupted data or machine identity changed) or when the record
        does not validate.
        """
        try:
            raw: Optional[str] = self._storage.get(self._storage_key)
        except Exception as exc:
            self._logger.warning("Failed to read session record: %s", exc)
            return None

        if raw is None:
            self._logger.debug("No persisted session found.")
            return None

        try:
            document = self._open(raw)
        except (ValueError, KeyError, TypeError, OSError) as exc:
            self._logger.warning(
                "Decryption of persisted session failed (corrupted data or "
                "machine identity changed): %s",
                exc,
            )
            return None

        try:
            state = deserialize_session(document)
        except ValidationError as exc:
            self._logger.warning("Persisted session record is malformed: %s", exc)
            return None

        self._logger.info(
            "Loaded persisted session for %s.", state.username or "unknown user",
        )
        return state

    def clear(self) -> None:
        """Delete the persisted record.  Safe to call when none exists."""
        try:
            self._storage.remove(self._storage_key)
            self._logger.debug("Persisted session cleared.")
        except Exception as exc:
            self._logger.error("Failed to clear persisted session: %s", exc)

    # ------------------------------------------------------------------
    # Envelope
    # ------------------------------------------------------------------

    def _seal(self, document: str) -> str:
        cipher = AES.new(self._derive_key(), AES.MODE_GCM)  # type: ignore[attr-defined]
        ciphertext, tag = cipher.encrypt_and_digest(document.encode("utf-8"))
        return json.dumps({
            "v": _ENVELOPE_VERSION,
            "nonce": cipher.nonce.hex(),
            "tag": tag.hex(),
            "ciphertext": ciphertext.hex(),
        })

    def _open(self, raw: str) -> str:
        """Return the plaintext record for a stored value.

        With encryption enabled only a sealed envelope is accepted; a bare
        record carries no GCM tag and is rejected.
        """
        envelope = json.loads(raw)
        if not (isinstance(envelope, dict) and "ciphertext" in envelope):
            if self._encrypt:
                raise ValueError("Persisted session record is not encrypted")
            return raw

        if envelope.get("v") != _ENVELOPE_VERSION:
            raise ValueError(f"Unsupported envelope version: {envelope.get('v')!r}")

        cipher = AES.new(  # type: ignore[attr-defined]
            self._derive_key(),
            AES.MODE_GCM,
            nonce=bytes.fromhex(envelope["nonce"]),
        )
        plaintext: bytes = cipher.decrypt_and_verify(
            bytes.fromhex(envelope["ciphertext"]),
            bytes.fromhex(envelope["tag"]),
        )
        return plaintext.decode("utf-8")

    # ------------------------------------------------------------------
    # Key material
    # ------------------------------------------------------------------

    def _derive_key(self) -> bytes:
        """Derive (once per instance) the 256-bit AES key.

        Key material is ``hostname:username[:passphrase]``; the entropy
        comes from the per-machine random salt.  If the machine identity
        changes, previously stored sessions become undecryptable and are
        treated as absent.

        Raises
        ------
        OSError
            If the salt file cannot be created or read.
        """
        if self._key is None:
            material: str = f"{socket.gethostname()}:{getpass.getuser()}"
            if self._passphrase:
                material = f"{material}:{self._passphrase}"
            self._key = PBKDF2(
                password=material,
                salt=self._get_or_create_salt(),
                dkLen=self._KEY_LENGTH,
                count=self._iterations,
                hmac_hash_module=SHA256,
            )
        return self._key

    def _get_or_create_salt(self) -> bytes:
        """Return the per-machine salt, creating it on first run.

        Raises
        ------
        OSError
            If the salt file cannot be read or written.
        """
        if self._salt_path.exists():
            data: bytes = self._salt_path.read_bytes()
            if len(data) == self._SALT_LENGTH:
                return data
            self._logger.warning(
                "Salt file has unexpected length (%d); regenerating.", len(data),
            )

        salt: bytes = os.urandom(self._SALT_LENGTH)
        self._salt_path.parent.mkdir(parents=True, exist_ok=True)
        self._salt_path.write_bytes(salt)
        if platform.system() != "Windows":
            self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600

        self._logger.info("Per-machine session salt created at %s.", self._salt_path)
        return salt
