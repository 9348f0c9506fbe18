"""AES-256-GCM sealing of JSON values into EncryptedBlob records.

Persisted blob layout (one entry of ``app_data.data._secureSecrets``)::

    {
      "version": 1,
      "algorithm": "aes-256-gcm",
      "iv": "<base64, 12 bytes>",
      "ciphertext": "<base64>",
      "authTag": "<base64, 16 bytes>",
      "metadata": {...},
      "updatedAt": "2026-01-01T00:00:00.000Z"
    }

Uses ``cryptography``'s AESGCM, which returns ``ciphertext || tag``; the tag is
split off and stored separately. Every encryption draws a fresh random nonce.
Any decoding or authentication failure raises CryptoError — decryption fails
closed and never returns unauthenticated plaintext.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from gatekeeper.constants import (
    BLOB_VERSION,
    CIPHER_ALGORITHM,
    GCM_NONCE_BYTES,
    GCM_TAG_BYTES,
    VAULT_KEY_BYTES,
)
from gatekeeper.errors import CryptoError

_REQUIRED_FIELDS = ("ciphertext", "iv", "authTag")


@dataclass(frozen=True)
class EncryptedBlob:
    """One sealed secret as held in memory (raw bytes, not base64)."""

    iv: bytes
    ciphertext: bytes
    auth_tag: bytes
    metadata: dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[str] = None
    version: int = BLOB_VERSION
    algorithm: str = CIPHER_ALGORITHM

    def to_document(self) -> dict[str, Any]:
        """Serialise to the JSON-compatible persisted layout."""
        return {
            "version": self.version,
            "algorithm": self.algorithm,
            "iv": _b64(self.iv),
            "ciphertext": _b64(self.ciphertext),
            "authTag": _b64(self.auth_tag),
            "metadata": dict(self.metadata),
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_document(cls, doc: Any) -> Optional["EncryptedBlob"]:
        """Parse a persisted blob.

        Returns None when the record is absent or lacks ciphertext/iv/authTag.

        Raises:
            CryptoError: If a required field is present but not valid base64.
        """
        if not isinstance(doc, Mapping):
            return None
        if not all(doc.get(name) for name in _REQUIRED_FIELDS):
            return None
        metadata = doc.get("metadata")
        return cls(
            iv=_unb64(doc["iv"], "iv"),
            ciphertext=_unb64(doc["ciphertext"], "ciphertext"),
            auth_tag=_unb64(doc["authTag"], "authTag"),
            metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
            updated_at=doc.get("updatedAt"),
            version=doc.get("version", BLOB_VERSION),
            algorithm=doc.get("algorithm", CIPHER_ALGORITHM),
        )


def encrypt_json(
    value: Any,
    key: bytes,
    metadata: Optional[Mapping[str, Any]] = None,
    updated_at: Optional[str] = None,
) -> EncryptedBlob:
    """Seal ``value`` (any JSON-serialisable object) under ``key``."""
    _check_key(key)
    iv = os.urandom(GCM_NONCE_BYTES)
    plaintext = json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    sealed = AESGCM(key).encrypt(iv, plaintext, None)
    return EncryptedBlob(
        iv=iv,
        ciphertext=sealed[:-GCM_TAG_BYTES],
        auth_tag=sealed[-GCM_TAG_BYTES:],
        metadata=dict(metadata or {}),
        updated_at=updated_at,
    )


def decrypt_json(blob: EncryptedBlob, key: bytes) -> Any:
    """Open ``blob`` and return the parsed JSON value.

    Raises:
        CryptoError: On an unsupported algorithm, wrong nonce/tag length, a tag
                     that does not verify (tampering or wrong key), or a
                     plaintext that is not valid JSON.
    """
    _check_key(key)
    if blob.algorithm != CIPHER_ALGORITHM:
        raise CryptoError(f"Unsupported cipher algorithm: {blob.algorithm}")
    if len(blob.iv) != GCM_NONCE_BYTES:
        raise CryptoError(f"Invalid nonce length: {len(blob.iv)}")
    if len(blob.auth_tag) != GCM_TAG_BYTES:
        raise CryptoError(f"Invalid auth tag length: {len(blob.auth_tag)}")

    try:
        plaintext = AESGCM(key).decrypt(blob.iv, blob.ciphertext + blob.auth_tag, None)
    except InvalidTag as exc:
        raise CryptoError("Auth tag verification failed") from exc

    try:
        return json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CryptoError("Decrypted secret is not valid JSON") from exc


def _check_key(key: bytes) -> None:
    if len(key) != VAULT_KEY_BYTES:
        raise CryptoError(f"Vault key must be {VAULT_KEY_BYTES} bytes")


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(data: Any, name: str) -> bytes:
    try:
        return base64.b64decode(str(data), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CryptoError(f"Stored secret field '{name}' is not valid base64") from exc
