"""Master passphrase → 32-byte AES-256 key.

Normalization chain (first match wins):
  1. ``base64:<data>`` whose decoded length is ≥ 32 bytes → first 32 bytes
  2. exactly 64 hexadecimal characters                    → hex-decoded 32 bytes
  3. anything else                                        → SHA-256(passphrase)

The chain is deterministic and side-effect free: the same passphrase always
yields the same key, so stored secrets stay decryptable until the passphrase
changes. Undecodable or short base64 input falls through to the next steps.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
from typing import Optional

from gatekeeper.constants import BASE64_KEY_PREFIX, VAULT_KEY_BYTES
from gatekeeper.errors import ConfigError

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def derive_key(passphrase: Optional[str]) -> bytes:
    """Return the 32-byte vault key for ``passphrase``.

    Raises:
        ConfigError: If the passphrase is unset or blank.
    """
    raw = (passphrase or "").strip()
    if not raw:
        raise ConfigError("SECRETS_ENCRYPTION_KEY is not configured")

    if raw.startswith(BASE64_KEY_PREFIX):
        decoded = _b64decode(raw[len(BASE64_KEY_PREFIX):])
        if decoded is not None and len(decoded) >= VAULT_KEY_BYTES:
            return decoded[:VAULT_KEY_BYTES]

    if _HEX_KEY_RE.match(raw):
        return bytes.fromhex(raw)

    return hashlib.sha256(raw.encode("utf-8")).digest()


def _b64decode(data: str) -> Optional[bytes]:
    # Missing padding is tolerated, as most key generators strip it.
    data = data.strip()
    try:
        return base64.b64decode(data + "=" * (-len(data) % 4))
    except (binascii.Error, ValueError):
        return None
