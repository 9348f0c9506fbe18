"""CredentialVault — per-user third-party credentials, encrypted at rest.

Secrets (Shopify tokens, QuickBooks OAuth credentials, ...) are sealed with
AES-256-GCM under the key derived from SECRETS_ENCRYPTION_KEY and stored in the
user's app_data document under ``_secureSecrets[provider]``.

Operations:
  - save()      — read document, merge one provider blob, upsert (read-merge-write)
  - get_one()   — decrypt one provider; decryption failures PROPAGATE (CryptoError)
  - get_many()  — decrypt several providers; a failing entry is logged and OMITTED

Only the ``_secureSecrets`` field is ever modified; sibling fields of the
document are written back untouched. Concurrent saves for the same user race
on the read-merge-write and the last write wins.

Plaintext secrets and the vault key are never logged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Optional

from gatekeeper.constants import SECURE_SECRETS_FIELD
from gatekeeper.errors import CryptoError, ValidationError
from gatekeeper.utils.logger import get_logger
from gatekeeper.vault.cipher import EncryptedBlob, decrypt_json, encrypt_json
from gatekeeper.vault.keys import derive_key
from gatekeeper.vault.store import DocumentStore

logger = get_logger(__name__)


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class SavedSecret:
    provider: str
    updated_at: str


@dataclass(frozen=True)
class StoredSecret:
    provider: str
    secret: Any
    metadata: dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """JSON shape returned by the secrets API."""
        return {
            "secret": self.secret,
            "metadata": self.metadata,
            "updatedAt": self.updated_at,
        }


class CredentialVault:
    """Encrypts, stores and retrieves per-user provider credentials.

    The key is derived lazily on first use, so a deployment without
    SECRETS_ENCRYPTION_KEY still starts; vault calls then raise ConfigError.
    """

    def __init__(
        self,
        store: DocumentStore,
        passphrase: Optional[str],
        clock: Callable[[], str] = utc_timestamp,
    ) -> None:
        self._store = store
        self._passphrase = passphrase
        self._clock = clock
        self._key: Optional[bytes] = None

    def _vault_key(self) -> bytes:
        if self._key is None:
            self._key = derive_key(self._passphrase)
        return self._key

    async def save(
        self,
        user_id: str,
        provider: str,
        secret: Mapping[str, Any],
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> SavedSecret:
        """Encrypt ``secret`` and merge it into the user's document.

        Raises:
            ValidationError: Missing user_id/provider, or secret is not a mapping.
            ConfigError:     No encryption passphrase / store credentials.
            StoreError:      Document read or write failed.
        """
        if not user_id:
            raise ValidationError("userId is required")
        if not provider:
            raise ValidationError("provider is required")
        if not isinstance(secret, Mapping):
            raise ValidationError("Secret payload is required")

        key = self._vault_key()
        current = await self._store.read(user_id)
        secure_secrets = _as_dict(current.get(SECURE_SECRETS_FIELD))

        updated_at = self._clock()
        blob = encrypt_json(
            _as_dict(secret),
            key,
            metadata=_as_dict(metadata),
            updated_at=updated_at,
        )
        secure_secrets[provider] = blob.to_document()

        await self._store.upsert(user_id, {**current, SECURE_SECRETS_FIELD: secure_secrets})
        logger.info("secret_saved", user_id=user_id, provider=provider)
        return SavedSecret(provider=provider, updated_at=updated_at)

    async def get_one(self, user_id: str, provider: str) -> Optional[StoredSecret]:
        """Return the decrypted secret, or None if nothing usable is on file.

        Raises:
            CryptoError: The blob exists but cannot be decoded or authenticated.
        """
        secure_secrets = await self._read_secrets(user_id)
        blob = EncryptedBlob.from_document(secure_secrets.get(provider))
        if blob is None:
            return None
        return self._open(provider, blob)

    async def get_many(
        self,
        user_id: str,
        providers: Optional[Iterable[str]] = None,
    ) -> dict[str, StoredSecret]:
        """Return decrypted secrets for ``providers`` (all on file when empty).

        One corrupt or re-keyed entry never blocks the others: its CryptoError
        is logged and the provider is left out of the result.
        """
        secure_secrets = await self._read_secrets(user_id)
        wanted = list(providers or ()) or list(secure_secrets)

        result: dict[str, StoredSecret] = {}
        for provider in wanted:
            try:
                blob = EncryptedBlob.from_document(secure_secrets.get(provider))
                if blob is None:
                    continue
                result[provider] = self._open(provider, blob)
            except CryptoError as exc:
                logger.warning(
                    "secret_decrypt_failed",
                    user_id=user_id,
                    provider=provider,
                    error=exc.message,
                )
        return result

    async def _read_secrets(self, user_id: str) -> dict[str, Any]:
        if not user_id:
            raise ValidationError("userId is required")
        current = await self._store.read(user_id)
        return _as_dict(current.get(SECURE_SECRETS_FIELD))

    def _open(self, provider: str, blob: EncryptedBlob) -> StoredSecret:
        return StoredSecret(
            provider=provider,
            secret=decrypt_json(blob, self._vault_key()),
            metadata=_as_dict(blob.metadata),
            updated_at=blob.updated_at,
        )


def _as_dict(obj: Any) -> dict[str, Any]:
    """Shallow copy of a mapping, null values included; {} for non-mappings."""
    if not isinstance(obj, Mapping):
        return {}
    return dict(obj)
