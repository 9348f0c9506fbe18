"""Gatekeeper credential vault package.

Re-exports the public API:

    from gatekeeper.vault import CredentialVault, derive_key, DocumentStore

Layout:
    keys.py           — derive_key(): passphrase → 32-byte AES key
    cipher.py         — EncryptedBlob + AES-256-GCM encrypt_json / decrypt_json
    credentials.py    — CredentialVault (save / get_one / get_many)
    store.py          — DocumentStore Protocol + InMemoryDocumentStore
    supabase_store.py — SupabaseDocumentStore
    sqlite_store.py   — LocalSQLiteDocumentStore
    factory.py        — create_document_store()
"""

from gatekeeper.vault.cipher import EncryptedBlob, decrypt_json, encrypt_json
from gatekeeper.vault.credentials import CredentialVault, SavedSecret, StoredSecret
from gatekeeper.vault.keys import derive_key
from gatekeeper.vault.store import DocumentStore, InMemoryDocumentStore

__all__ = [
    "CredentialVault",
    "DocumentStore",
    "EncryptedBlob",
    "InMemoryDocumentStore",
    "SavedSecret",
    "StoredSecret",
    "decrypt_json",
    "derive_key",
    "encrypt_json",
]
