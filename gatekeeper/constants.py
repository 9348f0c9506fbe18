"""Shared constants for Gatekeeper.

Header names, cipher sizes, rate-limit budgets and storage keys used across
modules are defined here. No magic numbers in other modules — import from here.
"""

# ─── CORS ─────────────────────────────────────────────────────────────────────

# Value of Access-Control-Allow-Headers on every allowed cross-origin response.
CORS_ALLOW_HEADERS: str = "Content-Type, Authorization"

# Access-Control-Allow-Methods used when a route does not declare its own.
DEFAULT_CORS_METHODS: str = "POST, OPTIONS"

# ─── Rate limiting ────────────────────────────────────────────────────────────

# When the in-memory table holds more entries than this, expired windows are
# swept before the current request is counted.
RATE_LIMIT_SWEEP_THRESHOLD: int = 1_000

# Default budget for a purpose that does not declare one: 60 requests / minute.
DEFAULT_RATE_LIMIT_MAX: int = 60
DEFAULT_RATE_LIMIT_WINDOW_MS: int = 60_000

# Per-route budgets for the secrets API.
SECRETS_SAVE_RATE_LIMIT_MAX: int = 30
SECRETS_GET_RATE_LIMIT_MAX: int = 60
SECRETS_RATE_LIMIT_WINDOW_MS: int = 60_000

# Client identifier used when neither X-Forwarded-For nor a peer address exist.
UNKNOWN_CLIENT_ID: str = "unknown"

# ─── Vault / cipher ───────────────────────────────────────────────────────────

VAULT_KEY_BYTES: int = 32  # AES-256
GCM_NONCE_BYTES: int = 12  # 96-bit nonce
GCM_TAG_BYTES: int = 16  # 128-bit tag

CIPHER_ALGORITHM: str = "aes-256-gcm"
BLOB_VERSION: int = 1

# Prefix marking a base64-encoded master passphrase.
BASE64_KEY_PREFIX: str = "base64:"

# Field of the per-user app_data document owned by the vault.
SECURE_SECRETS_FIELD: str = "_secureSecrets"

# Third-party providers whose credentials the secrets API accepts.
DEFAULT_SECRET_PROVIDERS: tuple[str, ...] = ("shopify", "packiyo", "amazon", "qbo")

# ─── Document store ───────────────────────────────────────────────────────────

APP_DATA_TABLE: str = "app_data"
VALID_STORE_BACKENDS: frozenset[str] = frozenset({"supabase", "sqlite", "memory"})
DEFAULT_SQLITE_PATH: str = "~/.gatekeeper/app_data.db"
