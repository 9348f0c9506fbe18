"""Config loading for Gatekeeper.

Reads `.gatekeeper/config.yaml` (or `~/.gatekeeper/config.yaml`), then applies
environment variable overrides. Raises SystemExit on parse errors or a missing
`version` field. If no config file is found, defaults are used and the
environment alone configures the service (the usual serverless deployment).

Config search order:
  1. `config_path` argument (if provided — for testing or explicit override)
  2. GATEKEEPER_CONFIG environment variable (if set)
  3. `.gatekeeper/config.yaml` (working directory — for development)
  4. `~/.gatekeeper/config.yaml` (home directory)

Environment variable overrides (always win over the file):
  ALLOWED_ORIGINS            — comma-separated exact-match origin allow-list
  APP_ORIGIN                 — canonical application origin (VITE_APP_ORIGIN fallback)
  REQUIRE_API_AUTH           — "true" forces bearer auth on every guarded route
  APP_ENV                    — deployment mode; "production" forces auth (NODE_ENV fallback)
  SUPABASE_URL               — identity provider + document store endpoint (VITE_ fallback)
  SUPABASE_ANON_KEY          — public key for token verification (VITE_ fallback)
  SUPABASE_SERVICE_ROLE_KEY  — privileged document-store credential
  SECRETS_ENCRYPTION_KEY     — vault master passphrase (raw, 64-hex, or base64:...)
  GATEKEEPER_STORE_BACKEND   — supabase | sqlite | memory
  GATEKEEPER_SQLITE_PATH     — database path for the sqlite backend
  GATEKEEPER_PORT            — overrides server.port

The returned Config is resolved once at process startup and injected into the
components; no component reads the environment per request.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Optional

import yaml

from gatekeeper.constants import (
    DEFAULT_SECRET_PROVIDERS,
    DEFAULT_SQLITE_PATH,
    VALID_STORE_BACKENDS,
)
from gatekeeper.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1
SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

PRODUCTION_ENVIRONMENT = "production"
DEVELOPMENT_ENVIRONMENT = "development"

DEFAULT_CONFIG_PATHS = [
    ".gatekeeper/config.yaml",
    os.path.expanduser("~/.gatekeeper/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class CorsConfig:
    """Origin authorization settings.

    allowed_origins: exact-match allow-list. Empty enables the permissive
                     development heuristics (loopback, app origin, same host).
    app_origin:      canonical application origin, e.g. "https://app.example.com".
    """

    allowed_origins: list[str] = field(default_factory=list)
    app_origin: str = ""


@dataclass
class AuthConfig:
    """Bearer authentication policy."""

    require_api_auth: bool = False
    environment: str = "development"

    @property
    def production(self) -> bool:
        return self.environment.lower() == PRODUCTION_ENVIRONMENT

    @property
    def development(self) -> bool:
        return self.environment.lower() == DEVELOPMENT_ENVIRONMENT

    @property
    def required_by_default(self) -> bool:
        """Auth is mandatory when forced explicitly or when running in production."""
        return self.require_api_auth or self.production


@dataclass
class SupabaseConfig:
    """Identity provider and document store endpoint + credentials."""

    url: str = ""
    anon_key: str = field(default="", repr=False)
    service_role_key: str = field(default="", repr=False)


@dataclass
class VaultConfig:
    """Credential vault settings."""

    encryption_key: str = field(default="", repr=False)
    providers: list[str] = field(default_factory=lambda: list(DEFAULT_SECRET_PROVIDERS))


@dataclass
class StoreConfig:
    """Document store backend selection."""

    backend: str = "supabase"  # "supabase" | "sqlite" | "memory"
    sqlite_path: str = DEFAULT_SQLITE_PATH


@dataclass
class ServerConfig:
    """Uvicorn binding configuration."""

    host: str = "127.0.0.1"
    port: int = 8787


@dataclass
class Config:
    """Root configuration object.

    All fields have safe defaults — Gatekeeper can start without any config
    file; credentials missing at that point surface as ConfigError on first use.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    cors: CorsConfig = field(default_factory=CorsConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    supabase: SupabaseConfig = field(default_factory=SupabaseConfig)
    vault: VaultConfig = field(default_factory=VaultConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    path: Optional[str] = None  # Path to the loaded config file, if any

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.

        Raises:
            SystemExit(1): On an invalid store.backend value.
        """
        cors_raw = raw.get("cors") or {}
        cors = CorsConfig(
            allowed_origins=_as_origin_list(cors_raw.get("allowed_origins", [])),
            app_origin=cors_raw.get("app_origin", "") or "",
        )

        auth_raw = raw.get("auth") or {}
        auth = AuthConfig(
            require_api_auth=bool(auth_raw.get("require_api_auth", False)),
            environment=str(auth_raw.get("environment", "development")),
        )

        supabase_raw = raw.get("supabase") or {}
        supabase = SupabaseConfig(
            url=supabase_raw.get("url", "") or "",
            anon_key=supabase_raw.get("anon_key", "") or "",
            service_role_key=supabase_raw.get("service_role_key", "") or "",
        )

        vault_raw = raw.get("vault") or {}
        vault = VaultConfig(
            encryption_key=vault_raw.get("encryption_key", "") or "",
            providers=list(vault_raw.get("providers", DEFAULT_SECRET_PROVIDERS)),
        )

        store_raw = raw.get("store") or {}
        store = StoreConfig(
            backend=_validate_backend(store_raw.get("backend", "supabase")),
            sqlite_path=store_raw.get("sqlite_path", DEFAULT_SQLITE_PATH),
        )

        server_raw = raw.get("server") or {}
        server = ServerConfig(
            host=server_raw.get("host", "127.0.0.1"),
            port=server_raw.get("port", 8787),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            cors=cors,
            auth=auth,
            supabase=supabase,
            vault=vault,
            store=store,
            server=server,
            path=path,
        )


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate Gatekeeper configuration.

    If no file is found at any search path, returns default Config (not an error).
    If a file is found but invalid, writes error to stderr and raises SystemExit(1).
    Environment overrides are applied in both cases.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, invalid ``store.backend``, or invalid ``GATEKEEPER_PORT``.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("GATEKEEPER_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    if found_path is None:
        logger.info("config_file_not_found", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        _log_effective_config(config)
        return config

    logger.info("config_loading", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(
            f"CONFIG ERROR: Failed to parse {found_path}: {exc}\n"
            "Gatekeeper refuses to start with an invalid config."
        )
    except OSError as exc:
        _fail(f"CONFIG ERROR: Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _fail(
                f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _fail(
            f"CONFIG ERROR: {found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    version = raw.get("version")
    if version is None:
        _fail(
            f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"CONFIG ERROR: Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)
    _log_effective_config(config)
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Called for both file-loaded and default configs so env vars always take
    precedence over any file value.

    Raises:
        SystemExit(1): If GATEKEEPER_PORT is not an integer or
                       GATEKEEPER_STORE_BACKEND is not a known backend.
    """
    allowed = _env("ALLOWED_ORIGINS")
    if allowed is not None:
        config.cors.allowed_origins = _as_origin_list(allowed)

    app_origin = _env("APP_ORIGIN", "VITE_APP_ORIGIN")
    if app_origin is not None:
        config.cors.app_origin = app_origin

    require_auth = _env("REQUIRE_API_AUTH")
    if require_auth is not None:
        config.auth.require_api_auth = require_auth.lower() == "true"

    environment = _env("APP_ENV", "NODE_ENV")
    if environment is not None:
        config.auth.environment = environment

    url = _env("SUPABASE_URL", "VITE_SUPABASE_URL")
    if url is not None:
        config.supabase.url = url
    anon_key = _env("SUPABASE_ANON_KEY", "VITE_SUPABASE_ANON_KEY")
    if anon_key is not None:
        config.supabase.anon_key = anon_key
    service_role_key = _env("SUPABASE_SERVICE_ROLE_KEY")
    if service_role_key is not None:
        config.supabase.service_role_key = service_role_key

    encryption_key = _env("SECRETS_ENCRYPTION_KEY")
    if encryption_key is not None:
        config.vault.encryption_key = encryption_key

    backend = _env("GATEKEEPER_STORE_BACKEND")
    if backend is not None:
        config.store.backend = _validate_backend(backend)
    sqlite_path = _env("GATEKEEPER_SQLITE_PATH")
    if sqlite_path is not None:
        config.store.sqlite_path = sqlite_path

    env_port = os.environ.get("GATEKEEPER_PORT")
    if env_port is not None:
        try:
            config.server.port = int(env_port)
        except ValueError:
            _fail(
                "CONFIG ERROR: GATEKEEPER_PORT environment variable is not a valid "
                f"integer: '{env_port}'"
            )


def _env(*names: str) -> Optional[str]:
    """Return the first non-empty value among ``names``, or None."""
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    return None


def _as_origin_list(raw: object) -> list[str]:
    """Normalise a comma-separated string or YAML list into trimmed origins."""
    if isinstance(raw, str):
        items = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        items = [str(item) for item in raw]
    else:
        items = []
    return [item.strip() for item in items if item.strip()]


def _validate_backend(backend: str) -> str:
    if backend not in VALID_STORE_BACKENDS:
        _fail(
            f"CONFIG ERROR: Invalid store backend: '{backend}'. "
            f"Supported values: {sorted(VALID_STORE_BACKENDS)}."
        )
    return backend


def _fail(message: str):
    print(message, file=sys.stderr)
    raise SystemExit(1)


def _log_effective_config(config: Config) -> None:
    # Credentials are reported as presence flags only.
    logger.info(
        "config_loaded",
        path=config.path,
        environment=config.auth.environment,
        auth_required=config.auth.required_by_default,
        allowed_origins=len(config.cors.allowed_origins),
        store_backend=config.store.backend,
        supabase_configured=bool(config.supabase.url),
        vault_key_configured=bool(config.vault.encryption_key),
    )
    if config.auth.production and not config.cors.allowed_origins:
        logger.warning(
            "SECURITY WARNING: running in production without ALLOWED_ORIGINS. "
            "Cross-origin access falls back to the same-host and app-origin heuristics."
        )
