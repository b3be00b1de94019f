"""Configuration loading and validation for the August chat client and gateway."""

from __future__ import annotations

from copy import deepcopy
import logging
import os
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .exceptions import ConfigValidationError

import tomllib  # stdlib since Python 3.11 (project requires >=3.11)

LOGGER = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "august-chat"
CONFIG_PATH = CONFIG_DIR / "config.toml"

DEFAULT_MODEL = "openai/gpt-oss-20b:free"
VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}

# Environment variables holding server-side secrets. They are never written
# to the TOML file and never echoed back to callers.
ENV_IDENTITY_URL = "SUPABASE_URL"
ENV_SERVICE_ROLE_KEY = "SUPABASE_SERVICE_ROLE_KEY"
ENV_PROVIDER_API_KEY = "OPENROUTER_API_KEY"


def _require_http_url(value: Any, *, allow_empty: bool = False) -> str:
    if not isinstance(value, str):
        raise ValueError("Expected a string value.")
    normalized = value.strip().rstrip("/")
    if not normalized:
        if allow_empty:
            return ""
        raise ValueError("URL must not be empty.")
    parsed = urlparse(normalized)
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.hostname:
        raise ValueError("URL must use http or https and include a hostname.")
    return normalized


def _normalize_model_list(value: Any, field_name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{field_name} must be a list of model names.")
    normalized: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"Each model name in {field_name} must be a string.")
        candidate = item.strip()
        if not candidate:
            raise ValueError(f"Model names in {field_name} must not be empty.")
        if candidate not in normalized:
            normalized.append(candidate)
    return normalized


class AppConfig(BaseModel):
    """Application metadata."""

    title: str = "August Chat"

    @field_validator("title", mode="before")
    @classmethod
    def _validate_title(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("title must be a non-empty string.")
        return value.strip()


class GatewayConfig(BaseModel):
    """Client-side view of the completion gateway and its model allow-list."""

    url: str = "http://127.0.0.1:8787/chat"
    default_model: str = DEFAULT_MODEL
    models: list[str] = Field(default_factory=list)
    timeout_seconds: float = Field(default=120.0, gt=0, le=3600)

    @field_validator("url", mode="before")
    @classmethod
    def _validate_url(cls, value: Any) -> str:
        return _require_http_url(value)

    @field_validator("default_model", mode="before")
    @classmethod
    def _validate_default_model(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("default_model must be a non-empty string.")
        return value.strip()

    @field_validator("models", mode="before")
    @classmethod
    def _validate_models(cls, value: Any) -> list[str]:
        return _normalize_model_list(value, "models")

    @model_validator(mode="after")
    def _default_model_first(self) -> GatewayConfig:
        ordered = [m for m in self.models if m != self.default_model]
        self.models = [self.default_model, *ordered]
        return self


class IdentityConfig(BaseModel):
    """Identity provider and row store endpoint used by the client.

    An empty ``url`` selects the local JSON backend with an offline identity.
    """

    url: str = ""
    anon_key: str = ""

    @field_validator("url", mode="before")
    @classmethod
    def _validate_url(cls, value: Any) -> str:
        return _require_http_url(value, allow_empty=True)

    @field_validator("anon_key", mode="before")
    @classmethod
    def _strip_key(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError("anon_key must be a string.")
        return value.strip()


class ServerConfig(BaseModel):
    """Gateway server settings. Secrets are read from the environment only."""

    host: str = "127.0.0.1"
    port: int = Field(default=8787, ge=1, le=65535)
    path: str = "/chat"
    provider_url: str = "https://openrouter.ai/api/v1/chat/completions"
    referer: str = "https://example.com"
    title: str = "August Chat"
    allowed_models: list[str] = Field(default_factory=list)
    native_web_families: list[str] = Field(
        default_factory=lambda: ["openai/", "anthropic/", "perplexity/"]
    )
    timeout_seconds: float = Field(default=120.0, gt=0, le=3600)

    @field_validator("provider_url", mode="before")
    @classmethod
    def _validate_provider_url(cls, value: Any) -> str:
        return _require_http_url(value)

    @field_validator("path", mode="before")
    @classmethod
    def _validate_path(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip().startswith("/"):
            raise ValueError("path must start with '/'.")
        return value.strip()

    @field_validator("allowed_models", mode="before")
    @classmethod
    def _validate_allowed_models(cls, value: Any) -> list[str]:
        return _normalize_model_list(value, "allowed_models")

    @field_validator("native_web_families", mode="before")
    @classmethod
    def _validate_families(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("native_web_families must be a list of prefixes.")
        return [str(item).strip().lower() for item in value if str(item).strip()]


class AttachmentsConfig(BaseModel):
    """Per-turn attachment limits."""

    max_files: int = Field(default=5, ge=1, le=50)
    max_file_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    max_text_chars: int = Field(default=20_000, ge=100)
    ocr_enabled: bool = True


class RenderConfig(BaseModel):
    """Progressive reveal animation settings."""

    steps: int = Field(default=120, ge=1, le=10_000)
    interval_seconds: float = Field(default=0.012, ge=0, le=1)


class LoggingConfig(BaseModel):
    """Logging behavior and output destinations."""

    level: str = "INFO"
    structured: bool = True
    log_to_file: bool = False
    log_file_path: str = "~/.local/state/august-chat/app.log"

    @field_validator("level", mode="before")
    @classmethod
    def _validate_level(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("Logging level must be a string.")
        normalized = value.strip().upper()
        if normalized not in VALID_LOG_LEVELS:
            raise ValueError(f"Unsupported log level {normalized!r}.")
        return normalized

    @field_validator("log_file_path", mode="before")
    @classmethod
    def _validate_log_file_path(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("log_file_path must be a non-empty string.")
        return value.strip()


class StorageConfig(BaseModel):
    """Local file locations."""

    local_path: str = "~/.local/state/august-chat/conversations.json"
    preferences_path: str = "~/.config/august-chat/preferences.json"

    @field_validator("local_path", "preferences_path", mode="before")
    @classmethod
    def _validate_path_string(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("Path value must be a non-empty string.")
        return value.strip()


class Config(BaseModel):
    """Root configuration model for all sections."""

    model_config = ConfigDict(populate_by_name=True)
    app: AppConfig = AppConfig()
    gateway: GatewayConfig = GatewayConfig()
    identity: IdentityConfig = IdentityConfig()
    server: ServerConfig = ServerConfig()
    attachments: AttachmentsConfig = AttachmentsConfig()
    render: RenderConfig = RenderConfig()
    logging: LoggingConfig = LoggingConfig()
    storage: StorageConfig = StorageConfig()


def _build_default_config() -> dict[str, dict[str, Any]]:
    """Build default config with an empty models list for clean merging."""
    data = Config().model_dump()
    # A partial TOML that only sets default_model must not inherit the
    # normalised default allow-list.
    data["gateway"]["models"] = []
    return data


DEFAULT_CONFIG: dict[str, dict[str, Any]] = _build_default_config()


def ensure_config_dir(config_dir: Path | None = None) -> Path:
    """Ensure that the config directory exists and return its path."""
    directory = config_dir or CONFIG_DIR
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create config directory %s: %s", directory, exc)
    return directory


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override values onto base values."""
    merged: dict[str, Any] = deepcopy(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _enforce_private_permissions(path: Path) -> None:
    """Best-effort enforcement of private file permissions on POSIX systems."""
    if os.name != "posix" or not path.exists():
        return
    try:
        path.chmod(0o600)
    except OSError as exc:
        LOGGER.warning("Unable to enforce 0600 permissions for %s: %s", path, exc)


def _safe_default_config() -> dict[str, dict[str, Any]]:
    """Return a validated copy of the default config data."""
    return Config.model_validate(deepcopy(DEFAULT_CONFIG)).model_dump()


def _validate_config(raw: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Validate merged config and fallback to safe defaults when possible."""
    try:
        config = Config.model_validate(raw)
        return config.model_dump()
    except ValidationError as exc:
        LOGGER.warning("Configuration validation failed, using safe defaults: %s", exc)
        return _safe_default_config()
    except Exception as exc:  # noqa: BLE001 - unexpected model construction failure.
        raise ConfigValidationError(f"Unable to validate configuration: {exc}") from exc


def load_config(config_path: Path | None = None) -> dict[str, dict[str, Any]]:
    """
    Load configuration from TOML, merge with defaults, and validate.

    The optional ``config_path`` argument is intended for tests and tooling.
    """
    target_path = config_path or CONFIG_PATH
    ensure_config_dir(target_path.parent)

    raw_data: dict[str, Any] = {}
    if target_path.exists():
        _enforce_private_permissions(target_path)
        try:
            raw_data = tomllib.loads(target_path.read_text(encoding="utf-8"))
        except (
            Exception
        ) as exc:  # noqa: BLE001 - we must not crash on invalid user config.
            LOGGER.warning("Failed to parse config at %s: %s", target_path, exc)
            raw_data = {}

    merged = (
        _deep_merge(DEFAULT_CONFIG, raw_data)
        if isinstance(raw_data, dict)
        else _safe_default_config()
    )
    return _validate_config(merged)


class ServerSecrets(BaseModel):
    """Secrets the gateway needs per request, read from the environment."""

    identity_url: str = ""
    service_role_key: str = ""
    provider_api_key: str = ""

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> ServerSecrets:
        env = os.environ if environ is None else environ
        return cls(
            identity_url=env.get(ENV_IDENTITY_URL, "").strip().rstrip("/"),
            service_role_key=env.get(ENV_SERVICE_ROLE_KEY, "").strip(),
            provider_api_key=env.get(ENV_PROVIDER_API_KEY, "").strip(),
        )

    @property
    def complete(self) -> bool:
        return bool(
            self.identity_url and self.service_role_key and self.provider_api_key
        )

    def __repr__(self) -> str:
        # Keys stay out of reprs so they never reach logs or tracebacks.
        return f"ServerSecrets(identity_url={self.identity_url!r}, complete={self.complete})"

    __str__ = __repr__
