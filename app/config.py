"""Configuration management for AI Notes."""

from __future__ import annotations

import json
import os
from enum import StrEnum
from pathlib import Path
from typing import Any

_CONFIG_VERSION = 1


def _default_config_path() -> Path:
    """Get default config file path following XDG spec."""
    config_home = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return config_home / "ai-notes" / "config.json"


def _default_data_dir() -> Path:
    return Path.home() / ".ai_notes"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _positive_int(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return int(value) > 0
    except (TypeError, ValueError):
        return False


class ConfigError(RuntimeError):
    """Raised when required settings are missing at startup."""


class EmbedProvider(StrEnum):
    OPENAI_COMPATIBLE = "openai_compatible"
    OLLAMA = "ollama"


class Config:
    """Application configuration.

    Values come from the JSON config file when it exists; environment
    variables take precedence over the file.
    """

    def __init__(self, config_path: Path | None = None) -> None:
        self._path = config_path or _default_config_path()
        self._data: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        """Load config from disk, falling back to defaults, then apply env."""
        data = self._defaults()
        if self._path.exists():
            try:
                with open(self._path, encoding="utf-8") as f:
                    stored = json.load(f)
                if stored.get("version") == _CONFIG_VERSION:
                    data.update(stored)
            except (OSError, json.JSONDecodeError):
                pass  # unreadable file, keep defaults
        return self._apply_env(data)

    def _defaults(self) -> dict[str, Any]:
        data_dir = _default_data_dir()
        return {
            "version": _CONFIG_VERSION,
            "db_path": str(data_dir / "notes.db"),
            "vector_db_path": str(data_dir / "vectors.db"),
            "embeddings_enabled": True,
            "embed_provider": EmbedProvider.OPENAI_COMPATIBLE.value,
            "embed_base_url": "https://api.openai.com",
            "embed_api_key": "",
            "embed_model": "text-embedding-ada-002",
            "embed_dimensions": 1536,
            "jwt_secret": "",
            "jwt_algorithm": "HS256",
            "search_limit": 5,
        }

    @staticmethod
    def _apply_env(data: dict[str, Any]) -> dict[str, Any]:
        env_map = {
            "db_path": "AI_NOTES_DB_PATH",
            "vector_db_path": "AI_NOTES_VECTOR_DB_PATH",
            "embed_provider": "AI_NOTES_EMBED_PROVIDER",
            "embed_base_url": "AI_NOTES_EMBED_BASE_URL",
            "embed_api_key": "OPENAI_API_KEY",
            "embed_model": "AI_NOTES_EMBED_MODEL",
            "embed_dimensions": "AI_NOTES_EMBED_DIMENSIONS",
            "jwt_secret": "AI_NOTES_JWT_SECRET",
            "jwt_algorithm": "AI_NOTES_JWT_ALGORITHM",
            "search_limit": "AI_NOTES_SEARCH_LIMIT",
        }
        for key, env_name in env_map.items():
            value = os.getenv(env_name)
            if value is not None:
                data[key] = value
        data["embeddings_enabled"] = _env_bool(
            "AI_NOTES_EMBEDDINGS_ENABLED", bool(data.get("embeddings_enabled", True))
        )
        return data

    def validate(self) -> None:
        """Fail fast when required settings are absent."""
        missing: list[str] = []
        if not self.jwt_secret:
            missing.append("AI_NOTES_JWT_SECRET")
        if (
            self.embeddings_enabled
            and self.embed_provider == EmbedProvider.OPENAI_COMPATIBLE
            and not self.embed_api_key
        ):
            missing.append("OPENAI_API_KEY")
        if missing:
            raise ConfigError(
                "Missing required settings: "
                + ", ".join(missing)
                + ". Please set them and try again."
            )
        invalid = [
            env_name
            for key, env_name in (
                ("embed_dimensions", "AI_NOTES_EMBED_DIMENSIONS"),
                ("search_limit", "AI_NOTES_SEARCH_LIMIT"),
            )
            if not _positive_int(self._data.get(key))
        ]
        if invalid:
            raise ConfigError(
                "Settings must be positive integers: " + ", ".join(invalid)
            )

    # -- Getters --

    @property
    def db_path(self) -> str:
        return str(self._data["db_path"])

    @property
    def vector_db_path(self) -> str:
        return str(self._data["vector_db_path"])

    @property
    def embeddings_enabled(self) -> bool:
        return bool(self._data.get("embeddings_enabled", True))

    @property
    def embed_provider(self) -> EmbedProvider:
        val = self._data.get("embed_provider", EmbedProvider.OPENAI_COMPATIBLE.value)
        try:
            return EmbedProvider(val)
        except ValueError:
            return EmbedProvider.OPENAI_COMPATIBLE

    @property
    def embed_base_url(self) -> str:
        return str(self._data.get("embed_base_url", "https://api.openai.com"))

    @property
    def embed_api_key(self) -> str:
        return str(self._data.get("embed_api_key", ""))

    @property
    def embed_model(self) -> str:
        return str(self._data.get("embed_model", "text-embedding-ada-002"))

    @property
    def embed_dimensions(self) -> int:
        return int(self._data.get("embed_dimensions", 1536))

    @property
    def jwt_secret(self) -> str:
        return str(self._data.get("jwt_secret", ""))

    @property
    def jwt_algorithm(self) -> str:
        return str(self._data.get("jwt_algorithm", "HS256"))

    @property
    def search_limit(self) -> int:
        return int(self._data.get("search_limit", 5))
