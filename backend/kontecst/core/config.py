"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

ENV_PREFIX = "KTX_"
DEFAULT_CONFIG_PATH = Path("~/.config/kontecst/config.yaml")

MIB = 1024 * 1024

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("storage", "max_file_size_bytes"): "max_file_size_bytes",
    ("storage", "max_package_size_bytes"): "max_package_size_bytes",
    ("embeddings", "provider"): "embedding_provider",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "api_base"): "embedding_api_base",
    ("embeddings", "api_key"): "embedding_api_key",
    ("embeddings", "concurrency"): "embed_concurrency",
    ("chunking", "max_tokens"): "chunk_max_tokens",
    ("chunking", "overlap_tokens"): "chunk_overlap_tokens",
    ("chunking", "tokenizer"): "chunk_tokenizer",
    ("providers", "timeout"): "provider_timeout",
    ("providers", "retry_attempts"): "retry_attempts",
    ("providers", "retry_base_delay"): "retry_base_delay",
    ("providers", "retry_max_delay"): "retry_max_delay",
    ("sync", "github_api_base"): "github_api_base",
    ("sync", "github_token"): "github_token",
    ("sync", "include_suffixes"): "sync_include_suffixes",
    ("sync", "stale_after_seconds"): "sync_stale_after_seconds",
    ("jobs", "workers"): "job_workers",
    ("search", "default_limit"): "search_default_limit",
    ("search", "max_limit"): "search_max_limit",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".kontecst" / "kontecst.db")
    max_file_size_bytes: int = Field(default=10 * MIB, gt=0)
    max_package_size_bytes: int = Field(default=100 * MIB, gt=0)

    embedding_provider: str = "hashed"
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = Field(default=1536, gt=0)
    embedding_api_base: str = "https://api.openai.com/v1"
    embedding_api_key: str | None = None
    embed_concurrency: int = Field(default=4, ge=1)

    chunk_max_tokens: int = Field(default=512, ge=1)
    chunk_overlap_tokens: int = Field(default=50, ge=0)
    chunk_tokenizer: str = "whitespace"

    provider_timeout: float = Field(default=30.0, gt=0)
    retry_attempts: int = Field(default=4, ge=1)
    retry_base_delay: float = Field(default=0.5, ge=0)
    retry_max_delay: float = Field(default=8.0, ge=0)

    github_api_base: str = "https://api.github.com"
    github_token: str | None = None
    sync_include_suffixes: list[str] = Field(default_factory=lambda: [".md", ".markdown"])
    sync_stale_after_seconds: int = Field(default=3600, gt=0)

    job_workers: int = Field(default=2, ge=1)

    search_default_limit: int = Field(default=10, ge=1)
    search_max_limit: int = Field(default=100, ge=1)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("db_path must be a path or string")

    @field_validator("sync_include_suffixes", mode="before")
    @classmethod
    def _split_suffixes(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @model_validator(mode="after")
    def _check_windows(self) -> "Settings":
        if self.chunk_overlap_tokens >= self.chunk_max_tokens:
            raise ValueError("chunk_overlap_tokens must be smaller than chunk_max_tokens")
        if self.search_default_limit > self.search_max_limit:
            raise ValueError("search_default_limit must not exceed search_max_limit")
        return self

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with KTX_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings", "MIB"]
