"""Pydantic models describing provider credentials and sync policy."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class ProviderProtocol(str, Enum):
    """Wire protocol families spoken by upstream completion APIs."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    COHERE = "cohere"
    OLLAMA = "ollama"


class FilterStrictness(str, Enum):
    """How aggressively the content-safety filter acts."""

    OFF = "off"
    TAG = "tag"
    BLOCK = "block"
    STRICT = "strict"


class ProviderConfig(BaseModel):
    """Credentials and endpoint overrides for one provider."""

    enabled: bool = False
    api_key: str | None = None
    model: str = ""
    base_url: str | None = None
    protocol: ProviderProtocol | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    is_custom: bool = False
    bypass_proxy: bool = False
    name: str = ""

    @field_validator("api_key", "base_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("base_url", mode="after")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        return value.rstrip("/") if value else value

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key)


class ProviderDirectory(BaseModel):
    """Provider key to configuration mapping consumed read-only by the engine."""

    providers: dict[str, ProviderConfig] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _accept_flat_mapping(cls, data):
        if isinstance(data, dict) and "providers" not in data:
            return {"providers": data}
        return data

    def enabled(self) -> dict[str, ProviderConfig]:
        return {key: cfg for key, cfg in self.providers.items() if cfg.enabled}

    def get(self, key: str) -> ProviderConfig | None:
        return self.providers.get(key)


class SourceToggles(BaseModel):
    civitasbay: bool = True
    huggingface: bool = True
    modelscope: bool = False
    civitai: bool = False
    providers: bool = True
    local: bool = False


class SyncOptions(BaseModel):
    """Per-run policy handed to the orchestrator."""

    strictness: FilterStrictness = FilterStrictness.BLOCK
    sources: SourceToggles = Field(default_factory=SourceToggles)
    extra_blocklist: list[str] = Field(default_factory=list)
    translate: bool = True
    tier: Literal["free", "tier1", "tier2", "tier3", "tier4"] = "tier4"
    batch_size: int = Field(default=5, ge=1)
    inter_batch_delay: float = Field(default=0.5, ge=0)
    page_retries: int = Field(default=1, ge=0)
    civitasbay_max_pages: int | None = Field(default=None, ge=1)
    huggingface_limit: int = Field(default=100, ge=1, le=1000)
    modelscope_max_pages: int | None = Field(default=3, ge=1)
    civitai_max_pages: int | None = Field(default=5, ge=1)
    ollama_base_url: str = "http://127.0.0.1:11434"
    log_dir: Path | None = None

    @field_validator("extra_blocklist", mode="after")
    @classmethod
    def _normalize_terms(cls, value: list[str]) -> list[str]:
        return [term.strip().lower() for term in value if term and term.strip()]


__all__ = [
    "FilterStrictness",
    "ProviderConfig",
    "ProviderDirectory",
    "ProviderProtocol",
    "SourceToggles",
    "SyncOptions",
]
