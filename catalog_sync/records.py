"""Canonical model-metadata records shared by every pipeline stage."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Iterable

from pydantic import BaseModel, Field, field_validator


class Domain(str, Enum):
    """Functional category of a model."""

    LLM = "LLM"
    VLM = "VLM"
    VISION = "Vision"
    IMAGE_GEN = "ImageGen"
    VIDEO_GEN = "VideoGen"
    AUDIO = "Audio"
    ASR = "ASR"
    TTS = "TTS"
    THREE_D = "3D"
    WORLD_SIM = "World/Sim"
    LORA = "LoRA"
    FINE_TUNE = "FineTune"
    BACKGROUND_REMOVAL = "BackgroundRemoval"
    UPSCALER = "Upscaler"
    OTHER = "Other"


class CatalogSource(str, Enum):
    """Catalog identifiers a record may originate from."""

    CIVITASBAY = "CivitasBay"
    HUGGINGFACE = "HuggingFace"
    MODELSCOPE = "ModelScope"
    CIVITAI = "Civitai"
    OPENAI = "OpenAI"
    ANTHROPIC = "Anthropic"
    DEEPSEEK = "DeepSeek"
    PERPLEXITY = "Perplexity"
    OPENROUTER = "OpenRouter"
    COHERE = "Cohere"
    GOOGLE = "Google"
    OLLAMA = "Ollama"
    LOCAL = "Local"
    CUSTOM = "Custom"

    @classmethod
    def for_provider(cls, provider_key: str) -> "CatalogSource":
        lowered = provider_key.strip().lower()
        for member in cls:
            if member.value.lower() == lowered:
                return member
        return cls.CUSTOM


class LicenseType(str, Enum):
    OSI = "OSI"
    COPYLEFT = "Copyleft"
    PROPRIETARY = "Proprietary"
    NON_COMMERCIAL = "Non-Commercial"
    CUSTOM = "Custom"


class LicenseInfo(BaseModel):
    name: str = "Unknown"
    type: LicenseType = LicenseType.CUSTOM
    commercial_use: bool = False
    attribution_required: bool = False
    share_alike: bool = False
    copyleft: bool = False
    url: str = ""
    notes: str = ""


class Hosting(BaseModel):
    weights_available: bool = False
    api_available: bool = False
    on_premise_friendly: bool = False
    providers: list[str] = Field(default_factory=list)


class PricingEntry(BaseModel):
    """Single price point; ``flat`` covers per-image or per-request plans."""

    label: str = ""
    input: float | None = None
    output: float | None = None
    flat: float | None = None
    unit: str = ""
    currency: str = "USD"

    def signature(self) -> tuple[Any, ...]:
        return (
            self.label.strip().lower(),
            self.input,
            self.output,
            self.flat,
            self.unit.strip().lower(),
            self.currency.upper(),
        )


class SafetyVerdict(BaseModel):
    """Audit note attached to a record held back by the safety filter."""

    stage: str
    detail: str = ""


def _unique(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for value in values:
        text = str(value).strip()
        if not text or text in seen:
            continue
        seen.add(text)
        ordered.append(text)
    return ordered


class ModelRecord(BaseModel):
    """Normalized metadata for one model, whatever catalog it came from."""

    id: str
    name: str
    provider: str = ""
    domain: Domain = Domain.OTHER
    source: CatalogSource = CatalogSource.CUSTOM
    url: str = ""
    repo: str | None = None
    description: str = ""
    license: LicenseInfo = Field(default_factory=LicenseInfo)
    tags: list[str] = Field(default_factory=list)
    hosting: Hosting = Field(default_factory=Hosting)
    updated_at: datetime | None = None
    release_date: date | None = None
    parameters: str = ""
    context_window: int | None = None
    pricing: list[PricingEntry] = Field(default_factory=list)
    downloads: int | None = None
    provenance: str = ""
    usage_restrictions: list[str] = Field(default_factory=list)
    safety: SafetyVerdict | None = None

    @field_validator("tags", "usage_restrictions", mode="after")
    @classmethod
    def _dedupe_lists(cls, value: list[str]) -> list[str]:
        return _unique(value)

    @field_validator("updated_at", mode="after")
    @classmethod
    def _ensure_aware(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def is_complete(self) -> bool:
        """Whether the mandatory identity fields are all present."""

        return all(
            str(value).strip()
            for value in (self.id, self.name, self.provider, self.domain.value, self.source.value)
        )

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def tagged(self, *tags: str) -> "ModelRecord":
        """Return a copy carrying ``tags`` in addition to the existing ones."""

        return self.model_copy(update={"tags": _unique([*self.tags, *tags])})

    def untagged(self, *tags: str) -> "ModelRecord":
        dropped = set(tags)
        return self.model_copy(update={"tags": [tag for tag in self.tags if tag not in dropped]})


@dataclass(slots=True)
class FetchResult:
    """Partition of one source's records; a record sits in exactly one list."""

    complete: list[ModelRecord] = field(default_factory=list)
    flagged: list[ModelRecord] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.complete) + len(self.flagged)

    def extend(self, other: "FetchResult") -> None:
        self.complete.extend(other.complete)
        self.flagged.extend(other.flagged)


@dataclass(slots=True)
class SyncSummary:
    """Counts derived from one merge pass."""

    found: int = 0
    added: int = 0
    updated: int = 0
    flagged: int = 0
    duplicates: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "found": self.found,
            "added": self.added,
            "updated": self.updated,
            "flagged": self.flagged,
            "duplicates": self.duplicates,
        }


__all__ = [
    "CatalogSource",
    "Domain",
    "FetchResult",
    "Hosting",
    "LicenseInfo",
    "LicenseType",
    "ModelRecord",
    "PricingEntry",
    "SafetyVerdict",
    "SyncSummary",
]
