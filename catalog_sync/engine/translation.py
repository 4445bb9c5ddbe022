"""English translation of CJK model names and descriptions."""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Awaitable, Callable, Sequence

import structlog

from ..config import ProviderDirectory
from ..normalize import contains_cjk
from ..records import Domain, ModelRecord
from .errors import CancelToken, Cancelled, cancellable_sleep
from .gateway import ProviderGateway, pick_completion_provider

TRANSLATED_TAG = "translated"
FALLBACK_TAG = "translation-fallback"
TRANSLATION_BATCH_SIZE = 25
MIN_FALLBACK_LENGTH = 2

DOMAIN_LABELS: dict[Domain, str] = {
    Domain.LLM: "Chinese Language Model",
    Domain.IMAGE_GEN: "Chinese Image Generation Model",
    Domain.VLM: "Chinese Multimodal Model",
    Domain.VISION: "Chinese Vision Model",
    Domain.AUDIO: "Chinese Audio Model",
    Domain.ASR: "Chinese Speech Recognition Model",
    Domain.TTS: "Chinese Text-to-Speech Model",
    Domain.VIDEO_GEN: "Chinese Video Generation Model",
}
DEFAULT_LABEL = "Chinese AI Model"

SYSTEM_PROMPT = (
    "You are a professional translator specializing in AI/ML technical content. "
    "Translate Chinese, Japanese or Korean text to clear, professional English suitable "
    "for a product catalog. Preserve technical terms and model names where appropriate "
    "and keep translations concise. Return ONLY a JSON object mapping each id to "
    '{"name": "...", "description": "..."}.'
)

_NON_ASCII = re.compile(r"[^\x20-\x7E]+")
_WHITESPACE = re.compile(r"\s+")
_EDGE_JUNK = re.compile(r"^[^A-Za-z0-9]+|[^A-Za-z0-9]+$")


def needs_translation(record: ModelRecord) -> bool:
    return contains_cjk(record.name) or contains_cjk(record.description)


def ascii_only(text: str | None) -> str:
    cleaned = _NON_ASCII.sub(" ", text or "")
    cleaned = _WHITESPACE.sub(" ", cleaned)
    return _EDGE_JUNK.sub("", cleaned).strip()


def domain_label(record: ModelRecord) -> str:
    return DOMAIN_LABELS.get(record.domain, DEFAULT_LABEL)


def fallback_translation(record: ModelRecord) -> ModelRecord:
    """Deterministic local rewrite used when no LLM translation is available."""

    name = record.name
    if contains_cjk(name):
        stripped = ascii_only(name)
        name = stripped if len(stripped) >= MIN_FALLBACK_LENGTH else domain_label(record)
    description = record.description
    if contains_cjk(description):
        origin = record.provider or record.source.value or "Chinese platform"
        description = f"{domain_label(record)} from {origin}"
    updated = record.model_copy(update={"name": name, "description": description})
    return updated.tagged(TRANSLATED_TAG, FALLBACK_TAG)


def _read_translations(payload: Any) -> dict[str, tuple[str, str]] | None:
    """Accept ``{id: {name, description}}`` or ``[{id, name_en, description_en}]``."""

    if isinstance(payload, dict) and isinstance(payload.get("translations"), (dict, list)):
        payload = payload["translations"]
    if isinstance(payload, dict):
        entries = [{"id": key, **value} for key, value in payload.items() if isinstance(value, dict)]
    elif isinstance(payload, list):
        entries = [entry for entry in payload if isinstance(entry, dict)]
    else:
        return None
    translations: dict[str, tuple[str, str]] = {}
    for entry in entries:
        record_id = entry.get("id")
        if record_id is None:
            continue
        name = entry.get("name", entry.get("name_en")) or ""
        description = entry.get("description", entry.get("description_en")) or ""
        translations[str(record_id)] = (str(name).strip(), str(description).strip())
    return translations


class TranslationModule:
    """Translate CJK records in batches through the first usable provider."""

    def __init__(
        self,
        gateway: ProviderGateway | None = None,
        providers: ProviderDirectory | None = None,
        *,
        batch_size: int = TRANSLATION_BATCH_SIZE,
        batch_delay: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.gateway = gateway
        self.providers = providers
        self.batch_size = max(batch_size, 1)
        self.batch_delay = batch_delay
        self._sleep = sleep or asyncio.sleep
        self.logger = logger or structlog.get_logger("catalog_sync.translation")

    async def translate(
        self,
        records: Sequence[ModelRecord],
        cancel_token: CancelToken | None = None,
        on_batch: Callable[[int, int], None] | None = None,
    ) -> list[ModelRecord]:
        """Return ``records`` in order with CJK entries translated or rewritten."""

        result = list(records)
        pending = [index for index, record in enumerate(result) if needs_translation(record)]
        if not pending:
            return result

        selected = pick_completion_provider(self.providers) if self.gateway is not None else None
        if selected is None:
            self.logger.info("translation_fallback", reason="no provider configured", count=len(pending))
            for index in pending:
                result[index] = fallback_translation(result[index])
            return result

        provider_key, config = selected
        total_batches = (len(pending) + self.batch_size - 1) // self.batch_size
        for batch_number, start in enumerate(range(0, len(pending), self.batch_size), start=1):
            indices = pending[start : start + self.batch_size]
            batch = [result[index] for index in indices]
            try:
                payload = await self.gateway.complete_json(
                    provider_key,
                    config,
                    SYSTEM_PROMPT,
                    self._prompt(batch),
                    cancel_token=cancel_token,
                )
            except Cancelled:
                raise
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("translation_batch_failed", provider=provider_key, error=str(exc))
                payload = None

            translations = _read_translations(payload)
            if translations is None:
                self.logger.warning("translation_fallback", reason="unusable response", batch=batch_number)
                translations = {}
            for index in indices:
                result[index] = self._apply(result[index], translations.get(result[index].id))

            if on_batch is not None:
                on_batch(batch_number, total_batches)
            if batch_number < total_batches:
                await cancellable_sleep(self.batch_delay, cancel_token, self._sleep)

        self.logger.info("translation_complete", provider=provider_key, records=len(pending))
        return result

    @staticmethod
    def _apply(record: ModelRecord, translation: tuple[str, str] | None) -> ModelRecord:
        if translation is None:
            return fallback_translation(record)
        name, description = translation
        update: dict[str, str] = {}
        if name:
            update["name"] = name
        if description:
            update["description"] = description
        translated = record.model_copy(update=update).tagged(TRANSLATED_TAG)
        if needs_translation(translated):
            return fallback_translation(translated)
        return translated

    @staticmethod
    def _prompt(batch: Sequence[ModelRecord]) -> str:
        payload = [
            {
                "id": record.id,
                "name": record.name,
                "description": record.description,
                "provider": record.provider,
            }
            for record in batch
        ]
        return (
            "Translate the following AI model information to English:\n"
            + json.dumps(payload, ensure_ascii=False, indent=2)
        )


__all__ = [
    "DEFAULT_LABEL",
    "DOMAIN_LABELS",
    "FALLBACK_TAG",
    "TRANSLATED_TAG",
    "TranslationModule",
    "ascii_only",
    "fallback_translation",
    "needs_translation",
]
