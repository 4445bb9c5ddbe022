"""Two-stage content-safety filter: lexical blocklist, then optional LLM review."""

from __future__ import annotations

import json
from typing import Any, Iterable, Sequence

import structlog

from ..config import FilterStrictness, ProviderDirectory
from ..records import FetchResult, ModelRecord, SafetyVerdict
from .errors import CancelToken, Cancelled
from .gateway import ProviderGateway, pick_completion_provider

# Terms that are explicit in any context; short ambiguous substrings are left out.
DEFAULT_BLOCKLIST: tuple[str, ...] = (
    "penis",
    "vagina",
    "pussy",
    "nipple",
    "nude",
    "naked",
    "nsfw",
    "xxx",
    "porn",
    "hentai",
    "sexual",
    "erotic",
    "fetish",
    "bdsm",
    "orgasm",
    "ejaculation",
    "masturbat",
    "blowjob",
    "handjob",
    "lingerie",
    "panties",
    "ahegao",
    "ecchi",
    "lewd",
    "r18",
    "rule34",
    "yiff",
)

NSFW_TAG = "nsfw"
ASSISTED_BATCH_SIZE = 10

ASSISTED_SYSTEM_PROMPT = (
    "You are a content-safety classifier for an AI model catalog. For each model "
    "decide whether its name or description indicates sexually explicit or adult "
    'content. Respond with JSON only: {"<id>": {"isNSFW": true|false, "reason": "..."}}.'
)


class ContentSafetyFilter:
    """Partition records into ``complete`` and ``flagged``.

    ``off`` passes everything through, ``tag`` marks lexical hits with an
    ``nsfw`` tag but keeps them, ``block`` holds lexical hits back and
    ``strict`` additionally asks an LLM about whatever the blocklist passed.
    """

    def __init__(
        self,
        strictness: FilterStrictness = FilterStrictness.BLOCK,
        extra_terms: Iterable[str] = (),
        *,
        gateway: ProviderGateway | None = None,
        providers: ProviderDirectory | None = None,
        batch_size: int = ASSISTED_BATCH_SIZE,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.strictness = FilterStrictness(strictness)
        terms = [*DEFAULT_BLOCKLIST, *(term.strip().lower() for term in extra_terms)]
        self.blocklist: tuple[str, ...] = tuple(dict.fromkeys(term for term in terms if term))
        self.gateway = gateway
        self.providers = providers
        self.batch_size = max(batch_size, 1)
        self.logger = logger or structlog.get_logger("catalog_sync.safety")

    @property
    def assisted_enabled(self) -> bool:
        return self.strictness is FilterStrictness.STRICT and self.gateway is not None

    # ------------------------------------------------------------------
    # Lexical stage
    # ------------------------------------------------------------------
    def match(self, record: ModelRecord) -> str | None:
        """Return the first blocklisted term in the record's title or description."""

        text = f"{record.name} {record.description}".lower()
        for term in self.blocklist:
            if term in text:
                return term
        return None

    def apply_lexical(self, records: Sequence[ModelRecord]) -> FetchResult:
        result = FetchResult()
        if self.strictness is FilterStrictness.OFF:
            result.complete.extend(records)
            return result
        for record in records:
            term = self.match(record)
            if term is None:
                result.complete.append(record)
            elif self.strictness is FilterStrictness.TAG:
                result.complete.append(record.tagged(NSFW_TAG))
            else:
                flagged = record.tagged(NSFW_TAG).model_copy(
                    update={"safety": SafetyVerdict(stage="lexical", detail=term)}
                )
                result.flagged.append(flagged)
        if result.flagged:
            self.logger.info("lexical_blocked", count=len(result.flagged))
        return result

    # ------------------------------------------------------------------
    # Assisted stage
    # ------------------------------------------------------------------
    async def apply_assisted(
        self,
        records: Sequence[ModelRecord],
        cancel_token: CancelToken | None = None,
    ) -> FetchResult:
        result = FetchResult()
        if not self.assisted_enabled or not records:
            result.complete.extend(records)
            return result
        selected = pick_completion_provider(self.providers)
        if selected is None:
            self.logger.info("assisted_skipped", reason="no provider configured")
            result.complete.extend(records)
            return result

        provider_key, config = selected
        for start in range(0, len(records), self.batch_size):
            batch = records[start : start + self.batch_size]
            try:
                verdicts = await self.gateway.complete_json(
                    provider_key,
                    config,
                    ASSISTED_SYSTEM_PROMPT,
                    self._prompt(batch),
                    cancel_token=cancel_token,
                )
            except Cancelled:
                raise
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("assisted_batch_failed", provider=provider_key, error=str(exc))
                verdicts = None
            decisions = _read_verdicts(verdicts)
            for record in batch:
                verdict = decisions.get(record.id)
                if verdict is not None and verdict[0]:
                    result.flagged.append(
                        record.tagged(NSFW_TAG).model_copy(
                            update={"safety": SafetyVerdict(stage="assisted", detail=verdict[1])}
                        )
                    )
                else:
                    result.complete.append(record)
        self.logger.info("assisted_complete", provider=provider_key, flagged=len(result.flagged))
        return result

    async def apply(
        self,
        records: Sequence[ModelRecord],
        cancel_token: CancelToken | None = None,
    ) -> FetchResult:
        """Run every stage the configured strictness calls for."""

        lexical = self.apply_lexical(records)
        assisted = await self.apply_assisted(lexical.complete, cancel_token)
        return FetchResult(complete=assisted.complete, flagged=[*lexical.flagged, *assisted.flagged])

    @staticmethod
    def _prompt(batch: Sequence[ModelRecord]) -> str:
        payload = [
            {
                "id": record.id,
                "name": record.name,
                "description": record.description[:300],
                "tags": record.tags[:15],
            }
            for record in batch
        ]
        return "Classify these models:\n" + json.dumps(payload, ensure_ascii=False)


def _read_verdicts(payload: Any) -> dict[str, tuple[bool, str]]:
    decisions: dict[str, tuple[bool, str]] = {}
    if isinstance(payload, dict) and isinstance(payload.get("results"), (dict, list)):
        payload = payload["results"]
    if isinstance(payload, dict):
        entries = [{"id": key, **value} for key, value in payload.items() if isinstance(value, dict)]
    elif isinstance(payload, list):
        entries = [entry for entry in payload if isinstance(entry, dict)]
    else:
        return decisions
    for entry in entries:
        record_id = entry.get("id")
        if not isinstance(record_id, str):
            continue
        flagged = entry.get("isNSFW", entry.get("is_nsfw", False)) is True
        decisions[record_id] = (flagged, str(entry.get("reason") or "classifier verdict"))
    return decisions


__all__ = [
    "ASSISTED_BATCH_SIZE",
    "ContentSafetyFilter",
    "DEFAULT_BLOCKLIST",
    "NSFW_TAG",
]
