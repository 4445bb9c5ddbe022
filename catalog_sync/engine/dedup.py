"""Deduplication and field-level merging of model records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Sequence

import structlog

from ..normalize import contains_cjk
from ..records import Domain, Hosting, ModelRecord, PricingEntry, SyncSummary
from .similarity import NameMatcher, names_match, normalize_name, providers_compatible

FUTURE_RELEASE_TAGS = ("unreleased", "future-release")

_SCALAR_FIELDS = (
    "name",
    "provider",
    "domain",
    "url",
    "repo",
    "description",
    "license",
    "release_date",
    "parameters",
    "context_window",
    "downloads",
    "provenance",
)
_TEXT_FIELDS = ("name", "description")


@dataclass(slots=True)
class MergeOutcome:
    merged: list[ModelRecord]
    summary: SyncSummary


def _is_empty(field_name: str, value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if field_name == "domain":
        return value is Domain.OTHER
    if field_name == "license":
        return value.name in ("", "Unknown")
    return False


class DedupMergeEngine:
    """Fold incoming batches into an existing collection without duplicates.

    Two records describe the same model when their ids are equal, or when
    the name matcher accepts their normalized names while providers and
    domains stay compatible.  The matcher is pluggable.
    """

    def __init__(
        self,
        matcher: NameMatcher = names_match,
        *,
        today: Callable[[], date] | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.matcher = matcher
        self._today = today or date.today
        self.logger = logger or structlog.get_logger("catalog_sync.dedup")

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------
    def same_entity(self, left: ModelRecord, right: ModelRecord) -> bool:
        if left.id == right.id:
            return True
        if left.domain is not right.domain and Domain.OTHER not in (left.domain, right.domain):
            return False
        if not providers_compatible(left.provider, right.provider):
            return False
        return self.matcher(normalize_name(left.name), normalize_name(right.name))

    def _find(self, pool: Sequence[ModelRecord], ids: dict[str, int], record: ModelRecord) -> int | None:
        position = ids.get(record.id)
        if position is not None:
            return position
        for index, candidate in enumerate(pool):
            if self.same_entity(candidate, record):
                return index
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def dedupe(self, records: Sequence[ModelRecord]) -> tuple[list[ModelRecord], int]:
        """Collapse duplicates inside one batch; return survivors and the collapsed count."""

        kept: list[ModelRecord] = []
        ids: dict[str, int] = {}
        duplicates = 0
        for record in records:
            position = self._find(kept, ids, record)
            if position is None:
                ids[record.id] = len(kept)
                kept.append(record)
                continue
            kept[position] = self.merge_records(kept[position], record)
            ids[record.id] = position
            duplicates += 1
        return kept, duplicates

    def merge(self, existing: Sequence[ModelRecord], incoming: Sequence[ModelRecord]) -> MergeOutcome:
        batch, duplicates = self.dedupe(incoming)
        merged = list(existing)
        ids = {record.id: index for index, record in enumerate(merged)}
        summary = SyncSummary(found=len(incoming), duplicates=duplicates)
        for record in batch:
            position = self._find(merged, ids, record)
            if position is None:
                ids[record.id] = len(merged)
                merged.append(self.apply_release_tags(record))
                summary.added += 1
                continue
            merged[position] = self.merge_records(merged[position], record)
            ids[record.id] = position
            summary.updated += 1
        self.logger.info("merge_complete", **summary.as_dict())
        return MergeOutcome(merged=merged, summary=summary)

    # ------------------------------------------------------------------
    # Field merging
    # ------------------------------------------------------------------
    def merge_records(self, base: ModelRecord, other: ModelRecord) -> ModelRecord:
        """Merge ``other`` into ``base``; ``base`` keeps its id and source."""

        newer_is_other = other.updated_at is not None and (
            base.updated_at is None or other.updated_at > base.updated_at
        )
        preferred, fallback = (other, base) if newer_is_other else (base, other)

        update: dict[str, Any] = {}
        for field_name in _SCALAR_FIELDS:
            first = getattr(preferred, field_name)
            second = getattr(fallback, field_name)
            if _is_empty(field_name, first):
                update[field_name] = second
            elif _is_empty(field_name, second):
                update[field_name] = first
            elif field_name in _TEXT_FIELDS:
                update[field_name] = self._pick_text(preferred, first, fallback, second)
            else:
                update[field_name] = first

        update["updated_at"] = preferred.updated_at or fallback.updated_at
        update["tags"] = _union(base.tags, other.tags)
        update["usage_restrictions"] = _union(base.usage_restrictions, other.usage_restrictions)
        update["pricing"] = _union_pricing(base.pricing, other.pricing)
        update["hosting"] = Hosting(
            weights_available=base.hosting.weights_available or other.hosting.weights_available,
            api_available=base.hosting.api_available or other.hosting.api_available,
            on_premise_friendly=base.hosting.on_premise_friendly or other.hosting.on_premise_friendly,
            providers=_union(base.hosting.providers, other.hosting.providers),
        )
        return self.apply_release_tags(base.model_copy(update=update))

    @staticmethod
    def _pick_text(preferred: ModelRecord, first: str, fallback: ModelRecord, second: str) -> str:
        # Latin text beats CJK; a translated record beats an untranslated one.
        if contains_cjk(first) and not contains_cjk(second):
            return second
        if fallback.has_tag("translated") and not preferred.has_tag("translated"):
            return second
        return first

    def apply_release_tags(self, record: ModelRecord) -> ModelRecord:
        upcoming = record.release_date is not None and record.release_date > self._today()
        if upcoming:
            if all(record.has_tag(tag) for tag in FUTURE_RELEASE_TAGS):
                return record
            return record.tagged(*FUTURE_RELEASE_TAGS)
        if any(record.has_tag(tag) for tag in FUTURE_RELEASE_TAGS):
            return record.untagged(*FUTURE_RELEASE_TAGS)
        return record


def _union(first: Sequence[str], second: Sequence[str]) -> list[str]:
    return list(dict.fromkeys([*first, *second]))


def _union_pricing(first: Sequence[PricingEntry], second: Sequence[PricingEntry]) -> list[PricingEntry]:
    seen: set[tuple[Any, ...]] = set()
    combined: list[PricingEntry] = []
    for entry in [*first, *second]:
        signature = entry.signature()
        if signature in seen:
            continue
        seen.add(signature)
        combined.append(entry)
    return combined


__all__ = ["DedupMergeEngine", "FUTURE_RELEASE_TAGS", "MergeOutcome"]
