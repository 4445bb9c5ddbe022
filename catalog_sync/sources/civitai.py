"""Civitai public model API."""

from __future__ import annotations

import json
from typing import Any

from ..engine.fetcher import FeedItem, FeedSource, TagVocabulary
from ..normalize import normalize_date, normalize_datetime
from ..records import CatalogSource, Domain, Hosting, LicenseInfo, LicenseType, ModelRecord
from .civitasbay import CIVITASBAY_VOCABULARY, strip_html

API_URL = "https://civitai.com/api/v1/models?limit={limit}&page={page}&sort=Newest&nsfw=false"
MODEL_URL = "https://civitai.com/models/{model_id}"
LICENSE_NAME = "CreativeML Open RAIL-M"

CIVITAI_VOCABULARY = TagVocabulary(
    groups=CIVITASBAY_VOCABULARY.groups,
    popularity_thresholds=((10_000, "popular"), (100_000, "widely-used")),
)

_LORA_TYPES = ("lora", "locon", "lycoris", "dora")


def _latest_version(entry: dict[str, Any]) -> dict[str, Any]:
    versions = entry.get("modelVersions")
    if isinstance(versions, list) and versions and isinstance(versions[0], dict):
        return versions[0]
    return {}


def civitai_license(entry: dict[str, Any]) -> LicenseInfo:
    """Translate Civitai's per-model permission flags into license flags."""

    allowed = entry.get("allowCommercialUse")
    if isinstance(allowed, str):
        allowed = [allowed]
    commercial = any(str(value).lower() != "none" for value in allowed or [])
    attribution = not entry.get("allowNoCredit", True)
    notes = ", ".join(str(value) for value in allowed or [] if str(value).lower() != "none")
    return LicenseInfo(
        name=LICENSE_NAME,
        type=LicenseType.CUSTOM,
        commercial_use=commercial,
        attribution_required=attribution,
        notes=f"Commercial use: {notes}" if notes else "",
    )


def civitai_domain(model_type: str, base_model: str) -> Domain:
    lowered = model_type.lower()
    if lowered in _LORA_TYPES:
        return Domain.LORA
    if lowered == "upscaler":
        return Domain.UPSCALER
    if "video" in base_model.lower():
        return Domain.VIDEO_GEN
    return Domain.IMAGE_GEN


class CivitaiFeed(FeedSource):
    """Paged JSON API; the listing asks Civitai to leave out NSFW models."""

    name = "Civitai"
    vocabulary = CIVITAI_VOCABULARY

    def __init__(
        self,
        *,
        url_template: str = API_URL,
        limit: int = 100,
        max_pages: int | None = 5,
        batch_size: int = 5,
        inter_batch_delay: float = 0.5,
        page_retries: int = 1,
    ) -> None:
        self.url_template = url_template
        self.limit = limit
        self.max_pages = max_pages
        self.batch_size = batch_size
        self.inter_batch_delay = inter_batch_delay
        self.page_retries = page_retries

    def page_url(self, page: int) -> str:
        return self.url_template.format(limit=self.limit, page=page)

    def request_headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    def parse_page(self, body: str, page: int) -> list[FeedItem]:
        data = json.loads(body)
        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            raise ValueError(f"Civitai page {page} has no items array")
        metadata = data.get("metadata") or {}
        total_pages = metadata.get("totalPages") if isinstance(metadata, dict) else None
        if isinstance(total_pages, int) and page > total_pages:
            return []
        items: list[FeedItem] = []
        for entry in data["items"]:
            if not isinstance(entry, dict) or entry.get("id") is None:
                continue
            version = _latest_version(entry)
            stats = entry.get("stats") if isinstance(entry.get("stats"), dict) else {}
            downloads = stats.get("downloadCount")
            model_id = str(entry["id"])
            items.append(
                FeedItem(
                    title=str(entry.get("name") or "").strip(),
                    link=MODEL_URL.format(model_id=model_id),
                    description=strip_html(str(entry.get("description") or "")),
                    published=version.get("publishedAt") or version.get("createdAt"),
                    guid=model_id,
                    popularity=downloads if isinstance(downloads, int) else None,
                    extra=entry,
                )
            )
        return items

    def build_record(self, item: FeedItem, identity: str, tags: list[str]) -> ModelRecord | None:
        entry = item.extra
        if entry.get("nsfw") is True:
            return None
        model_type = str(entry.get("type") or "Checkpoint")
        version = _latest_version(entry)
        base_model = str(version.get("baseModel") or "")
        creator = entry.get("creator") if isinstance(entry.get("creator"), dict) else {}
        license_info = civitai_license(entry)

        all_tags = [model_type.lower(), "community"]
        if base_model:
            all_tags.append(base_model.lower())
        all_tags.extend(str(tag).lower() for tag in entry.get("tags") or [] if isinstance(tag, str))
        all_tags.extend(tags)

        return ModelRecord(
            id=f"civitai-{identity}",
            name=item.title,
            provider=str(creator.get("username") or "Civitai Community"),
            domain=civitai_domain(model_type, base_model),
            source=CatalogSource.CIVITAI,
            url=item.link,
            description=item.description or f"{item.title} - Community-shared generative AI model",
            license=license_info,
            tags=all_tags,
            hosting=Hosting(weights_available=True, on_premise_friendly=True),
            downloads=item.popularity,
            updated_at=normalize_datetime(item.published or entry.get("lastVersionAt")),
            release_date=normalize_date(version.get("createdAt")),
            provenance="Community",
            usage_restrictions=["Attribution required"] if license_info.attribution_required else [],
        )


__all__ = ["API_URL", "CIVITAI_VOCABULARY", "CivitaiFeed", "civitai_domain", "civitai_license"]
