"""Hugging Face Hub model listing, most-downloaded first."""

from __future__ import annotations

import json

from ..engine.fetcher import FeedItem, FeedSource
from ..normalize import (
    build_license,
    domain_from_tags,
    license_from_tags,
    normalize_date,
    normalize_datetime,
    parameters_from_name,
)
from ..records import CatalogSource, Hosting, ModelRecord

API_URL = "https://huggingface.co/api/models?sort=downloads&direction=-1&limit={limit}"
MODEL_URL = "https://huggingface.co/{model_id}"


class HuggingFaceFeed(FeedSource):
    """Single-request JSON catalog; each array element becomes one item."""

    name = "HuggingFace"
    max_pages = 1
    batch_size = 1

    def __init__(self, *, limit: int = 100, url_template: str = API_URL, page_retries: int = 1) -> None:
        self.limit = limit
        self.url_template = url_template
        self.page_retries = page_retries

    def page_url(self, page: int) -> str:
        return self.url_template.format(limit=self.limit, page=page)

    def request_headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    def parse_page(self, body: str, page: int) -> list[FeedItem]:
        data = json.loads(body)
        if isinstance(data, dict):
            data = data.get("models") or data.get("results") or []
        if not isinstance(data, list):
            raise ValueError("model listing is not an array")
        items: list[FeedItem] = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            model_id = str(entry.get("id") or entry.get("modelId") or "").strip()
            items.append(
                FeedItem(
                    title=model_id,
                    link=MODEL_URL.format(model_id=model_id) if model_id else "",
                    published=entry.get("lastModified"),
                    guid=model_id or None,
                    popularity=entry.get("downloads") if isinstance(entry.get("downloads"), int) else None,
                    extra=entry,
                )
            )
        return items

    def build_record(self, item: FeedItem, identity: str, tags: list[str]) -> ModelRecord | None:
        entry = item.extra
        model_id = item.title
        provider = entry.get("author") or (model_id.split("/", 1)[0] if "/" in model_id else "")
        hub_tags = [str(tag) for tag in entry.get("tags") or [] if isinstance(tag, str)]
        license_name = entry.get("license") or license_from_tags(hub_tags)
        return ModelRecord(
            id=f"huggingface-{identity}",
            name=str(entry.get("name") or model_id.split("/")[-1] or model_id),
            provider=str(provider),
            domain=domain_from_tags(hub_tags),
            source=CatalogSource.HUGGINGFACE,
            url=item.link,
            repo=item.link,
            license=build_license(license_name),
            downloads=item.popularity,
            updated_at=normalize_datetime(entry.get("lastModified") or entry.get("lastModifiedAt")),
            release_date=normalize_date(entry.get("createdAt") or entry.get("created")),
            tags=[*hub_tags, *tags],
            hosting=Hosting(weights_available=True, api_available=True, on_premise_friendly=True),
            parameters=str(entry.get("params") or parameters_from_name(model_id, hub_tags)),
            provenance="Open Source",
        )


__all__ = ["API_URL", "HuggingFaceFeed"]
