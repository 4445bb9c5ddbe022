"""ModelScope model hub listing, most recently updated first."""

from __future__ import annotations

import json
from typing import Any

from ..engine.fetcher import FeedItem, FeedSource, TagVocabulary
from ..normalize import build_license, domain_from_tags, normalize_date, normalize_datetime, parameters_from_name
from ..records import CatalogSource, Hosting, ModelRecord

API_URL = "https://modelscope.cn/api/v1/models?PageNumber={page}&PageSize={page_size}&SortBy=GmtModified"
MODEL_URL = "https://modelscope.cn/models/{path}"

MODELSCOPE_VOCABULARY = TagVocabulary(
    groups={
        "family": ("qwen", "chatglm", "baichuan", "internlm", "deepseek", "minicpm", "llama"),
        "format": ("gguf", "awq", "gptq", "int4", "int8"),
    },
    popularity_thresholds=((10_000, "popular"), (100_000, "widely-used")),
)


def _task_names(entry: dict[str, Any]) -> list[str]:
    names: list[str] = []
    for task in entry.get("Tasks") or []:
        if isinstance(task, dict):
            task = task.get("Name")
        if isinstance(task, str) and task.strip():
            names.append(task.strip().lower())
    return names


class ModelScopeFeed(FeedSource):
    """Paged JSON listing; descriptions are mostly Chinese and go through translation."""

    name = "ModelScope"
    vocabulary = MODELSCOPE_VOCABULARY

    def __init__(
        self,
        *,
        url_template: str = API_URL,
        page_size: int = 50,
        max_pages: int | None = 3,
        batch_size: int = 5,
        inter_batch_delay: float = 0.5,
        page_retries: int = 1,
    ) -> None:
        self.url_template = url_template
        self.page_size = page_size
        self.max_pages = max_pages
        self.batch_size = batch_size
        self.inter_batch_delay = inter_batch_delay
        self.page_retries = page_retries

    def page_url(self, page: int) -> str:
        return self.url_template.format(page=page, page_size=self.page_size)

    def request_headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    def parse_page(self, body: str, page: int) -> list[FeedItem]:
        data = json.loads(body)
        if isinstance(data, dict):
            if data.get("Success") is False:
                raise ValueError(f"ModelScope error {data.get('Code')}: {data.get('Message')}")
            inner = data.get("Data")
            data = inner.get("Models") if isinstance(inner, dict) else data.get("models")
        if data is None:
            return []
        if not isinstance(data, list):
            raise ValueError("model listing is not an array")
        items: list[FeedItem] = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            owner = str(entry.get("Path") or "").strip()
            model = str(entry.get("Name") or "").strip()
            path = f"{owner}/{model}" if owner and model else ""
            downloads = entry.get("Downloads")
            updated = entry.get("LastUpdatedTime") or entry.get("GmtModified")
            items.append(
                FeedItem(
                    title=model or str(entry.get("ChineseName") or "").strip(),
                    link=MODEL_URL.format(path=path) if path else "",
                    description=str(entry.get("Description") or entry.get("ChineseName") or "").strip(),
                    published=str(updated) if updated else None,
                    guid=path or None,
                    popularity=downloads if isinstance(downloads, int) else None,
                    extra=entry,
                )
            )
        return items

    def build_record(self, item: FeedItem, identity: str, tags: list[str]) -> ModelRecord | None:
        entry = item.extra
        tasks = _task_names(entry)
        owner = str(entry.get("Path") or "")
        return ModelRecord(
            id=f"modelscope-{identity}",
            name=item.title,
            provider=owner,
            domain=domain_from_tags([*tasks, *tags]),
            source=CatalogSource.MODELSCOPE,
            url=item.link,
            repo=item.link,
            description=item.description,
            license=build_license(entry.get("License")),
            downloads=item.popularity,
            updated_at=normalize_datetime(item.published),
            release_date=normalize_date(entry.get("CreatedTime") or entry.get("GmtCreate")),
            tags=[*tasks, *tags],
            hosting=Hosting(weights_available=True, on_premise_friendly=True),
            parameters=parameters_from_name(item.title, tasks),
            provenance="Open Source",
        )


__all__ = ["API_URL", "MODELSCOPE_VOCABULARY", "ModelScopeFeed"]
