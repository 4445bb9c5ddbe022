"""CivitasBay torrent-preservation RSS feed."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET

from selectolax.parser import HTMLParser

from ..engine.fetcher import FeedItem, FeedSource, TagVocabulary
from ..normalize import build_license, normalize_date, normalize_datetime
from ..records import CatalogSource, Domain, Hosting, ModelRecord

FEED_URL = "https://civitasbay.org/rss/torrents?sort_by=recent&page={page}"
TORRENT_NAMESPACE = "http://xmlns.ezrss.it/0.1/"

CIVITASBAY_VOCABULARY = TagVocabulary(
    groups={
        "model_type": (
            "checkpoint",
            "lora",
            "lycoris",
            "embedding",
            "textual-inversion",
            "hypernetwork",
            "aesthetic-gradient",
            "controlnet",
            "vae",
            "upscaler",
        ),
        "style": (
            "realistic",
            "anime",
            "cartoon",
            "semi-realistic",
            "2.5d",
            "3d",
            "photorealistic",
            "illustration",
            "artistic",
            "fantasy",
            "sci-fi",
        ),
        "base_model": ("sd1.5", "sd2.1", "sdxl", "sd3", "flux", "pony", "illustrious"),
        "content": (
            "character",
            "style",
            "concept",
            "clothing",
            "pose",
            "background",
            "object",
            "effect",
            "lighting",
            "tool",
        ),
    },
    popularity_thresholds=((1, "seeded"), (5, "well-seeded")),
)

BASE_TAGS = ("preserved", "torrent", "community-archive")
USAGE_RESTRICTIONS = ["Torrent download only", "Archival purpose"]

_VERSION = re.compile(r"\bv(\d+(?:\.\d+)*)\b", re.IGNORECASE)
_VERSION_STRIP = re.compile(r"\s*v\d+(?:\.\d+)*\b", re.IGNORECASE)
_CATEGORY_SUFFIX = re.compile(r"\s+-\s+[^-]+$")
_LICENSE = re.compile(r"license[:\s]+([^\n,]+)", re.IGNORECASE)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_text(element: ET.Element, name: str) -> str:
    for child in element:
        if _local_name(child.tag) == name:
            return (child.text or "").strip()
    return ""


def _to_int(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def strip_html(text: str) -> str:
    if "<" not in text:
        return text.strip()
    return HTMLParser(text).text(separator=" ", strip=True)


class CivitasBayFeed(FeedSource):
    """Paginated RSS feed; seed counts arrive in the ``torrent:`` extension."""

    name = "CivitasBay"
    vocabulary = CIVITASBAY_VOCABULARY

    def __init__(
        self,
        *,
        url_template: str = FEED_URL,
        max_pages: int | None = None,
        batch_size: int = 5,
        inter_batch_delay: float = 0.5,
        page_retries: int = 1,
    ) -> None:
        self.url_template = url_template
        self.max_pages = max_pages
        self.batch_size = batch_size
        self.inter_batch_delay = inter_batch_delay
        self.page_retries = page_retries

    def page_url(self, page: int) -> str:
        return self.url_template.format(page=page)

    def request_headers(self) -> dict[str, str]:
        return {"Accept": "application/rss+xml, application/xml;q=0.9, */*;q=0.5"}

    def parse_page(self, body: str, page: int) -> list[FeedItem]:
        if "torrent:" in body and "xmlns:torrent" not in body:
            body = body.replace("<rss", f'<rss xmlns:torrent="{TORRENT_NAMESPACE}"', 1)
        try:
            root = ET.fromstring(body)
        except ET.ParseError as exc:
            raise ValueError(f"invalid RSS on page {page}: {exc}") from exc
        if _local_name(root.tag) not in ("rss", "feed", "channel"):
            raise ValueError(f"unexpected root element <{_local_name(root.tag)}> on page {page}")

        items: list[FeedItem] = []
        for element in root.iter():
            if _local_name(element.tag) != "item":
                continue
            seeds = _to_int(_child_text(element, "seeds"))
            items.append(
                FeedItem(
                    title=_child_text(element, "title"),
                    link=_child_text(element, "link"),
                    description=strip_html(_child_text(element, "description")),
                    published=_child_text(element, "pubDate") or None,
                    guid=_child_text(element, "guid") or None,
                    popularity=seeds,
                    extra={"seeds": seeds, "peers": _to_int(_child_text(element, "peers"))},
                )
            )
        return items

    def build_record(self, item: FeedItem, identity: str, tags: list[str]) -> ModelRecord | None:
        title = item.title.strip()
        name = title
        version = ""
        match = _VERSION.search(title)
        if match:
            version = match.group(1)
            name = _VERSION_STRIP.sub("", title, count=1).strip()
        name = _CATEGORY_SUFFIX.sub("", name).strip() or title

        license_match = _LICENSE.search(item.description)
        license_info = build_license(license_match.group(1).strip() if license_match else None)

        text = f"{title} {item.description}".lower()
        if "lora" in text:
            domain = Domain.LORA
        elif "video" in text:
            domain = Domain.VIDEO_GEN
        else:
            domain = Domain.IMAGE_GEN

        all_tags = [*BASE_TAGS]
        if version:
            all_tags.append(f"v{version}")
        all_tags.extend(tags)

        return ModelRecord(
            id=f"civitasbay-{identity}",
            name=name,
            provider="CivitasBay Community",
            domain=domain,
            source=CatalogSource.CIVITASBAY,
            url=item.link,
            description=item.description or f"{name} - Preserved AI model via torrent",
            license=license_info,
            tags=all_tags,
            hosting=Hosting(weights_available=True, on_premise_friendly=True),
            updated_at=normalize_datetime(item.published),
            release_date=normalize_date(item.published),
            provenance="Community Preserved",
            usage_restrictions=list(USAGE_RESTRICTIONS),
        )


__all__ = ["CIVITASBAY_VOCABULARY", "CivitasBayFeed", "FEED_URL", "strip_html"]
