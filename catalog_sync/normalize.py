"""Field normalization shared by catalog feeds and provider listings."""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Iterable, Sequence

from .records import Domain, LicenseInfo, LicenseType

_LICENSE_ALIASES = {
    "apache 2.0": "Apache-2.0",
    "apache-2": "Apache-2.0",
    "apache-2.0": "Apache-2.0",
    "mit": "MIT",
    "bsd-3": "BSD-3-Clause",
    "bsd-3-clause": "BSD-3-Clause",
    "gpl-3.0": "GPL-3.0",
    "agpl-3.0": "AGPL-3.0",
    "lgpl-3.0": "LGPL-3.0",
    "creativeml open rail-m": "CreativeML Open RAIL-M",
    "creativeml open rail++-m": "CreativeML Open RAIL++-M",
    "llama 2 community license": "LLaMA 2 Custom License",
    "llama 2 license": "LLaMA 2 Custom License",
    "llama 3 community license": "Llama 3 Community License",
    "meta llama 3 community license": "Llama 3 Community License",
}

_LICENSE_TAG_PATTERN = re.compile(r"apache|mit|bsd|gpl|agpl|lgpl|mpl|cc-by|cc0|openrail|non-?commercial")
_PARAMETER_PATTERN = re.compile(r"\b(\d{1,3})\s*(b|m)\b", re.IGNORECASE)
_ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
_MDY_PATTERN = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_EXCEL_EPOCH = date(1899, 12, 30)
_CONTEXT_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*([kKmM]?)$")

# Ordered: first matching rule wins.
_DOMAIN_RULES: Sequence[tuple[Domain, tuple[str, ...]]] = (
    (Domain.IMAGE_GEN, ("text-to-image", "diffusion", "stable-diffusion")),
    (Domain.LLM, ("text-generation", "llm", "gpt", "chat")),
    (Domain.VLM, ("vision", "multimodal", "vlm")),
    (Domain.LORA, ("lora", "peft", "adapter")),
    (Domain.FINE_TUNE, ("fine-tune", "finetune", "fine tuning", "fine-tuned", "sft")),
    (Domain.TTS, ("text-to-speech",)),
    (Domain.VIDEO_GEN, ("text-to-video",)),
    (Domain.AUDIO, ("audio",)),
    (Domain.ASR, ("asr", "speech-recognition")),
    (Domain.THREE_D, ("3d",)),
    (Domain.WORLD_SIM, ("world", "simulation")),
)


CJK_RANGES: tuple[tuple[int, int], ...] = (
    (0x4E00, 0x9FFF),  # CJK unified ideographs
    (0x3400, 0x4DBF),  # extension A
    (0x3040, 0x309F),  # hiragana
    (0x30A0, 0x30FF),  # katakana
    (0xAC00, 0xD7AF),  # hangul syllables
)


def contains_cjk(text: str | None) -> bool:
    if not text:
        return False
    for char in text:
        point = ord(char)
        if any(low <= point <= high for low, high in CJK_RANGES):
            return True
    return False


def normalize_license_name(name: str | None) -> str | None:
    if not name:
        return None
    text = str(name).strip()
    return _LICENSE_ALIASES.get(text.lower(), text)


def license_type(name: str | None) -> LicenseType:
    if not name:
        return LicenseType.CUSTOM
    lowered = name.lower()
    if any(token in lowered for token in ("mit", "apache", "bsd")):
        return LicenseType.OSI
    if "gpl" in lowered or "copyleft" in lowered:
        return LicenseType.COPYLEFT
    if "proprietary" in lowered:
        return LicenseType.PROPRIETARY
    if "non-commercial" in lowered or "nc" in lowered:
        return LicenseType.NON_COMMERCIAL
    return LicenseType.CUSTOM


def license_allows_commercial_use(name: str | None) -> bool:
    if not name:
        return False
    lowered = name.lower()
    if "non-commercial" in lowered:
        return False
    return any(token in lowered for token in ("mit", "apache", "commercial"))


def license_from_tags(tags: Iterable[str] | None) -> str | None:
    """Infer a license from ``license:xxx`` tags or well-known shorthands."""

    lowered = [tag.lower() for tag in tags or ()]
    if not lowered:
        return None
    match = next((tag for tag in lowered if tag.startswith("license:")), None)
    if match is None:
        match = next((tag for tag in lowered if _LICENSE_TAG_PATTERN.search(tag)), None)
    if match is None:
        return None
    name = match.removeprefix("license:").replace("_", "-")
    for needle, label in (
        ("apache", "Apache-2.0"),
        ("mit", "MIT"),
        ("bsd", "BSD"),
        ("agpl", "AGPL"),
        ("lgpl", "LGPL"),
        ("gpl", "GPL"),
        ("cc0", "CC0"),
        ("cc-by-nc", "CC-BY-NC"),
        ("openrail", "OpenRAIL"),
    ):
        if needle in name:
            return label
    return match


def build_license(name: str | None) -> LicenseInfo:
    """Construct a :class:`LicenseInfo` with flags derived from the name."""

    normalized = normalize_license_name(name)
    if not normalized:
        return LicenseInfo()
    kind = license_type(normalized)
    copyleft = kind is LicenseType.COPYLEFT
    return LicenseInfo(
        name=normalized,
        type=kind,
        commercial_use=license_allows_commercial_use(normalized),
        attribution_required=kind in (LicenseType.OSI, LicenseType.COPYLEFT),
        share_alike=copyleft,
        copyleft=copyleft,
    )


def domain_from_tags(tags: Iterable[str] | None) -> Domain:
    text = " ".join(tags or ()).lower()
    for domain, needles in _DOMAIN_RULES:
        if any(needle in text for needle in needles):
            return domain
    if "background" in text and any(token in text for token in ("removal", "remove", "matting")):
        return Domain.BACKGROUND_REMOVAL
    if any(token in text for token in ("upscale", "super-resolution", "superresolution")):
        return Domain.UPSCALER
    return Domain.OTHER


def parameters_from_name(name: str | None, tags: Iterable[str] | None = None) -> str:
    """Infer a parameter count such as ``7B`` from a name or tag list."""

    candidates = [name] if name else []
    candidates.extend(tags or ())
    for candidate in candidates:
        match = _PARAMETER_PATTERN.search(candidate.lower())
        if match:
            return f"{match.group(1)}{match.group(2).upper()}"
    return ""


def parse_context_window(value: Any) -> int | None:
    """Accept ``128000``, ``"128000"`` or ``"128K"`` / ``"1M"`` style sizes."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else None
    match = _CONTEXT_PATTERN.match(str(value).strip())
    if not match:
        return None
    number = float(match.group(1))
    multiplier = {"": 1, "k": 1_000, "m": 1_000_000}[match.group(2).lower()]
    return int(number * multiplier) or None


def normalize_date(value: Any) -> date | None:
    """Coerce ISO strings, RFC 822 dates, timestamps and ``MM/DD/YYYY`` into a date."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if _ISO_PREFIX.match(text):
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    mdy = _MDY_PATTERN.match(text)
    if mdy:
        try:
            return date(int(mdy.group(3)), int(mdy.group(1)), int(mdy.group(2)))
        except ValueError:
            return None
    try:
        return parsedate_to_datetime(text).date()
    except (TypeError, ValueError):
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    if 30000 < number < 100000:
        return _EXCEL_EPOCH + timedelta(days=int(number))
    if number > 1e9:
        seconds = number / 1000 if number > 1e12 else number
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).date()
        except (OverflowError, OSError, ValueError):
            return None
    return None


def normalize_datetime(value: Any) -> datetime | None:
    """Like :func:`normalize_date` but keep the time component when present."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value).strip()
    if _ISO_PREFIX.match(text):
        candidate = text[:-1] + "+00:00" if text.endswith("Z") else text
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        parsed = None
    if parsed is not None:
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    day = normalize_date(value)
    if day is None:
        return None
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


__all__ = [
    "CJK_RANGES",
    "build_license",
    "contains_cjk",
    "domain_from_tags",
    "license_allows_commercial_use",
    "license_from_tags",
    "license_type",
    "normalize_date",
    "normalize_datetime",
    "normalize_license_name",
    "parameters_from_name",
    "parse_context_window",
]
