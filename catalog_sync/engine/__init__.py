"""Engine components: admission control → gateway → fetch → filter → merge → translate."""

from .dedup import DedupMergeEngine, MergeOutcome
from .errors import (
    CancelToken,
    Cancelled,
    CatalogSyncError,
    CredentialMissing,
    MalformedResponse,
    PermanentRequest,
    TransientNetwork,
)
from .fetcher import FeedItem, FeedSource, FeedStats, SourceFetcher, TagVocabulary
from .gateway import ProviderGateway, safe_json_from_text
from .rate_limiter import RateLimiter, RateLimitStatus, RateLimitTier
from .safety import ContentSafetyFilter
from .transport import HttpTransport, ProxyCapability
from .translation import TranslationModule

__all__ = [
    "CancelToken",
    "Cancelled",
    "CatalogSyncError",
    "ContentSafetyFilter",
    "CredentialMissing",
    "DedupMergeEngine",
    "FeedItem",
    "FeedSource",
    "FeedStats",
    "HttpTransport",
    "MalformedResponse",
    "MergeOutcome",
    "PermanentRequest",
    "ProviderGateway",
    "ProxyCapability",
    "RateLimitStatus",
    "RateLimitTier",
    "RateLimiter",
    "SourceFetcher",
    "TagVocabulary",
    "TransientNetwork",
    "TranslationModule",
    "safe_json_from_text",
]
