"""Catalog feeds and discovery sources feeding the sync pipeline."""

from .civitai import CivitaiFeed
from .civitasbay import CivitasBayFeed
from .discovery import LocalDiscovery, ProviderDiscovery
from .huggingface import HuggingFaceFeed
from .modelscope import ModelScopeFeed

__all__ = [
    "CivitaiFeed",
    "CivitasBayFeed",
    "HuggingFaceFeed",
    "LocalDiscovery",
    "ModelScopeFeed",
    "ProviderDiscovery",
]
