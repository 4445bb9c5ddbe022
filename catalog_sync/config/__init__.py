"""Configuration models and loaders."""

from .loader import CONFIG_EXTENSIONS, HOME_ENV_VAR, ConfigLocator, ConfigRepository
from .models import (
    FilterStrictness,
    ProviderConfig,
    ProviderDirectory,
    ProviderProtocol,
    SourceToggles,
    SyncOptions,
)

__all__ = [
    "CONFIG_EXTENSIONS",
    "ConfigLocator",
    "ConfigRepository",
    "FilterStrictness",
    "HOME_ENV_VAR",
    "ProviderConfig",
    "ProviderDirectory",
    "ProviderProtocol",
    "SourceToggles",
    "SyncOptions",
]
