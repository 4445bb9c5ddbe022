"""Configuration loading helpers for catalog-sync."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from .models import ProviderDirectory, SyncOptions

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
HOME_ENV_VAR = "CATALOG_SYNC_HOME"
PROVIDERS_STEM = "providers"
SYNC_OPTIONS_STEM = "sync"


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")
    return data


@dataclass(slots=True)
class ConfigLocator:
    """Resolve the configuration directory from an argument or the environment."""

    config_dir: Path | None = None

    def __post_init__(self) -> None:
        if self.config_dir is not None:
            root = Path(self.config_dir)
        else:
            env_root = os.environ.get(HOME_ENV_VAR)
            root = Path(env_root) if env_root else Path.cwd()
        self.config_dir = root.expanduser().resolve()

    def find(self, stem: str) -> Path | None:
        for suffix in CONFIG_EXTENSIONS:
            candidate = self.config_dir / f"{stem}{suffix}"
            if candidate.is_file():
                return candidate
        return None


class ConfigRepository:
    """Read-only access to provider and sync-policy files."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._providers_cache: ProviderDirectory | None = None
        self._options_cache: SyncOptions | None = None

    def load_providers(self) -> ProviderDirectory:
        if self._providers_cache is None:
            path = self.locator.find(PROVIDERS_STEM)
            payload = _read_file(path) if path else {}
            self._providers_cache = ProviderDirectory.model_validate(payload)
        return self._providers_cache

    def load_sync_options(self) -> SyncOptions:
        if self._options_cache is None:
            path = self.locator.find(SYNC_OPTIONS_STEM)
            payload = _read_file(path) if path else {}
            self._options_cache = SyncOptions.model_validate(payload)
        return self._options_cache

    def reload(self) -> None:
        self._providers_cache = None
        self._options_cache = None


__all__ = ["ConfigLocator", "ConfigRepository", "CONFIG_EXTENSIONS", "HOME_ENV_VAR"]
