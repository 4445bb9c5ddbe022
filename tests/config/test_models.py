from __future__ import annotations

import pytest
from pydantic import ValidationError

from catalog_sync.config import ProviderConfig, ProviderDirectory, SyncOptions


def test_blank_credentials_become_none() -> None:
    config = ProviderConfig(enabled=True, api_key="   ", base_url="")
    assert config.api_key is None
    assert config.base_url is None
    assert not config.has_credential


def test_directory_accepts_flat_and_nested_mappings() -> None:
    flat = ProviderDirectory.model_validate({"groq": {"enabled": True, "api_key": "gq"}})
    nested = ProviderDirectory.model_validate({"providers": {"groq": {"enabled": True, "api_key": "gq"}}})
    assert flat == nested
    assert flat.get("missing") is None


def test_enabled_filters_disabled_providers() -> None:
    directory = ProviderDirectory.model_validate({"a": {"enabled": True}, "b": {"enabled": False}})
    assert list(directory.enabled()) == ["a"]


@pytest.mark.parametrize(
    "payload",
    [{"tier": "platinum"}, {"strictness": "paranoid"}, {"batch_size": 0}, {"huggingface_limit": 5000}],
)
def test_sync_options_reject_invalid_values(payload: dict) -> None:
    with pytest.raises(ValidationError):
        SyncOptions.model_validate(payload)
