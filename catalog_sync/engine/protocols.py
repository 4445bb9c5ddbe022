"""Request builders and response readers, one adapter per wire protocol.

Each upstream API family is a single :class:`ProtocolAdapter` subclass.  The
gateway never branches on a provider name: it resolves the protocol, asks
:func:`adapter_for` for the matching adapter and drives it through the same
four hooks (``list_request``, ``list_items``, ``chat_request`` and
``extract_text``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import ValidationError

from ..config import ProviderConfig, ProviderProtocol
from ..normalize import build_license, normalize_date, normalize_datetime, parse_context_window
from ..records import CatalogSource, Domain, Hosting, LicenseInfo, LicenseType, ModelRecord, PricingEntry
from .errors import MalformedResponse, PermanentRequest

Mode = Literal["text", "json"]

ANTHROPIC_VERSION = "2023-06-01"


@dataclass(slots=True)
class ProviderRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] | None = None


@dataclass(slots=True, frozen=True)
class StaticModel:
    id: str
    name: str
    context: str
    released: str
    tags: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class ProviderDefaults:
    display_name: str
    protocol: ProviderProtocol
    base_url: str
    default_model: str = ""
    homepage: str = ""
    static_models: tuple[StaticModel, ...] | None = None


_PERPLEXITY_MODELS = (
    StaticModel("sonar-pro", "Sonar Pro", "200K", "2024-11-01", ("search", "reasoning", "web")),
    StaticModel("sonar", "Sonar", "128K", "2024-11-01", ("search", "reasoning", "web")),
    StaticModel("sonar-reasoning-pro", "Sonar Reasoning Pro", "128K", "2024-12-01", ("search", "reasoning", "web")),
    StaticModel("sonar-reasoning", "Sonar Reasoning", "128K", "2024-12-01", ("search", "reasoning", "web")),
    StaticModel("sonar-deep-research", "Sonar Deep Research", "128K", "2024-12-01", ("search", "reasoning", "web")),
)

PROVIDER_DEFAULTS: dict[str, ProviderDefaults] = {
    "openai": ProviderDefaults("OpenAI", ProviderProtocol.OPENAI, "https://api.openai.com/v1", "gpt-4o-mini"),
    "anthropic": ProviderDefaults(
        "Anthropic", ProviderProtocol.ANTHROPIC, "https://api.anthropic.com/v1", "claude-3-sonnet-20240229"
    ),
    "deepseek": ProviderDefaults("DeepSeek", ProviderProtocol.OPENAI, "https://api.deepseek.com/v1", "deepseek-chat"),
    "perplexity": ProviderDefaults(
        "Perplexity",
        ProviderProtocol.OPENAI,
        "https://api.perplexity.ai",
        "sonar",
        homepage="https://www.perplexity.ai/",
        static_models=_PERPLEXITY_MODELS,
    ),
    "openrouter": ProviderDefaults("OpenRouter", ProviderProtocol.OPENAI, "https://openrouter.ai/api/v1"),
    "cohere": ProviderDefaults("Cohere", ProviderProtocol.COHERE, "https://api.cohere.com", "command-r"),
    "google": ProviderDefaults(
        "Google",
        ProviderProtocol.GOOGLE,
        "https://generativelanguage.googleapis.com/v1beta",
        "gemini-1.5-flash",
    ),
    "ollama": ProviderDefaults("Ollama", ProviderProtocol.OLLAMA, "http://127.0.0.1:11434", "llama3"),
}


def defaults_for(provider_key: str) -> ProviderDefaults | None:
    return PROVIDER_DEFAULTS.get(provider_key)


def resolve_protocol(provider_key: str, config: ProviderConfig) -> ProviderProtocol:
    """Explicit override wins, then the provider's own family, then OpenAI-compatible."""

    if config.protocol is not None:
        return config.protocol
    defaults = defaults_for(provider_key)
    if defaults is not None:
        return defaults.protocol
    return ProviderProtocol.OPENAI


def resolve_base_url(provider_key: str, config: ProviderConfig) -> str:
    if config.base_url:
        return config.base_url
    defaults = defaults_for(provider_key)
    if defaults is not None:
        return defaults.base_url
    raise PermanentRequest(f"Provider '{provider_key}' has no base URL configured")


def display_name(provider_key: str, config: ProviderConfig) -> str:
    if config.name:
        return config.name
    defaults = defaults_for(provider_key)
    if defaults is not None:
        return defaults.display_name
    return provider_key[:1].upper() + provider_key[1:]


def _to_float(value: Any) -> float | None:
    if value in (None, "", 0, "0"):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _first(payload: Any, *path: Any) -> Any:
    current = payload
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or len(current) <= step:
                return None
        elif not isinstance(current, dict):
            return None
        current = current[step] if isinstance(step, int) else current.get(step)
    return current


_API_LICENSE = LicenseInfo(name="Proprietary", type=LicenseType.PROPRIETARY, commercial_use=True)


class ProtocolAdapter:
    """Shared behaviour; subclasses fill in the wire details of one family."""

    protocol: ProviderProtocol
    requires_key: bool = True
    list_path: str = "/models"
    list_keys: tuple[str, ...] = ("data",)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------
    def auth_headers(self, api_key: str | None) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"} if api_key else {}

    def list_request(self, base_url: str, config: ProviderConfig) -> ProviderRequest:
        headers = {"Accept": "application/json", **self.auth_headers(config.api_key), **config.headers}
        return ProviderRequest("GET", f"{base_url}{self.list_path}", headers)

    def list_items(self, payload: Any) -> list[Any] | None:
        """Return the raw item array, or ``None`` when the payload carries none."""

        if isinstance(payload, list):
            return payload
        if not isinstance(payload, dict):
            return None
        for key in self.list_keys:
            items = payload.get(key)
            if isinstance(items, list):
                return items
        return None

    def to_record(self, provider_key: str, provider_name: str, item: Any) -> ModelRecord | None:
        if not isinstance(item, dict):
            return None
        model_id = item.get("id") or item.get("modelId") or item.get("slug") or item.get("name")
        if not isinstance(model_id, str) or not model_id.strip():
            return None
        capabilities = item.get("capabilities")
        if not isinstance(capabilities, (list, tuple, dict, str)):
            capabilities = []
        pricing_raw = item.get("pricing") if isinstance(item.get("pricing"), dict) else {}
        price_in = _to_float(pricing_raw.get("input", pricing_raw.get("prompt")))
        price_out = _to_float(pricing_raw.get("output", pricing_raw.get("completion")))
        price_flat = _to_float(pricing_raw.get("flat"))
        pricing = []
        if price_in or price_out or price_flat:
            pricing.append(PricingEntry(unit="tokens", input=price_in, output=price_out, flat=price_flat))
        tags = item.get("tags") if isinstance(item.get("tags"), list) else []
        license_name = item.get("license")
        try:
            return ModelRecord(
                id=f"{provider_key}-{model_id}",
                name=str(item.get("name") or item.get("display_name") or model_id),
                provider=provider_name,
                domain=Domain.VISION if "vision" in capabilities else Domain.LLM,
                source=CatalogSource.for_provider(provider_key),
                url=str(item.get("url") or ""),
                description=str(item.get("description") or ""),
                license=build_license(license_name) if license_name else _API_LICENSE.model_copy(),
                tags=[str(tag) for tag in tags],
                hosting=Hosting(api_available=True, providers=[provider_name]),
                updated_at=normalize_datetime(item.get("updated_at")),
                release_date=normalize_date(item.get("created_at") or item.get("release_date") or item.get("created")),
                parameters=str(item.get("parameters") or item.get("param_count") or ""),
                context_window=parse_context_window(item.get("context_window") or item.get("context_length")),
                pricing=pricing,
                provenance="Provider API",
            )
        except ValidationError:
            return None

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------
    def chat_request(
        self,
        base_url: str,
        config: ProviderConfig,
        model: str,
        system_prompt: str,
        user_prompt: str,
        mode: Mode,
    ) -> ProviderRequest:
        raise NotImplementedError

    def extract_text(self, payload: Any) -> str:
        raise NotImplementedError

    def _headers(self, config: ProviderConfig) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            **self.auth_headers(config.api_key),
            **config.headers,
        }

    @staticmethod
    def _require_text(value: Any, where: str) -> str:
        if not isinstance(value, str):
            raise MalformedResponse(f"Response is missing {where}")
        return value


class OpenAICompatibleAdapter(ProtocolAdapter):
    """Bearer-token REST shared by OpenAI, DeepSeek, OpenRouter and Perplexity."""

    protocol = ProviderProtocol.OPENAI

    def chat_request(self, base_url, config, model, system_prompt, user_prompt, mode):
        body: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if mode == "json":
            body["response_format"] = {"type": "json_object"}
            body["temperature"] = 0
        else:
            body["temperature"] = 0.7
        return ProviderRequest("POST", f"{base_url}/chat/completions", self._headers(config), body)

    def extract_text(self, payload: Any) -> str:
        return self._require_text(_first(payload, "choices", 0, "message", "content"), "choices[0].message.content")


class AnthropicAdapter(ProtocolAdapter):
    protocol = ProviderProtocol.ANTHROPIC

    def auth_headers(self, api_key: str | None) -> dict[str, str]:
        headers = {"anthropic-version": ANTHROPIC_VERSION}
        if api_key:
            headers["x-api-key"] = api_key
        return headers

    def chat_request(self, base_url, config, model, system_prompt, user_prompt, mode):
        body = {
            "model": model,
            "max_tokens": 2000 if mode == "json" else 4000,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
            "temperature": 0 if mode == "json" else 0.7,
        }
        return ProviderRequest("POST", f"{base_url}/messages", self._headers(config), body)

    def extract_text(self, payload: Any) -> str:
        return self._require_text(_first(payload, "content", 0, "text"), "content[0].text")


class GoogleAdapter(ProtocolAdapter):
    protocol = ProviderProtocol.GOOGLE
    list_keys = ("models",)

    def auth_headers(self, api_key: str | None) -> dict[str, str]:
        return {"x-goog-api-key": api_key} if api_key else {}

    def to_record(self, provider_key, provider_name, item):
        if isinstance(item, dict) and isinstance(item.get("name"), str):
            model_id = item["name"].removeprefix("models/")
            item = {
                **item,
                "id": model_id,
                "name": item.get("displayName") or model_id,
                "context_window": item.get("inputTokenLimit"),
            }
        return super().to_record(provider_key, provider_name, item)

    def chat_request(self, base_url, config, model, system_prompt, user_prompt, mode):
        generation: dict[str, Any] = {"temperature": 0 if mode == "json" else 0.7}
        if mode == "json":
            generation["responseMimeType"] = "application/json"
        body = {
            "contents": [{"role": "user", "parts": [{"text": f"{system_prompt}\n\n{user_prompt}"}]}],
            "generationConfig": generation,
        }
        url = f"{base_url}/models/{model}:generateContent"
        return ProviderRequest("POST", url, self._headers(config), body)

    def extract_text(self, payload: Any) -> str:
        return self._require_text(
            _first(payload, "candidates", 0, "content", "parts", 0, "text"),
            "candidates[0].content.parts[0].text",
        )


class CohereAdapter(ProtocolAdapter):
    protocol = ProviderProtocol.COHERE
    list_path = "/v1/models"
    list_keys = ("models",)

    def chat_request(self, base_url, config, model, system_prompt, user_prompt, mode):
        body: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if mode == "json":
            body["response_format"] = {"type": "json_object"}
            body["temperature"] = 0
        else:
            body["temperature"] = 0.7
        return ProviderRequest("POST", f"{base_url}/v2/chat", self._headers(config), body)

    def extract_text(self, payload: Any) -> str:
        text = _first(payload, "message", "content", 0, "text")
        if text is None and isinstance(payload, dict):
            text = payload.get("text") or payload.get("response")
        return self._require_text(text, "message.content[0].text")


class OllamaAdapter(ProtocolAdapter):
    """Local model server; installed models are reported as on-premise records."""

    protocol = ProviderProtocol.OLLAMA
    requires_key = False
    list_path = "/api/tags"
    list_keys = ("models",)

    def to_record(self, provider_key, provider_name, item):
        if not isinstance(item, dict):
            return None
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            return None
        details = item.get("details") if isinstance(item.get("details"), dict) else {}
        try:
            return ModelRecord(
                id=f"local-ollama-{name.replace(':', '-')}",
                name=name,
                provider="Local (Ollama)",
                domain=Domain.LLM,
                source=CatalogSource.LOCAL,
                updated_at=normalize_datetime(item.get("modified_at")),
                release_date=normalize_date(item.get("modified_at")),
                tags=["local", "ollama"],
                parameters=str(details.get("parameter_size") or ""),
                license=LicenseInfo(
                    name="Local",
                    type=LicenseType.CUSTOM,
                    commercial_use=True,
                    notes="Model installed locally",
                ),
                hosting=Hosting(
                    weights_available=True,
                    api_available=True,
                    on_premise_friendly=True,
                    providers=["Ollama (Local)"],
                ),
                provenance="Local Installation",
            )
        except ValidationError:
            return None

    def chat_request(self, base_url, config, model, system_prompt, user_prompt, mode):
        body: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "stream": False,
        }
        if mode == "json":
            body["format"] = "json"
        return ProviderRequest("POST", f"{base_url}/api/chat", self._headers(config), body)

    def extract_text(self, payload: Any) -> str:
        return self._require_text(_first(payload, "message", "content"), "message.content")


_ADAPTERS: dict[ProviderProtocol, ProtocolAdapter] = {
    ProviderProtocol.OPENAI: OpenAICompatibleAdapter(),
    ProviderProtocol.ANTHROPIC: AnthropicAdapter(),
    ProviderProtocol.GOOGLE: GoogleAdapter(),
    ProviderProtocol.COHERE: CohereAdapter(),
    ProviderProtocol.OLLAMA: OllamaAdapter(),
}


def adapter_for(protocol: ProviderProtocol) -> ProtocolAdapter:
    return _ADAPTERS[protocol]


def static_records(provider_key: str, defaults: ProviderDefaults) -> list[ModelRecord]:
    """Known-model catalog for providers that publish no listing endpoint."""

    records: list[ModelRecord] = []
    for model in defaults.static_models or ():
        released = normalize_date(model.released)
        records.append(
            ModelRecord(
                id=f"{provider_key}-{model.id}",
                name=model.name,
                provider=defaults.display_name,
                domain=Domain.LLM,
                source=CatalogSource.for_provider(provider_key),
                url=defaults.homepage,
                license=_API_LICENSE.model_copy(),
                tags=list(model.tags),
                hosting=Hosting(api_available=True, providers=[defaults.display_name]),
                updated_at=normalize_datetime(model.released),
                release_date=released,
                context_window=parse_context_window(model.context),
                provenance="Provider API",
            )
        )
    return records


__all__ = [
    "ANTHROPIC_VERSION",
    "PROVIDER_DEFAULTS",
    "ProtocolAdapter",
    "ProviderDefaults",
    "ProviderRequest",
    "adapter_for",
    "defaults_for",
    "display_name",
    "resolve_base_url",
    "resolve_protocol",
    "static_records",
]
