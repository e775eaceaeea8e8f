"""Provider payload formatting, request building and response parsing.

Every provider implements the same contract behind a registry keyed by name:

    format(messages)                     agnostic messages -> wire messages
    build_request(formatted, params, key) -> ProviderRequest(url, headers, body)
    parse_response(data)                 response JSON -> Reply

Supported wire shapes:

  openai, mistral, xai, openrouter (OpenAI-compatible chat completions)
      [{"role": ..., "content": ...}, ...]
      The leading run of system messages is merged into one; system messages
      that appear after the first non-system message are passed through.

  anthropic
      {"system": "...", "messages": [{"role": "user"|"assistant", ...}]}
      All system messages are merged. Consecutive turns with the same role
      are coalesced and the conversation always starts with a user turn.

  google
      {"contents": [{"role": "user"|"model", "parts": [{"text": ...}]}],
       "systemInstruction": {"parts": [{"text": ...}]}}

Messages carrying an error marker are dropped before formatting.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from lorechat.config import ConfigError
from lorechat.models import ChatMessage, GlobalSettings

logger = logging.getLogger(__name__)

SYSTEM_SEPARATOR = "\n\n"
CONVERSATION_START = "(conversation begins)"

SUMMARY_TEMPERATURE = 0.5
SUMMARY_TOP_P = 1.0


class UnsupportedProviderError(ValueError):
    """Raised for a provider name that is not registered."""


class MalformedResponseError(ValueError):
    """Raised when a provider response does not have the expected shape."""


class ProviderRequest(BaseModel):
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    params: dict[str, str] = Field(default_factory=dict)
    body: dict[str, Any]


class GenerationParams(BaseModel):
    model: str
    temperature: float
    top_p: float
    max_tokens: int
    repetition_penalty: float = 0.0

    @classmethod
    def from_settings(
        cls, settings: GlobalSettings, for_summary: bool = False
    ) -> GenerationParams:
        if for_summary:
            return cls(
                model=settings.api_model,
                temperature=SUMMARY_TEMPERATURE,
                top_p=SUMMARY_TOP_P,
                max_tokens=settings.summarization_max_tokens,
                repetition_penalty=settings.repetition_penalty,
            )
        return cls(
            model=settings.api_model,
            temperature=settings.temperature,
            top_p=settings.top_p,
            max_tokens=settings.max_tokens,
            repetition_penalty=settings.repetition_penalty,
        )


class Reply(BaseModel):
    """Text extracted from a provider response.

    `truncated` is set when the provider stopped because it hit the output
    length limit; `text` may then be empty.
    """

    text: str
    truncated: bool = False


# ---------------------------------------------------------------------------
# Shared message transforms
# ---------------------------------------------------------------------------

def drop_failed(messages: list[ChatMessage]) -> list[ChatMessage]:
    return [m for m in messages if not m.error]


def split_system(messages: list[ChatMessage]) -> tuple[str, list[ChatMessage]]:
    """Join every system message into one block; return it with the rest."""
    system = SYSTEM_SEPARATOR.join(m.content for m in messages if m.role == "system")
    chat = [m for m in messages if m.role != "system"]
    return system, chat


def merge_leading_system(messages: list[ChatMessage]) -> list[dict[str, str]]:
    """Merge the leading run of system messages into a single message."""
    system_parts: list[str] = []
    body: list[dict[str, str]] = []
    in_body = False
    for m in messages:
        if m.role == "system" and not in_body:
            system_parts.append(m.content)
            continue
        if m.role != "system":
            in_body = True
        body.append({"role": m.role, "content": m.content})

    system = SYSTEM_SEPARATOR.join(p for p in system_parts if p)
    if system:
        return [{"role": "system", "content": system}, *body]
    return body


def coalesce_turns(messages: list[dict[str, str]]) -> list[dict[str, str]]:
    """Enforce strict user/assistant alternation starting with a user turn.

    Anything that is not an assistant turn becomes a user turn. Empty
    messages are skipped. Running this on its own output changes nothing.
    """
    cleaned: list[dict[str, str]] = []
    for m in messages:
        if not m.get("content"):
            continue
        role = "assistant" if m.get("role") == "assistant" else "user"
        if cleaned and cleaned[-1]["role"] == role:
            cleaned[-1] = {
                "role": role,
                "content": f"{cleaned[-1]['content']}{SYSTEM_SEPARATOR}{m['content']}",
            }
        else:
            cleaned.append({"role": role, "content": m["content"]})

    if cleaned and cleaned[0]["role"] != "user":
        cleaned.insert(0, {"role": "user", "content": CONVERSATION_START})
    return cleaned


# ---------------------------------------------------------------------------
# Provider base
# ---------------------------------------------------------------------------

class Provider(ABC):
    name: str

    @abstractmethod
    def format(self, messages: list[ChatMessage]) -> Any: ...

    @abstractmethod
    def build_request(
        self, formatted: Any, params: GenerationParams, api_key: str
    ) -> ProviderRequest: ...

    @abstractmethod
    def parse_response(self, data: dict[str, Any]) -> Reply: ...

    def connection_check_request(self, model: str, api_key: str) -> ProviderRequest:
        """Smallest possible request used to verify credentials."""
        messages = [ChatMessage(role="user", content="Hello")]
        params = GenerationParams(model=model, temperature=1.0, top_p=1.0, max_tokens=5)
        return self.build_request(self.format(messages), params, api_key)


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions
# ---------------------------------------------------------------------------

class OpenAICompatibleProvider(Provider):
    """Chat-completions API shared by OpenAI, Mistral, xAI and OpenRouter.

    Args:
        name:                   Registry name.
        url:                    Full chat-completions endpoint.
        completion_tokens_models: Model-name markers that take
                                `max_completion_tokens` instead of `max_tokens`.
        always_completion_tokens: Use `max_completion_tokens` for every model.
        penalty_field:          Body field for the repetition penalty.
    """

    def __init__(
        self,
        name: str,
        url: str,
        completion_tokens_models: tuple[str, ...] = (),
        always_completion_tokens: bool = False,
        penalty_field: str = "frequency_penalty",
    ) -> None:
        self.name = name
        self.url = url
        self._completion_tokens_models = completion_tokens_models
        self._always_completion_tokens = always_completion_tokens
        self._penalty_field = penalty_field

    def format(self, messages: list[ChatMessage]) -> list[dict[str, str]]:
        return merge_leading_system(drop_failed(messages))

    def max_tokens_field(self, model: str) -> str:
        if self._always_completion_tokens:
            return "max_completion_tokens"
        if any(marker in model for marker in self._completion_tokens_models):
            return "max_completion_tokens"
        return "max_tokens"

    def build_request(
        self, formatted: list[dict[str, str]], params: GenerationParams, api_key: str
    ) -> ProviderRequest:
        if not api_key:
            raise ConfigError(f"No API key configured for provider '{self.name}'")
        body: dict[str, Any] = {
            "model": params.model,
            "messages": formatted,
            "temperature": params.temperature,
            "top_p": params.top_p,
            self.max_tokens_field(params.model): params.max_tokens,
        }
        if params.repetition_penalty:
            body[self._penalty_field] = params.repetition_penalty
        return ProviderRequest(
            url=self.url,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
            body=body,
        )

    def parse_response(self, data: dict[str, Any]) -> Reply:
        try:
            choice = data["choices"][0]
            text = choice["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError(
                f"Unexpected response format from {self.name}"
            ) from e
        return Reply(
            text=text or "",
            truncated=choice.get("finish_reason") == "length",
        )


# ---------------------------------------------------------------------------
# Anthropic messages API
# ---------------------------------------------------------------------------

class AnthropicProvider(Provider):
    name = "anthropic"
    url = "https://api.anthropic.com/v1/messages"
    api_version = "2023-06-01"

    def format(self, messages: list[ChatMessage]) -> dict[str, Any]:
        system, chat = split_system(drop_failed(messages))
        turns = coalesce_turns([{"role": m.role, "content": m.content} for m in chat])
        return {"system": system, "messages": turns}

    def build_request(
        self, formatted: dict[str, Any], params: GenerationParams, api_key: str
    ) -> ProviderRequest:
        if not api_key:
            raise ConfigError("No API key configured for provider 'anthropic'")
        body: dict[str, Any] = {
            "model": params.model,
            "temperature": params.temperature,
            "top_p": params.top_p,
            "system": formatted["system"],
            "messages": formatted["messages"],
            "max_tokens": params.max_tokens,
        }
        return ProviderRequest(
            url=self.url,
            headers={
                "Content-Type": "application/json",
                "x-api-key": api_key,
                "anthropic-version": self.api_version,
            },
            body=body,
        )

    def parse_response(self, data: dict[str, Any]) -> Reply:
        truncated = isinstance(data, dict) and data.get("stop_reason") == "max_tokens"
        if truncated and not data.get("content"):
            return Reply(text="", truncated=True)
        try:
            text = data["content"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError(
                "Unexpected response format from anthropic"
            ) from e
        return Reply(text=text or "", truncated=truncated)


# ---------------------------------------------------------------------------
# Google Gemini generateContent API
# ---------------------------------------------------------------------------

class GoogleProvider(Provider):
    name = "google"
    base_url = "https://generativelanguage.googleapis.com/v1beta"

    def format(self, messages: list[ChatMessage]) -> dict[str, Any]:
        system, chat = split_system(drop_failed(messages))
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in chat
        ]
        return {
            "contents": contents,
            "systemInstruction": {"parts": [{"text": system}]},
        }

    def build_request(
        self, formatted: dict[str, Any], params: GenerationParams, api_key: str
    ) -> ProviderRequest:
        if not api_key:
            raise ConfigError("No API key configured for provider 'google'")
        return ProviderRequest(
            url=f"{self.base_url}/models/{params.model}:generateContent",
            headers={"Content-Type": "application/json"},
            params={"key": api_key},
            body={
                "contents": formatted["contents"],
                "systemInstruction": formatted["systemInstruction"],
                "generationConfig": {
                    "temperature": params.temperature,
                    "topP": params.top_p,
                    "maxOutputTokens": params.max_tokens,
                },
            },
        )

    def parse_response(self, data: dict[str, Any]) -> Reply:
        candidates = data.get("candidates") if isinstance(data, dict) else None
        candidate = candidates[0] if candidates else None
        if not isinstance(candidate, dict):
            raise MalformedResponseError("google returned no candidates")

        parts = (candidate.get("content") or {}).get("parts") or []
        if parts:
            return Reply(
                text=parts[0].get("text", ""),
                truncated=candidate.get("finishReason") == "MAX_TOKENS",
            )
        if candidate.get("finishReason") == "MAX_TOKENS":
            return Reply(text="", truncated=True)
        raise MalformedResponseError(
            f"google returned no content (finishReason={candidate.get('finishReason')})"
        )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_providers: dict[str, Provider] = {}


def register_provider(provider: Provider) -> None:
    _providers[provider.name] = provider


def get_provider(name: str) -> Provider:
    try:
        return _providers[name]
    except KeyError:
        raise UnsupportedProviderError(f"Unsupported API provider: {name!r}") from None


def provider_names() -> list[str]:
    return sorted(_providers)


register_provider(OpenAICompatibleProvider(
    "openai",
    "https://api.openai.com/v1/chat/completions",
    completion_tokens_models=("gpt-5", "gpt-4.1", "o1", "gpt-4o"),
))
register_provider(OpenAICompatibleProvider(
    "mistral",
    "https://api.mistral.ai/v1/chat/completions",
    always_completion_tokens=True,
))
register_provider(OpenAICompatibleProvider(
    "xai",
    "https://api.x.ai/v1/chat/completions",
    always_completion_tokens=True,
))
register_provider(OpenAICompatibleProvider(
    "openrouter",
    "https://openrouter.ai/api/v1/chat/completions",
    penalty_field="repetition_penalty",
))
register_provider(AnthropicProvider())
register_provider(GoogleProvider())


# ---------------------------------------------------------------------------
# Module-level entry points
# ---------------------------------------------------------------------------

def format_messages(messages: list[ChatMessage], provider: str) -> Any:
    """Map assembled messages to the wire shape of `provider`."""
    formatted = get_provider(provider).format(messages)
    logger.debug("formatted provider=%s messages=%d", provider, len(messages))
    return formatted


def build_request(
    provider: str,
    formatted: Any,
    settings: GlobalSettings,
    for_summary: bool = False,
) -> ProviderRequest:
    params = GenerationParams.from_settings(settings, for_summary=for_summary)
    return get_provider(provider).build_request(formatted, params, settings.api_key)


def parse_response(provider: str, data: dict[str, Any]) -> Reply:
    return get_provider(provider).parse_response(data)


def connection_check_request(provider: str, api_key: str, model: str) -> ProviderRequest:
    return get_provider(provider).connection_check_request(model, api_key)
