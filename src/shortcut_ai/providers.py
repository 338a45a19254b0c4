from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from shortcut_ai.errors import InvalidResponse, NetworkError

LOGGER = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
SSE_DATA_PREFIX = "data:"
OPENAI_STREAM_DONE = "[DONE]"


class ProviderKind(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OPENROUTER = "openrouter"
    PERPLEXITY = "perplexity"
    GROQ = "groq"


@dataclass(frozen=True)
class ModelInfo:
    id: str
    display_name: str
    speed: int
    intelligence: int
    token_usage: int


@dataclass(frozen=True)
class ProviderConfig:
    kind: ProviderKind
    display_name: str
    endpoint: str
    default_model: str
    models: tuple[ModelInfo, ...]
    api_key_placeholder: str
    website_url: str
    supports_streaming: bool = True
    extra_headers: tuple[tuple[str, str], ...] = ()

    def model(self, model_id: str) -> ModelInfo | None:
        return next((m for m in self.models if m.id == model_id), None)


@dataclass
class ProviderRequest:
    url: str
    headers: dict[str, str]
    body: dict[str, Any]
    stream: bool = False

    def redacted_headers(self) -> dict[str, str]:
        hidden = {"authorization", "x-api-key"}
        return {k: ("***" if k.lower() in hidden else v) for k, v in self.headers.items()}


PROVIDERS: dict[ProviderKind, ProviderConfig] = {
    ProviderKind.OPENAI: ProviderConfig(
        kind=ProviderKind.OPENAI,
        display_name="OpenAI",
        endpoint="https://api.openai.com/v1/chat/completions",
        default_model="gpt-4o-mini",
        models=(
            ModelInfo("gpt-4o-mini", "GPT-4o mini", speed=5, intelligence=3, token_usage=1),
            ModelInfo("gpt-4o", "GPT-4o", speed=4, intelligence=4, token_usage=3),
            ModelInfo("gpt-4.1", "GPT-4.1", speed=3, intelligence=5, token_usage=4),
        ),
        api_key_placeholder="sk-...",
        website_url="platform.openai.com/api-keys",
    ),
    ProviderKind.ANTHROPIC: ProviderConfig(
        kind=ProviderKind.ANTHROPIC,
        display_name="Anthropic",
        endpoint="https://api.anthropic.com/v1/messages",
        default_model="claude-3-5-sonnet-20241022",
        models=(
            ModelInfo("claude-3-5-haiku-20241022", "Claude 3.5 Haiku", speed=5, intelligence=3, token_usage=1),
            ModelInfo("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet", speed=4, intelligence=5, token_usage=3),
        ),
        api_key_placeholder="sk-ant-...",
        website_url="console.anthropic.com/settings/keys",
    ),
    ProviderKind.OPENROUTER: ProviderConfig(
        kind=ProviderKind.OPENROUTER,
        display_name="OpenRouter",
        endpoint="https://openrouter.ai/api/v1/chat/completions",
        default_model="anthropic/claude-3.5-sonnet",
        models=(
            ModelInfo("anthropic/claude-3.5-sonnet", "Claude 3.5 Sonnet", speed=4, intelligence=5, token_usage=3),
            ModelInfo("openai/gpt-4o-mini", "GPT-4o mini", speed=5, intelligence=3, token_usage=1),
            ModelInfo("meta-llama/llama-3.1-70b-instruct", "Llama 3.1 70B", speed=4, intelligence=3, token_usage=2),
        ),
        api_key_placeholder="sk-or-...",
        website_url="openrouter.ai/keys",
        extra_headers=(("X-Title", "ShortcutAI"),),
    ),
    ProviderKind.PERPLEXITY: ProviderConfig(
        kind=ProviderKind.PERPLEXITY,
        display_name="Perplexity",
        endpoint="https://api.perplexity.ai/chat/completions",
        default_model="llama-3.1-sonar-small-128k-online",
        models=(
            ModelInfo(
                "llama-3.1-sonar-small-128k-online", "Sonar Small (online)", speed=5, intelligence=3, token_usage=1
            ),
            ModelInfo(
                "llama-3.1-sonar-large-128k-online", "Sonar Large (online)", speed=3, intelligence=4, token_usage=3
            ),
        ),
        api_key_placeholder="pplx-...",
        website_url="perplexity.ai/settings/api",
        # Search answers arrive whole so citations stay attached.
        supports_streaming=False,
    ),
    ProviderKind.GROQ: ProviderConfig(
        kind=ProviderKind.GROQ,
        display_name="Groq",
        endpoint="https://api.groq.com/openai/v1/chat/completions",
        default_model="llama-3.1-70b-versatile",
        models=(
            ModelInfo("llama-3.1-70b-versatile", "Llama 3.1 70B", speed=5, intelligence=3, token_usage=2),
            ModelInfo("llama-3.1-8b-instant", "Llama 3.1 8B", speed=5, intelligence=2, token_usage=1),
        ),
        api_key_placeholder="gsk_...",
        website_url="console.groq.com/keys",
    ),
}


def _decode_line(raw: bytes | str) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace").strip()
    return raw.strip()


def _sse_data(raw: bytes | str) -> str | None:
    line = _decode_line(raw)
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    return line[len(SSE_DATA_PREFIX):].strip()


def _load_json(raw: bytes | str | dict) -> Any:
    if isinstance(raw, dict):
        return raw
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as exc:
        raise InvalidResponse(f"Response is not valid JSON: {exc}") from exc


class ProviderAdapter(ABC):
    """Request/response translation for one provider family."""

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config

    @property
    def kind(self) -> ProviderKind:
        return self.config.kind

    @abstractmethod
    def build_request(
        self,
        system_prompt: str,
        user_text: str,
        model: str | None,
        api_key: str,
        max_tokens: int = 2000,
        temperature: float = 0.7,
        stream: bool | None = None,
    ) -> ProviderRequest: ...

    @abstractmethod
    def parse_chunk(self, raw: bytes | str) -> str | None:
        """Text delta carried by one stream line, or None for framing lines."""

    @abstractmethod
    def is_stream_end(self, raw: bytes | str) -> bool: ...

    @abstractmethod
    def parse_final(self, raw: bytes | str | dict) -> str: ...

    def parse_error(self, raw: bytes | str) -> str | None:
        """Extract ``error.message`` from an error body; both families share this shape."""
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
            return None
        if not isinstance(payload, dict):
            return None
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        return None

    def _stream_flag(self, stream: bool | None) -> bool:
        if stream is None:
            return self.config.supports_streaming
        return stream and self.config.supports_streaming


class OpenAICompatibleAdapter(ProviderAdapter):
    """OpenAI, OpenRouter, Perplexity and Groq: bearer auth, flat messages, ``choices[0]``."""

    def build_request(
        self,
        system_prompt: str,
        user_text: str,
        model: str | None,
        api_key: str,
        max_tokens: int = 2000,
        temperature: float = 0.7,
        stream: bool | None = None,
    ) -> ProviderRequest:
        streaming = self._stream_flag(stream)
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        headers.update(dict(self.config.extra_headers))
        body: dict[str, Any] = {
            "model": model or self.config.default_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_text},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if streaming:
            body["stream"] = True
        request = ProviderRequest(url=self.config.endpoint, headers=headers, body=body, stream=streaming)
        LOGGER.debug("Built %s request headers=%s", self.kind.value, request.redacted_headers())
        return request

    def parse_chunk(self, raw: bytes | str) -> str | None:
        data = _sse_data(raw)
        if not data or data == OPENAI_STREAM_DONE:
            return None
        payload = _load_json(data)
        if isinstance(payload, dict) and payload.get("error"):
            raise NetworkError(self.parse_error(data) or "Provider reported a stream error")
        try:
            delta = payload["choices"][0].get("delta") or {}
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise InvalidResponse("Stream chunk missing choices[0].delta") from exc
        content = delta.get("content")
        return content or None

    def is_stream_end(self, raw: bytes | str) -> bool:
        return _sse_data(raw) == OPENAI_STREAM_DONE

    def parse_final(self, raw: bytes | str | dict) -> str:
        payload = _load_json(raw)
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise InvalidResponse("Response missing choices[0].message.content") from exc
        if not isinstance(content, str):
            raise InvalidResponse("Response content is not text")
        text = content.strip()
        citations = payload.get("citations") if isinstance(payload, dict) else None
        if citations and isinstance(citations, list):
            sources = "\n".join(f"[{i}] {url}" for i, url in enumerate(citations, start=1))
            text = f"{text}\n\nSources:\n{sources}"
        return text


class AnthropicAdapter(ProviderAdapter):
    """Anthropic messages API: ``x-api-key`` plus version header, top-level ``system``."""

    def build_request(
        self,
        system_prompt: str,
        user_text: str,
        model: str | None,
        api_key: str,
        max_tokens: int = 2000,
        temperature: float = 0.7,
        stream: bool | None = None,
    ) -> ProviderRequest:
        streaming = self._stream_flag(stream)
        headers = {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }
        headers.update(dict(self.config.extra_headers))
        body: dict[str, Any] = {
            "model": model or self.config.default_model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_text}],
        }
        if streaming:
            body["stream"] = True
        request = ProviderRequest(url=self.config.endpoint, headers=headers, body=body, stream=streaming)
        LOGGER.debug("Built %s request headers=%s", self.kind.value, request.redacted_headers())
        return request

    def parse_chunk(self, raw: bytes | str) -> str | None:
        data = _sse_data(raw)
        if not data:
            return None
        payload = _load_json(data)
        if not isinstance(payload, dict):
            raise InvalidResponse("Stream event is not an object")
        event_type = payload.get("type")
        if event_type == "error":
            raise NetworkError(self.parse_error(data) or "Provider reported a stream error")
        if event_type != "content_block_delta":
            return None
        delta = payload.get("delta")
        if not isinstance(delta, dict):
            raise InvalidResponse("content_block_delta without delta")
        text = delta.get("text")
        return text or None

    def is_stream_end(self, raw: bytes | str) -> bool:
        data = _sse_data(raw)
        if not data:
            return False
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            return False
        return isinstance(payload, dict) and payload.get("type") == "message_stop"

    def parse_final(self, raw: bytes | str | dict) -> str:
        payload = _load_json(raw)
        try:
            text = payload["content"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise InvalidResponse("Response missing content[0].text") from exc
        if not isinstance(text, str):
            raise InvalidResponse("Response content is not text")
        return text.strip()


def adapter_for(kind: ProviderKind | str, config: ProviderConfig | None = None) -> ProviderAdapter:
    kind = ProviderKind(kind)
    config = config or PROVIDERS[kind]
    if kind is ProviderKind.ANTHROPIC:
        return AnthropicAdapter(config)
    return OpenAICompatibleAdapter(config)


__all__ = [
    "AnthropicAdapter",
    "ModelInfo",
    "OpenAICompatibleAdapter",
    "PROVIDERS",
    "ProviderAdapter",
    "ProviderConfig",
    "ProviderKind",
    "ProviderRequest",
    "adapter_for",
]
