import json

import pytest

from shortcut_ai.errors import InvalidResponse, NetworkError
from shortcut_ai.providers import (
    ANTHROPIC_VERSION,
    PROVIDERS,
    AnthropicAdapter,
    OpenAICompatibleAdapter,
    ProviderAdapter,
    ProviderKind,
    adapter_for,
)


def _sse(payload) -> bytes:  # type: ignore[no-untyped-def]
    return f"data: {json.dumps(payload)}".encode("utf-8")


def test_adapter_for_selects_family() -> None:
    assert isinstance(adapter_for("anthropic"), AnthropicAdapter)
    for kind in ("openai", "openrouter", "perplexity", "groq"):
        adapter = adapter_for(kind)
        assert isinstance(adapter, OpenAICompatibleAdapter)
        assert adapter.kind is ProviderKind(kind)


def test_adapter_interface_is_abstract() -> None:
    with pytest.raises(TypeError):
        ProviderAdapter(PROVIDERS[ProviderKind.OPENAI])  # type: ignore[abstract]

    class HalfAdapter(ProviderAdapter):
        def parse_chunk(self, raw):  # type: ignore[no-untyped-def]
            return None

    with pytest.raises(TypeError):
        HalfAdapter(PROVIDERS[ProviderKind.OPENAI])  # type: ignore[abstract]


def test_unknown_provider_is_rejected() -> None:
    with pytest.raises(ValueError):
        adapter_for("mistral")


def test_every_provider_has_its_default_model_in_catalogue() -> None:
    for config in PROVIDERS.values():
        assert config.model(config.default_model) is not None
        for model in config.models:
            assert 1 <= model.speed <= 5
            assert 1 <= model.intelligence <= 5


def test_openai_request_uses_bearer_and_system_message() -> None:
    request = adapter_for("openai").build_request("Fix grammar", "teh text", None, "sk-test", max_tokens=100)

    assert request.url == "https://api.openai.com/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert request.body["model"] == "gpt-4o-mini"
    assert request.body["messages"] == [
        {"role": "system", "content": "Fix grammar"},
        {"role": "user", "content": "teh text"},
    ]
    assert request.body["max_tokens"] == 100
    assert request.body["stream"] is True
    assert request.stream is True
    assert request.redacted_headers()["Authorization"] == "***"


def test_openrouter_adds_title_header() -> None:
    request = adapter_for("openrouter").build_request("p", "t", "openai/gpt-4o-mini", "key")

    assert request.headers["X-Title"] == "ShortcutAI"
    assert request.body["model"] == "openai/gpt-4o-mini"


def test_perplexity_never_streams() -> None:
    request = adapter_for("perplexity").build_request("p", "query", None, "pplx", stream=True)

    assert request.stream is False
    assert "stream" not in request.body


def test_anthropic_request_shape() -> None:
    request = adapter_for("anthropic").build_request("Be terse", "hello", None, "sk-ant", max_tokens=321)

    assert request.headers["x-api-key"] == "sk-ant"
    assert request.headers["anthropic-version"] == ANTHROPIC_VERSION
    assert "Authorization" not in request.headers
    assert request.body["system"] == "Be terse"
    assert request.body["messages"] == [{"role": "user", "content": "hello"}]
    assert request.body["max_tokens"] == 321
    assert request.redacted_headers()["x-api-key"] == "***"


def test_openai_stream_chunks() -> None:
    adapter = adapter_for("groq")

    assert adapter.parse_chunk(_sse({"choices": [{"delta": {"content": "Hel"}}]})) == "Hel"
    assert adapter.parse_chunk(_sse({"choices": [{"delta": {"role": "assistant"}}]})) is None
    assert adapter.parse_chunk(b": keep-alive") is None
    assert adapter.parse_chunk(b"data: [DONE]") is None
    assert adapter.is_stream_end(b"data: [DONE]") is True
    assert adapter.is_stream_end(_sse({"choices": []})) is False


def test_openai_stream_error_payload_raises_network_error() -> None:
    with pytest.raises(NetworkError, match="quota exceeded"):
        adapter_for("openai").parse_chunk(_sse({"error": {"message": "quota exceeded"}}))


def test_openai_malformed_chunk_raises_invalid_response() -> None:
    adapter = adapter_for("openai")

    with pytest.raises(InvalidResponse):
        adapter.parse_chunk(b"data: {not json")
    with pytest.raises(InvalidResponse):
        adapter.parse_chunk(_sse({"choices": []}))


def test_anthropic_stream_chunks() -> None:
    adapter = adapter_for("anthropic")

    assert adapter.parse_chunk(b"event: content_block_delta") is None
    assert adapter.parse_chunk(_sse({"type": "message_start", "message": {}})) is None
    assert adapter.parse_chunk(_sse({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "lo"}})) == "lo"
    assert adapter.is_stream_end(_sse({"type": "message_stop"})) is True
    assert adapter.is_stream_end(_sse({"type": "content_block_stop"})) is False


def test_anthropic_stream_error_event() -> None:
    with pytest.raises(NetworkError, match="Overloaded"):
        adapter_for("anthropic").parse_chunk(_sse({"type": "error", "error": {"message": "Overloaded"}}))


def test_parse_final_shapes() -> None:
    openai_body = json.dumps({"choices": [{"message": {"content": "  Hello  "}}]})
    anthropic_body = json.dumps({"content": [{"type": "text", "text": "\nHi there\n"}]})

    assert adapter_for("openai").parse_final(openai_body) == "Hello"
    assert adapter_for("anthropic").parse_final(anthropic_body.encode("utf-8")) == "Hi there"


def test_parse_final_appends_citations() -> None:
    body = {
        "choices": [{"message": {"content": "Paris."}}],
        "citations": ["https://a.example", "https://b.example"],
    }

    text = adapter_for("perplexity").parse_final(body)

    assert text == "Paris.\n\nSources:\n[1] https://a.example\n[2] https://b.example"


@pytest.mark.parametrize(
    ("kind", "body"),
    [
        ("openai", {"choices": []}),
        ("openai", {"choices": [{"message": {"content": None}}]}),
        ("anthropic", {"content": []}),
        ("anthropic", "not json"),
    ],
)
def test_parse_final_wrong_shape_is_invalid_response(kind: str, body) -> None:  # type: ignore[no-untyped-def]
    raw = body if isinstance(body, str) else json.dumps(body)

    with pytest.raises(InvalidResponse):
        adapter_for(kind).parse_final(raw)


def test_parse_error_reads_error_message() -> None:
    adapter = adapter_for("openai")

    assert adapter.parse_error(b'{"error": {"message": "Invalid API key"}}') == "Invalid API key"
    assert adapter.parse_error(b'{"error": "rate limited"}') == "rate limited"
    assert adapter.parse_error(b"<html>bad gateway</html>") is None
