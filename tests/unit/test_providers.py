from __future__ import annotations

import base64
from types import SimpleNamespace

import anthropic
import httpx
import pytest

from cashflow_import.ai.providers import (
    DocumentPayload,
    MockProvider,
    ProviderError,
    ProviderRateLimitError,
    get_provider,
)
from cashflow_import.ai.providers.claude import DEFAULT_MODEL, ClaudeProvider
from cashflow_import.ai.providers.mock import EMPTY_EXTRACTION


class FakeMessages:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.response


def _client(messages: FakeMessages):
    return SimpleNamespace(messages=messages)


def _message(*texts, input_tokens=12, output_tokens=7):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=t) for t in texts],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def _request():
    return httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def test_mock_provider_serves_responses_in_order():
    provider = MockProvider(responses=['{"a": 1}', '{"b": 2}'])
    assert provider.generate("p1").raw_text == '{"a": 1}'
    assert provider.generate("p2").raw_text == '{"b": 2}'
    # exhausted: empty extraction
    assert provider.generate("p3").raw_text == EMPTY_EXTRACTION
    assert [c[0] for c in provider.calls] == ["p1", "p2", "p3"]


def test_mock_provider_raises_queued_exceptions():
    provider = MockProvider(responses=[ProviderRateLimitError("slow down"), "{}"])
    with pytest.raises(ProviderRateLimitError):
        provider.generate("p")
    assert provider.generate("p").raw_text == "{}"


def test_mock_provider_responder_sees_document():
    doc = DocumentPayload(data=b"%PDF-1.4", media_type="application/pdf")
    provider = MockProvider(responder=lambda prompt, document: "pdf" if document and document.is_pdf else "text")
    result = provider.generate("p", document=doc)
    assert result.raw_text == "pdf"
    assert result.provider == "mock"
    assert result.model == "mock-v1"


def test_claude_provider_text_only_request():
    messages = FakeMessages(response=_message('{"contracts": ', "[]}"))
    provider = ClaudeProvider(api_key="k", client=_client(messages))

    result = provider.generate("extraia", max_tokens=100, timeout_seconds=5)

    assert result.raw_text == '{"contracts": []}'
    assert result.model == DEFAULT_MODEL
    assert result.provider == "claude"
    assert (result.prompt_tokens, result.completion_tokens) == (12, 7)
    assert messages.kwargs["max_tokens"] == 100
    assert messages.kwargs["timeout"] == 5
    content = messages.kwargs["messages"][0]["content"]
    assert content == [{"type": "text", "text": "extraia"}]


@pytest.mark.parametrize(
    "media_type, block_type",
    [("application/pdf", "document"), ("image/png", "image")],
)
def test_claude_provider_embeds_document(media_type, block_type):
    messages = FakeMessages(response=_message("{}"))
    provider = ClaudeProvider(api_key="k", client=_client(messages))

    provider.generate("p", document=DocumentPayload(data=b"bytes", media_type=media_type), model="m")

    first, second = messages.kwargs["messages"][0]["content"]
    assert first["type"] == block_type
    assert first["source"] == {
        "type": "base64",
        "media_type": media_type,
        "data": base64.b64encode(b"bytes").decode("ascii"),
    }
    assert second == {"type": "text", "text": "p"}
    assert messages.kwargs["model"] == "m"


def test_claude_provider_ignores_non_text_blocks():
    response = SimpleNamespace(
        content=[SimpleNamespace(type="thinking", text="hmm"), SimpleNamespace(type="text", text="{}")],
        usage=None,
    )
    provider = ClaudeProvider(api_key="k", client=_client(FakeMessages(response=response)))
    result = provider.generate("p")
    assert result.raw_text == "{}"
    assert result.prompt_tokens == 0


def test_claude_provider_empty_response_is_error():
    provider = ClaudeProvider(api_key="k", client=_client(FakeMessages(response=_message("  "))))
    with pytest.raises(ProviderError, match="empty"):
        provider.generate("p")


def test_claude_provider_rate_limit_maps_to_retryable_error():
    error = anthropic.RateLimitError(
        "rate limited", response=httpx.Response(429, request=_request()), body=None
    )
    provider = ClaudeProvider(api_key="k", client=_client(FakeMessages(error=error)))
    with pytest.raises(ProviderRateLimitError):
        provider.generate("p")


def test_claude_provider_connection_error():
    error = anthropic.APIConnectionError(request=_request())
    provider = ClaudeProvider(api_key="k", client=_client(FakeMessages(error=error)))
    with pytest.raises(ProviderError) as excinfo:
        provider.generate("p")
    assert not isinstance(excinfo.value, ProviderRateLimitError)


def test_claude_provider_timeout():
    error = anthropic.APITimeoutError(request=_request())
    provider = ClaudeProvider(api_key="k", client=_client(FakeMessages(error=error)))
    with pytest.raises(ProviderError, match="timed out"):
        provider.generate("p", timeout_seconds=3)


def test_get_provider_none_disables_ai():
    assert get_provider("none") is None
    assert get_provider(" NONE ") is None


def test_get_provider_mock():
    assert isinstance(get_provider("mock"), MockProvider)


def test_get_provider_claude_without_key_falls_back(monkeypatch, caplog):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with caplog.at_level("WARNING"):
        provider = get_provider("claude")
    assert isinstance(provider, MockProvider)
    assert "ANTHROPIC_API_KEY not set" in caplog.text


def test_get_provider_claude_with_custom_key_env(monkeypatch):
    monkeypatch.setenv("MY_KEY", "secret")
    provider = get_provider("claude", api_key_env="MY_KEY")
    assert isinstance(provider, ClaudeProvider)


def test_get_provider_unknown_falls_back(caplog):
    with caplog.at_level("WARNING"):
        assert isinstance(get_provider("gpt"), MockProvider)
    assert "Unknown provider" in caplog.text
