from __future__ import annotations

import base64
import logging
import time

import anthropic

from .base import BaseProvider, DocumentPayload, ProviderError, ProviderRateLimitError, ProviderResult

logger = logging.getLogger(__name__)

"""Anthropic / Claude provider (messages API, vision content blocks)."""

DEFAULT_MODEL = "claude-sonnet-4-20250514"


class ClaudeProvider(BaseProvider):
    name = "claude"

    def __init__(self, api_key: str, client: anthropic.Anthropic | None = None) -> None:
        # retries are handled by the extractor, not the SDK
        self._client = client or anthropic.Anthropic(api_key=api_key, max_retries=0)

    @staticmethod
    def _content(prompt: str, document: DocumentPayload | None) -> list[dict]:
        blocks: list[dict] = []
        if document is not None:
            blocks.append({
                "type": "document" if document.is_pdf else "image",
                "source": {
                    "type": "base64",
                    "media_type": document.media_type,
                    "data": base64.b64encode(document.data).decode("ascii"),
                },
            })
        blocks.append({"type": "text", "text": prompt})
        return blocks

    def generate(
        self,
        prompt: str,
        *,
        document: DocumentPayload | None = None,
        model: str = "",
        temperature: float = 0.0,
        max_tokens: int = 8000,
        timeout_seconds: float = 120.0,
    ) -> ProviderResult:
        model = model or DEFAULT_MODEL
        t0 = time.monotonic()
        try:
            message = self._client.messages.create(
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[{"role": "user", "content": self._content(prompt, document)}],
                timeout=timeout_seconds,
            )
        except anthropic.RateLimitError as e:
            raise ProviderRateLimitError(f"rate limited by Claude API: {e}") from e
        except anthropic.APITimeoutError as e:
            raise ProviderError(f"Claude API timed out after {timeout_seconds}s") from e
        except anthropic.APIError as e:
            raise ProviderError(f"Claude API error: {e}") from e
        elapsed = (time.monotonic() - t0) * 1000

        text = "".join(block.text for block in message.content if block.type == "text")
        if not text.strip():
            raise ProviderError("Claude returned an empty response")

        usage = message.usage
        return ProviderResult(
            raw_text=text,
            model=model,
            provider=self.name,
            prompt_tokens=getattr(usage, "input_tokens", 0) or 0,
            completion_tokens=getattr(usage, "output_tokens", 0) or 0,
            latency_ms=round(elapsed, 2),
        )
