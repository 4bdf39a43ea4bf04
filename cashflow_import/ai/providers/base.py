from __future__ import annotations

import abc
from dataclasses import dataclass

"""Abstract base for AI completion providers.

A provider takes a text prompt, optionally with one embedded document
(PDF or image bytes), and returns raw text. Callers must treat the text as
untrusted and validate whatever they parse out of it.
"""

__all__ = [
    "BaseProvider",
    "DocumentPayload",
    "ProviderError",
    "ProviderRateLimitError",
    "ProviderResult",
]


class ProviderError(Exception):
    """Upstream call failed (network, timeout, API error, empty answer)."""


class ProviderRateLimitError(ProviderError):
    """Upstream rejected the call because of rate limiting; retryable."""


@dataclass(frozen=True)
class DocumentPayload:
    data: bytes
    media_type: str  # application/pdf, image/png, ...

    @property
    def is_pdf(self) -> bool:
        return self.media_type == "application/pdf"


@dataclass(frozen=True)
class ProviderResult:
    raw_text: str
    model: str
    provider: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0


class BaseProvider(abc.ABC):
    name: str = "base"

    @abc.abstractmethod
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
        """Send *prompt* (and *document*, if any) and return a ``ProviderResult``.

        Raises:
            ProviderRateLimitError: the call was rate limited
            ProviderError: any other upstream failure
        """
