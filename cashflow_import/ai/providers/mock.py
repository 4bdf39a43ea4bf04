from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable

from .base import BaseProvider, DocumentPayload, ProviderResult

"""Mock provider: deterministic responses for tests, dry runs and missing keys.

Responses are served in order from ``responses``; an ``Exception`` instance
in the list is raised instead of returned. With a ``responder`` callable the
response is computed from the prompt. With neither, an empty extraction is
returned.
"""

EMPTY_EXTRACTION = '{"contracts": [], "receivables": [], "expenses": []}'

Responder = Callable[[str, DocumentPayload | None], str]


class MockProvider(BaseProvider):
    name = "mock"

    def __init__(
        self,
        responses: Iterable[str | Exception] | None = None,
        responder: Responder | None = None,
    ) -> None:
        self._responses = list(responses or [])
        self._responder = responder
        self._lock = threading.Lock()
        self.calls: list[tuple[str, DocumentPayload | None]] = []

    def _next(self, prompt: str, document: DocumentPayload | None) -> str | Exception:
        with self._lock:
            self.calls.append((prompt, document))
            if self._responses:
                return self._responses.pop(0)
        if self._responder is not None:
            return self._responder(prompt, document)
        return EMPTY_EXTRACTION

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
        t0 = time.monotonic()
        response = self._next(prompt, document)
        if isinstance(response, Exception):
            raise response
        elapsed = (time.monotonic() - t0) * 1000
        return ProviderResult(
            raw_text=response,
            model=model or "mock-v1",
            provider=self.name,
            prompt_tokens=len(prompt.split()),
            completion_tokens=len(response.split()),
            latency_ms=round(elapsed, 2),
        )
