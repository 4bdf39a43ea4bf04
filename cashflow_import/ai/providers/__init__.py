"""Provider factory: returns the configured provider or falls back to mock."""

from __future__ import annotations

import logging
import os

from .base import BaseProvider, DocumentPayload, ProviderError, ProviderRateLimitError, ProviderResult
from .mock import MockProvider

logger = logging.getLogger(__name__)

__all__ = [
    "get_provider",
    "BaseProvider",
    "DocumentPayload",
    "MockProvider",
    "ProviderError",
    "ProviderRateLimitError",
    "ProviderResult",
]


def get_provider(name: str, *, api_key_env: str = "ANTHROPIC_API_KEY") -> BaseProvider | None:
    """Return a provider instance for *name*.

    ``"none"`` disables the AI path entirely (returns None). A ``"claude"``
    provider without an API key in the environment falls back to
    ``MockProvider`` with a warning, so imports of spreadsheets keep working.
    """
    name = name.lower().strip()
    if name == "none":
        return None
    if name == "mock":
        return MockProvider()
    if name == "claude":
        api_key = os.getenv(api_key_env)
        if not api_key:
            logger.warning("%s not set - falling back to mock provider", api_key_env)
            return MockProvider()
        from .claude import ClaudeProvider

        return ClaudeProvider(api_key=api_key)

    logger.warning("Unknown provider %r - falling back to mock provider", name)
    return MockProvider()
