"""Provider registry - the configured vision providers in priority order."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.core.config import Settings, get_settings

from .base import ProviderResult, VisionProvider
from .mock import MockProvider

logger = logging.getLogger(__name__)

__all__ = [
    "ProviderRegistry",
    "ProviderResult",
    "VisionProvider",
    "MockProvider",
    "build_registry",
]


@dataclass(frozen=True)
class ProviderRegistry:
    """Ordered, immutable set of providers an analysis may use."""

    providers: tuple[VisionProvider, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.providers)

    def __len__(self) -> int:
        return len(self.providers)

    @property
    def names(self) -> list[str]:
        return [p.name for p in self.providers]

    def for_media(self, mime_type: str) -> ProviderRegistry:
        """Return the subset of providers able to accept *mime_type*."""
        if mime_type.startswith("video/"):
            return ProviderRegistry(tuple(p for p in self.providers if p.supports_video))
        return self


def _build_provider(name: str, settings: Settings) -> VisionProvider | None:
    if name == "mock":
        return MockProvider()

    api_key = settings.provider_api_key(name)
    if not api_key:
        logger.info("No API key for provider %r - skipping", name)
        return None

    common = {
        "models": settings.provider_models(name),
        "temperature": settings.ai_temperature,
        "max_tokens": settings.ai_max_tokens,
    }
    if name == "gemini":
        from .gemini import GeminiProvider

        return GeminiProvider(api_key, **common)
    if name == "openai":
        from .openai import OpenAIProvider

        return OpenAIProvider(api_key, **common)
    if name == "claude":
        from .claude import ClaudeProvider

        return ClaudeProvider(api_key, **common)

    logger.warning("Unknown provider %r - skipping", name)
    return None


def build_registry(settings: Settings | None = None) -> ProviderRegistry:
    """Build the registry from ``AI_PROVIDER_ORDER``.

    Providers outside ``AI_ALLOWED_PROVIDERS`` or without credentials are
    left out; an empty registry means nothing is configured.
    """
    settings = settings or get_settings()
    allowed = set(settings.ai_allowed_providers)

    providers: list[VisionProvider] = []
    for name in settings.ai_provider_order:
        if name not in allowed:
            logger.warning("Provider %r not in allowlist - skipping", name)
            continue
        provider = _build_provider(name, settings)
        if provider is not None:
            providers.append(provider)

    return ProviderRegistry(tuple(providers))
