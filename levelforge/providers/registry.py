from __future__ import annotations

import logging
from typing import Dict, List, Optional

import httpx

from ..config import LevelForgeConfig
from .base import Provider, ProviderNotConfiguredError
from .internal import InternalProvider
from .openai import OpenAICompatibleProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Providers available to the executor, keyed by id."""

    def __init__(self) -> None:
        self._providers: Dict[str, Provider] = {}

    def register(self, name: str, provider: Provider) -> None:
        if name in self._providers:
            logger.warning(f"Replacing provider {name}")
        self._providers[name] = provider

    def get(self, name: str) -> Provider:
        try:
            return self._providers[name]
        except KeyError:
            raise ProviderNotConfiguredError(f"Provider {name} not found") from None

    def names(self) -> List[str]:
        return sorted(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()


def build_default_registry(
    config: LevelForgeConfig, client: Optional[httpx.AsyncClient] = None
) -> ProviderRegistry:
    settings = config.providers
    registry = ProviderRegistry()
    registry.register("internal", InternalProvider())
    registry.register(
        "openai",
        OpenAICompatibleProvider(
            "openai",
            "OPENAI_API_KEY",
            settings.openai_base_url,
            default_model="gpt-4o",
            max_retries=settings.max_retries,
            timeout=settings.request_timeout_s,
            client=client,
        ),
    )
    registry.register(
        "gemini",
        OpenAICompatibleProvider(
            "gemini",
            "GEMINI_API_KEY",
            settings.gemini_base_url,
            default_model="gemini-2.0-flash",
            max_retries=settings.max_retries,
            timeout=settings.request_timeout_s,
            client=client,
        ),
    )
    return registry
