"""Generation providers and their registry."""

from .base import Provider, ProviderError, ProviderNotConfiguredError, classify_error
from .internal import InternalProvider
from .openai import OpenAICompatibleProvider
from .registry import ProviderRegistry, build_default_registry

__all__ = [
    "InternalProvider",
    "OpenAICompatibleProvider",
    "Provider",
    "ProviderError",
    "ProviderNotConfiguredError",
    "ProviderRegistry",
    "build_default_registry",
    "classify_error",
]
