"""Base interface for generation providers."""

from __future__ import annotations

import abc
import asyncio
from typing import Any, Dict, Tuple

from ..contracts import ErrorCategory, ProviderOutput, StageSpec
from ..db import Run
from ..security import VaultConfigurationError


class ProviderError(RuntimeError):
    """Failure raised at the provider boundary, tagged with its category."""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.FATAL) -> None:
        super().__init__(message)
        self.category = ErrorCategory(category)


class ProviderNotConfiguredError(ProviderError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCategory.CONFIGURATION)


class Provider(metaclass=abc.ABCMeta):
    """Executes one stage attempt against an external model."""

    #: Credential keys loaded from the secret store before each call.
    required_secrets: Tuple[str, ...] = ()

    @abc.abstractmethod
    async def run(
        self,
        run: Run,
        stage: StageSpec,
        attempt: int,
        context: Dict[str, Any],
        prompt: str,
        credentials: Dict[str, str],
    ) -> ProviderOutput:
        """Return the stage output and any binary artifacts.

        Implementations may also return a plain mapping, which the executor
        passes through ``ProviderOutput.coerce``.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release network resources (no-op by default)."""
        pass


def classify_error(exc: BaseException) -> ErrorCategory:
    if isinstance(exc, ProviderError):
        return exc.category
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorCategory.TRANSIENT
    if isinstance(exc, VaultConfigurationError):
        return ErrorCategory.CONFIGURATION
    return ErrorCategory.FATAL
