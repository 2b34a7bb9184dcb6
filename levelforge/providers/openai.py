"""OpenAI-compatible chat completion provider (OpenAI, Gemini)."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from ..contracts import ErrorCategory, ProviderOutput, StageSpec
from ..db import Run
from ..utils.retry import schedule_retry
from .base import Provider, ProviderError, ProviderNotConfiguredError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a level design assistant. Output valid JSON if requested."

# provider_config keys forwarded to the completion request.
PASSTHROUGH_OPTIONS = ("temperature", "top_p", "max_tokens", "response_format", "seed")


def _status_category(status_code: int) -> ErrorCategory:
    if status_code in (401, 403):
        return ErrorCategory.CONFIGURATION
    if status_code in (400, 404, 409, 422):
        return ErrorCategory.INVALID_REQUEST
    if status_code >= 500:
        return ErrorCategory.TRANSIENT
    return ErrorCategory.FATAL


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class OpenAICompatibleProvider(Provider):
    """Chat completions over HTTP against an OpenAI-style endpoint."""

    def __init__(
        self,
        name: str,
        api_key_secret: str,
        base_url: str,
        default_model: str,
        max_retries: int = 3,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.name = name
        self.api_key_secret = api_key_secret
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.max_retries = max_retries
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def required_secrets(self) -> Tuple[str, ...]:  # type: ignore[override]
        return (self.api_key_secret,)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _post(self, api_key: str, body: Dict[str, Any]) -> Dict[str, Any]:
        client = self._get_client()
        url = f"{self.base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {api_key}"}
        attempt = 0
        while True:
            try:
                response = await client.post(url, json=body, headers=headers)
            except httpx.TimeoutException as exc:
                raise ProviderError(f"{self.name} request timed out", ErrorCategory.TRANSIENT) from exc
            except httpx.TransportError as exc:
                raise ProviderError(f"{self.name} unreachable: {exc}", ErrorCategory.TRANSIENT) from exc

            if response.status_code == 429:
                if attempt >= self.max_retries:
                    raise ProviderError(
                        f"{self.name} rate limited after {attempt + 1} attempts",
                        ErrorCategory.RATE_LIMITED,
                    )
                delay = await schedule_retry(attempt, retry_after=_retry_after(response))
                logger.warning(f"{self.name} rate limited, retried after {delay:.2f}s")
                attempt += 1
                continue
            if response.is_error:
                raise ProviderError(
                    f"{self.name} returned HTTP {response.status_code}: {response.text[:200]}",
                    _status_category(response.status_code),
                )
            try:
                return response.json()
            except ValueError as exc:
                raise ProviderError(f"{self.name} returned invalid JSON") from exc

    async def run(
        self,
        run: Run,
        stage: StageSpec,
        attempt: int,
        context: Dict[str, Any],
        prompt: str,
        credentials: Dict[str, str],
    ) -> ProviderOutput:
        api_key = credentials.get(self.api_key_secret)
        if not api_key:
            raise ProviderNotConfiguredError(f"{self.api_key_secret} not configured")

        model = stage.model_id or self.default_model
        body: Dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        for option in PASSTHROUGH_OPTIONS:
            if option in stage.provider_config:
                body[option] = stage.provider_config[option]

        logger.info(f"Calling {self.name} model {model} for stage {stage.stage_key}")
        data = await self._post(api_key, body)
        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(f"{self.name} response has no message content") from exc

        output: Dict[str, Any] = {"text": content}
        if content.strip().startswith("{"):
            try:
                parsed = json.loads(content)
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                output.update(parsed)
        output["provider_metadata"] = {
            "provider": self.name,
            "model": model,
            "usage": data.get("usage"),
        }
        return ProviderOutput(output=output)
