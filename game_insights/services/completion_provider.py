"""
Completion Provider Client.

Provider-agnostic capability for "send a system + user prompt, get text back",
plus the typed error hierarchy shared by the whole provider-facing layer.

Error Hierarchy:
    LLMError(code, recoverable)
    ├── AuthInvalidError        401 from the provider (not recoverable)
    ├── ApiKeyMissingError      no API key configured (not recoverable)
    ├── RateLimitedError        429 from the provider (recoverable)
    ├── ProviderNetworkError    transport failure (recoverable)
    ├── ProviderTimeoutError    deadline exceeded (recoverable)
    ├── ProviderFaultError      5xx (recoverable), other 4xx or empty content
    └── SchemaMismatchError     payload violates its JSON contract (recoverable)

Usage:
    from game_insights.services.completion_provider import OpenAICompletionProvider

    provider = OpenAICompletionProvider(api_key="sk-...", model="gpt-4o-mini")
    response = await provider.complete(CompletionRequest(systemPrompt="...", userPrompt="..."))
    await provider.aclose()

Dependencies:
    - httpx: async HTTP client (AsyncClient; MockTransport in tests)
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from game_insights.models.enums import LLMErrorCode, ResponseFormat
from game_insights.models.schemas import CompletionRequest, CompletionResponse, TokenUsage


logger = logging.getLogger(__name__)


DEFAULT_BASE_URL: str = 'https://api.openai.com/v1'
DEFAULT_MODEL: str = 'gpt-4o-mini'


# =============================================================================
# Errors
# =============================================================================


class LLMError(Exception):
    """Base class for every provider-facing failure."""

    code: LLMErrorCode = LLMErrorCode.PROVIDER_FAULT
    recoverable: bool = True

    def __init__(self, message: str, recoverable: Optional[bool] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        if recoverable is not None:
            self.recoverable = recoverable

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


class AuthInvalidError(LLMError):
    code = LLMErrorCode.AUTH_INVALID
    recoverable = False


class ApiKeyMissingError(LLMError):
    code = LLMErrorCode.API_KEY_MISSING
    recoverable = False


class RateLimitedError(LLMError):
    code = LLMErrorCode.RATE_LIMITED

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ProviderNetworkError(LLMError):
    code = LLMErrorCode.NETWORK


class ProviderTimeoutError(LLMError):
    code = LLMErrorCode.TIMEOUT


class ProviderFaultError(LLMError):
    code = LLMErrorCode.PROVIDER_FAULT


class SchemaMismatchError(LLMError):
    code = LLMErrorCode.SCHEMA_MISMATCH


# =============================================================================
# Provider Capability
# =============================================================================


class BaseCompletionProvider(ABC):
    """A source of completions. Implementations raise LLMError subclasses."""

    name: str = 'base'

    @abstractmethod
    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Send one completion request."""

    async def aclose(self) -> None:
        """Release network resources, if any."""


class OpenAICompletionProvider(BaseCompletionProvider):
    """
    OpenAI-compatible chat completions client.

    Args:
        api_key: Bearer token. None makes every call raise ApiKeyMissingError.
        model: Chat model name.
        base_url: API root, e.g. https://api.openai.com/v1.
        timeout: httpx timeout in seconds.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
    """

    name = 'openai'

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    def _build_payload(self, request: CompletionRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'model': self.model,
            'messages': [
                {'role': 'system', 'content': request.systemPrompt},
                {'role': 'user', 'content': request.userPrompt},
            ],
            'temperature': request.temperature,
            'max_tokens': request.maxResponseTokens,
        }
        if request.responseFormat == ResponseFormat.JSON:
            payload['response_format'] = {'type': 'json_object'}
        return payload

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """
        POST {base_url}/chat/completions and normalize the response.

        Raises:
            ApiKeyMissingError: No API key configured.
            AuthInvalidError: 401.
            RateLimitedError: 429.
            ProviderFaultError: 5xx (recoverable), other non-2xx, malformed
                body or empty content.
            ProviderTimeoutError: httpx timeout.
            ProviderNetworkError: Any other transport failure.
        """
        if not self.api_key:
            raise ApiKeyMissingError('No completion provider API key configured')

        client = self._get_client()
        started = time.monotonic()
        try:
            response = await client.post(
                '/chat/completions',
                json=self._build_payload(request),
                headers={'Authorization': f'Bearer {self.api_key}'},
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f'Provider request timed out: {e}') from e
        except httpx.HTTPError as e:
            raise ProviderNetworkError(f'Provider request failed: {e}') from e

        duration_ms = int((time.monotonic() - started) * 1000)
        self._raise_for_status(response)

        try:
            data = response.json()
            choice = data['choices'][0]
            content = choice['message'].get('content') or ''
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise ProviderFaultError(f'Malformed provider response: {e}', recoverable=True) from e

        if not content.strip():
            raise ProviderFaultError('Provider returned empty content', recoverable=True)

        usage = data.get('usage') or {}
        return CompletionResponse(
            content=content,
            usage=TokenUsage(
                promptTokens=int(usage.get('prompt_tokens', 0) or 0),
                completionTokens=int(usage.get('completion_tokens', 0) or 0),
                totalTokens=int(usage.get('total_tokens', 0) or 0),
            ),
            cached=False,
            model=str(data.get('model') or self.model),
            durationMs=duration_ms,
        )

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return

        detail = response.text[:200]
        if status == 401:
            raise AuthInvalidError('Invalid provider API key', status_code=status)
        if status == 429:
            retry_after = response.headers.get('retry-after')
            try:
                retry_seconds = float(retry_after) if retry_after is not None else None
            except ValueError:
                retry_seconds = None
            raise RateLimitedError('Provider rate limit exceeded', retry_after=retry_seconds, status_code=status)

        logger.warning("Provider returned HTTP %d: %s", status, detail)
        raise ProviderFaultError(
            f'Provider error {status}: {detail}',
            recoverable=status >= 500,
            status_code=status,
        )
