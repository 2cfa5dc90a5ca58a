"""
OpenAI-compatible chat completions provider.

WHAT: Single HTTP provider for OpenRouter and LM Studio
WHY: Both expose the same /chat/completions and /models contract
HOW: httpx AsyncClient, exponential backoff on timeouts, connect and 5xx errors
"""

import asyncio
import json

import httpx

from .types import (
    ChatMessage,
    LLMResult,
    ProviderStatus,
    ProviderDisabledError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProviderResponseError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ChatCompletionsProvider:
    """LLM provider speaking the OpenAI chat completions protocol."""

    def __init__(
        self,
        *,
        name: str,
        base_url: str,
        default_model: str,
        api_key: str | None = None,
        timeout: float = 60.0,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        enabled: bool = True,
        extra_headers: dict[str, str] | None = None
    ):
        """
        Initialize provider.

        Args:
            name: Label used in logs and errors ("openrouter", "lm_studio")
            base_url: API root, e.g. https://openrouter.ai/api/v1
            default_model: Model used when a call does not name one
            api_key: Bearer token, if the endpoint requires one
            timeout: Read timeout in seconds
            max_retries: Attempts per generate() call
            retry_delay: Base delay for exponential backoff
            enabled: When False every call raises ProviderDisabledError
            extra_headers: Additional headers sent with every request
        """
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.enabled = enabled

        headers = dict(extra_headers or {})
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(5.0, read=timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            headers=headers,
        )
        logger.info(
            f"{self.name} provider initialized "
            f"({'enabled' if enabled else 'disabled'}, model: {default_model}, base_url: {self.base_url})"
        )

    def _check_enabled(self):
        """Raise exception if provider is disabled."""
        if not self.enabled:
            raise ProviderDisabledError(f"{self.name} provider is disabled in configuration")

    async def ping(self) -> ProviderStatus:
        """
        Check availability by fetching the models list.

        Returns:
            ProviderStatus with up to ten model ids
        """
        self._check_enabled()

        try:
            response = await self.client.get(f"{self.base_url}/models", timeout=10.0)
            response.raise_for_status()
            models = [model.get("id") for model in response.json().get("data", [])]
            logger.info(f"{self.name} ping success ({len(models)} models available)")
            return ProviderStatus(
                available=True,
                base_url=self.base_url,
                models=models[:10] if models else None,
            )
        except httpx.TimeoutException:
            logger.warning(f"{self.name} ping timeout")
            return ProviderStatus(available=False, base_url=self.base_url, error="Request timed out")
        except httpx.ConnectError:
            logger.warning(f"{self.name} not reachable")
            return ProviderStatus(available=False, base_url=self.base_url, error="Connection refused")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"{self.name} ping failed: {e}")
            return ProviderStatus(available=False, base_url=self.base_url, error=str(e))

    async def generate(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
        stop: list[str] | None = None,
        model: str | None = None,
        json_mode: bool = False
    ) -> LLMResult:
        """
        Generate a complete response.

        Args:
            messages: Conversation history
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            stop: Optional stop sequences
            model: Optional model name (uses default_model if not provided)
            json_mode: Ask the endpoint for a JSON object response

        Returns:
            LLMResult with text, usage, and model

        Raises:
            ProviderTimeoutError: Request timed out on every attempt
            ProviderUnavailableError: Endpoint not reachable
            ProviderResponseError: Invalid or error response
        """
        self._check_enabled()

        model_to_use = model or self.default_model
        payload = {
            "model": model_to_use,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False
        }
        if stop:
            payload["stop"] = stop
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        for attempt in range(self.max_retries):
            try:
                response = await self.client.post(f"{self.base_url}/chat/completions", json=payload)
                response.raise_for_status()
                data = response.json()

                text = data["choices"][0]["message"]["content"] or ""
                usage = data.get("usage", {}) or {}
                response_model = data.get("model", model_to_use)

                logger.info(
                    f"{self.name} generate success (model: {response_model}, "
                    f"tokens: {usage.get('total_tokens', 'unknown')})"
                )
                return LLMResult(text=text, usage=usage, model=response_model)

            except httpx.TimeoutException as e:
                logger.warning(f"{self.name} timeout (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise ProviderTimeoutError(f"Request timed out after {self.max_retries} attempts") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

            except httpx.ConnectError as e:
                logger.error(f"{self.name} connection refused (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise ProviderUnavailableError(f"{self.name} is not reachable") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

            except httpx.HTTPStatusError as e:
                if e.response.status_code >= 500:
                    logger.error(
                        f"{self.name} server error {e.response.status_code} "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    if attempt == self.max_retries - 1:
                        raise ProviderResponseError(f"Server error: {e.response.status_code}") from e
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                else:
                    # Client errors don't retry
                    raise ProviderResponseError(f"HTTP {e.response.status_code}: {e.response.text}") from e

            except (KeyError, IndexError, TypeError, json.JSONDecodeError) as e:
                logger.error(f"Invalid response from {self.name}: {e}")
                raise ProviderResponseError(f"Invalid response format: {e}") from e

        raise ProviderResponseError(f"{self.name} returned no response")

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
