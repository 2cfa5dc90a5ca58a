"""
Unit tests for LLM provider factory and the chat completions provider.

WHAT: Test provider selection, HTTP operations, retry and error mapping
WHY: Ensure provider layer works correctly before the extractor relies on it
HOW: Mock HTTP with respx, test success and failure paths
"""

import json

import httpx
import pytest
import respx
from unittest.mock import patch

from procurement.llm.chat_completions import ChatCompletionsProvider
from procurement.llm.provider_factory import close_provider, get_provider
from procurement.llm.types import (
    ProviderDisabledError,
    ProviderResponseError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)

BASE_URL = "http://localhost:1234/v1"


def completion(text, model="test-model"):
    return {
        "model": model,
        "choices": [{"message": {"role": "assistant", "content": text}}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 8, "total_tokens": 20},
    }


@pytest.mark.unit
class TestProviderFactory:
    """Test provider factory selection logic."""

    @patch("procurement.core.config.settings")
    def test_factory_returns_lm_studio(self, mock_settings):
        """Test factory builds an unauthenticated provider for LM Studio."""
        mock_settings.LLM_PROVIDER = "lm_studio"
        mock_settings.LM_STUDIO_BASE_URL = BASE_URL
        mock_settings.LM_STUDIO_DEFAULT_MODEL = "test-model"
        mock_settings.LM_STUDIO_TIMEOUT = 30
        mock_settings.LLM_MAX_RETRIES = 3
        mock_settings.LLM_RETRY_DELAY = 2

        provider = get_provider()
        assert isinstance(provider, ChatCompletionsProvider)
        assert provider.name == "lm_studio"
        assert "Authorization" not in provider.client.headers

    @patch("procurement.core.config.settings")
    def test_factory_returns_openrouter(self, mock_settings):
        """Test factory builds an authenticated provider for OpenRouter."""
        mock_settings.LLM_PROVIDER = "openrouter"
        mock_settings.LLM_ENABLE_OPENROUTER = True
        mock_settings.OPENROUTER_API_KEY = "test-key"
        mock_settings.OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
        mock_settings.OPENROUTER_DEFAULT_MODEL = "anthropic/claude-haiku-4.5"
        mock_settings.LLM_MAX_RETRIES = 3
        mock_settings.LLM_RETRY_DELAY = 2
        mock_settings.APP_NAME = "Test App"

        provider = get_provider()
        assert provider.name == "openrouter"
        assert provider.client.headers["Authorization"] == "Bearer test-key"
        assert provider.client.headers["X-Title"] == "Test App"

    @patch("procurement.core.config.settings")
    def test_openrouter_enabled_without_key_raises(self, mock_settings):
        mock_settings.LLM_PROVIDER = "openrouter"
        mock_settings.LLM_ENABLE_OPENROUTER = True
        mock_settings.OPENROUTER_API_KEY = "  "

        with pytest.raises(ProviderDisabledError, match="OPENROUTER_API_KEY"):
            get_provider()

    @patch("procurement.core.config.settings")
    def test_factory_raises_on_unknown_provider(self, mock_settings):
        """Test factory raises ValueError for unknown provider."""
        mock_settings.LLM_PROVIDER = "unknown_provider"

        with pytest.raises(ValueError, match="Unknown LLM provider"):
            get_provider()

    @patch("procurement.core.config.settings")
    def test_factory_returns_singleton(self, mock_settings):
        """Test factory returns same instance on repeated calls."""
        mock_settings.LLM_PROVIDER = "lm_studio"
        mock_settings.LM_STUDIO_BASE_URL = BASE_URL
        mock_settings.LM_STUDIO_DEFAULT_MODEL = "test-model"
        mock_settings.LM_STUDIO_TIMEOUT = 30
        mock_settings.LLM_MAX_RETRIES = 3
        mock_settings.LLM_RETRY_DELAY = 2

        assert get_provider() is get_provider()

    @pytest.mark.asyncio
    @patch("procurement.core.config.settings")
    async def test_close_provider_resets_singleton(self, mock_settings):
        mock_settings.LLM_PROVIDER = "lm_studio"
        mock_settings.LM_STUDIO_BASE_URL = BASE_URL
        mock_settings.LM_STUDIO_DEFAULT_MODEL = "test-model"
        mock_settings.LM_STUDIO_TIMEOUT = 30
        mock_settings.LLM_MAX_RETRIES = 3
        mock_settings.LLM_RETRY_DELAY = 2

        first = get_provider()
        await close_provider()
        assert first.client.is_closed
        assert get_provider() is not first


@pytest.mark.unit
class TestChatCompletionsProvider:
    """Test the HTTP provider against a mocked endpoint."""

    @pytest.fixture
    def provider(self):
        return ChatCompletionsProvider(
            name="lm_studio",
            base_url=BASE_URL + "/",
            default_model="test-model",
            max_retries=3,
            retry_delay=0.0,
        )

    @pytest.mark.asyncio
    @respx.mock
    async def test_ping_success(self, provider):
        """Test successful ping returns available status."""
        respx.get(f"{BASE_URL}/models").mock(
            return_value=httpx.Response(200, json={"data": [{"id": "model-1"}, {"id": "model-2"}]})
        )

        status = await provider.ping()
        assert status.available is True
        assert status.models == ["model-1", "model-2"]
        assert status.error is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_ping_timeout(self, provider):
        """Test ping timeout returns unavailable status."""
        respx.get(f"{BASE_URL}/models").mock(side_effect=httpx.TimeoutException("timeout"))

        status = await provider.ping()
        assert status.available is False
        assert status.error == "Request timed out"

    @pytest.mark.asyncio
    @respx.mock
    async def test_ping_connection_refused(self, provider):
        respx.get(f"{BASE_URL}/models").mock(side_effect=httpx.ConnectError("refused"))

        status = await provider.ping()
        assert status.available is False
        assert status.error == "Connection refused"

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_success(self, provider):
        route = respx.post(f"{BASE_URL}/chat/completions").mock(
            return_value=httpx.Response(200, json=completion('{"totalCost": 4800}'))
        )

        result = await provider.generate(
            [{"role": "user", "content": "Extract"}],
            temperature=0.0,
            max_tokens=256,
            json_mode=True,
        )

        assert result.text == '{"totalCost": 4800}'
        assert result.usage["total_tokens"] == 20
        assert result.model == "test-model"

        sent = json.loads(route.calls.last.request.content)
        assert sent["model"] == "test-model"
        assert sent["response_format"] == {"type": "json_object"}
        assert "stop" not in sent

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_model_override_and_stop(self, provider):
        route = respx.post(f"{BASE_URL}/chat/completions").mock(
            return_value=httpx.Response(200, json=completion("ok", model="other-model"))
        )

        result = await provider.generate(
            [{"role": "user", "content": "hi"}],
            temperature=0.5,
            max_tokens=16,
            stop=["\n"],
            model="other-model",
        )

        sent = json.loads(route.calls.last.request.content)
        assert sent["model"] == "other-model"
        assert sent["stop"] == ["\n"]
        assert "response_format" not in sent
        assert result.model == "other-model"

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_retries_then_times_out(self, provider):
        route = respx.post(f"{BASE_URL}/chat/completions").mock(side_effect=httpx.TimeoutException("slow"))

        with pytest.raises(ProviderTimeoutError):
            await provider.generate([{"role": "user", "content": "hi"}], temperature=0.0, max_tokens=16)
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_recovers_after_server_error(self, provider):
        route = respx.post(f"{BASE_URL}/chat/completions").mock(
            side_effect=[
                httpx.Response(503, text="busy"),
                httpx.Response(200, json=completion("recovered")),
            ]
        )

        result = await provider.generate([{"role": "user", "content": "hi"}], temperature=0.0, max_tokens=16)
        assert result.text == "recovered"
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_generate_unreachable(self, provider):
        respx.post(f"{BASE_URL}/chat/completions").mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(ProviderUnavailableError):
            await provider.generate([{"role": "user", "content": "hi"}], temperature=0.0, max_tokens=16)

    @pytest.mark.asyncio
    @respx.mock
    async def test_client_error_not_retried(self, provider):
        route = respx.post(f"{BASE_URL}/chat/completions").mock(
            return_value=httpx.Response(400, text="bad request")
        )

        with pytest.raises(ProviderResponseError, match="HTTP 400"):
            await provider.generate([{"role": "user", "content": "hi"}], temperature=0.0, max_tokens=16)
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_response(self, provider):
        respx.post(f"{BASE_URL}/chat/completions").mock(return_value=httpx.Response(200, json={"choices": []}))

        with pytest.raises(ProviderResponseError, match="Invalid response format"):
            await provider.generate([{"role": "user", "content": "hi"}], temperature=0.0, max_tokens=16)

    @pytest.mark.asyncio
    async def test_disabled_provider_raises(self):
        provider = ChatCompletionsProvider(
            name="openrouter", base_url=BASE_URL, default_model="m", enabled=False
        )

        with pytest.raises(ProviderDisabledError):
            await provider.ping()
        with pytest.raises(ProviderDisabledError):
            await provider.generate([{"role": "user", "content": "hi"}], temperature=0.0, max_tokens=16)
        await provider.close()
