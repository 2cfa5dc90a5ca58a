"""LLM provider layer."""

from .types import (
    ChatMessage,
    LLMResult,
    StructuredResult,
    ProviderStatus,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProviderDisabledError,
    ProviderResponseError,
    StructuredOutputError,
)
from .provider import LLMProvider
from .provider_factory import get_provider, reset_provider
from .structured import StructuredOutputService, LLMStructuredService
from .usage import UsageSink, CostTracker, ConcurrencyLimiter

__all__ = [
    "ChatMessage",
    "LLMResult",
    "StructuredResult",
    "ProviderStatus",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "ProviderDisabledError",
    "ProviderResponseError",
    "StructuredOutputError",
    "LLMProvider",
    "get_provider",
    "reset_provider",
    "StructuredOutputService",
    "LLMStructuredService",
    "UsageSink",
    "CostTracker",
    "ConcurrencyLimiter",
]
