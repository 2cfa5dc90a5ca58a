"""
LLM provider protocol definition.

WHAT: Abstract interface for LLM providers
WHY: Decouple the structured-output layer from specific provider implementations
HOW: Use Protocol to define async methods for ping and generate
"""

from typing import Protocol
from .types import ChatMessage, LLMResult, ProviderStatus


class LLMProvider(Protocol):
    """Protocol defining the interface all LLM providers must implement."""

    async def ping(self) -> ProviderStatus:
        """Check provider health and availability."""
        ...

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
        """Generate a complete response (non-streaming)."""
        ...
