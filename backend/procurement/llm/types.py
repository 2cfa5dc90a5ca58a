"""
LLM provider types, dataclasses, and exceptions.

WHAT: Standard type definitions for LLM interactions
WHY: Ensure consistent contracts across providers and the structured-output layer
HOW: TypedDict for messages, dataclasses for results/status, custom exceptions for errors
"""

from typing import TypedDict, Literal, Generic, TypeVar
from dataclasses import dataclass, field


# Message format compatible with OpenAI-style APIs
ChatMessage = TypedDict(
    "ChatMessage",
    {"role": Literal["system", "user", "assistant"], "content": str}
)

T = TypeVar("T")


@dataclass
class LLMResult:
    """Complete LLM generation result."""
    text: str
    usage: dict
    model: str


@dataclass
class StructuredResult(Generic[T]):
    """Validated object produced from an LLM response, plus token usage."""
    value: T
    model: str
    usage: dict = field(default_factory=dict)

    @property
    def input_tokens(self) -> int:
        return int(self.usage.get("prompt_tokens", 0) or 0)

    @property
    def output_tokens(self) -> int:
        return int(self.usage.get("completion_tokens", 0) or 0)


@dataclass
class ProviderStatus:
    """Health status of an LLM provider."""
    available: bool
    base_url: str
    models: list[str] | None = None
    error: str | None = None


# Provider exceptions
class ProviderTimeoutError(Exception):
    """Request to provider timed out."""
    pass


class ProviderUnavailableError(Exception):
    """Provider is not reachable or down."""
    pass


class ProviderDisabledError(Exception):
    """Provider is disabled in configuration."""
    pass


class ProviderResponseError(Exception):
    """Provider returned an invalid or error response."""
    pass


class StructuredOutputError(Exception):
    """Provider text could not be coerced into the requested schema."""
    pass
