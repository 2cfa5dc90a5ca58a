"""
Text-to-structured-object service.

WHAT: Turn a prompt into a validated pydantic object via an LLM provider
WHY: The offer extractor needs typed candidates, not free text
HOW: JSON schema in the system prompt, JSON mode request, fenced/inline JSON recovery, pydantic validation
"""

import json
import re
from typing import Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from .provider import LLMProvider
from .types import StructuredResult, StructuredOutputError
from ..utils.logger import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.IGNORECASE | re.DOTALL)


class StructuredOutputService(Protocol):
    """Anything that can answer a prompt with an instance of a pydantic model."""

    async def generate_object(
        self,
        prompt: str,
        schema: type[ModelT],
        *,
        model: str | None = None,
        temperature: float = 0.0,
        max_tokens: int = 2048
    ) -> StructuredResult[ModelT]:
        ...


def extract_json_object(text: str) -> dict:
    """
    Pull the first JSON object out of LLM output.

    Accepts a bare object, a ```json fenced block, or an object embedded in prose.

    Raises:
        StructuredOutputError: If no decodable object is present
    """
    if not text or not text.strip():
        raise StructuredOutputError("Empty response")

    candidates = [text.strip()]
    fence_match = _FENCE_PATTERN.search(text)
    if fence_match:
        candidates.append(fence_match.group(1))
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    raise StructuredOutputError(f"No JSON object found in response: {text[:120]!r}")


class LLMStructuredService:
    """StructuredOutputService backed by a chat completions provider."""

    def __init__(self, provider: LLMProvider):
        self.provider = provider

    async def generate_object(
        self,
        prompt: str,
        schema: type[ModelT],
        *,
        model: str | None = None,
        temperature: float = 0.0,
        max_tokens: int = 2048
    ) -> StructuredResult[ModelT]:
        """
        Ask the provider for an object matching ``schema``.

        Raises:
            StructuredOutputError: Response is not valid JSON for the schema
            Provider*Error: Propagated from the provider
        """
        system = (
            "You are a structured data extraction engine. Respond with a single JSON object "
            "and nothing else. The object must validate against this JSON schema:\n"
            f"{json.dumps(schema.model_json_schema(by_alias=True))}"
        )
        result = await self.provider.generate(
            [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
            model=model,
            json_mode=True,
        )

        data = extract_json_object(result.text)
        try:
            value = schema.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Structured output failed {schema.__name__} validation: {e.error_count()} errors")
            raise StructuredOutputError(f"Response does not match {schema.__name__}: {e}") from e

        return StructuredResult(value=value, model=result.model, usage=result.usage)
