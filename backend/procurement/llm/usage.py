"""
Per-negotiation LLM usage accounting and call limiting.

WHAT: Token/cost tracker and counting-semaphore limiter
WHY: Each negotiation owns its own budget and upstream concurrency cap
HOW: Plain classes passed explicitly through ExtractorConfig / NegotiationRunner
"""

import asyncio
from dataclasses import dataclass
from typing import Protocol

from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)


class UsageSink(Protocol):
    """Receives token usage for every successful LLM call."""

    def track(self, model: str, input_tokens: int, output_tokens: int) -> None:
        ...


@dataclass
class UsageTotals:
    """Aggregated usage for one negotiation."""
    calls: int
    input_tokens: int
    output_tokens: int
    total_tokens: int
    total_cost_usd: float


class CostTracker:
    """UsageSink that prices tokens per 1M using MODEL_PRICING."""

    def __init__(self, negotiation_id: str | None = None, pricing: dict[str, dict[str, float]] | None = None):
        self.negotiation_id = negotiation_id
        self.pricing = pricing if pricing is not None else settings.MODEL_PRICING
        self.reset()

    def _price_for(self, model: str) -> dict[str, float]:
        if model in self.pricing:
            return self.pricing[model]
        if not self.pricing:
            return {"input": 0.0, "output": 0.0}
        # Unknown models are billed at the most expensive known rate
        return max(self.pricing.values(), key=lambda p: (p.get("input", 0.0), p.get("output", 0.0)))

    def track(self, model: str, input_tokens: int, output_tokens: int) -> None:
        price = self._price_for(model)
        self._calls += 1
        self._input_tokens += input_tokens
        self._output_tokens += output_tokens
        self._cost += (
            input_tokens / 1_000_000 * price.get("input", 0.0)
            + output_tokens / 1_000_000 * price.get("output", 0.0)
        )
        logger.debug(
            f"Usage tracked for {self.negotiation_id or 'anonymous'}: "
            f"{model} in={input_tokens} out={output_tokens}"
        )

    @property
    def totals(self) -> UsageTotals:
        return UsageTotals(
            calls=self._calls,
            input_tokens=self._input_tokens,
            output_tokens=self._output_tokens,
            total_tokens=self._input_tokens + self._output_tokens,
            total_cost_usd=round(self._cost, 4),
        )

    def reset(self) -> None:
        self._calls = 0
        self._input_tokens = 0
        self._output_tokens = 0
        self._cost = 0.0


class ConcurrencyLimiter:
    """
    Counting semaphore for upstream LLM calls.

    Callers past the limit suspend in FIFO order until a slot frees.

    Usage:
        async with limiter:
            await service.generate_object(...)
    """

    def __init__(self, max_concurrent: int):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._active = 0
        self._queued = 0

    async def __aenter__(self) -> "ConcurrencyLimiter":
        self._queued += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._queued -= 1
        self._active += 1
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self._active -= 1
        self._semaphore.release()

    @property
    def stats(self) -> dict:
        return {
            "active": self._active,
            "queued": self._queued,
            "max_concurrent": self.max_concurrent,
        }
