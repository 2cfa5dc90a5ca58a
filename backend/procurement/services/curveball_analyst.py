"""
Curveball re-analysis.

WHAT: Impact assessment and recovery strategies after a mid-negotiation disruption
WHY: The decision step and the observer both show how the disruption changes the picture
HOW: Structured-output call returning a CurveballAnalysis; usage reported to the negotiation's sink
"""

from ..llm.structured import StructuredOutputService
from ..llm.usage import UsageSink
from ..models.domain import CurveballAnalysis, CurveballInfo, ScoredOffer
from ..utils.logger import get_logger

logger = get_logger(__name__)


def build_curveball_prompt(info: CurveballInfo, pool: list[ScoredOffer]) -> str:
    offers = "\n".join(
        f"- {entry.supplier_name}: ${entry.offer.total_cost:,.2f}, {entry.offer.lead_time_days} days, "
        f"terms {entry.offer.payment_terms or 'n/a'}, score {entry.scores.weighted}/100"
        for entry in pool
    ) or "- no offers yet"

    return f"""A procurement negotiation hit a disruption.

Disruption (supplier {info.supplier_id}, round {info.round_number}): {info.description}

Current offers:
{offers}

Assess the impact on the order, propose two or three strategies with estimated cost,
pros and cons, and recommend one."""


class LLMCurveballAnalyst:
    """Callable analyst for NegotiationRunner(curveball_analyst=...)."""

    def __init__(
        self,
        service: StructuredOutputService,
        *,
        usage_sink: UsageSink | None = None,
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 1024
    ):
        self.service = service
        self.usage_sink = usage_sink
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def __call__(self, info: CurveballInfo, pool: list[ScoredOffer]) -> CurveballAnalysis:
        result = await self.service.generate_object(
            build_curveball_prompt(info, pool),
            CurveballAnalysis,
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        if self.usage_sink is not None:
            self.usage_sink.track(result.model, result.input_tokens, result.output_tokens)
        logger.info(f"Curveball analysis for {info.supplier_id}: {len(result.value.strategies)} strategies")
        return result.value
