"""
Cost-of-capital model for payment terms.

WHAT: Dollar cost of capital tied up by a payment schedule relative to delivery
WHY: Makes "Net-30" vs "40/60" comparable with price on one axis
HOW: Simple daily interest at an annual rate over the days money is locked
"""

import math
import re

from ..core.config import settings

_NET_PATTERN = re.compile(r"net[-\s]?(\d+)", re.IGNORECASE)
_DAY_PATTERN = re.compile(r"(\d+)[-\s]?day", re.IGNORECASE)
_PART_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*%?$")


def parse_payment_parts(payment_terms: str) -> list[float]:
    """
    Split a schedule like "33/33/33" or "40%/60%" into positive percentages.

    Parts that are not plain numbers, or are not positive, are dropped.
    Percentages are returned as given, without normalizing to 100.
    """
    parts = []
    for raw in payment_terms.split("/"):
        match = _PART_PATTERN.match(raw.strip())
        if not match:
            continue
        value = float(match.group(1))
        if value > 0 and math.isfinite(value):
            parts.append(value)
    return parts


def cash_flow_cost(
    total_cost: float,
    payment_terms: str,
    lead_time_days: int,
    annual_rate: float | None = None
) -> float:
    """
    Cost of capital locked up by a payment schedule.

    Negative values mean the buyer keeps the money past delivery (Net-N terms).

    Rules, first match wins:
        - "Net-30", "net 45", "NET60": paid N days after delivery, cost = -(total x N x daily)
        - "30-day", "45 days" (no "/" present): same as Net-N
        - "100": fully upfront, locked for the whole lead time
        - "40/60", "33/33/33": installments spread evenly over the lead time,
          first at day 0, part i at day lead_time x i / n
        - anything else: 0

    Args:
        total_cost: Offer total in dollars
        payment_terms: Free-text payment terms
        lead_time_days: Days from order to delivery
        annual_rate: Annual cost of capital (defaults to settings.CASH_FLOW_ANNUAL_RATE)

    Returns:
        Cash-flow cost in dollars
    """
    rate = settings.CASH_FLOW_ANNUAL_RATE if annual_rate is None else annual_rate
    daily_rate = rate / 365
    terms = (payment_terms or "").strip()

    net_match = _NET_PATTERN.search(terms)
    if net_match:
        return -(total_cost * int(net_match.group(1)) * daily_rate)

    day_match = _DAY_PATTERN.search(terms)
    if day_match and "/" not in terms:
        return -(total_cost * int(day_match.group(1)) * daily_rate)

    parts = parse_payment_parts(terms)
    if not parts:
        return 0.0

    if len(parts) == 1 and parts[0] >= 100:
        return total_cost * lead_time_days * daily_rate

    cost = 0.0
    for index, pct in enumerate(parts):
        payment_day = index / len(parts) * lead_time_days
        days_locked = max(0.0, lead_time_days - payment_day)
        cost += total_cost * (pct / 100) * days_locked * daily_rate
    return cost
