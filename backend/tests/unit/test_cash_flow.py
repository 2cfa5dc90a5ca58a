"""
Unit tests for the cost-of-capital model.

WHAT: Payment-term parsing and cash-flow cost rules
WHY: Cash-flow cost feeds one of the five scoring dimensions
HOW: Known schedules with hand-computed expected values
"""

import pytest

from procurement.services.cash_flow import cash_flow_cost, parse_payment_parts

DAILY = 0.08 / 365


@pytest.mark.unit
@pytest.mark.scoring
class TestNetTerms:
    """Net-N and N-day terms free the capital for N days after delivery."""

    def test_net_30_matches_reference_example(self):
        cost = cash_flow_cost(4800, "net-30", 25)
        assert cost == pytest.approx(-31.56, abs=0.01)

    @pytest.mark.parametrize("terms", ["Net-30", "net 30", "NET30", "Payment Net-30 after delivery"])
    def test_net_variants(self, terms):
        assert cash_flow_cost(1000, terms, 10) == pytest.approx(-(1000 * 30 * DAILY))

    def test_day_terms_without_slash_behave_like_net(self):
        assert cash_flow_cost(1000, "45-day", 10) == pytest.approx(-(1000 * 45 * DAILY))
        assert cash_flow_cost(1000, "45 days", 10) == pytest.approx(-(1000 * 45 * DAILY))

    def test_day_terms_with_slash_are_a_schedule(self):
        # "30 day" is ignored because a "/" is present; parts do not parse either
        assert cash_flow_cost(1000, "30 day/60 day", 10) == 0.0

    def test_net_is_independent_of_lead_time(self):
        assert cash_flow_cost(1000, "Net-60", 5) == cash_flow_cost(1000, "Net-60", 90)


@pytest.mark.unit
@pytest.mark.scoring
class TestUpfrontAndSchedules:
    """Upfront payment and evenly spaced installments."""

    def test_full_upfront_locks_capital_for_lead_time(self):
        assert cash_flow_cost(10000, "100", 30) == pytest.approx(10000 * 30 * DAILY)

    def test_two_part_schedule(self):
        # 40% at day 0 (30 days locked), 60% at day 15 (15 days locked)
        expected = (4000 * 30 + 6000 * 15) * DAILY
        assert cash_flow_cost(10000, "40/60", 30) == pytest.approx(expected)

    def test_percent_signs_accepted(self):
        assert cash_flow_cost(10000, "40%/60%", 30) == pytest.approx(cash_flow_cost(10000, "40/60", 30))

    def test_three_part_schedule_is_not_normalized(self):
        # 33/33/33 sums to 99 and is used as given
        expected = 9000 * 0.33 * (30 + 20 + 10) * DAILY
        assert cash_flow_cost(9000, "33/33/33", 30) == pytest.approx(expected)

    def test_zero_parts_are_discarded(self):
        assert cash_flow_cost(10000, "0/100", 30) == pytest.approx(cash_flow_cost(10000, "100", 30))

    def test_zero_lead_time_costs_nothing(self):
        assert cash_flow_cost(10000, "40/60", 0) == 0.0

    def test_custom_annual_rate(self):
        assert cash_flow_cost(10000, "100", 30, annual_rate=0.0) == 0.0
        assert cash_flow_cost(10000, "100", 365, annual_rate=0.1) == pytest.approx(1000.0)


@pytest.mark.unit
@pytest.mark.scoring
class TestUnparseableTerms:
    """Garbage degrades to zero, never raises."""

    @pytest.mark.parametrize("terms", ["", "   ", "COD", "letter of credit", "abc/def", "-20/-80"])
    def test_unparseable_terms_cost_zero(self, terms):
        assert cash_flow_cost(5000, terms, 30) == 0.0

    def test_none_terms_cost_zero(self):
        assert cash_flow_cost(5000, None, 30) == 0.0

    def test_parse_payment_parts(self):
        assert parse_payment_parts("33/33/33") == [33.0, 33.0, 33.0]
        assert parse_payment_parts("40% / 60%") == [40.0, 60.0]
        assert parse_payment_parts("x/50/0") == [50.0]
        assert parse_payment_parts("") == []
