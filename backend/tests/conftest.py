"""
Pytest configuration and shared fixtures for backend tests.

WHAT: Centralized test configuration with component markers
WHY: Enable test organization, filtering, and shared test utilities
HOW: Define pytest markers, fixtures, and test helpers
"""

import os

# Must run before procurement.core.config builds its settings singleton
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("LLM_PROVIDER", "lm_studio")

import pytest

from procurement.llm.provider_factory import reset_provider
from procurement.core.config import settings
from procurement.core.database import init_db, get_db
from procurement.core.models import Negotiation, NegotiationEventRecord
from procurement.core.negotiation_store import NegotiationStore
from procurement.models.domain import QuotationItem, SupplierProfile, QuotationTier
from procurement.services.event_bus import EventBus


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (isolated component tests)")
    config.addinivalue_line("markers", "integration: Integration tests (multiple components)")
    config.addinivalue_line("markers", "extraction: Offer extractor tests")
    config.addinivalue_line("markers", "scoring: Scoring engine and cost-of-capital tests")
    config.addinivalue_line("markers", "state_machine: Negotiation state machine and observer tests")
    config.addinivalue_line("markers", "persistence: Negotiation store and database tests")
    config.addinivalue_line("markers", "slow: Tests that take significant time to run")
    config.addinivalue_line(
        "markers", "requires_openrouter: Tests that require OpenRouter API key and enabled provider"
    )


@pytest.fixture(autouse=True)
def reset_provider_singleton():
    """
    Reset provider singleton before each test.

    WHAT: Clear provider cache between tests
    WHY: Prevent test pollution and ensure clean state
    HOW: Call reset_provider() before and after each test
    """
    reset_provider()
    yield
    reset_provider()


# ============================================================================
# Persistence
# ============================================================================

@pytest.fixture
def clean_db():
    """Create tables on the in-memory database and empty them after the test."""
    init_db()
    yield
    with get_db() as db:
        db.query(NegotiationEventRecord).delete()
        db.query(Negotiation).delete()


@pytest.fixture
def store(clean_db):
    return NegotiationStore()


@pytest.fixture
def bus():
    return EventBus()


# ============================================================================
# Domain data
# ============================================================================

@pytest.fixture
def baseline_items():
    """Two-SKU baseline quotation totalling $10,000."""
    return [
        QuotationItem(sku="TS-100", description="Cotton T-shirt", quantity=1000, unit_price=5.0),
        QuotationItem(sku="HD-200", description="Hoodie", quantity=250, unit_price=20.0),
    ]


@pytest.fixture
def tiered_baseline():
    """Single SKU with a volume break above the baseline quantity."""
    return [
        QuotationItem(
            sku="CAP-1",
            description="Cap",
            quantity=500,
            unit_price=4.0,
            tiers=(
                QuotationTier(quantity=500, unit_price=4.0, total_price=2000.0),
                QuotationTier(quantity=1000, unit_price=3.5, total_price=3500.0),
            ),
        )
    ]


@pytest.fixture
def cheap_profile():
    return SupplierProfile(
        id="sup-cheap",
        name="BudgetTex",
        code="BTX",
        quality_rating=3.0,
        price_level="cheapest",
        lead_time_days=45,
        payment_terms="Net-30",
    )


@pytest.fixture
def mid_profile():
    return SupplierProfile(
        id="sup-mid",
        name="MidWeave",
        code="MWV",
        quality_rating=4.0,
        price_level="mid",
        lead_time_days=30,
        payment_terms="40/60",
    )


@pytest.fixture
def premium_profile():
    return SupplierProfile(
        id="sup-premium",
        name="LuxFab",
        code="LXF",
        quality_rating=4.8,
        price_level="expensive",
        lead_time_days=20,
        payment_terms="100",
    )


@pytest.fixture
def primary_profile():
    """The quotation's own supplier (not simulated)."""
    return SupplierProfile(
        id="sup-primary",
        name="Original Mills",
        code="ORM",
        quality_rating=4.2,
        price_level="mid",
        lead_time_days=25,
        payment_terms="Net-30",
        is_simulated=False,
    )


@pytest.fixture
def all_profiles(primary_profile, cheap_profile, mid_profile, premium_profile):
    return [cheap_profile, primary_profile, mid_profile, premium_profile]


# Skip logic helpers for live provider tests
def check_openrouter_available():
    """
    Check if OpenRouter is available for testing.

    WHAT: Verify OpenRouter provider is enabled and API key is set
    WHY: Skip tests if provider not configured
    HOW: Check env vars and settings
    """
    run_live = os.getenv("RUN_LIVE_PROVIDER_TESTS", "false").lower() == "true"
    if not run_live:
        return False

    enable_openrouter = os.getenv("LLM_ENABLE_OPENROUTER", str(settings.LLM_ENABLE_OPENROUTER)).lower() == "true"
    api_key = os.getenv("OPENROUTER_API_KEY", settings.OPENROUTER_API_KEY)
    return enable_openrouter and bool(api_key)


@pytest.fixture
def skip_if_no_openrouter():
    """Skip test if OpenRouter not available."""
    if not check_openrouter_available():
        pytest.skip("OpenRouter not available (set RUN_LIVE_PROVIDER_TESTS=true, LLM_ENABLE_OPENROUTER=true, OPENROUTER_API_KEY)")
