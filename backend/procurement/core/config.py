"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Literal
from pathlib import Path


SCORE_DIMENSIONS = ("price", "quality", "lead_time", "cash_flow", "risk")


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App metadata
    APP_NAME: str = "Procurement Negotiation Core"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./data/procurement.db"

    # LLM Provider Selection
    LLM_PROVIDER: Literal["lm_studio", "openrouter"] = "openrouter"

    # LM Studio Configuration
    LM_STUDIO_BASE_URL: str = "http://localhost:1234/v1"
    LM_STUDIO_DEFAULT_MODEL: str = "qwen/qwen3-1.7b"
    LM_STUDIO_TIMEOUT: int = 30  # seconds

    # OpenRouter Configuration
    LLM_ENABLE_OPENROUTER: bool = False
    OPENROUTER_API_KEY: str = ""
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_DEFAULT_MODEL: str = "anthropic/claude-haiku-4.5"

    # LLM Request Configuration
    LLM_MAX_RETRIES: int = 3
    LLM_RETRY_DELAY: float = 2  # seconds, base for exponential backoff

    # Offer extraction
    EXTRACTION_MODEL: str | None = None  # None = provider default
    EXTRACTION_TEMPERATURE: float = 0.0
    EXTRACTION_MAX_TOKENS: int = 2048
    EXTRACTION_CONCURRENCY: int = 3  # Max in-flight extraction calls per negotiation
    PRICE_RANGES: dict[str, tuple[float, float]] = {
        "cheapest": (0.85, 1.0),
        "mid": (0.95, 1.2),
        "expensive": (1.15, 1.4),
    }
    ITEM_PRICE_TOLERANCE: float = 0.15  # Per-item outlier band widening
    TOTAL_OVERRIDE_LOG_THRESHOLD: float = 1.0  # dollars

    # Cost of capital
    CASH_FLOW_ANNUAL_RATE: float = 0.08

    # Scoring
    SCORING_WEIGHTS: dict[str, dict[str, float]] = {
        "balanced": {"price": 0.25, "quality": 0.20, "lead_time": 0.20, "cash_flow": 0.15, "risk": 0.20},
        "cost": {"price": 0.35, "quality": 0.15, "lead_time": 0.15, "cash_flow": 0.20, "risk": 0.15},
        "quality": {"price": 0.15, "quality": 0.35, "lead_time": 0.15, "cash_flow": 0.15, "risk": 0.20},
        "speed": {"price": 0.15, "quality": 0.15, "lead_time": 0.35, "cash_flow": 0.15, "risk": 0.20},
        "cashflow": {"price": 0.20, "quality": 0.15, "lead_time": 0.15, "cash_flow": 0.35, "risk": 0.15},
        "custom": {"price": 0.25, "quality": 0.20, "lead_time": 0.20, "cash_flow": 0.15, "risk": 0.20},
    }
    DEFAULT_SCORING_MODE: str = "balanced"
    RISK_IDEAL_LEAD_TIME_DAYS: int = 15
    RISK_LEAD_TIME_SPAN_DAYS: int = 50

    # Usage pricing, USD per 1M tokens
    MODEL_PRICING: dict[str, dict[str, float]] = {
        "anthropic/claude-haiku-4.5": {"input": 1.0, "output": 5.0},
        "anthropic/claude-sonnet-4.5": {"input": 3.0, "output": 15.0},
    }

    # Negotiation driver
    MAX_NEGOTIATION_ROUNDS: int = 3
    PARALLEL_SUPPLIER_LIMIT: int = 3  # Max suppliers negotiating at once

    # Observer client (resume/reconnect)
    OBSERVER_MAX_RETRIES: int = 3
    OBSERVER_RETRY_DELAY: float = 1.0  # seconds
    OBSERVER_TIMEOUT: float = 30.0  # seconds

    # CORS - accepts comma-separated string or list
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(v, list):
            return ",".join(v)
        return v

    @field_validator("PRICE_RANGES")
    @classmethod
    def validate_price_ranges(cls, v: dict[str, tuple[float, float]]) -> dict[str, tuple[float, float]]:
        """Ensure every band is positive and ordered."""
        for level, (low, high) in v.items():
            if low <= 0 or high < low:
                raise ValueError(f"Invalid price range for '{level}': ({low}, {high})")
        return v

    @field_validator("SCORING_WEIGHTS")
    @classmethod
    def validate_scoring_weights(cls, v: dict[str, dict[str, float]]) -> dict[str, dict[str, float]]:
        """Ensure each mode weighs all five dimensions and sums to 1.0."""
        for mode, weights in v.items():
            missing = [dim for dim in SCORE_DIMENSIONS if dim not in weights]
            if missing:
                raise ValueError(f"Scoring mode '{mode}' is missing weights for {missing}")
            total = sum(weights[dim] for dim in SCORE_DIMENSIONS)
            if abs(total - 1.0) > 1e-6:
                raise ValueError(f"Scoring mode '{mode}' weights sum to {total}, expected 1.0")
        if "balanced" not in v:
            raise ValueError("SCORING_WEIGHTS must define a 'balanced' mode")
        return v

    def get_cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/procurement.log"

    # Streaming / SSE
    SSE_HEARTBEAT_INTERVAL: int = 15  # seconds between heartbeat events

    class Config:
        # Look for .env in project root first, then backend/.env
        env_file = [
            str(Path(__file__).parent.parent.parent.parent / ".env"),
            str(Path(__file__).parent.parent.parent / ".env"),
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True


# Singleton instance
settings = Settings()
