"""
Status and health check endpoints.

WHAT: Health monitoring for the LLM provider and database
WHY: Quick diagnostics for observers and ops
HOW: FastAPI endpoints calling provider ping and DB ping
"""

from fastapi import APIRouter

from ....llm.provider_factory import get_provider
from ....core.database import ping_database
from ....core.config import settings
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


async def _provider_status() -> dict:
    try:
        provider = get_provider()
        status = await provider.ping()
        return {
            "available": status.available,
            "base_url": status.base_url,
            "models": status.models,
            "error": status.error
        }
    except Exception as e:
        logger.error(f"Failed to get LLM status: {e}")
        return {
            "available": False,
            "base_url": "unknown",
            "models": None,
            "error": str(e)
        }


@router.get("/llm/status")
async def llm_status():
    """
    Check LLM provider status.

    Returns:
        JSON with provider status and database status
    """
    return {
        "provider": settings.LLM_PROVIDER,
        "llm": await _provider_status(),
        "database": ping_database()
    }


@router.get("/health")
async def health_check():
    """
    Overall application health check.

    The database is required; an unreachable LLM only degrades extraction,
    which falls back to baseline offers.

    Returns:
        JSON with overall health status
    """
    llm = await _provider_status()
    db_status = ping_database()

    if not db_status["available"]:
        overall = "unhealthy"
    elif not llm["available"]:
        overall = "degraded"
    else:
        overall = "healthy"

    return {
        "status": overall,
        "version": settings.APP_VERSION,
        "app_name": settings.APP_NAME,
        "components": {
            "llm": {
                "available": llm["available"],
                "provider": settings.LLM_PROVIDER
            },
            "database": {
                "available": db_status["available"]
            }
        }
    }
