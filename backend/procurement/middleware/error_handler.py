"""
Global error handling middleware.

WHAT: Translate exceptions to appropriate HTTP responses
WHY: Snapshot queries and utility endpoints share one error payload shape
HOW: FastAPI exception handlers for LLM, validation and domain exceptions
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from datetime import datetime

from ..llm.types import (
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProviderDisabledError,
    ProviderResponseError,
    StructuredOutputError,
)
from ..utils.exceptions import (
    APIException,
    ValidationError,
    NegotiationNotFoundError,
    QuotationNotFoundError,
    DecisionNotReadyError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


# (status code, error code, detail) per LLM failure
PROVIDER_ERRORS = {
    ProviderDisabledError: (
        status.HTTP_400_BAD_REQUEST,
        "LLM_PROVIDER_DISABLED",
        "Check LLM provider configuration",
    ),
    ProviderTimeoutError: (
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "LLM_TIMEOUT",
        "LLM provider request timed out",
    ),
    ProviderUnavailableError: (
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "LLM_UNAVAILABLE",
        "LLM provider is not reachable. Check the provider base URL and API key.",
    ),
    ProviderResponseError: (
        status.HTTP_502_BAD_GATEWAY,
        "LLM_BAD_GATEWAY",
        "LLM provider returned an invalid response",
    ),
    StructuredOutputError: (
        status.HTTP_502_BAD_GATEWAY,
        "LLM_UNSTRUCTURED_OUTPUT",
        "LLM response did not match the requested schema",
    ),
}


async def provider_error_handler(request: Request, exc: Exception):
    """
    Handle LLM provider exceptions.

    Disabled providers are a configuration problem (400); timeouts and
    unreachable providers are 503; bad responses are 502.
    """
    status_code, code, detail = PROVIDER_ERRORS.get(
        type(exc),
        (status.HTTP_502_BAD_GATEWAY, "LLM_ERROR", "LLM provider error"),
    )
    if status_code >= 500:
        logger.error(f"{code}: {exc}")
    else:
        logger.warning(f"{code}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={
            "error": code,
            "message": str(exc),
            "detail": detail
        }
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """
    Handle FastAPI RequestValidationError.

    WHAT: Request validation failed
    WHY: Invalid request payload
    HOW: Return 400 with JSON-safe field errors
    """
    logger.warning(f"Validation error on {request.url.path}: {len(exc.errors())} errors")

    cleaned_errors = []
    for error in exc.errors():
        cleaned_error = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
            "input": error.get("input")
        }
        if "ctx" in error:
            cleaned_error["ctx"] = {
                k: str(v) if isinstance(v, Exception) else v
                for k, v in error["ctx"].items()
            }
        cleaned_errors.append(cleaned_error)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": cleaned_errors,
            "timestamp": datetime.now().isoformat()
        }
    )


async def api_exception_handler(request: Request, exc: APIException):
    """
    Handle generic APIException.

    Unknown negotiations and quotations are 404, a decision requested before
    completion is 409, anything else is 400.
    """
    status_code = status.HTTP_400_BAD_REQUEST

    if isinstance(exc, (NegotiationNotFoundError, QuotationNotFoundError)):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, DecisionNotReadyError):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, ValidationError):
        status_code = status.HTTP_400_BAD_REQUEST

    logger.warning(f"API exception: {exc.code} - {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.code,
            "message": exc.message,
            "details": exc.details,
            "timestamp": datetime.now().isoformat()
        }
    )


def register_exception_handlers(app):
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    for exc_type in PROVIDER_ERRORS:
        app.add_exception_handler(exc_type, provider_error_handler)

    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(APIException, api_exception_handler)

    logger.info("Exception handlers registered")
