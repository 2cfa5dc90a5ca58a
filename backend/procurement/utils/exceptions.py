"""
Custom API exceptions.

WHAT: Domain errors raised by the snapshot/query layer
WHY: Consistent error payloads and status codes across endpoints
HOW: Exception classes carrying an error code, message and details
"""

from typing import Optional, List, Dict, Any


class APIException(Exception):
    """Base class for errors surfaced through the HTTP API."""

    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class NegotiationNotFoundError(APIException):
    """Raised when no negotiation exists for an id."""

    def __init__(self, negotiation_id: str):
        super().__init__(
            message=f"Negotiation not found: {negotiation_id}",
            code="NEGOTIATION_NOT_FOUND",
            details={"negotiation_id": negotiation_id}
        )


class QuotationNotFoundError(APIException):
    """Raised when no negotiation has been started for a quotation."""

    def __init__(self, quotation_id: str):
        super().__init__(
            message=f"No negotiation found for quotation: {quotation_id}",
            code="QUOTATION_NOT_FOUND",
            details={"quotation_id": quotation_id}
        )


class DecisionNotReadyError(APIException):
    """Raised when a decision is requested before the negotiation completed."""

    def __init__(self, negotiation_id: str, current_status: str):
        super().__init__(
            message=f"Decision not available for negotiation {negotiation_id} (status: {current_status})",
            code="DECISION_NOT_READY",
            details={"negotiation_id": negotiation_id, "current_status": current_status}
        )


class ValidationError(APIException):
    """Raised for request payloads that pass schema checks but make no sense."""

    def __init__(self, message: str, field_errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field_errors": field_errors} if field_errors else None
        )
