"""Turns core errors into rejected results the API can return to a rider."""
from typing import Any, Dict, Optional
import logging

from bodacover.errors import (
    ConfirmationTimeoutError,
    CoverError,
    DuplicateClaimError,
    GatewayError,
    IdempotencyConflictError,
    InsufficientBalanceError,
    InvalidSelectionError,
    NotFoundError,
    PolicyInactiveError,
    SettlementFailedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

HTTP_STATUS = {
    InvalidSelectionError: 400,
    NotFoundError: 404,
    InsufficientBalanceError: 402,
    GatewayError: 502,
    ConfirmationTimeoutError: 202,
    PolicyInactiveError: 409,
    DuplicateClaimError: 409,
    IdempotencyConflictError: 409,
    ValidationError: 422,
    SettlementFailedError: 500,
}


class ErrorHandler:
    def to_rejection(self, exc: CoverError) -> Dict[str, Any]:
        """Rejected result for an expected error; never retried automatically."""
        if isinstance(exc, ConfirmationTimeoutError):
            action: Optional[str] = "poll"
        elif exc.retryable:
            action = "retry"
        else:
            action = None

        logger.info("Rejected request: kind=%s", exc.kind)
        payload: Dict[str, Any] = {
            "status": "rejected",
            "error": exc.kind,
            "message": exc.reason,
            "retry": exc.retryable,
            "action": action,
        }
        field_errors = exc.detail.get("field_errors")
        if field_errors:
            payload["field_errors"] = field_errors
        return payload

    def status_code(self, exc: CoverError) -> int:
        for cls in type(exc).__mro__:
            if cls in HTTP_STATUS:
                return HTTP_STATUS[cls]
        return 400

    def handle_exception(self, exc: Exception, context: Dict[str, Any] = None) -> Dict[str, Any]:
        logger.error("Unhandled exception in cover API: %s", exc, exc_info=True)
        return {
            "status": "error",
            "error": "internal_error",
            "message": "An internal error occurred while processing your request. Please try again later.",
            "retry": False,
            "action": None,
            "metadata": {"context": context or {}},
        }
