from bodacover.error_handler import ErrorHandler
from bodacover.errors import (
    ConfirmationTimeoutError,
    GatewayError,
    IdempotencyConflictError,
    InsufficientBalanceError,
    ValidationError,
)


def test_handle_exception_returns_payload():
    eh = ErrorHandler()
    out = eh.handle_exception(Exception("boom"), context={"k": "v"})
    assert out["status"] == "error"
    assert "internal error" in out["message"].lower()
    assert out["metadata"]["context"] == {"k": "v"}


def test_rejection_for_retryable_gateway_error():
    eh = ErrorHandler()
    out = eh.to_rejection(GatewayError())
    assert out["status"] == "rejected"
    assert out["error"] == "gateway_error"
    assert out["retry"] is True
    assert out["action"] == "retry"
    assert eh.status_code(GatewayError()) == 502


def test_confirmation_timeout_asks_caller_to_poll():
    eh = ErrorHandler()
    out = eh.to_rejection(ConfirmationTimeoutError())
    assert out["action"] == "poll"
    assert eh.status_code(ConfirmationTimeoutError()) == 202


def test_field_errors_are_passed_through():
    exc = ValidationError("Missing fields", detail={"field_errors": {"details": "required"}})
    out = ErrorHandler().to_rejection(exc)
    assert out["field_errors"] == {"details": "required"}
    assert out["action"] is None


def test_status_code_prefers_most_specific_class():
    eh = ErrorHandler()
    assert eh.status_code(IdempotencyConflictError()) == 409
    assert eh.status_code(ValidationError()) == 422
    assert eh.status_code(InsufficientBalanceError()) == 402
