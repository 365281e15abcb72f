"""
Error kinds raised by the cover core.

Every error carries:
- kind: stable machine-readable name (used by the API and ErrorHandler)
- reason: human-readable message safe to show a rider (no transaction ids)
- retryable: whether the caller should retry / poll again
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CoverError(Exception):
    kind = "cover_error"
    default_reason = "The request could not be completed."
    retryable = False

    def __init__(self, reason: Optional[str] = None, *, detail: Optional[Dict[str, Any]] = None) -> None:
        self.reason = reason or self.default_reason
        self.detail = detail or {}
        super().__init__(self.reason)


class InvalidSelectionError(CoverError):
    kind = "invalid_selection"
    default_reason = "Choose at least one protection type, with one plan per type."


class NotFoundError(CoverError):
    kind = "not_found"
    default_reason = "The requested record was not found."


class InsufficientBalanceError(CoverError):
    kind = "insufficient_balance"
    default_reason = "Your wallet balance is too low to pay this premium. Top up and try again."


class GatewayError(CoverError):
    kind = "gateway_error"
    default_reason = "The payment service is unavailable right now. Please try again."
    retryable = True


class ConfirmationTimeoutError(CoverError):
    """Confirmation window closed; the payment may still complete out-of-band."""

    kind = "confirmation_timeout"
    default_reason = "Payment still pending. Check your phone and refresh your policies shortly."
    retryable = True


class PolicyInactiveError(CoverError):
    kind = "policy_inactive"
    default_reason = "This policy is no longer active."


class DuplicateClaimError(CoverError):
    kind = "duplicate_claim"
    default_reason = "A claim has already been filed for this policy."


class ValidationError(CoverError):
    kind = "validation_error"
    default_reason = "Some details are missing or invalid."


class IdempotencyConflictError(ValidationError):
    kind = "idempotency_conflict"
    default_reason = "This payment reference was already used for a different purchase."


class SettlementFailedError(CoverError):
    kind = "settlement_failed"
    default_reason = "We could not complete your purchase. No policy was issued; please contact support."


class InvalidTransitionError(RuntimeError):
    """Illegal state-machine edge. Indicates a programming error, not a rider error."""

    def __init__(self, entity: str, current: Any, target: Any) -> None:
        super().__init__(f"{entity} cannot move from {current} to {target}")
        self.entity = entity
        self.current = current
        self.target = target
