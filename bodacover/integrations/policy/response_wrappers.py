from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from bodacover.integrations.contracts.interfaces import GatewayStatus

TINYBARS_PER_HBAR = Decimal(100_000_000)


class IntegrationResponseError(ValueError):
    def __init__(self, message: str, *, payload: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.payload = payload or {}


class PushResponseModel(BaseModel):
    checkout_request_id: str
    response_code: str = "0"
    message: str = ""
    raw: Dict[str, Any] = Field(default_factory=dict)


class PushStatusModel(BaseModel):
    checkout_request_id: str
    status: GatewayStatus
    result_code: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class LedgerReceiptModel(BaseModel):
    tx_ref: str
    balance: Decimal
    raw: Dict[str, Any] = Field(default_factory=dict)


def normalize_push_response(raw: Dict[str, Any]) -> PushResponseModel:
    checkout_id = _first_non_empty(raw, "checkoutRequestId", "CheckoutRequestID", "checkout_request_id")
    response_code = str(_first_non_empty(raw, "ResponseCode", "responseCode", "response_code", default="0"))
    message = str(_first_non_empty(raw, "CustomerMessage", "ResponseDescription", "message", default=""))

    if response_code != "0":
        raise IntegrationResponseError(f"Gateway rejected push request (code {response_code}).", payload=raw)

    return _build_model(
        PushResponseModel,
        {
            "checkout_request_id": str(checkout_id),
            "response_code": response_code,
            "message": message,
            "raw": raw,
        },
        raw,
    )


def normalize_push_status(raw: Dict[str, Any], *, fallback_ref: str) -> PushStatusModel:
    checkout_id = str(_first_non_empty(raw, "checkoutRequestId", "CheckoutRequestID", default=fallback_ref))
    result_code = raw.get("ResultCode", raw.get("resultCode"))
    status = _first_non_empty(raw, "status", "payment_status", default="")

    if status:
        mapped = _map_push_status(status)
    elif result_code is None:
        mapped = GatewayStatus.PENDING
    else:
        # Daraja result codes: 0 = paid, 4999 = still processing, anything else = failed
        code = str(result_code)
        if code == "0":
            mapped = GatewayStatus.COMPLETED
        elif code == "4999":
            mapped = GatewayStatus.PENDING
        else:
            mapped = GatewayStatus.FAILED

    return _build_model(
        PushStatusModel,
        {
            "checkout_request_id": checkout_id,
            "status": mapped,
            "result_code": None if result_code is None else str(result_code),
            "raw": raw,
        },
        raw,
    )


def normalize_ledger_receipt(raw: Dict[str, Any], *, in_tinybars: bool = False) -> LedgerReceiptModel:
    tx_ref = _first_non_empty(raw, "transactionId", "transaction_id", "txRef", "tx_ref")
    balance = normalize_ledger_amount(
        _first_non_empty(raw, "balance", "walletBalance", "newBalance"),
        in_tinybars=in_tinybars,
    )
    return _build_model(
        LedgerReceiptModel,
        {"tx_ref": str(tx_ref), "balance": balance, "raw": raw},
        raw,
    )


def normalize_ledger_amount(value: Any, *, in_tinybars: bool = False) -> Decimal:
    """
    Collapse every balance representation the ledger emits into one Decimal.

    Accepts plain numbers, numeric strings and Long-style objects
    ``{"low": int, "high": int, "unsigned": bool}``.
    """
    if isinstance(value, dict):
        if "low" not in value:
            raise IntegrationResponseError(f"Unrecognised ledger amount: {value!r}", payload=value)
        low = int(value.get("low") or 0) & 0xFFFFFFFF
        high = int(value.get("high") or 0)
        if value.get("unsigned"):
            high &= 0xFFFFFFFF
        amount = Decimal(high * (1 << 32) + low)
    elif isinstance(value, bool):
        raise IntegrationResponseError(f"Unrecognised ledger amount: {value!r}")
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise IntegrationResponseError(f"Invalid ledger amount: {value!r}") from exc
        if not amount.is_finite():
            raise IntegrationResponseError(f"Invalid ledger amount: {value!r}")

    if in_tinybars:
        amount = amount / TINYBARS_PER_HBAR
    return amount


def _first_non_empty(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    if default is not None:
        return default
    raise IntegrationResponseError(f"Missing required field. Checked keys: {', '.join(keys)}", payload=data)


def _map_push_status(raw_status: Any) -> GatewayStatus:
    value = str(raw_status or "").strip().upper()
    mapping = {
        "PENDING": GatewayStatus.PENDING,
        "PROCESSING": GatewayStatus.PENDING,
        "COMPLETED": GatewayStatus.COMPLETED,
        "SUCCESS": GatewayStatus.COMPLETED,
        "FAILED": GatewayStatus.FAILED,
        "CANCELLED": GatewayStatus.FAILED,
        "ERROR": GatewayStatus.FAILED,
    }
    if value not in mapping:
        raise IntegrationResponseError(f"Unsupported payment status '{value}'.")
    return mapping[value]


def _build_model(model_type, payload: Dict[str, Any], raw: Dict[str, Any]):
    try:
        return model_type(**payload)
    except ValidationError as exc:
        raise IntegrationResponseError(f"Response validation failed: {exc}", payload=raw) from exc
