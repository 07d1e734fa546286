"""Errors raised by order creation and payment verification."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class BillingError(Exception):
    """Represents an actionable billing failure surfaced to API callers."""

    code: str
    message: str
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


@dataclass
class OrderValidationError(BillingError):
    code: str = "invalid_order"
    message: str = "Order request is invalid."
    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass
class DuplicatePurchaseError(BillingError):
    """The user already owns everything the order asks for."""

    code: str = "already_purchased"
    message: str = "You have already purchased this product."
    status_code: int = status.HTTP_409_CONFLICT


@dataclass
class PaymentGatewayError(BillingError):
    code: str = "gateway_error"
    message: str = "Payment gateway request failed."
    status_code: int = status.HTTP_502_BAD_GATEWAY


@dataclass
class PurchaseRecordNotFoundError(BillingError):
    code: str = "purchase_record_not_found"
    message: str = "Purchase record not found."
    status_code: int = status.HTTP_404_NOT_FOUND


@dataclass
class PaymentStateError(BillingError):
    """The purchase record cannot accept this transition."""

    code: str = "invalid_payment_state"
    message: str = "Purchase record cannot be finalized."
    status_code: int = status.HTTP_409_CONFLICT
