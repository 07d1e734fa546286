"""Domain models for the order and payment verification flow."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..entitlements.models import Entitlement, PurchaseRecord


class GatewayOrder(BaseModel):
    """Order handle issued by the payment gateway. ``amount`` is in minor units."""

    id: str
    amount: int = Field(ge=1)
    currency: str = Field(min_length=3, max_length=3)
    receipt: Optional[str] = None
    status: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class PendingOrder(BaseModel):
    """Returned to the client so it can open the gateway checkout."""

    gateway_key_id: str
    order: GatewayOrder
    purchase_record_id: str

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class VerificationOutcome(str, Enum):
    """Result of checking a gateway payment callback."""

    VERIFIED = "verified"
    SIGNATURE_INVALID = "signature_invalid"
    ORDER_MISMATCH = "order_mismatch"


class VerificationResult(BaseModel):
    """Outcome of a verification attempt and the resulting state."""

    outcome: VerificationOutcome
    record: PurchaseRecord
    entitlement: Optional[Entitlement] = None
    already_processed: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def is_verified(self) -> bool:
        return self.outcome == VerificationOutcome.VERIFIED


class PaymentAuditEventType(str, Enum):
    """Audit event categories emitted by the payment flow."""

    ORDER_CREATED = "order_created"
    ORDER_FAILED = "order_failed"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_SIGNATURE_INVALID = "payment_signature_invalid"
    PAYMENT_ORDER_MISMATCH = "payment_order_mismatch"
    DUPLICATE_COVERAGE = "duplicate_coverage"


class PaymentAuditEvent(BaseModel):
    """Structured audit event for support and reconciliation."""

    event_type: PaymentAuditEventType
    purchase_record_id: Optional[str] = None
    user_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)
