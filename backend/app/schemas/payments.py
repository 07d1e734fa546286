"""API schemas for order creation and payment verification."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import PendingOrder, VerificationOutcome, VerificationResult
from ..entitlements.models import ProductType
from .entitlements import EntitlementView


class CreateOrderRequest(BaseModel):
    product_type: ProductType = Field(alias="productType")
    product_id: str = Field(alias="productId", min_length=1)
    amount: int
    selected_subjects: List[str] = Field(alias="selectedSubjects", default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class GatewayOrderView(BaseModel):
    id: str
    amount: int
    currency: str


class CreateOrderResponse(BaseModel):
    gateway_key_id: str = Field(alias="gatewayKeyId")
    order: GatewayOrderView
    purchase_record_id: str = Field(alias="purchaseRecordId")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_pending(cls, pending: PendingOrder) -> "CreateOrderResponse":
        return cls(
            gateway_key_id=pending.gateway_key_id,
            order=GatewayOrderView(
                id=pending.order.id,
                amount=pending.order.amount,
                currency=pending.order.currency,
            ),
            purchase_record_id=pending.purchase_record_id,
        )


class VerifyPaymentRequest(BaseModel):
    order_id: str = Field(alias="orderId")
    payment_id: str = Field(alias="paymentId")
    signature: str
    purchase_record_id: str = Field(alias="purchaseRecordId")

    model_config = ConfigDict(populate_by_name=True)


class VerifyPaymentResponse(BaseModel):
    outcome: VerificationOutcome
    already_processed: bool = Field(alias="alreadyProcessed", default=False)
    entitlement: Optional[EntitlementView] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: VerificationResult, *, is_expired: bool = False) -> "VerifyPaymentResponse":
        entitlement = None
        if result.entitlement is not None:
            entitlement = EntitlementView.from_entitlement(result.entitlement, is_expired=is_expired)
        return cls(
            outcome=result.outcome,
            already_processed=result.already_processed,
            entitlement=entitlement,
        )
