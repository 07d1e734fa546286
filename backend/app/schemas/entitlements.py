"""API schemas for entitlement reads."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements.models import Entitlement, ProductType


class EntitlementView(BaseModel):
    product_type: ProductType = Field(alias="productType")
    product_id: str = Field(alias="productId")
    purchased_subjects: List[str] = Field(alias="purchasedSubjects", default_factory=list)
    enrollment_date: datetime = Field(alias="enrollmentDate")
    expiry_date: Optional[datetime] = Field(alias="expiryDate", default=None)
    is_expired: bool = Field(alias="isExpired", default=False)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_entitlement(cls, entitlement: Entitlement, *, is_expired: bool) -> "EntitlementView":
        return cls(
            product_type=entitlement.product.product_type,
            product_id=entitlement.product.product_id,
            purchased_subjects=sorted(entitlement.purchased_subjects),
            enrollment_date=entitlement.enrollment_date,
            expiry_date=entitlement.expiry_date,
            is_expired=is_expired,
        )


class EntitlementListResponse(BaseModel):
    entitlements: List[EntitlementView]

    model_config = ConfigDict(populate_by_name=True)
