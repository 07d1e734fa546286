"""Domain models for purchase records and merged entitlements."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from ..pricing.catalog import normalize_product_id


class ProductType(str, Enum):
    """Kinds of product a purchase can reference."""

    COURSE = "course"
    TEST_SERIES = "test_series"
    BOOK = "book"


class PaymentStatus(str, Enum):
    """Lifecycle state of a purchase record. ``paid`` and ``failed`` are terminal."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class ProductRef(BaseModel):
    """Identifies exactly one course, test series or book."""

    product_type: ProductType
    product_id: str = Field(min_length=1)

    model_config = ConfigDict(frozen=True)

    @field_validator("product_id")
    @classmethod
    def _normalize_product_id(cls, value: str, info: ValidationInfo) -> str:
        product_type = info.data.get("product_type")
        normalized = normalize_product_id(product_type.value if product_type else "", value)
        if not normalized:
            raise ValueError("product_id must not be blank")
        # Tier shorthands ("S1") are stored lowercase so every purchase groups under one key.
        return normalized

    @property
    def key(self) -> str:
        return f"{self.product_type.value}:{self.product_id}"


class PurchaseRecord(BaseModel):
    """One purchase transaction, possibly covering a subset of subjects."""

    record_id: str
    user_id: str
    product: ProductRef
    purchased_subjects: FrozenSet[str] = Field(default_factory=frozenset)
    amount: int = Field(default=0, ge=0)
    currency: str = Field(default="INR", min_length=3, max_length=3)
    payment_status: PaymentStatus = PaymentStatus.PENDING
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    enrollment_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expiry_date: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def is_terminal(self) -> bool:
        return self.payment_status in {PaymentStatus.PAID, PaymentStatus.FAILED}


class Entitlement(BaseModel):
    """Merged view of everything a user owns for one product."""

    user_id: str
    product: ProductRef
    purchased_subjects: FrozenSet[str] = Field(default_factory=frozenset)
    enrollment_date: datetime
    expiry_date: Optional[datetime] = None
    source_record_ids: Tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)

    def covers(self, subjects: Iterable[str]) -> bool:
        """Return ``True`` when every subject in ``subjects`` is already owned."""
        return set(subjects).issubset(self.purchased_subjects)

    def effective_expiry(self, default_horizon: timedelta) -> datetime:
        if self.expiry_date is not None:
            return self.expiry_date
        return self.enrollment_date + default_horizon

    def is_expired(self, now: datetime, default_horizon: timedelta) -> bool:
        return now > self.effective_expiry(default_horizon)
