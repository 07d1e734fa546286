"""Domain models for test-series pricing."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SeriesType(str, Enum):
    """Commercial tiers a test series can be sold under."""

    S1 = "S1"
    S2 = "S2"
    S3 = "S3"
    S4 = "S4"


class Group(str, Enum):
    """Fixed partitions of the examinable subjects."""

    GROUP_1 = "Group 1"
    GROUP_2 = "Group 2"
    BOTH = "Both"


class Subject(str, Enum):
    """Examinable subjects covered by the test series."""

    FR = "FR"
    AFM = "AFM"
    AUDIT = "Audit"
    DT = "DT"
    IDT = "IDT"


class PriceStrategy(str, Enum):
    """Tag selecting the pricing function applied to a tier."""

    SERIES_SUBJECT_TIER = "series_subject_tier"
    SUBJECT_TIER = "subject_tier"


class DiscountType(str, Enum):
    """Supported coupon discount kinds."""

    FLAT = "flat"
    PERCENT = "percent"


@dataclass(frozen=True)
class PriceTable:
    """Price constants in whole rupees, overridable per call."""

    subject_price: int = 450
    combo_price: int = 1200
    all_subjects_price: int = 2000
    all_series_all_subjects_price: int = 6000
    # Kept for compatibility with stored catalog data; no formula reads it.
    paper_price: int = 400


DEFAULT_PRICE_TABLE = PriceTable()


@dataclass(frozen=True)
class DiscountCode:
    """Coupon attached to a catalog tier."""

    code: str
    discount_type: DiscountType
    value: int
    label: Optional[str] = None


class PricingSelection(BaseModel):
    """What the buyer picked on the series detail page."""

    series_type: SeriesType
    selected_series_instances: FrozenSet[str] = Field(default_factory=frozenset)
    selected_group: Optional[Group] = None
    selected_subjects: FrozenSet[Subject] = Field(default_factory=frozenset)
    price_table: PriceTable = DEFAULT_PRICE_TABLE
    coupon_code: Optional[str] = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @field_validator("coupon_code")
    @classmethod
    def _normalize_coupon(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None

    @property
    def subject_count(self) -> int:
        return len(self.selected_subjects)

    @property
    def series_count(self) -> int:
        return len(self.selected_series_instances)


class PriceQuote(BaseModel):
    """Computed price for a selection. Amounts are whole rupees."""

    base_price: int = 0
    total_papers: int = 0
    final_price: int = 0
    discount_amount: int = 0
    applied_rule: str = ""
    coupon_code: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_chargeable(self) -> bool:
        """A zero quote means there is nothing to charge, not free access."""
        return self.final_price > 0


ZERO_QUOTE = PriceQuote()
