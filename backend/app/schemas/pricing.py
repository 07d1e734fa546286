"""API schemas for price quotes and the tier catalog."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..pricing import Group, PriceQuote, PricingSelection, SeriesDefinition, SeriesType, Subject


class QuoteRequest(BaseModel):
    series_type: SeriesType = Field(alias="seriesType")
    selected_series: List[str] = Field(alias="selectedSeries", default_factory=list)
    selected_group: Optional[Group] = Field(alias="selectedGroup", default=None)
    selected_subjects: List[Subject] = Field(alias="selectedSubjects", default_factory=list)
    coupon_code: Optional[str] = Field(alias="couponCode", default=None)

    model_config = ConfigDict(populate_by_name=True)

    def to_selection(self) -> PricingSelection:
        return PricingSelection(
            series_type=self.series_type,
            selected_series_instances=frozenset(self.selected_series),
            selected_group=self.selected_group,
            selected_subjects=frozenset(self.selected_subjects),
            coupon_code=self.coupon_code,
        )


class QuoteResponse(BaseModel):
    base_price: int = Field(alias="basePrice")
    total_papers: int = Field(alias="totalPapers")
    final_price: int = Field(alias="finalPrice")
    discount_amount: int = Field(alias="discountAmount", default=0)
    applied_rule: str = Field(alias="appliedRule", default="")
    coupon_code: Optional[str] = Field(alias="couponCode", default=None)
    validation_errors: List[str] = Field(alias="validationErrors", default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_quote(cls, quote: PriceQuote, validation_errors: List[str]) -> "QuoteResponse":
        return cls(
            base_price=quote.base_price,
            total_papers=quote.total_papers,
            final_price=quote.final_price,
            discount_amount=quote.discount_amount,
            applied_rule=quote.applied_rule,
            coupon_code=quote.coupon_code,
            validation_errors=validation_errors,
        )


class SubjectGroupView(BaseModel):
    group: Group
    subjects: List[Subject]


class SeriesDefinitionView(BaseModel):
    series_type: SeriesType = Field(alias="seriesType")
    label: str
    papers_per_subject: int = Field(alias="papersPerSubject")
    has_series_multiplier: bool = Field(alias="hasSeriesMultiplier")
    series_instances: List[str] = Field(alias="seriesInstances", default_factory=list)
    groups: List[SubjectGroupView] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_definition(cls, definition: SeriesDefinition) -> "SeriesDefinitionView":
        groups = [
            SubjectGroupView(group=group, subjects=sorted(subjects, key=lambda subject: subject.value))
            for group, subjects in definition.subjects_by_group().items()
        ]
        return cls(
            series_type=definition.series_type,
            label=definition.label,
            papers_per_subject=definition.papers_per_subject,
            has_series_multiplier=definition.has_series_multiplier,
            series_instances=list(definition.series_instances),
            groups=groups,
        )


class CatalogResponse(BaseModel):
    series: List[SeriesDefinitionView]

    model_config = ConfigDict(populate_by_name=True)
