"""Pure pricing functions for the test-series tiers.

Every public function here is side-effect free. :func:`price` never raises:
incomplete or inconsistent selections degrade to a zero quote, and callers
must read a zero price as "nothing to charge" rather than "free access".
"""
from __future__ import annotations

from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .catalog import ALL_SUBJECTS, SeriesDefinition, get_series_definition, subjects_for_group
from .models import (
    ZERO_QUOTE,
    DiscountCode,
    DiscountType,
    Group,
    PriceQuote,
    PriceStrategy,
    PriceTable,
    PricingSelection,
)

ALL_SUBJECT_COUNT = len(ALL_SUBJECTS)


def _subject_tier_price(
    table: PriceTable,
    group: Group,
    subject_count: int,
    multiplier: int,
) -> Tuple[int, str]:
    if subject_count == ALL_SUBJECT_COUNT and group == Group.BOTH:
        return table.all_subjects_price * multiplier, f"All {subject_count} subjects x {multiplier}"
    if subject_count == ALL_SUBJECT_COUNT:
        # A single group never holds every subject; reachable only for unvalidated input.
        return (
            table.all_subjects_price * multiplier,
            f"All {subject_count} subjects in {group.value} x {multiplier}",
        )
    if subject_count >= 3:
        return table.combo_price * multiplier, f"Combo ({subject_count} subjects) x {multiplier}"
    return (
        subject_count * table.subject_price * multiplier,
        f"Individual subjects ({subject_count}) x {multiplier}",
    )


def _price_series_subject_tier(
    definition: SeriesDefinition, selection: PricingSelection
) -> Optional[Tuple[int, str]]:
    series_count = selection.series_count
    if series_count == 0 or selection.selected_group is None or selection.subject_count == 0:
        return None
    table = selection.price_table
    if (
        selection.subject_count == ALL_SUBJECT_COUNT
        and selection.selected_group == Group.BOTH
        and series_count == len(definition.series_instances)
    ):
        return table.all_series_all_subjects_price, "All series + all subjects"
    return _subject_tier_price(table, selection.selected_group, selection.subject_count, series_count)


def _price_subject_tier(
    definition: SeriesDefinition, selection: PricingSelection
) -> Optional[Tuple[int, str]]:
    if selection.selected_group is None or selection.subject_count == 0:
        return None
    return _subject_tier_price(selection.price_table, selection.selected_group, selection.subject_count, 1)


_STRATEGIES: Dict[
    PriceStrategy, Callable[[SeriesDefinition, PricingSelection], Optional[Tuple[int, str]]]
] = {
    PriceStrategy.SERIES_SUBJECT_TIER: _price_series_subject_tier,
    PriceStrategy.SUBJECT_TIER: _price_subject_tier,
}


def total_papers(definition: SeriesDefinition, selection: PricingSelection) -> int:
    """Number of papers the selection unlocks."""

    papers = selection.subject_count * definition.papers_per_subject
    if definition.has_series_multiplier:
        papers *= selection.series_count
    return papers


def discount_for(base_price: int, discount: DiscountCode) -> int:
    """Amount a coupon takes off ``base_price``; never more than the price itself."""

    if discount.discount_type == DiscountType.FLAT:
        amount = min(discount.value, base_price)
    elif discount.discount_type == DiscountType.PERCENT:
        amount = (base_price * discount.value) // 100
    else:  # pragma: no cover - exhaustive enum
        amount = 0
    return max(0, min(amount, base_price))


def price(
    selection: PricingSelection,
    *,
    coupons: Optional[Mapping[str, DiscountCode]] = None,
) -> PriceQuote:
    """Price a selection under its tier's rules.

    ``coupons`` overrides the tier's catalog coupons when given.
    """

    definition = get_series_definition(selection.series_type)
    strategy = _STRATEGIES[definition.price_strategy]
    priced = strategy(definition, selection)
    if priced is None:
        return ZERO_QUOTE

    base_price, rule = priced
    applied_rule = f"{definition.series_type.value}: {rule}"

    if coupons is not None:
        discount = coupons.get(selection.coupon_code or "")
    else:
        discount = definition.find_discount(selection.coupon_code)

    discount_amount = discount_for(base_price, discount) if discount else 0
    return PriceQuote(
        base_price=base_price,
        total_papers=total_papers(definition, selection),
        final_price=max(0, base_price - discount_amount),
        discount_amount=discount_amount,
        applied_rule=applied_rule,
        coupon_code=discount.code if discount else None,
    )


def compute_price(selection: PricingSelection) -> Dict[str, int]:
    """Return the ``basePrice``/``totalPapers``/``finalPrice`` triple for a selection."""

    quote = price(selection)
    return {
        "basePrice": quote.base_price,
        "totalPapers": quote.total_papers,
        "finalPrice": quote.final_price,
    }


def validate_selection(selection: PricingSelection) -> List[str]:
    """Return human-readable problems with a selection; empty when it can be ordered."""

    definition = get_series_definition(selection.series_type)
    errors: List[str] = []

    if definition.has_series_multiplier:
        if selection.series_count == 0:
            errors.append(f"Series selection is required for {definition.series_type.value} {definition.label}")
        invalid = sorted(
            instance
            for instance in selection.selected_series_instances
            if instance not in definition.series_instances
        )
        if invalid:
            errors.append(f"Invalid series: {', '.join(invalid)}")
    elif selection.series_count:
        errors.append(f"{definition.series_type.value} does not support series selection")

    if selection.selected_group is None:
        errors.append("A subject group must be selected")

    if selection.subject_count == 0:
        errors.append("At least one subject must be selected")
    elif selection.selected_group is not None:
        allowed = subjects_for_group(selection.selected_group)
        outside = sorted(subject.value for subject in selection.selected_subjects if subject not in allowed)
        if outside:
            errors.append(
                f"Subjects not in {selection.selected_group.value}: {', '.join(outside)}"
            )

    return errors
