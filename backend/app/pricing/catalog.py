"""Static catalog definitions for the test-series tiers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple, Union

from .models import DiscountCode, DiscountType, Group, PriceStrategy, SeriesType, Subject


@dataclass(frozen=True)
class SeriesDefinition:
    """Describes a tier and how it is priced."""

    series_type: SeriesType
    label: str
    papers_per_subject: int
    price_strategy: PriceStrategy
    has_series_multiplier: bool = False
    series_instances: Tuple[str, ...] = ()
    discount_codes: Tuple[DiscountCode, ...] = ()

    def subjects_by_group(self) -> Dict[Group, FrozenSet[Subject]]:
        return dict(SUBJECTS_BY_GROUP)

    def find_discount(self, code: Optional[str]) -> Optional[DiscountCode]:
        if not code:
            return None
        for discount in self.discount_codes:
            if discount.code == code:
                return discount
        return None


GROUP_1_SUBJECTS: FrozenSet[Subject] = frozenset({Subject.FR, Subject.AFM, Subject.AUDIT})
GROUP_2_SUBJECTS: FrozenSet[Subject] = frozenset({Subject.DT, Subject.IDT})

SUBJECTS_BY_GROUP: Dict[Group, FrozenSet[Subject]] = {
    Group.GROUP_1: GROUP_1_SUBJECTS,
    Group.GROUP_2: GROUP_2_SUBJECTS,
    Group.BOTH: GROUP_1_SUBJECTS | GROUP_2_SUBJECTS,
}

ALL_SUBJECTS: FrozenSet[Subject] = SUBJECTS_BY_GROUP[Group.BOTH]

S1_SERIES_INSTANCES: Tuple[str, ...] = ("series1", "series2", "series3")

_CA_FINAL_COUPONS: Tuple[DiscountCode, ...] = (
    DiscountCode(code="CA2026", discount_type=DiscountType.FLAT, value=100, label="CA2026 - ₹100 off"),
    DiscountCode(code="CA10", discount_type=DiscountType.PERCENT, value=10, label="CA10 - 10% off"),
)

SERIES_CATALOG: Dict[SeriesType, SeriesDefinition] = {
    SeriesType.S1: SeriesDefinition(
        series_type=SeriesType.S1,
        label="Full Syllabus",
        papers_per_subject=1,
        price_strategy=PriceStrategy.SERIES_SUBJECT_TIER,
        has_series_multiplier=True,
        series_instances=S1_SERIES_INSTANCES,
        discount_codes=_CA_FINAL_COUPONS,
    ),
    SeriesType.S2: SeriesDefinition(
        series_type=SeriesType.S2,
        label="50% Syllabus",
        papers_per_subject=2,
        price_strategy=PriceStrategy.SUBJECT_TIER,
        discount_codes=_CA_FINAL_COUPONS,
    ),
    SeriesType.S3: SeriesDefinition(
        series_type=SeriesType.S3,
        label="30% Syllabus",
        papers_per_subject=3,
        price_strategy=PriceStrategy.SUBJECT_TIER,
        discount_codes=_CA_FINAL_COUPONS,
    ),
    SeriesType.S4: SeriesDefinition(
        series_type=SeriesType.S4,
        label="CA Successful Specials",
        papers_per_subject=6,
        price_strategy=PriceStrategy.SUBJECT_TIER,
        discount_codes=_CA_FINAL_COUPONS,
    ),
}


def get_series_definition(series_type: SeriesType) -> SeriesDefinition:
    """Return a tier definition, raising if unsupported."""

    try:
        return SERIES_CATALOG[series_type]
    except KeyError as exc:  # pragma: no cover - guarded by static catalog
        raise KeyError(f"Unknown series type: {series_type}") from exc


def resolve_series_type(value: Union[str, SeriesType]) -> SeriesType:
    """Accept ``S1``/``s1`` style shorthands and return the tier enum."""

    if isinstance(value, SeriesType):
        return value
    try:
        return SeriesType(str(value).strip().upper())
    except ValueError as exc:
        raise KeyError(f"Unknown series type: {value!r}") from exc


def subjects_for_group(group: Group) -> FrozenSet[Subject]:
    return SUBJECTS_BY_GROUP.get(group, frozenset())


def papers_per_subject(series_type: SeriesType) -> int:
    return get_series_definition(series_type).papers_per_subject


def label(series_type: SeriesType) -> str:
    return get_series_definition(series_type).label


def split_subject_key(key: str) -> Tuple[Optional[str], str]:
    """Split ``series1-FR`` into ``("series1", "FR")``; bare subjects carry no instance."""

    instance, separator, subject = key.strip().partition("-")
    if not separator:
        return None, instance
    return instance.strip().lower(), subject.strip()


def is_series_shorthand(product_id: str) -> bool:
    """Return ``True`` when ``product_id`` names a tier (``S1``..``S4``) directly."""

    try:
        resolve_series_type(product_id)
    except KeyError:
        return False
    return True


def normalize_product_id(product_type: str, product_id: str) -> str:
    """Strip ``product_id`` and lowercase tier shorthands for test-series products."""

    stripped = product_id.strip()
    if product_type == "test_series" and is_series_shorthand(stripped):
        return stripped.lower()
    return stripped
