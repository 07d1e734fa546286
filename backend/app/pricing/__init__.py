"""Test-series catalog and pricing engine."""

from .catalog import (
    ALL_SUBJECTS,
    SERIES_CATALOG,
    SeriesDefinition,
    get_series_definition,
    is_series_shorthand,
    label,
    normalize_product_id,
    papers_per_subject,
    resolve_series_type,
    split_subject_key,
    subjects_for_group,
)
from .engine import compute_price, price, validate_selection
from .models import (
    DEFAULT_PRICE_TABLE,
    DiscountCode,
    DiscountType,
    Group,
    PriceQuote,
    PriceStrategy,
    PriceTable,
    PricingSelection,
    SeriesType,
    Subject,
)

__all__ = [
    "ALL_SUBJECTS",
    "SERIES_CATALOG",
    "SeriesDefinition",
    "get_series_definition",
    "is_series_shorthand",
    "normalize_product_id",
    "label",
    "papers_per_subject",
    "resolve_series_type",
    "split_subject_key",
    "subjects_for_group",
    "compute_price",
    "price",
    "validate_selection",
    "DEFAULT_PRICE_TABLE",
    "DiscountCode",
    "DiscountType",
    "Group",
    "PriceQuote",
    "PriceStrategy",
    "PriceTable",
    "PricingSelection",
    "SeriesType",
    "Subject",
]
