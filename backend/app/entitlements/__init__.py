"""Purchase records and the entitlements merged from them."""

from .aggregator import aggregate, aggregate_for_product, aggregate_paid, merge
from .models import Entitlement, PaymentStatus, ProductRef, ProductType, PurchaseRecord
from .service import EntitlementService, PurchaseRecordReader

__all__ = [
    "aggregate",
    "aggregate_for_product",
    "aggregate_paid",
    "merge",
    "Entitlement",
    "PaymentStatus",
    "ProductRef",
    "ProductType",
    "PurchaseRecord",
    "EntitlementService",
    "PurchaseRecordReader",
]
