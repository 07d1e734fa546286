"""Server-authoritative entitlement reads."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Protocol, Sequence

from .aggregator import aggregate_for_product, aggregate_paid
from .models import Entitlement, ProductRef, PurchaseRecord


class PurchaseRecordReader(Protocol):
    """Read access to the purchase record store."""

    def list_purchase_records(
        self,
        user_id: str,
        *,
        product: Optional[ProductRef] = None,
    ) -> Sequence[PurchaseRecord]:
        ...


class EntitlementService:
    """Re-aggregates entitlements from the store on every read.

    Nothing is cached: access checks always see the latest paid records.
    """

    def __init__(
        self,
        repository: PurchaseRecordReader,
        *,
        default_horizon: timedelta = timedelta(days=60),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._default_horizon = default_horizon
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def default_horizon(self) -> timedelta:
        return self._default_horizon

    def list_for_user(self, user_id: str) -> List[Entitlement]:
        records = self._repository.list_purchase_records(user_id)
        entitlements = aggregate_paid(records).values()
        return sorted(entitlements, key=lambda item: item.enrollment_date, reverse=True)

    def get(self, user_id: str, product: ProductRef) -> Optional[Entitlement]:
        records = self._repository.list_purchase_records(user_id, product=product)
        return aggregate_for_product(records, product)

    def is_active(self, entitlement: Entitlement) -> bool:
        return not entitlement.is_expired(self._clock(), self._default_horizon)
