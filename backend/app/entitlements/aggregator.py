"""Merge repeated purchase records into one entitlement per product."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, Optional, Set, Tuple

from .models import Entitlement, PaymentStatus, ProductRef, PurchaseRecord


def _later_expiry(current: Optional[datetime], candidate: Optional[datetime]) -> Optional[datetime]:
    # A missing expiry means "caller applies the default horizon", never "already expired".
    if candidate is None:
        return current
    if current is None or candidate > current:
        return candidate
    return current


def merge(entitlement: Entitlement, record: PurchaseRecord) -> Entitlement:
    """Fold one more record for the same product into ``entitlement``."""

    if record.product != entitlement.product:
        raise ValueError(
            f"Cannot merge {record.product.key} into entitlement for {entitlement.product.key}"
        )
    if record.user_id != entitlement.user_id:
        raise ValueError(
            f"Cannot merge a record of user {record.user_id} into an entitlement of user {entitlement.user_id}"
        )

    source_ids = entitlement.source_record_ids
    if record.record_id not in source_ids:
        source_ids = source_ids + (record.record_id,)

    return entitlement.model_copy(
        update={
            "purchased_subjects": entitlement.purchased_subjects | record.purchased_subjects,
            "enrollment_date": min(entitlement.enrollment_date, record.enrollment_date),
            "expiry_date": _later_expiry(entitlement.expiry_date, record.expiry_date),
            "source_record_ids": source_ids,
        }
    )


def seed(record: PurchaseRecord) -> Entitlement:
    return Entitlement(
        user_id=record.user_id,
        product=record.product,
        purchased_subjects=record.purchased_subjects,
        enrollment_date=record.enrollment_date,
        expiry_date=record.expiry_date,
        source_record_ids=(record.record_id,),
    )


def aggregate(records: Iterable[PurchaseRecord]) -> Dict[ProductRef, Entitlement]:
    """Group ``records`` by product and merge each group.

    Records are merged as given; use :func:`aggregate_paid` to drop records that
    have not been paid for. Callers pass one user's records at a time; mixing
    users raises :class:`ValueError`.
    """

    merged: Dict[ProductRef, Entitlement] = {}
    for record in records:
        existing = merged.get(record.product)
        merged[record.product] = seed(record) if existing is None else merge(existing, record)
    return merged


def aggregate_paid(records: Iterable[PurchaseRecord]) -> Dict[ProductRef, Entitlement]:
    """Aggregate only ``paid`` records; pending and failed records grant nothing."""

    return aggregate(record for record in records if record.payment_status == PaymentStatus.PAID)


def aggregate_for_product(
    records: Iterable[PurchaseRecord], product: ProductRef
) -> Optional[Entitlement]:
    """Return the paid entitlement for ``product`` or ``None`` when nothing is owned."""

    return aggregate_paid(record for record in records if record.product == product).get(product)


def owned_subjects(entitlement: Optional[Entitlement]) -> Set[str]:
    return set(entitlement.purchased_subjects) if entitlement else set()


def subject_delta(
    before: Optional[Entitlement], after: Optional[Entitlement]
) -> Tuple[Set[str], Set[str]]:
    """Return ``(added, removed)`` subjects between two entitlement snapshots."""

    previous = owned_subjects(before)
    current = owned_subjects(after)
    return current - previous, previous - current
