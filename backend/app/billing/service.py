"""Order creation and payment verification against an external gateway."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Protocol, Sequence
from uuid import uuid4

from pydantic import ValidationError

from ..entitlements.aggregator import aggregate_for_product, subject_delta
from ..entitlements.models import (
    Entitlement,
    PaymentStatus,
    ProductRef,
    ProductType,
    PurchaseRecord,
)
from ..pricing.catalog import (
    get_series_definition,
    is_series_shorthand,
    resolve_series_type,
    split_subject_key,
)
from ..pricing.models import Subject
from .exceptions import (
    DuplicatePurchaseError,
    OrderValidationError,
    PaymentGatewayError,
    PaymentStateError,
    PurchaseRecordNotFoundError,
)
from .models import (
    GatewayOrder,
    PaymentAuditEvent,
    PaymentAuditEventType,
    PendingOrder,
    VerificationOutcome,
    VerificationResult,
)


class PaymentGateway(Protocol):
    """External payment processor integration."""

    @property
    def key_id(self) -> str:
        """Public key handed to the client checkout."""

    def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        """Open a gateway order for ``amount`` minor units."""

    def verify_signature(self, *, order_id: str, payment_id: str, signature: str) -> bool:
        """Return ``True`` when the callback signature is authentic."""


class PaymentEventLogger(Protocol):
    """Captures structured payment audit events."""

    def log(self, event: PaymentAuditEvent) -> None:
        ...


class PurchaseRecordRepository(Protocol):
    """Persistence operations required by the payment flow.

    Records are append-only; the only updates are attaching the gateway order
    to a pending record and the guarded ``pending -> paid|failed`` transition.
    """

    def create_purchase_record(self, record: PurchaseRecord) -> PurchaseRecord:
        ...

    def get_purchase_record(self, record_id: str) -> Optional[PurchaseRecord]:
        ...

    def list_purchase_records(
        self,
        user_id: str,
        *,
        product: Optional[ProductRef] = None,
    ) -> Sequence[PurchaseRecord]:
        ...

    def attach_gateway_order(self, record_id: str, gateway_order_id: str) -> Optional[PurchaseRecord]:
        ...

    def transition_status(
        self,
        record_id: str,
        *,
        from_status: PaymentStatus,
        to_status: PaymentStatus,
        gateway_payment_id: Optional[str] = None,
        paid_at: Optional[datetime] = None,
        expiry_date: Optional[datetime] = None,
    ) -> Optional[PurchaseRecord]:
        """Move a record from ``from_status`` to ``to_status``.

        Returns ``None`` when the record is missing or no longer in ``from_status``.
        """


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_CATALOG_SUBJECTS: Dict[str, str] = {subject.value.lower(): subject.value for subject in Subject}


def _current_entitlement(
    repository: PurchaseRecordRepository, user_id: str, product: ProductRef
) -> Optional[Entitlement]:
    records = repository.list_purchase_records(user_id, product=product)
    return aggregate_for_product(records, product)


@dataclass
class OrderOrchestrator:
    """Checks ownership, appends a pending record and opens a gateway order."""

    repository: PurchaseRecordRepository
    gateway: PaymentGateway
    event_logger: PaymentEventLogger
    currency: str = "INR"
    clock: Callable[[], datetime] = field(default=_utcnow)

    def create_order(
        self,
        *,
        user_id: str,
        product_type: ProductType,
        product_id: str,
        requested_amount: int,
        requested_subjects: Optional[Iterable[str]] = None,
    ) -> PendingOrder:
        if requested_amount is None or requested_amount <= 0:
            raise OrderValidationError(message="Amount must be a positive number")

        try:
            product = ProductRef(product_type=product_type, product_id=product_id)
        except ValidationError as exc:
            raise OrderValidationError(message="A valid product reference is required") from exc

        subjects = self._normalize_subjects(product, requested_subjects)
        self._ensure_not_owned(user_id, product, subjects)

        now = self.clock()
        record = PurchaseRecord(
            record_id=f"pr_{uuid4().hex}",
            user_id=user_id,
            product=product,
            purchased_subjects=subjects,
            amount=requested_amount,
            currency=self.currency,
            payment_status=PaymentStatus.PENDING,
            enrollment_date=now,
            created_at=now,
            updated_at=now,
        )
        stored = self.repository.create_purchase_record(record)

        try:
            order = self.gateway.create_order(
                amount=requested_amount * 100,
                currency=self.currency,
                receipt=f"rcpt_{stored.record_id}",
                notes={
                    "purchase_record_id": stored.record_id,
                    "product_type": product.product_type.value,
                    "product_id": product.product_id,
                    "user_id": user_id,
                },
            )
        except Exception as exc:
            # The order never opened, so the pending record can never be paid.
            self.repository.transition_status(
                stored.record_id,
                from_status=PaymentStatus.PENDING,
                to_status=PaymentStatus.FAILED,
            )
            error_code = exc.code if isinstance(exc, PaymentGatewayError) else type(exc).__name__
            self.event_logger.log(
                PaymentAuditEvent(
                    event_type=PaymentAuditEventType.ORDER_FAILED,
                    purchase_record_id=stored.record_id,
                    user_id=user_id,
                    metadata={"error": error_code, "product": product.key},
                )
            )
            raise

        attached = self.repository.attach_gateway_order(stored.record_id, order.id)
        if attached is None:
            # The gateway order is open but unlinked; support reconciles it by order id.
            self.event_logger.log(
                PaymentAuditEvent(
                    event_type=PaymentAuditEventType.ORDER_FAILED,
                    purchase_record_id=stored.record_id,
                    user_id=user_id,
                    metadata={
                        "error": "gateway_order_unattached",
                        "gateway_order_id": order.id,
                        "product": product.key,
                    },
                )
            )
            raise PaymentStateError(
                message="The payment order could not be linked to this purchase. Please contact support.",
                detail={"purchase_record_id": stored.record_id, "gateway_order_id": order.id},
            )

        self.event_logger.log(
            PaymentAuditEvent(
                event_type=PaymentAuditEventType.ORDER_CREATED,
                purchase_record_id=attached.record_id,
                user_id=user_id,
                metadata={
                    "gateway_order_id": order.id,
                    "product": product.key,
                    "amount": str(requested_amount),
                },
            )
        )
        return PendingOrder(
            gateway_key_id=self.gateway.key_id,
            order=order,
            purchase_record_id=attached.record_id,
        )

    def _normalize_subjects(
        self, product: ProductRef, requested_subjects: Optional[Iterable[str]]
    ) -> FrozenSet[str]:
        cleaned = {str(subject).strip() for subject in requested_subjects or () if str(subject).strip()}
        if not cleaned:
            return frozenset()

        if product.product_type != ProductType.TEST_SERIES:
            raise OrderValidationError(
                message=f"{product.product_type.value} purchases do not support subject selection"
            )

        if not is_series_shorthand(product.product_id):
            return frozenset(cleaned)

        # S1 keys may name a series instance ("series2-FR"); other tiers have none.
        instances = get_series_definition(resolve_series_type(product.product_id)).series_instances
        normalized = set()
        unknown = []
        for key in cleaned:
            instance, subject = split_subject_key(key)
            canonical = _CATALOG_SUBJECTS.get(subject.lower())
            if canonical is None or (instance is not None and instance not in instances):
                unknown.append(key)
            elif instance is None:
                normalized.add(canonical)
            else:
                normalized.add(f"{instance}-{canonical}")

        if unknown:
            unknown.sort()
            raise OrderValidationError(
                message=f"Unknown subjects: {', '.join(unknown)}",
                detail={"unknown_subjects": unknown},
            )
        return frozenset(normalized)

    def _ensure_not_owned(self, user_id: str, product: ProductRef, subjects: FrozenSet[str]) -> None:
        entitlement = _current_entitlement(self.repository, user_id, product)
        if entitlement is None:
            return

        # An entitlement without a subject dimension covers the whole product.
        whole_product = not entitlement.purchased_subjects
        if whole_product or (subjects and entitlement.covers(subjects)):
            raise DuplicatePurchaseError(
                detail={
                    "product_type": product.product_type.value,
                    "product_id": product.product_id,
                    "owned_subjects": sorted(entitlement.purchased_subjects),
                },
            )


@dataclass
class PaymentVerifier:
    """Validates gateway callbacks and finalizes pending purchase records.

    Safe to call repeatedly for the same record: a second valid call on a
    ``paid`` record is a no-op success.
    """

    repository: PurchaseRecordRepository
    gateway: PaymentGateway
    event_logger: PaymentEventLogger
    default_horizon: timedelta = timedelta(days=60)
    clock: Callable[[], datetime] = field(default=_utcnow)

    def verify(
        self,
        *,
        order_id: str,
        payment_id: str,
        signature: str,
        purchase_record_id: str,
        user_id: Optional[str] = None,
    ) -> VerificationResult:
        """Check a gateway callback for ``purchase_record_id``.

        When ``user_id`` is given, records owned by anyone else are reported as missing.
        """
        record = self._require_record(purchase_record_id)
        if user_id is not None and record.user_id != user_id:
            raise PurchaseRecordNotFoundError(detail={"purchase_record_id": purchase_record_id})

        if not order_id or record.gateway_order_id != order_id:
            self._log(PaymentAuditEventType.PAYMENT_ORDER_MISMATCH, record, {"order_id": order_id or ""})
            return VerificationResult(
                outcome=VerificationOutcome.ORDER_MISMATCH,
                record=record,
                entitlement=_current_entitlement(self.repository, record.user_id, record.product),
            )

        if not self.gateway.verify_signature(order_id=order_id, payment_id=payment_id, signature=signature):
            return self._reject(record)

        if record.payment_status == PaymentStatus.FAILED:
            raise PaymentStateError(
                message="This purchase was already marked as failed. Please contact support.",
                detail={"purchase_record_id": record.record_id},
            )
        if record.payment_status == PaymentStatus.PAID:
            return self._already_paid(record)

        return self._finalize(record, payment_id)

    def _require_record(self, record_id: str) -> PurchaseRecord:
        record = self.repository.get_purchase_record(record_id)
        if record is None:
            raise PurchaseRecordNotFoundError(detail={"purchase_record_id": record_id})
        return record

    def _reject(self, record: PurchaseRecord) -> VerificationResult:
        if record.payment_status == PaymentStatus.PENDING:
            failed = self.repository.transition_status(
                record.record_id,
                from_status=PaymentStatus.PENDING,
                to_status=PaymentStatus.FAILED,
            )
            record = failed or self._require_record(record.record_id)
        self._log(PaymentAuditEventType.PAYMENT_SIGNATURE_INVALID, record, {"status": record.payment_status.value})
        return VerificationResult(
            outcome=VerificationOutcome.SIGNATURE_INVALID,
            record=record,
            entitlement=_current_entitlement(self.repository, record.user_id, record.product),
        )

    def _already_paid(self, record: PurchaseRecord) -> VerificationResult:
        return VerificationResult(
            outcome=VerificationOutcome.VERIFIED,
            record=record,
            entitlement=_current_entitlement(self.repository, record.user_id, record.product),
            already_processed=True,
        )

    def _finalize(self, record: PurchaseRecord, payment_id: str) -> VerificationResult:
        before = _current_entitlement(self.repository, record.user_id, record.product)

        now = self.clock()
        expiry_date = record.expiry_date
        if expiry_date is None and record.product.product_type == ProductType.TEST_SERIES:
            expiry_date = now + self.default_horizon

        paid = self.repository.transition_status(
            record.record_id,
            from_status=PaymentStatus.PENDING,
            to_status=PaymentStatus.PAID,
            gateway_payment_id=payment_id,
            paid_at=now,
            expiry_date=expiry_date,
        )
        if paid is None:
            # Another finalizer moved the record first.
            latest = self._require_record(record.record_id)
            if latest.payment_status == PaymentStatus.PAID:
                return self._already_paid(latest)
            raise PaymentStateError(
                message="This purchase was already marked as failed. Please contact support.",
                detail={"purchase_record_id": latest.record_id},
            )

        after = _current_entitlement(self.repository, paid.user_id, paid.product)
        added, _ = subject_delta(before, after)
        if before is not None and not added:
            self._log(
                PaymentAuditEventType.DUPLICATE_COVERAGE,
                paid,
                {"gateway_payment_id": payment_id, "product": paid.product.key},
            )

        self._log(
            PaymentAuditEventType.PAYMENT_VERIFIED,
            paid,
            {"gateway_payment_id": payment_id, "product": paid.product.key},
        )
        return VerificationResult(outcome=VerificationOutcome.VERIFIED, record=paid, entitlement=after)

    def _log(
        self,
        event_type: PaymentAuditEventType,
        record: PurchaseRecord,
        metadata: Dict[str, str],
    ) -> None:
        self.event_logger.log(
            PaymentAuditEvent(
                event_type=event_type,
                purchase_record_id=record.record_id,
                user_id=record.user_id,
                metadata=metadata,
            )
        )


__all__ = [
    "OrderOrchestrator",
    "PaymentEventLogger",
    "PaymentGateway",
    "PaymentVerifier",
    "PurchaseRecordRepository",
]
