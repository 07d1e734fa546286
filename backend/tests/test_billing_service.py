"""Unit tests for order creation and payment verification."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

import pytest

from backend.app.billing import (
    DuplicatePurchaseError,
    GatewayOrder,
    OrderOrchestrator,
    OrderValidationError,
    PaymentAuditEvent,
    PaymentAuditEventType,
    PaymentGatewayError,
    PaymentStateError,
    PaymentVerifier,
    PurchaseRecordNotFoundError,
    VerificationOutcome,
)
from backend.app.billing.gateway import compute_signature, signatures_match
from backend.app.billing.service import PaymentEventLogger, PurchaseRecordRepository
from backend.app.entitlements.models import PaymentStatus, ProductRef, ProductType, PurchaseRecord

NOW = datetime(2026, 1, 10, 9, 30, tzinfo=timezone.utc)
SECRET = "test-secret"


class InMemoryPurchaseRecordRepository(PurchaseRecordRepository):
    def __init__(self) -> None:
        self.records: Dict[str, PurchaseRecord] = {}

    def create_purchase_record(self, record: PurchaseRecord) -> PurchaseRecord:
        self.records[record.record_id] = record
        return record

    def get_purchase_record(self, record_id: str) -> Optional[PurchaseRecord]:
        return self.records.get(record_id)

    def list_purchase_records(
        self,
        user_id: str,
        *,
        product: Optional[ProductRef] = None,
    ) -> Sequence[PurchaseRecord]:
        return [
            record
            for record in self.records.values()
            if record.user_id == user_id and (product is None or record.product == product)
        ]

    def attach_gateway_order(self, record_id: str, gateway_order_id: str) -> Optional[PurchaseRecord]:
        record = self.records.get(record_id)
        if record is None or record.payment_status != PaymentStatus.PENDING:
            return None
        updated = record.model_copy(update={"gateway_order_id": gateway_order_id})
        self.records[record_id] = updated
        return updated

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
        record = self.records.get(record_id)
        if record is None or record.payment_status != from_status:
            return None
        update: Dict[str, object] = {"payment_status": to_status}
        if gateway_payment_id is not None:
            update["gateway_payment_id"] = gateway_payment_id
        if paid_at is not None:
            update["paid_at"] = paid_at
        if expiry_date is not None:
            update["expiry_date"] = expiry_date
        updated = record.model_copy(update=update)
        self.records[record_id] = updated
        return updated


class FakePaymentGateway:
    def __init__(self) -> None:
        self.orders: List[Dict[str, object]] = []
        self.fail_with: Optional[Exception] = None

    @property
    def key_id(self) -> str:
        return "rzp_test_key"

    def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        if self.fail_with is not None:
            raise self.fail_with
        order_id = f"order_{len(self.orders) + 1}"
        self.orders.append(
            {"id": order_id, "amount": amount, "currency": currency, "receipt": receipt, "notes": notes or {}}
        )
        return GatewayOrder(id=order_id, amount=amount, currency=currency, receipt=receipt, status="created")

    def verify_signature(self, *, order_id: str, payment_id: str, signature: str) -> bool:
        return signatures_match(SECRET, order_id, payment_id, signature)


class FakeEventLogger(PaymentEventLogger):
    def __init__(self) -> None:
        self.events: list[PaymentAuditEvent] = []

    def log(self, event: PaymentAuditEvent) -> None:
        self.events.append(event)

    def types(self) -> list[PaymentAuditEventType]:
        return [event.event_type for event in self.events]


@pytest.fixture
def billing_components():
    repository = InMemoryPurchaseRecordRepository()
    gateway = FakePaymentGateway()
    event_logger = FakeEventLogger()
    orchestrator = OrderOrchestrator(
        repository=repository,
        gateway=gateway,
        event_logger=event_logger,
        clock=lambda: NOW,
    )
    verifier = PaymentVerifier(
        repository=repository,
        gateway=gateway,
        event_logger=event_logger,
        default_horizon=timedelta(days=60),
        clock=lambda: NOW,
    )
    return repository, gateway, event_logger, orchestrator, verifier


def _paid_record(
    record_id: str,
    product_type: ProductType,
    product_id: str,
    subjects=(),
    *,
    user_id: str = "user-1",
    status: PaymentStatus = PaymentStatus.PAID,
) -> PurchaseRecord:
    return PurchaseRecord(
        record_id=record_id,
        user_id=user_id,
        product=ProductRef(product_type=product_type, product_id=product_id),
        purchased_subjects=frozenset(subjects),
        amount=900,
        payment_status=status,
        enrollment_date=NOW - timedelta(days=3),
    )


def _open_order(orchestrator, subjects=("FR",), *, product_id="S1", product_type=ProductType.TEST_SERIES):
    return orchestrator.create_order(
        user_id="user-1",
        product_type=product_type,
        product_id=product_id,
        requested_amount=900,
        requested_subjects=list(subjects),
    )


def _verify(verifier, pending, payment_id="pay_1", *, signature=None, user_id=None):
    order_id = pending.order.id
    return verifier.verify(
        order_id=order_id,
        payment_id=payment_id,
        signature=signature if signature is not None else compute_signature(SECRET, order_id, payment_id),
        purchase_record_id=pending.purchase_record_id,
        user_id=user_id,
    )


def test_create_order_appends_pending_record_and_opens_gateway_order(billing_components):
    repository, gateway, event_logger, orchestrator, _ = billing_components

    pending = orchestrator.create_order(
        user_id="user-1",
        product_type=ProductType.TEST_SERIES,
        product_id="S1",
        requested_amount=1200,
        requested_subjects=["fr", "AFM", " Audit "],
    )

    stored = repository.get_purchase_record(pending.purchase_record_id)
    assert stored is not None
    assert stored.payment_status == PaymentStatus.PENDING
    assert stored.product.product_id == "s1"
    assert stored.purchased_subjects == {"FR", "AFM", "Audit"}
    assert stored.gateway_order_id == pending.order.id
    assert stored.enrollment_date == NOW
    assert gateway.orders[0]["amount"] == 120000
    assert gateway.orders[0]["currency"] == "INR"
    assert gateway.orders[0]["receipt"] == f"rcpt_{stored.record_id}"
    assert gateway.orders[0]["notes"]["purchase_record_id"] == stored.record_id
    assert pending.gateway_key_id == "rzp_test_key"
    assert event_logger.types() == [PaymentAuditEventType.ORDER_CREATED]


def test_owned_subjects_are_rejected_before_gateway_call(billing_components):
    repository, gateway, _, orchestrator, _ = billing_components
    repository.create_purchase_record(_paid_record("pr_owned", ProductType.TEST_SERIES, "s1", {"FR", "AFM"}))

    with pytest.raises(DuplicatePurchaseError) as exc_info:
        _open_order(orchestrator, ("AFM",))

    assert exc_info.value.status_code == 409
    assert exc_info.value.payload["error"] == "already_purchased"
    assert exc_info.value.payload["owned_subjects"] == ["AFM", "FR"]
    assert gateway.orders == []
    assert list(repository.records) == ["pr_owned"]


def test_additional_subjects_can_be_purchased(billing_components):
    repository, gateway, _, orchestrator, _ = billing_components
    repository.create_purchase_record(_paid_record("pr_owned", ProductType.TEST_SERIES, "s1", {"FR"}))

    pending = _open_order(orchestrator, ("FR", "AFM"))

    assert len(gateway.orders) == 1
    assert repository.get_purchase_record(pending.purchase_record_id).payment_status == PaymentStatus.PENDING


def test_whole_product_purchase_is_rejected_when_owned(billing_components):
    repository, gateway, _, orchestrator, _ = billing_components
    repository.create_purchase_record(_paid_record("pr_course", ProductType.COURSE, "ca-final-fr"))

    with pytest.raises(DuplicatePurchaseError):
        _open_order(orchestrator, (), product_type=ProductType.COURSE, product_id="ca-final-fr")

    assert gateway.orders == []


def test_pending_and_failed_records_do_not_block_orders(billing_components):
    repository, gateway, _, orchestrator, _ = billing_components
    repository.create_purchase_record(
        _paid_record("pr_pending", ProductType.TEST_SERIES, "s1", {"FR"}, status=PaymentStatus.PENDING)
    )
    repository.create_purchase_record(
        _paid_record("pr_failed", ProductType.TEST_SERIES, "s1", {"FR"}, status=PaymentStatus.FAILED)
    )

    _open_order(orchestrator, ("FR",))

    assert len(gateway.orders) == 1


@pytest.mark.parametrize("amount", [0, -450])
def test_non_positive_amount_is_rejected(billing_components, amount):
    repository, gateway, _, orchestrator, _ = billing_components

    with pytest.raises(OrderValidationError):
        orchestrator.create_order(
            user_id="user-1",
            product_type=ProductType.TEST_SERIES,
            product_id="S2",
            requested_amount=amount,
        )

    assert repository.records == {}
    assert gateway.orders == []


def test_subjects_are_rejected_for_courses(billing_components):
    _, _, _, orchestrator, _ = billing_components

    with pytest.raises(OrderValidationError):
        _open_order(orchestrator, ("FR",), product_type=ProductType.COURSE, product_id="ca-final-fr")


def test_unknown_subjects_are_rejected_for_series_tiers(billing_components):
    _, gateway, _, orchestrator, _ = billing_components

    with pytest.raises(OrderValidationError) as exc_info:
        _open_order(orchestrator, ("FR", "Law"))

    assert exc_info.value.payload["unknown_subjects"] == ["Law"]
    assert gateway.orders == []


def test_s1_subjects_can_name_a_series_instance(billing_components):
    repository, gateway, _, orchestrator, _ = billing_components

    pending = _open_order(orchestrator, ("Series1-fr", "series3-Audit", "DT"))

    stored = repository.get_purchase_record(pending.purchase_record_id)
    assert stored.purchased_subjects == {"series1-FR", "series3-Audit", "DT"}
    assert len(gateway.orders) == 1


def test_owning_one_series_instance_does_not_block_another(billing_components):
    repository, gateway, _, orchestrator, _ = billing_components
    repository.create_purchase_record(_paid_record("pr_owned", ProductType.TEST_SERIES, "s1", {"series1-FR"}))

    _open_order(orchestrator, ("series2-FR",))

    assert len(gateway.orders) == 1


def test_owned_series_instance_subjects_are_duplicates(billing_components):
    repository, gateway, _, orchestrator, _ = billing_components
    repository.create_purchase_record(
        _paid_record("pr_owned", ProductType.TEST_SERIES, "s1", {"series1-FR", "series2-FR"})
    )

    with pytest.raises(DuplicatePurchaseError) as exc_info:
        _open_order(orchestrator, ("series1-FR",))

    assert exc_info.value.payload["owned_subjects"] == ["series1-FR", "series2-FR"]
    assert gateway.orders == []


@pytest.mark.parametrize(
    "product_id, subjects, unknown",
    [
        ("S1", ("series4-FR",), ["series4-FR"]),
        ("S1", ("series1-Law",), ["series1-Law"]),
        ("S2", ("series1-FR", "DT"), ["series1-FR"]),
    ],
)
def test_invalid_series_instance_keys_are_rejected(billing_components, product_id, subjects, unknown):
    _, gateway, _, orchestrator, _ = billing_components

    with pytest.raises(OrderValidationError) as exc_info:
        _open_order(orchestrator, subjects, product_id=product_id)

    assert exc_info.value.payload["unknown_subjects"] == unknown
    assert gateway.orders == []


def test_blank_product_id_is_rejected(billing_components):
    _, _, _, orchestrator, _ = billing_components

    with pytest.raises(OrderValidationError):
        _open_order(orchestrator, (), product_id="   ")


def test_gateway_failure_marks_record_failed(billing_components):
    repository, gateway, event_logger, orchestrator, _ = billing_components
    gateway.fail_with = PaymentGatewayError(code="gateway_unavailable", message="down")

    with pytest.raises(PaymentGatewayError):
        _open_order(orchestrator)

    [record] = repository.records.values()
    assert record.payment_status == PaymentStatus.FAILED
    assert record.gateway_order_id is None
    assert event_logger.types() == [PaymentAuditEventType.ORDER_FAILED]
    assert event_logger.events[0].metadata["error"] == "gateway_unavailable"


def test_unexpected_gateway_errors_also_fail_the_record(billing_components):
    repository, gateway, event_logger, orchestrator, _ = billing_components
    gateway.fail_with = ConnectionResetError("peer reset")

    with pytest.raises(ConnectionResetError):
        _open_order(orchestrator)

    [record] = repository.records.values()
    assert record.payment_status == PaymentStatus.FAILED
    assert event_logger.types() == [PaymentAuditEventType.ORDER_FAILED]
    assert event_logger.events[0].metadata["error"] == "ConnectionResetError"


def test_unattached_gateway_order_is_logged_for_reconciliation(billing_components, monkeypatch):
    repository, gateway, event_logger, orchestrator, _ = billing_components
    monkeypatch.setattr(repository, "attach_gateway_order", lambda record_id, gateway_order_id: None)

    with pytest.raises(PaymentStateError) as exc_info:
        _open_order(orchestrator)

    [opened] = gateway.orders
    assert exc_info.value.payload["gateway_order_id"] == opened["id"]
    assert event_logger.types() == [PaymentAuditEventType.ORDER_FAILED]
    assert event_logger.events[0].metadata["gateway_order_id"] == opened["id"]
    assert event_logger.events[0].metadata["error"] == "gateway_order_unattached"


def test_verify_marks_record_paid_and_returns_entitlement(billing_components):
    repository, _, event_logger, orchestrator, verifier = billing_components
    pending = _open_order(orchestrator, ("FR", "AFM"))

    result = _verify(verifier, pending)

    assert result.outcome == VerificationOutcome.VERIFIED
    assert not result.already_processed
    record = repository.get_purchase_record(pending.purchase_record_id)
    assert record.payment_status == PaymentStatus.PAID
    assert record.gateway_payment_id == "pay_1"
    assert record.paid_at == NOW
    assert record.expiry_date == NOW + timedelta(days=60)
    assert result.entitlement.purchased_subjects == {"FR", "AFM"}
    assert event_logger.types()[-1] == PaymentAuditEventType.PAYMENT_VERIFIED


def test_verify_is_idempotent(billing_components):
    repository, _, event_logger, orchestrator, verifier = billing_components
    pending = _open_order(orchestrator, ("DT",))

    first = _verify(verifier, pending)
    record_after_first = repository.get_purchase_record(pending.purchase_record_id)
    second = _verify(verifier, pending)

    assert second.outcome == VerificationOutcome.VERIFIED
    assert second.already_processed
    assert second.entitlement == first.entitlement
    assert repository.get_purchase_record(pending.purchase_record_id) == record_after_first
    assert event_logger.types().count(PaymentAuditEventType.PAYMENT_VERIFIED) == 1


def test_invalid_signature_fails_pending_record(billing_components):
    repository, _, event_logger, orchestrator, verifier = billing_components
    pending = _open_order(orchestrator)

    result = _verify(verifier, pending, signature="deadbeef")

    assert result.outcome == VerificationOutcome.SIGNATURE_INVALID
    assert result.entitlement is None
    assert repository.get_purchase_record(pending.purchase_record_id).payment_status == PaymentStatus.FAILED
    assert event_logger.types()[-1] == PaymentAuditEventType.PAYMENT_SIGNATURE_INVALID

    with pytest.raises(PaymentStateError):
        _verify(verifier, pending)


def test_invalid_signature_never_downgrades_paid_record(billing_components):
    repository, _, _, orchestrator, verifier = billing_components
    pending = _open_order(orchestrator)
    _verify(verifier, pending)

    result = _verify(verifier, pending, signature="0" * 64)

    assert result.outcome == VerificationOutcome.SIGNATURE_INVALID
    assert repository.get_purchase_record(pending.purchase_record_id).payment_status == PaymentStatus.PAID
    assert result.entitlement.purchased_subjects == {"FR"}


def test_order_mismatch_changes_nothing(billing_components):
    repository, _, event_logger, orchestrator, verifier = billing_components
    pending = _open_order(orchestrator)
    before = repository.get_purchase_record(pending.purchase_record_id)

    result = verifier.verify(
        order_id="order_other",
        payment_id="pay_1",
        signature=compute_signature(SECRET, "order_other", "pay_1"),
        purchase_record_id=pending.purchase_record_id,
    )

    assert result.outcome == VerificationOutcome.ORDER_MISMATCH
    assert repository.get_purchase_record(pending.purchase_record_id) == before
    assert event_logger.types()[-1] == PaymentAuditEventType.PAYMENT_ORDER_MISMATCH


def test_unknown_record_is_not_found(billing_components):
    _, _, _, _, verifier = billing_components

    with pytest.raises(PurchaseRecordNotFoundError) as exc_info:
        verifier.verify(order_id="order_1", payment_id="pay_1", signature="x", purchase_record_id="pr_missing")

    assert exc_info.value.status_code == 404


def test_records_of_other_users_are_not_found(billing_components):
    repository, _, _, orchestrator, verifier = billing_components
    pending = _open_order(orchestrator)

    with pytest.raises(PurchaseRecordNotFoundError):
        _verify(verifier, pending, user_id="user-2")

    assert repository.get_purchase_record(pending.purchase_record_id).payment_status == PaymentStatus.PENDING


def test_course_purchase_keeps_open_expiry(billing_components):
    repository, _, _, orchestrator, verifier = billing_components
    pending = _open_order(orchestrator, (), product_type=ProductType.COURSE, product_id="ca-final-fr")

    _verify(verifier, pending)

    assert repository.get_purchase_record(pending.purchase_record_id).expiry_date is None


def test_partial_purchases_merge_after_verification(billing_components):
    _, _, _, orchestrator, verifier = billing_components
    first = _open_order(orchestrator, ("FR",))
    _verify(verifier, first, "pay_1")
    second = _open_order(orchestrator, ("AFM", "Audit"))

    result = _verify(verifier, second, "pay_2")

    assert result.entitlement.purchased_subjects == {"FR", "AFM", "Audit"}
    assert result.entitlement.source_record_ids == (first.purchase_record_id, second.purchase_record_id)


def test_racing_orders_for_owned_subjects_log_duplicate_coverage(billing_components):
    repository, _, event_logger, orchestrator, verifier = billing_components
    first = _open_order(orchestrator, ("FR",))
    second = _open_order(orchestrator, ("FR",))
    _verify(verifier, first, "pay_1")

    result = _verify(verifier, second, "pay_2")

    assert result.outcome == VerificationOutcome.VERIFIED
    assert repository.get_purchase_record(second.purchase_record_id).payment_status == PaymentStatus.PAID
    assert result.entitlement.purchased_subjects == {"FR"}
    assert PaymentAuditEventType.DUPLICATE_COVERAGE in event_logger.types()


def test_lost_finalization_race_is_reported_as_processed(billing_components, monkeypatch):
    repository, _, _, orchestrator, verifier = billing_components
    pending = _open_order(orchestrator)
    original = repository.transition_status

    def racing_transition(record_id, **kwargs):
        original(record_id, **kwargs)
        return None

    monkeypatch.setattr(repository, "transition_status", racing_transition)

    result = _verify(verifier, pending)

    assert result.outcome == VerificationOutcome.VERIFIED
    assert result.already_processed
    assert result.entitlement.purchased_subjects == {"FR"}
