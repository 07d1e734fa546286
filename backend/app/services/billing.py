"""Application wiring for the payment and entitlement services."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict, Optional
from uuid import uuid4

from ..billing import (
    GatewayConfig,
    OrderOrchestrator,
    PaymentAuditEvent,
    PaymentAuditEventType,
    PaymentEventLogger,
    PaymentVerifier,
    load_gateway_config,
)
from ..billing.gateway import RazorpayGateway, signatures_match
from ..billing.models import GatewayOrder
from ..billing.repository import PostgresPurchaseRecordRepository
from ..entitlements import EntitlementService


logger = logging.getLogger("billing")


_WARNING_EVENTS = frozenset(
    {
        PaymentAuditEventType.ORDER_FAILED,
        PaymentAuditEventType.PAYMENT_SIGNATURE_INVALID,
        PaymentAuditEventType.PAYMENT_ORDER_MISMATCH,
        PaymentAuditEventType.DUPLICATE_COVERAGE,
    }
)


class LoggingPaymentEventLogger(PaymentEventLogger):
    """Forwards payment audit events to the application logger."""

    def log(self, event: PaymentAuditEvent) -> None:
        level = logging.WARNING if event.event_type in _WARNING_EVENTS else logging.INFO
        logger.log(
            level,
            "Payment event %s record=%s user=%s metadata=%s",
            event.event_type.value,
            event.purchase_record_id,
            event.user_id,
            event.metadata,
        )


class LocalSandboxGateway:
    """Gateway stand-in for local development; issues orders without network calls."""

    name = "sandbox"

    def __init__(self, *, key_id: Optional[str] = None, key_secret: Optional[str] = None) -> None:
        self._key_id = key_id or "rzp_sandbox"
        self._secret = key_secret or "sandbox-secret"

    @property
    def key_id(self) -> str:
        return self._key_id

    def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        return GatewayOrder(
            id=f"order_{uuid4().hex[:14]}",
            amount=amount,
            currency=currency,
            receipt=receipt,
            status="created",
        )

    def verify_signature(self, *, order_id: str, payment_id: str, signature: str) -> bool:
        return signatures_match(self._secret, order_id, payment_id, signature)


@lru_cache(maxsize=1)
def get_gateway_config() -> GatewayConfig:
    return load_gateway_config()


def build_gateway(config: GatewayConfig):
    if config.provider_name == "sandbox":
        logger.warning("Using sandbox payment gateway; no real charges will be made")
        return LocalSandboxGateway(key_id=config.key_id, key_secret=config.key_secret)
    if config.provider_name != "razorpay":
        raise ValueError(f"Unsupported payment gateway: {config.provider_name}")
    return RazorpayGateway(config)


@lru_cache(maxsize=1)
def get_purchase_record_repository() -> PostgresPurchaseRecordRepository:
    return PostgresPurchaseRecordRepository()


def get_order_orchestrator() -> OrderOrchestrator:
    # Built per call so a missing gateway configuration surfaces on every attempt.
    config = get_gateway_config()
    return OrderOrchestrator(
        repository=get_purchase_record_repository(),
        gateway=build_gateway(config),
        event_logger=LoggingPaymentEventLogger(),
        currency=config.currency,
    )


def get_payment_verifier() -> PaymentVerifier:
    config = get_gateway_config()
    return PaymentVerifier(
        repository=get_purchase_record_repository(),
        gateway=build_gateway(config),
        event_logger=LoggingPaymentEventLogger(),
        default_horizon=config.default_horizon,
    )


@lru_cache(maxsize=1)
def get_entitlement_service() -> EntitlementService:
    return EntitlementService(
        get_purchase_record_repository(),
        default_horizon=get_gateway_config().default_horizon,
    )


__all__ = [
    "LocalSandboxGateway",
    "LoggingPaymentEventLogger",
    "build_gateway",
    "get_entitlement_service",
    "get_gateway_config",
    "get_order_orchestrator",
    "get_payment_verifier",
    "get_purchase_record_repository",
]
