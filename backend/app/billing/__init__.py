"""Billing domain package: order creation and payment verification."""

from .config import GatewayConfig, load_gateway_config
from .exceptions import (
    BillingError,
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
from .service import (
    OrderOrchestrator,
    PaymentEventLogger,
    PaymentGateway,
    PaymentVerifier,
    PurchaseRecordRepository,
)

__all__ = [
    "GatewayConfig",
    "load_gateway_config",
    "BillingError",
    "DuplicatePurchaseError",
    "OrderValidationError",
    "PaymentGatewayError",
    "PaymentStateError",
    "PurchaseRecordNotFoundError",
    "GatewayOrder",
    "PaymentAuditEvent",
    "PaymentAuditEventType",
    "PendingOrder",
    "VerificationOutcome",
    "VerificationResult",
    "OrderOrchestrator",
    "PaymentEventLogger",
    "PaymentGateway",
    "PaymentVerifier",
    "PurchaseRecordRepository",
]
