"""API routes for creating gateway orders and verifying payments."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Callable, Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, status

from ..billing import BillingError, VerificationOutcome
from ..schemas.payments import (
    CreateOrderRequest,
    CreateOrderResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from ..services.billing import get_order_orchestrator, get_payment_verifier


def _resolve_get_current_user() -> Callable[..., Any]:  # pragma: no cover
    try:
        from backend.main import get_current_user as resolved
    except ModuleNotFoundError as exc:
        if exc.name != "backend":
            raise
        from ...main import get_current_user as resolved  # type: ignore[no-redef]
    return resolved


@lru_cache(maxsize=1)
def _get_current_user_callable() -> Callable[..., Any]:
    return _resolve_get_current_user()


_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")

_STAFF_ROLES = frozenset({"admin", "subadmin"})


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
):
    resolved = _get_current_user_callable()
    return resolved(session_token=session_token)


router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.post("/create-order", response_model=CreateOrderResponse)
def create_order(
    payload: CreateOrderRequest,
    *,
    current_user=Depends(_get_current_user),
) -> CreateOrderResponse:
    """Open a gateway order for the signed-in student."""
    role = (getattr(current_user, "role", None) or "").lower()
    if role in _STAFF_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admins and sub-admins cannot make purchases",
        )

    try:
        orchestrator = get_order_orchestrator()
        pending = orchestrator.create_order(
            user_id=str(current_user.id),
            product_type=payload.product_type,
            product_id=payload.product_id,
            requested_amount=payload.amount,
            requested_subjects=payload.selected_subjects,
        )
    except BillingError as exc:
        raise exc.to_http_exception() from exc
    return CreateOrderResponse.from_pending(pending)


@router.post("/verify", response_model=VerifyPaymentResponse)
def verify_payment(
    payload: VerifyPaymentRequest,
    *,
    current_user=Depends(_get_current_user),
) -> VerifyPaymentResponse:
    """Check the gateway callback and finalize the purchase record."""
    try:
        verifier = get_payment_verifier()
        result = verifier.verify(
            order_id=payload.order_id,
            payment_id=payload.payment_id,
            signature=payload.signature,
            purchase_record_id=payload.purchase_record_id,
            user_id=str(current_user.id),
        )
    except BillingError as exc:
        raise exc.to_http_exception() from exc

    if result.outcome == VerificationOutcome.SIGNATURE_INVALID:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "signature_invalid", "message": "Payment signature could not be verified"},
        )
    if result.outcome == VerificationOutcome.ORDER_MISMATCH:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "order_mismatch", "message": "Order does not match this purchase"},
        )

    is_expired = False
    if result.entitlement is not None:
        is_expired = result.entitlement.is_expired(verifier.clock(), verifier.default_horizon)
    return VerifyPaymentResponse.from_result(result, is_expired=is_expired)
