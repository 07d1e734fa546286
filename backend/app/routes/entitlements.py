"""API routes exposing the signed-in user's entitlements."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Callable, Optional

from fastapi import APIRouter, Cookie, Depends, HTTPException, status
from pydantic import ValidationError

from ..entitlements import ProductRef, ProductType
from ..schemas.entitlements import EntitlementListResponse, EntitlementView
from ..services.billing import get_entitlement_service


def _resolve_get_current_user() -> Callable[..., Any]:  # pragma: no cover - helper for lazy import
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


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
) -> Any:
    resolved = _get_current_user_callable()
    return resolved(session_token=session_token)


router = APIRouter(prefix="/api/entitlements", tags=["entitlements"])


@router.get("", response_model=EntitlementListResponse)
def list_entitlements(*, current_user=Depends(_get_current_user)) -> EntitlementListResponse:
    """Return every product the current user has paid for, newest first."""
    service = get_entitlement_service()
    entitlements = service.list_for_user(str(current_user.id))
    return EntitlementListResponse(
        entitlements=[
            EntitlementView.from_entitlement(item, is_expired=not service.is_active(item))
            for item in entitlements
        ]
    )


@router.get("/{product_type}/{product_id}", response_model=EntitlementView)
def get_entitlement(
    product_type: ProductType,
    product_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> EntitlementView:
    try:
        product = ProductRef(product_type=product_type, product_id=product_id)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid product reference") from exc

    service = get_entitlement_service()
    entitlement = service.get(str(current_user.id), product)
    if entitlement is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not purchased")
    return EntitlementView.from_entitlement(entitlement, is_expired=not service.is_active(entitlement))
