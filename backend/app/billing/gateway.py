"""Razorpay Orders API client and callback signature checks."""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from http import client as http_client
from typing import Any, Dict, Mapping, Optional
from urllib import error as urllib_error, request as urllib_request

from .config import GatewayConfig
from .exceptions import PaymentGatewayError
from .models import GatewayOrder

logger = logging.getLogger(__name__)


def compute_signature(secret: str, order_id: str, payment_id: str) -> str:
    """Hex HMAC-SHA256 of ``"{order_id}|{payment_id}"`` keyed with ``secret``."""

    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signatures_match(secret: str, order_id: str, payment_id: str, signature: str) -> bool:
    if not signature:
        return False
    expected = compute_signature(secret, order_id, payment_id)
    return hmac.compare_digest(expected, signature.strip().lower())


class RazorpayGateway:
    """Blocking client for the Razorpay Orders REST API.

    Every request carries the configured timeout; failures surface as
    :class:`PaymentGatewayError` and are never retried here.
    """

    name = "razorpay"

    def __init__(self, config: GatewayConfig) -> None:
        if not config.is_configured:
            raise PaymentGatewayError(
                code="gateway_not_configured",
                message="Payment gateway keys are not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET.",
            )
        self._config = config
        self._key_id = str(config.key_id)
        self._secret = str(config.key_secret)

    @property
    def key_id(self) -> str:
        return self._key_id

    def _auth_header(self) -> str:
        token = base64.b64encode(f"{self._key_id}:{self._secret}".encode("utf-8")).decode("ascii")
        return f"Basic {token}"

    def _post(self, path: str, body: Mapping[str, Any]) -> Dict[str, Any]:
        url = f"{self._config.api_base_url}{path}"
        data = json.dumps(body).encode("utf-8")
        http_request = urllib_request.Request(
            url,
            data=data,
            method="POST",
            headers={
                "Authorization": self._auth_header(),
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
        try:
            with urllib_request.urlopen(http_request, timeout=self._config.timeout_seconds) as response:
                raw = response.read()
        except urllib_error.HTTPError as exc:
            logger.warning(
                "Payment gateway rejected request",
                extra={"gateway_path": path, "gateway_status": exc.code},
            )
            raise PaymentGatewayError(
                message=f"Payment gateway responded with HTTP {exc.code}",
                detail={"gateway_status": exc.code},
            ) from exc
        except (urllib_error.URLError, http_client.HTTPException, TimeoutError, OSError) as exc:
            logger.warning(
                "Payment gateway unreachable",
                extra={"gateway_path": path, "error": str(exc)},
            )
            raise PaymentGatewayError(
                code="gateway_unavailable",
                message="Payment gateway could not be reached",
            ) from exc

        try:
            payload = json.loads(raw.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise PaymentGatewayError(
                code="gateway_malformed_response",
                message="Payment gateway returned an unreadable response",
            ) from exc
        if not isinstance(payload, dict):
            raise PaymentGatewayError(
                code="gateway_malformed_response",
                message="Payment gateway returned an unexpected payload",
            )
        return payload

    def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        """Open an order for ``amount`` minor units (paise for INR)."""

        payload = self._post(
            "/orders",
            {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes or {}},
        )
        try:
            return GatewayOrder(
                id=str(payload["id"]),
                amount=int(payload["amount"]),
                currency=str(payload["currency"]),
                receipt=payload.get("receipt"),
                status=payload.get("status"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise PaymentGatewayError(
                code="gateway_malformed_response",
                message="Payment gateway order response is missing fields",
            ) from exc

    def verify_signature(self, *, order_id: str, payment_id: str, signature: str) -> bool:
        return signatures_match(self._secret, order_id, payment_id, signature)


__all__ = ["RazorpayGateway", "compute_signature", "signatures_match"]
