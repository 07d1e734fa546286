"""Payment gateway configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional
import os


@dataclass(frozen=True)
class GatewayConfig:
    """Configuration for the hosted payment gateway."""

    provider_name: str
    key_id: Optional[str]
    key_secret: Optional[str]
    api_base_url: str
    currency: str
    timeout_seconds: float
    default_horizon_days: int

    @property
    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    @property
    def default_horizon(self) -> timedelta:
        return timedelta(days=self.default_horizon_days)


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_gateway_config(env: Optional[Mapping[str, str]] = None) -> GatewayConfig:
    """Load :class:`GatewayConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    provider_name = (env_mapping.get("PAYMENT_GATEWAY") or "razorpay").strip().lower() or "razorpay"
    key_id = (env_mapping.get("RAZORPAY_KEY_ID") or "").strip() or None
    key_secret = (env_mapping.get("RAZORPAY_KEY_SECRET") or "").strip() or None
    api_base_url = (env_mapping.get("RAZORPAY_API_BASE") or "https://api.razorpay.com/v1").rstrip("/")
    currency = (env_mapping.get("PAYMENT_CURRENCY") or "INR").strip().upper() or "INR"

    timeout_seconds = _to_float(env_mapping.get("PAYMENT_GATEWAY_TIMEOUT_SECONDS"), default=10.0)
    if timeout_seconds <= 0:
        raise ValueError("PAYMENT_GATEWAY_TIMEOUT_SECONDS must be positive")

    default_horizon_days = max(1, _to_int(env_mapping.get("ENTITLEMENT_DEFAULT_HORIZON_DAYS"), default=60))

    return GatewayConfig(
        provider_name=provider_name,
        key_id=key_id,
        key_secret=key_secret,
        api_base_url=api_base_url,
        currency=currency,
        timeout_seconds=timeout_seconds,
        default_horizon_days=default_horizon_days,
    )


__all__ = ["GatewayConfig", "load_gateway_config"]
