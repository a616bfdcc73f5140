"""Billing and database configuration helpers."""
from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for the payment provider and the billing database."""

    stripe_secret_key: str
    stripe_webhook_secret: str
    stripe_api_version: Optional[str]
    db_config: Dict[str, Any] = field(default_factory=dict)


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    db_config = dict(
        host=env_mapping.get("DB_HOST", "127.0.0.1"),
        port=_to_int(env_mapping.get("DB_PORT"), default=5432),
        dbname=env_mapping.get("DB_NAME", "mediastream"),
        user=env_mapping.get("DB_USER", "mediastream"),
        password=env_mapping.get("DB_PASSWORD", "mediastream"),
        connect_timeout=_parse_connect_timeout(env_mapping.get("DB_CONNECT_TIMEOUT", "5")),
    )

    return BillingConfig(
        stripe_secret_key=(env_mapping.get("STRIPE_SECRET_KEY") or "").strip(),
        stripe_webhook_secret=(env_mapping.get("STRIPE_WEBHOOK_SECRET") or "").strip(),
        stripe_api_version=env_mapping.get("STRIPE_API_VERSION") or None,
        db_config=db_config,
    )
