"""Application wiring for the billing service."""
from __future__ import annotations

from functools import lru_cache

from ..billing import BillingService
from ..billing.provider import StripePaymentProvider
from ..billing.repository import PostgresBillingRepository
from ...config import BillingConfig, load_billing_config


@lru_cache(maxsize=1)
def get_billing_config() -> BillingConfig:
    return load_billing_config()


@lru_cache(maxsize=1)
def get_billing_service() -> BillingService:
    config = get_billing_config()
    repository = PostgresBillingRepository()
    provider = StripePaymentProvider(config.stripe_secret_key, api_version=config.stripe_api_version)
    return BillingService(repository=repository, provider=provider)


__all__ = ["get_billing_config", "get_billing_service"]
