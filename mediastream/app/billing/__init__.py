"""Billing reconciliation core keeping local records in step with the payment provider."""

from .exceptions import (
    BillingConsistencyError,
    BillingError,
    BillingPropagationError,
    CustomerMappingError,
    UnsupportedEventError,
)
from .models import (
    BillingAddress,
    BillingDetails,
    Customer,
    PaymentMethod,
    Price,
    PriceInterval,
    PriceType,
    Product,
    ProviderEvent,
    ProviderEventType,
    Subscription,
    SubscriptionStatus,
)
from .service import (
    BillingRepository,
    BillingService,
    PaymentProvider,
    to_datetime,
)

__all__ = [
    "BillingAddress",
    "BillingConsistencyError",
    "BillingDetails",
    "BillingError",
    "BillingPropagationError",
    "BillingRepository",
    "BillingService",
    "Customer",
    "CustomerMappingError",
    "PaymentMethod",
    "PaymentProvider",
    "Price",
    "PriceInterval",
    "PriceType",
    "Product",
    "ProviderEvent",
    "ProviderEventType",
    "Subscription",
    "SubscriptionStatus",
    "UnsupportedEventError",
    "to_datetime",
]
