"""Domain models for the billing reconciliation core."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .exceptions import UnsupportedEventError


class PriceType(str, Enum):
    """Billing scheme of a provider price."""

    ONE_TIME = "one_time"
    RECURRING = "recurring"


class PriceInterval(str, Enum):
    """Billing frequency of a recurring price."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states reported by the provider."""

    TRIALING = "trialing"
    ACTIVE = "active"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"


class ProviderEventType(str, Enum):
    """Provider events the reconciliation core reacts to."""

    PRODUCT_CREATED = "product.created"
    PRODUCT_UPDATED = "product.updated"
    PRICE_CREATED = "price.created"
    PRICE_UPDATED = "price.updated"
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"


PRODUCT_EVENTS = frozenset({ProviderEventType.PRODUCT_CREATED, ProviderEventType.PRODUCT_UPDATED})
PRICE_EVENTS = frozenset({ProviderEventType.PRICE_CREATED, ProviderEventType.PRICE_UPDATED})
SUBSCRIPTION_EVENTS = frozenset(
    {
        ProviderEventType.SUBSCRIPTION_CREATED,
        ProviderEventType.SUBSCRIPTION_UPDATED,
        ProviderEventType.SUBSCRIPTION_DELETED,
    }
)


class Product(BaseModel):
    """Sellable item mirrored from the provider catalog."""

    id: str = Field(min_length=1)
    active: bool
    name: str
    description: Optional[str] = None
    image: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Price(BaseModel):
    """Price attached to a product; ``product_id`` is empty when not a bare reference."""

    id: str = Field(min_length=1)
    product_id: str = ""
    active: bool
    currency: str = Field(min_length=3, max_length=3)
    description: Optional[str] = None
    type: PriceType
    unit_amount: Optional[int] = Field(default=None, ge=0)
    interval: Optional[PriceInterval] = None
    interval_count: Optional[int] = Field(default=None, ge=1)
    trial_period_days: Optional[int] = Field(default=None, ge=0)
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _lower_currency(cls, value: str) -> str:
        return value.lower()

    @model_validator(mode="before")
    @classmethod
    def _recurring_fields_only_when_recurring(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and data.get("type") in (PriceType.ONE_TIME, PriceType.ONE_TIME.value):
            return {**data, "interval": None, "interval_count": None, "trial_period_days": None}
        return data


class Customer(BaseModel):
    """Link between a local user and the provider-side customer."""

    user_id: str = Field(min_length=1)
    provider_customer_id: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Subscription(BaseModel):
    """Local cache of a provider subscription, replaced wholesale on every sync."""

    id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    price_id: str
    status: SubscriptionStatus
    quantity: int = Field(default=1, ge=0)
    cancel_at_period_end: bool = False
    cancel_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    created: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class BillingAddress(BaseModel):
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class BillingDetails(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[BillingAddress] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_complete(self) -> bool:
        """Return ``True`` when name, phone and address are all present."""
        has_address = self.address is not None and any(self.address.model_dump().values())
        return bool(self.name) and bool(self.phone) and has_address


class PaymentMethod(BaseModel):
    """Payment method with the type-specific detail blob split out."""

    id: str
    type: str
    customer: Optional[str] = None
    billing_details: BillingDetails = Field(default_factory=BillingDetails)
    details: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PaymentMethod":
        method_type = str(payload.get("type") or "")
        customer = payload.get("customer")
        if isinstance(customer, Mapping):
            customer = customer.get("id")
        details = payload.get(method_type) if method_type else None
        return cls(
            id=str(payload.get("id") or ""),
            type=method_type,
            customer=customer or None,
            billing_details=BillingDetails.model_validate(payload.get("billing_details") or {}),
            details=dict(details) if isinstance(details, Mapping) else {},
        )


class ProviderEvent(BaseModel):
    """Verified provider event handed to the core by the delivery layer."""

    id: str
    type: ProviderEventType
    data_object: Dict[str, Any]

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ProviderEvent":
        """Build an event from the provider's ``{id, type, data: {object}}`` envelope."""

        raw_type = str(payload.get("type") or "")
        try:
            event_type = ProviderEventType(raw_type)
        except ValueError as exc:
            raise UnsupportedEventError(
                code="unsupported_event",
                message=f"Unhandled provider event type: {raw_type or '<missing>'}",
            ) from exc

        data = payload.get("data") or {}
        data_object = data.get("object") if isinstance(data, Mapping) else None
        if not isinstance(data_object, Mapping):
            raise ValueError("provider event is missing data.object")
        return cls(id=str(payload.get("id") or ""), type=event_type, data_object=dict(data_object))


__all__ = [
    "BillingAddress",
    "BillingDetails",
    "Customer",
    "PRICE_EVENTS",
    "PRODUCT_EVENTS",
    "PaymentMethod",
    "Price",
    "PriceInterval",
    "PriceType",
    "Product",
    "ProviderEvent",
    "ProviderEventType",
    "SUBSCRIPTION_EVENTS",
    "Subscription",
    "SubscriptionStatus",
]
