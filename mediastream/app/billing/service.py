"""Reconciles local billing records with the payment provider."""
from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence

from .exceptions import BillingPropagationError, CustomerMappingError
from .models import (
    PRICE_EVENTS,
    PRODUCT_EVENTS,
    SUBSCRIPTION_EVENTS,
    BillingAddress,
    Customer,
    PaymentMethod,
    Price,
    PriceType,
    Product,
    ProviderEvent,
    ProviderEventType,
    Subscription,
    SubscriptionStatus,
)


logger = logging.getLogger("billing")


class PaymentProvider(Protocol):
    """External payment processor; the system of record for billing entities."""

    def create_customer(self, *, metadata: Dict[str, str], email: Optional[str] = None) -> Dict[str, Any]:
        """Create a provider-side customer."""

    def retrieve_subscription(self, subscription_id: str, *, expand: Sequence[str] = ()) -> Dict[str, Any]:
        """Fetch the current state of a subscription."""

    def update_customer(
        self,
        customer_id: str,
        *,
        name: str,
        phone: str,
        address: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Update the contact details of a provider-side customer."""


class BillingRepository(Protocol):
    """Persistence operations required by the billing service."""

    def upsert_product(self, product: Product) -> Product:
        ...

    def upsert_price(self, price: Price) -> Price:
        ...

    def get_customer(self, user_id: str) -> Optional[Customer]:
        ...

    def get_customer_by_provider_id(self, provider_customer_id: str) -> Optional[Customer]:
        ...

    def claim_customer(self, user_id: str, provider_customer_id: str) -> str:
        ...

    def upsert_subscription(self, subscription: Subscription) -> Subscription:
        ...

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        ...

    def update_user_billing(
        self,
        user_id: str,
        *,
        billing_address: Dict[str, Any],
        payment_method: Dict[str, Any],
    ) -> None:
        ...


_dataclass_kwargs = {"slots": True} if sys.version_info >= (3, 10) else {}


@dataclass(**_dataclass_kwargs)
class BillingService:
    """Applies provider events to the local catalog, customer and subscription tables.

    Every operation is safe to re-run from the start: writes are keyed upserts
    that replace the whole row, and subscription state is always re-fetched
    from the provider instead of trusting event payloads. Failures propagate
    to the caller so the event sender can redeliver.
    """

    repository: BillingRepository
    provider: PaymentProvider

    def handle_event(self, event: ProviderEvent) -> None:
        """Dispatch a verified provider event to the matching reconciliation step."""

        payload = event.data_object
        if event.type in PRODUCT_EVENTS:
            self.upsert_product_record(payload)
        elif event.type in PRICE_EVENTS:
            self.upsert_price_record(payload)
        elif event.type in SUBSCRIPTION_EVENTS:
            self.manage_subscription_status_change(
                _require_id(payload.get("id"), "subscription"),
                _require_id(payload.get("customer"), "customer"),
                create_action=event.type == ProviderEventType.SUBSCRIPTION_CREATED,
            )
        elif event.type == ProviderEventType.CHECKOUT_SESSION_COMPLETED:
            if payload.get("mode") != "subscription":
                logger.debug("Ignoring checkout session %s in mode %s", payload.get("id"), payload.get("mode"))
                return
            self.manage_subscription_status_change(
                _require_id(payload.get("subscription"), "subscription"),
                _require_id(payload.get("customer"), "customer"),
                create_action=True,
            )

    # Catalog mirror

    def upsert_product_record(self, payload: Mapping[str, Any]) -> Product:
        product = _product_from_payload(payload)
        stored = self.repository.upsert_product(product)
        logger.info("Product inserted/updated: %s", stored.id)
        return stored

    def upsert_price_record(self, payload: Mapping[str, Any]) -> Price:
        price = _price_from_payload(payload)
        stored = self.repository.upsert_price(price)
        logger.info("Price inserted/updated: %s", stored.id)
        return stored

    # Customer identity

    def create_or_retrieve_customer(self, *, user_id: str, email: Optional[str]) -> str:
        """Return the provider customer id for ``user_id``, creating it on first use.

        A lookup that finds no row is the only path to creation; storage errors
        propagate so a transient read failure cannot produce a duplicate
        provider customer. Two resolvers racing for the same user may each
        create a provider customer; the first mapping written wins and the
        loser's customer is left orphaned on the provider side.
        """

        if not user_id:
            raise ValueError("user_id is required")

        existing = self.repository.get_customer(user_id)
        if existing is not None and existing.provider_customer_id:
            return existing.provider_customer_id

        created = self.provider.create_customer(metadata={"user_id": user_id}, email=email or None)
        created_id = _require_id(created.get("id"), "customer")

        stored_id = self.repository.claim_customer(user_id, created_id)
        if stored_id != created_id:
            logger.warning(
                "Customer mapping for %s already claimed by %s; provider customer %s is orphaned",
                user_id,
                stored_id,
                created_id,
            )
            return stored_id

        logger.info("New customer created and inserted for %s", user_id)
        return created_id

    # Subscription state

    def manage_subscription_status_change(
        self,
        subscription_id: str,
        provider_customer_id: str,
        *,
        create_action: bool = False,
    ) -> Subscription:
        """Re-fetch a subscription from the provider and replace the local row."""

        customer = self.repository.get_customer_by_provider_id(provider_customer_id)
        if customer is None:
            raise CustomerMappingError(
                code="customer_not_mapped",
                message=f"No local customer for provider customer {provider_customer_id}",
                detail={"subscription_id": subscription_id, "provider_customer_id": provider_customer_id},
            )

        payload = self.provider.retrieve_subscription(subscription_id, expand=["default_payment_method"])
        subscription = _subscription_from_payload(payload, user_id=customer.user_id)
        persisted = self.repository.upsert_subscription(subscription)
        logger.info("Inserted/Updated subscription %s for %s", persisted.id, customer.user_id)

        payment_method = payload.get("default_payment_method")
        if create_action and isinstance(payment_method, Mapping):
            self.copy_billing_details_to_customer(customer.user_id, payment_method)
        return persisted

    # Billing details

    def copy_billing_details_to_customer(self, user_id: str, payment_method: Mapping[str, Any]) -> bool:
        """Copy complete billing details to the provider customer and the local user.

        Returns ``False`` without writing anything when the payment method lacks
        a name, phone or address. The provider update and the local update are
        separate writes; a local failure after the provider write is re-raised
        as :class:`BillingPropagationError` and can be repaired with
        :meth:`resync_billing_details`.
        """

        method = PaymentMethod.from_payload(payment_method)
        details = method.billing_details
        if not details.is_complete:
            logger.debug("Skipping billing propagation for %s: incomplete billing details on %s", user_id, method.id)
            return False

        address = _address_dict(details.address)
        provider_customer_id = method.customer
        if not provider_customer_id:
            customer = self.repository.get_customer(user_id)
            provider_customer_id = customer.provider_customer_id if customer else None
        if not provider_customer_id:
            raise CustomerMappingError(
                code="customer_not_mapped",
                message=f"No provider customer for user {user_id}",
                detail={"user_id": user_id, "payment_method_id": method.id},
            )

        self.provider.update_customer(
            provider_customer_id,
            name=details.name,
            phone=details.phone,
            address=address,
        )

        try:
            self.repository.update_user_billing(
                user_id,
                billing_address=address,
                payment_method=method.details,
            )
        except Exception as exc:
            logger.error(
                "Billing details updated on provider customer %s but not on user %s",
                provider_customer_id,
                user_id,
            )
            raise BillingPropagationError(
                code="billing_propagation_incomplete",
                message=f"Local billing update failed for user {user_id}",
                detail={"user_id": user_id, "provider_customer_id": provider_customer_id},
            ) from exc
        return True

    def resync_billing_details(self, subscription_id: str) -> bool:
        """Re-apply billing details for a stored subscription from its current payment method."""

        subscription = self.repository.get_subscription(subscription_id)
        if subscription is None:
            raise LookupError(f"Subscription not found: {subscription_id}")

        payload = self.provider.retrieve_subscription(subscription_id, expand=["default_payment_method"])
        payment_method = payload.get("default_payment_method")
        if not isinstance(payment_method, Mapping):
            return False
        return self.copy_billing_details_to_customer(subscription.user_id, payment_method)


def to_datetime(value: Any) -> Optional[datetime]:
    """Convert provider epoch seconds into an aware UTC datetime; ``None`` stays ``None``."""

    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"Unsupported timestamp value: {value!r}")
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _require_id(value: Any, kind: str) -> str:
    if isinstance(value, Mapping):
        value = value.get("id")
    if not value:
        raise ValueError(f"{kind} id missing from provider payload")
    return str(value)


def _safe_metadata(value: object) -> Dict[str, str]:
    if isinstance(value, Mapping):
        return {str(k): str(v) for k, v in value.items()}
    return {}


def _address_dict(address: Optional[BillingAddress]) -> Dict[str, Any]:
    if address is None:
        return {}
    return address.model_dump()


def _product_from_payload(payload: Mapping[str, Any]) -> Product:
    product_id = payload.get("id")
    if not product_id:
        raise ValueError("product id missing from provider payload")

    images = payload.get("images") or []
    return Product(
        id=str(product_id),
        active=bool(payload.get("active")),
        name=str(payload.get("name") or ""),
        description=payload.get("description") or None,
        image=images[0] if images else None,
        metadata=_safe_metadata(payload.get("metadata")),
    )


def _price_from_payload(payload: Mapping[str, Any]) -> Price:
    price_id = payload.get("id")
    if not price_id:
        raise ValueError("price id missing from provider payload")

    # Embedded product objects are recorded as an empty reference.
    product = payload.get("product")
    recurring = payload.get("recurring") or {}
    return Price(
        id=str(price_id),
        product_id=product if isinstance(product, str) else "",
        active=bool(payload.get("active")),
        currency=str(payload.get("currency") or ""),
        description=payload.get("nickname") or None,
        type=PriceType(str(payload.get("type"))),
        unit_amount=payload.get("unit_amount"),
        interval=recurring.get("interval"),
        interval_count=recurring.get("interval_count"),
        trial_period_days=recurring.get("trial_period_days"),
        metadata=_safe_metadata(payload.get("metadata")),
    )


def _first_item(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    items = payload.get("items") or {}
    data = items.get("data") if isinstance(items, Mapping) else None
    if not data:
        raise ValueError(f"subscription {payload.get('id')} has no items")
    return data[0]


def _subscription_from_payload(payload: Mapping[str, Any], *, user_id: str) -> Subscription:
    item = _first_item(payload)
    price = item.get("price") or {}
    quantity = payload.get("quantity")
    if quantity is None:
        quantity = item.get("quantity")

    period_start = payload.get("current_period_start")
    if period_start is None:
        period_start = item.get("current_period_start")
    period_end = payload.get("current_period_end")
    if period_end is None:
        period_end = item.get("current_period_end")

    return Subscription(
        id=_require_id(payload.get("id"), "subscription"),
        user_id=user_id,
        price_id=_require_id(price, "price"),
        status=SubscriptionStatus(str(payload.get("status"))),
        quantity=1 if quantity is None else int(quantity),
        cancel_at_period_end=bool(payload.get("cancel_at_period_end")),
        cancel_at=to_datetime(payload.get("cancel_at")),
        canceled_at=to_datetime(payload.get("canceled_at")),
        current_period_start=to_datetime(period_start),
        current_period_end=to_datetime(period_end),
        created=to_datetime(payload.get("created")),
        ended_at=to_datetime(payload.get("ended_at")),
        trial_start=to_datetime(payload.get("trial_start")),
        trial_end=to_datetime(payload.get("trial_end")),
        metadata=_safe_metadata(payload.get("metadata")),
    )


__all__ = [
    "BillingRepository",
    "BillingService",
    "PaymentProvider",
    "to_datetime",
]
