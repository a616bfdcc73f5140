"""Stripe-backed implementation of the payment provider protocol."""
from __future__ import annotations

from typing import Any, Dict, Optional, Sequence, Union

import stripe

from .service import PaymentProvider


def _to_plain(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    return obj.to_dict()


class StripePaymentProvider(PaymentProvider):
    """Calls the Stripe API with a per-instance key and returns plain dictionaries.

    SDK errors (``stripe.StripeError``) propagate to the caller unchanged.
    """

    def __init__(self, api_key: str, *, api_version: Optional[str] = None) -> None:
        if not api_key:
            raise ValueError("STRIPE_SECRET_KEY not configured")
        self._api_key = api_key
        self._api_version = api_version

    def _request_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"api_key": self._api_key}
        if self._api_version:
            options["stripe_version"] = self._api_version
        return options

    def create_customer(self, *, metadata: Dict[str, str], email: Optional[str] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {"metadata": metadata}
        if email:
            params["email"] = email
        customer = stripe.Customer.create(**params, **self._request_options())
        return _to_plain(customer)

    def retrieve_subscription(self, subscription_id: str, *, expand: Sequence[str] = ()) -> Dict[str, Any]:
        subscription = stripe.Subscription.retrieve(
            subscription_id,
            expand=list(expand),
            **self._request_options(),
        )
        return _to_plain(subscription)

    def update_customer(
        self,
        customer_id: str,
        *,
        name: str,
        phone: str,
        address: Dict[str, Any],
    ) -> Dict[str, Any]:
        customer = stripe.Customer.modify(
            customer_id,
            name=name,
            phone=phone,
            address=address,
            **self._request_options(),
        )
        return _to_plain(customer)


def verify_webhook(payload: Union[bytes, str], signature: Optional[str], secret: str) -> Dict[str, Any]:
    """Verify a webhook signature and return the event envelope as a dictionary.

    Raises ``stripe.SignatureVerificationError`` for a bad signature and
    ``ValueError`` for a payload that is not valid JSON.
    """

    if not secret:
        raise RuntimeError("STRIPE_WEBHOOK_SECRET not configured")
    event = stripe.Webhook.construct_event(payload, signature or "", secret)
    return _to_plain(event)


__all__ = ["StripePaymentProvider", "verify_webhook"]
