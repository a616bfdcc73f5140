from __future__ import annotations

import pytest
import stripe

from mediastream.app.billing import provider as provider_module
from mediastream.app.billing.provider import StripePaymentProvider, verify_webhook


def test_requires_api_key():
    with pytest.raises(ValueError):
        StripePaymentProvider("")


def test_create_customer_omits_empty_email(monkeypatch):
    calls = []

    def fake_create(**params):
        calls.append(params)
        return {"id": "cus_1"}

    monkeypatch.setattr(provider_module.stripe.Customer, "create", fake_create)
    provider = StripePaymentProvider("sk_test_123")

    provider.create_customer(metadata={"user_id": "user-1"}, email=None)
    provider.create_customer(metadata={"user_id": "user-2"}, email="listener@example.com")

    assert "email" not in calls[0]
    assert calls[0]["metadata"] == {"user_id": "user-1"}
    assert calls[0]["api_key"] == "sk_test_123"
    assert calls[1]["email"] == "listener@example.com"


def test_retrieve_subscription_expands_payment_method(monkeypatch):
    calls = []

    def fake_retrieve(subscription_id, **params):
        calls.append((subscription_id, params))
        return {"id": subscription_id}

    monkeypatch.setattr(provider_module.stripe.Subscription, "retrieve", fake_retrieve)
    provider = StripePaymentProvider("sk_test_123", api_version="2024-06-20")

    result = provider.retrieve_subscription("sub_1", expand=["default_payment_method"])

    assert result == {"id": "sub_1"}
    assert calls == [
        (
            "sub_1",
            {"expand": ["default_payment_method"], "api_key": "sk_test_123", "stripe_version": "2024-06-20"},
        )
    ]


def test_update_customer_sends_contact_details(monkeypatch):
    calls = []

    def fake_modify(customer_id, **params):
        calls.append((customer_id, params))
        return {"id": customer_id, **params}

    monkeypatch.setattr(provider_module.stripe.Customer, "modify", fake_modify)
    provider = StripePaymentProvider("sk_test_123")

    provider.update_customer("cus_1", name="Ada", phone="+1555", address={"city": "SF"})

    customer_id, params = calls[0]
    assert customer_id == "cus_1"
    assert params["name"] == "Ada"
    assert params["address"] == {"city": "SF"}


def test_provider_errors_propagate(monkeypatch):
    def failing_retrieve(subscription_id, **params):
        raise stripe.InvalidRequestError("No such subscription", "id")

    monkeypatch.setattr(provider_module.stripe.Subscription, "retrieve", failing_retrieve)
    provider = StripePaymentProvider("sk_test_123")

    with pytest.raises(stripe.StripeError):
        provider.retrieve_subscription("sub_missing")


def test_verify_webhook_requires_secret():
    with pytest.raises(RuntimeError):
        verify_webhook(b"{}", "sig", "")


def test_verify_webhook_uses_construct_event(monkeypatch):
    captured = {}

    def fake_construct_event(payload, signature, secret):
        captured.update(payload=payload, signature=signature, secret=secret)
        return {"id": "evt_1", "type": "product.created", "data": {"object": {}}}

    monkeypatch.setattr(provider_module.stripe.Webhook, "construct_event", fake_construct_event)

    envelope = verify_webhook(b"{}", None, "whsec_test")

    assert envelope["id"] == "evt_1"
    assert captured == {"payload": b"{}", "signature": "", "secret": "whsec_test"}
