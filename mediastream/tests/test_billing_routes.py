from __future__ import annotations

import asyncio
import threading
from types import SimpleNamespace
from typing import List

import pytest
import stripe
from fastapi import HTTPException

from mediastream.app.billing import ProviderEvent, ProviderEventType
from mediastream.app.routes import billing as billing_routes
from mediastream.app.schemas.billing import WebhookAcknowledgement


class FakeRequest:
    def __init__(self, body: bytes) -> None:
        self._body = body

    async def body(self) -> bytes:
        return self._body


class RecordingService:
    def __init__(self, error: Exception | None = None) -> None:
        self.events: List[ProviderEvent] = []
        self.threads: List[int] = []
        self.error = error

    def handle_event(self, event: ProviderEvent) -> None:
        self.events.append(event)
        self.threads.append(threading.get_ident())
        if self.error is not None:
            raise self.error


def _install(monkeypatch, service: RecordingService, envelope=None, verify_error: Exception | None = None):
    def fake_verify(payload, signature, secret):
        assert secret == "whsec_test"
        if verify_error is not None:
            raise verify_error
        return envelope

    monkeypatch.setattr(billing_routes, "verify_webhook", fake_verify)
    monkeypatch.setattr(billing_routes, "get_billing_config", lambda: SimpleNamespace(stripe_webhook_secret="whsec_test"))
    monkeypatch.setattr(billing_routes, "get_billing_service", lambda: service)


def _call(request: FakeRequest, signature: str = "t=1,v1=abc") -> WebhookAcknowledgement:
    return asyncio.run(billing_routes.receive_webhook(request, stripe_signature=signature))


def test_webhook_dispatches_verified_event(monkeypatch):
    service = RecordingService()
    envelope = {
        "id": "evt_1",
        "type": "customer.subscription.updated",
        "data": {"object": {"id": "sub_1", "customer": "cus_1"}},
    }
    _install(monkeypatch, service, envelope=envelope)

    response = _call(FakeRequest(b"{}"))

    assert response.handled is True
    assert response.event_id == "evt_1"
    assert service.events[0].type == ProviderEventType.SUBSCRIPTION_UPDATED


def test_webhook_rejects_bad_signature(monkeypatch):
    service = RecordingService()
    _install(
        monkeypatch,
        service,
        verify_error=stripe.SignatureVerificationError("bad signature", "t=1,v1=abc"),
    )

    with pytest.raises(HTTPException) as excinfo:
        _call(FakeRequest(b"{}"))

    assert excinfo.value.status_code == 400
    assert service.events == []


def test_webhook_acknowledges_unhandled_event_types(monkeypatch):
    service = RecordingService()
    envelope = {"id": "evt_2", "type": "invoice.paid", "data": {"object": {"id": "in_1"}}}
    _install(monkeypatch, service, envelope=envelope)

    response = _call(FakeRequest(b"{}"))

    assert response.handled is False
    assert response.event_type == "invoice.paid"
    assert service.events == []


def test_webhook_propagates_processing_failures(monkeypatch):
    service = RecordingService(error=RuntimeError("storage unavailable"))
    envelope = {"id": "evt_3", "type": "product.created", "data": {"object": {"id": "prod_1"}}}
    _install(monkeypatch, service, envelope=envelope)

    with pytest.raises(RuntimeError):
        _call(FakeRequest(b"{}"))

    assert len(service.events) == 1


def test_webhook_applies_event_off_the_event_loop_thread(monkeypatch):
    service = RecordingService()
    envelope = {"id": "evt_4", "type": "price.updated", "data": {"object": {"id": "price_1"}}}
    _install(monkeypatch, service, envelope=envelope)

    response = _call(FakeRequest(b"{}"))

    assert response.handled is True
    assert service.threads and service.threads[0] != threading.get_ident()
