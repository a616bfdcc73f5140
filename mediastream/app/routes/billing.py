"""API routes receiving payment provider webhooks."""
from __future__ import annotations

import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Header, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool

from ..billing import ProviderEvent, UnsupportedEventError
from ..billing.provider import verify_webhook
from ..schemas.billing import WebhookAcknowledgement
from ..services.billing import get_billing_config, get_billing_service


logger = logging.getLogger("billing")

router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.post("/webhook", response_model=WebhookAcknowledgement)
async def receive_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
) -> WebhookAcknowledgement:
    """Verify and apply a provider event.

    Any failure while applying the event surfaces as a 5xx so the provider
    redelivers it later.
    """

    body = await request.body()
    config = get_billing_config()
    try:
        envelope = verify_webhook(body, stripe_signature, config.stripe_webhook_secret)
    except stripe.SignatureVerificationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature") from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        event = ProviderEvent.from_payload(envelope)
    except UnsupportedEventError as exc:
        logger.debug("Acknowledging unhandled provider event %s: %s", envelope.get("id"), exc.message)
        return WebhookAcknowledgement(
            event_id=envelope.get("id"),
            event_type=envelope.get("type"),
            handled=False,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    service = get_billing_service()
    try:
        await run_in_threadpool(service.handle_event, event)
    except Exception:
        logger.exception("Failed to apply provider event %s (%s)", event.id, event.type.value)
        raise

    return WebhookAcknowledgement(event_id=event.id, event_type=event.type.value)
