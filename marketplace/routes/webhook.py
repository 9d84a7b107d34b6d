"""
Payment webhook route: POST /webhooks/payment

The signature is verified against the raw body before anything is parsed. Once an
event is authenticated the response is always {"received": true}, even if handling
fails, so the processor does not redeliver.
"""

import logging
import os

import stripe
from fastapi import APIRouter, Request

from marketplace.services.errors import ConfigurationError, InvalidRequestError
from marketplace.services.stripe_client import verify_webhook_signature
from marketplace.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks")


@router.post("/payment")
async def payment_webhook(request: Request):
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise InvalidRequestError(
            "Missing stripe-signature header", code="MISSING_SIGNATURE", error="Webhook error"
        )

    # an empty key would let anyone compute a valid signature
    secret = os.getenv("STRIPE_WEBHOOK_SECRET", "").strip()
    if not secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not set, rejecting webhook delivery")
        raise ConfigurationError(
            "Webhook endpoint is not configured", code="WEBHOOK_NOT_CONFIGURED"
        )

    try:
        event = verify_webhook_signature(payload, signature, secret)
    except ValueError as e:
        logger.warning("Webhook payload rejected: %s", e)
        raise InvalidRequestError("Invalid payload", code="INVALID_SIGNATURE", error="Webhook error")
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed: %s", e)
        raise InvalidRequestError("Invalid signature", code="INVALID_SIGNATURE", error="Webhook error")

    try:
        WebhookService().handle_event(event)
    except Exception:
        logger.exception("Error processing webhook event %s", event.get("id"))

    return {"received": True}
