"""
Stripe webhook endpoint.

SECURITY: The raw body is verified against the Stripe-Signature header
before anything is parsed or written.

Responses:
- 200 for applied, duplicate, unattributable or ignored events
- 400 for an invalid signature (nothing written)
- 500 when applying the event failed, so Stripe redelivers it

Documentation: https://docs.stripe.com/webhooks
"""

import logging
from typing import Optional

from fastapi import APIRouter, Request, HTTPException, status, Header, Depends
from pydantic import BaseModel

from src.api.dependencies.services import get_billing_webhook_handler
from src.integrations.stripe.billing_client import BillingProviderError, WebhookSignatureError
from src.repositories.subscription_repository import SubscriptionStoreError
from src.services.billing_webhook_handler import BillingWebhookHandler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["webhooks"])


class WebhookResponse(BaseModel):
    """Standard webhook response."""
    received: bool = True
    processed: bool = False
    message: str = "Webhook processed"


@router.post("/webhook", response_model=WebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    handler: BillingWebhookHandler = Depends(get_billing_webhook_handler),
):
    body = await request.body()

    try:
        result = await handler.handle_webhook_event(body, stripe_signature)
    except WebhookSignatureError as e:
        logger.warning("Rejected Stripe webhook", extra={"error": e.message})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message
        )
    except (SubscriptionStoreError, BillingProviderError) as e:
        logger.error("Stripe webhook processing failed", extra={"error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed"
        )

    return WebhookResponse(processed=result.processed, message=result.message)
