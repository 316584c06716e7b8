"""
Payment API routes.

Checkout is hosted by Stripe. The client is redirected back with the
session id and calls verify-payment; the same upgrade is also applied by
the checkout.session.completed webhook.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status, Depends, Query
from pydantic import BaseModel, Field

from src.api.dependencies.auth import get_current_account
from src.api.dependencies.services import get_billing_service, get_settings
from src.api.errors import provider_error_to_http
from src.auth.token_service import AuthenticatedAccount
from src.config.settings import Settings
from src.integrations.stripe.billing_client import BillingProviderError
from src.repositories.subscription_repository import SubscriptionStoreError
from src.services.billing_service import (
    BillingService,
    AccountNotFoundError,
    CheckoutError,
    SessionOwnershipError,
    NoBillingCustomerError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


class CreateCheckoutRequest(BaseModel):
    """Request to create a checkout session."""
    plan_id: str = Field(..., min_length=1, description="Plan being purchased")
    price_id: str = Field(..., min_length=1, description="Stripe price id")
    success_url: Optional[str] = Field(None, description="Redirect after payment")
    cancel_url: Optional[str] = Field(None, description="Redirect when checkout is abandoned")


class CheckoutResponse(BaseModel):
    session_id: str
    url: Optional[str] = None


class VerifyPaymentResponse(BaseModel):
    status: str
    session_id: str
    payment_status: Optional[str] = None
    plan_id: Optional[str] = None
    subscription_id: Optional[str] = None
    customer_email: Optional[str] = None
    amount_total: Optional[float] = None
    expires_at: Optional[str] = None


class PortalSessionRequest(BaseModel):
    return_url: Optional[str] = None


class PortalSessionResponse(BaseModel):
    url: str


class PaymentMethodRequest(BaseModel):
    """Payment method collected client side with Stripe Elements."""
    payment_method_id: str = Field(..., min_length=1, description="Stripe payment method id")


class PaymentMethodResponse(BaseModel):
    success: bool
    message: str


@router.post("/create-checkout-session", response_model=CheckoutResponse)
async def create_checkout_session(
    body: CreateCheckoutRequest,
    account: AuthenticatedAccount = Depends(get_current_account),
    billing_service: BillingService = Depends(get_billing_service),
    settings: Settings = Depends(get_settings),
):
    frontend_url = settings.frontend_url.rstrip("/")

    try:
        result = await billing_service.create_checkout_session(
            account_id=account.account_id,
            plan_id=body.plan_id,
            price_ref=body.price_id,
            success_url=body.success_url or f"{frontend_url}/payment/success",
            cancel_url=body.cancel_url or f"{frontend_url}/subscription",
        )
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except CheckoutError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except BillingProviderError as e:
        raise provider_error_to_http(e, "create_checkout_session")

    return CheckoutResponse(session_id=result.session_id, url=result.checkout_url)


@router.get("/verify-payment", response_model=VerifyPaymentResponse)
async def verify_payment(
    session_id: str = Query(..., min_length=1),
    account: AuthenticatedAccount = Depends(get_current_account),
    billing_service: BillingService = Depends(get_billing_service),
):
    """
    Confirm a checkout session.

    The session is re-read from Stripe; client claims are never trusted.
    """
    try:
        result = await billing_service.verify_payment(session_id, account.account_id)
    except SessionOwnershipError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except CheckoutError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except BillingProviderError as e:
        raise provider_error_to_http(e, "verify_payment")
    except SubscriptionStoreError as e:
        logger.error("Failed to store confirmed payment", extra={
            "account_id": account.account_id,
            "session_id": session_id,
            "error": str(e)
        })
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment confirmed but could not be recorded. Please retry."
        )

    return VerifyPaymentResponse(
        status=result.status,
        session_id=result.session_id,
        payment_status=result.payment_status,
        plan_id=result.plan_id,
        subscription_id=result.subscription_ref,
        customer_email=result.customer_email,
        amount_total=result.amount_total,
        expires_at=result.expires_at.isoformat() if result.expires_at else None,
    )


@router.post("/portal-session", response_model=PortalSessionResponse)
async def create_portal_session(
    body: Optional[PortalSessionRequest] = None,
    account: AuthenticatedAccount = Depends(get_current_account),
    billing_service: BillingService = Depends(get_billing_service),
    settings: Settings = Depends(get_settings),
):
    return_url = (body.return_url if body else None) or settings.upgrade_url

    try:
        url = await billing_service.create_portal_session(account.account_id, return_url)
    except NoBillingCustomerError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except BillingProviderError as e:
        raise provider_error_to_http(e, "create_portal_session")

    return PortalSessionResponse(url=url)


@router.post("/payment-method", response_model=PaymentMethodResponse)
async def update_payment_method(
    body: PaymentMethodRequest,
    account: AuthenticatedAccount = Depends(get_current_account),
    billing_service: BillingService = Depends(get_billing_service),
):
    """Replace the card charged for future renewals."""
    try:
        await billing_service.update_payment_method(account.account_id, body.payment_method_id)
    except NoBillingCustomerError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except CheckoutError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except BillingProviderError as e:
        raise provider_error_to_http(e, "update_payment_method")

    return PaymentMethodResponse(success=True, message="Payment method updated")
