"""
Subscription API routes.

All routes require the application JWT; the account is always the caller.
"""

import logging
from typing import Optional, List

from fastapi import APIRouter, HTTPException, status, Depends, Query
from pydantic import BaseModel, Field

from src.api.dependencies.auth import get_current_account
from src.api.dependencies.services import (
    get_billing_service,
    get_entitlement_resolver,
    get_feature_gate,
)
from src.api.errors import provider_error_to_http
from src.auth.token_service import AuthenticatedAccount
from src.integrations.stripe.billing_client import BillingProviderError
from src.repositories.subscription_repository import SubscriptionStoreError
from src.services.billing_service import BillingService, NoProviderSubscriptionError
from src.services.entitlement_resolver import EntitlementResolver
from src.services.feature_gate import FeatureGate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subscription", tags=["subscription"])


class EntitlementResponse(BaseModel):
    """Current entitlement of the caller."""
    is_premium: bool
    tier: str
    status: str
    expires_at: Optional[str] = None
    plan_id: Optional[str] = None
    billing_period: Optional[str] = None
    cancellation_pending: bool = False


class CheckAccessRequest(BaseModel):
    feature_id: str = Field(..., min_length=1, description="Feature identifier")


class AccessResponse(BaseModel):
    has_access: bool
    is_premium: bool
    tier: str
    feature: str
    reason: Optional[str] = None
    expires_at: Optional[str] = None
    upgrade_url: Optional[str] = None


class CancelResponse(BaseModel):
    success: bool
    message: str
    ends_at: Optional[str] = None


class PaymentResponse(BaseModel):
    payment_ref: str
    amount: int
    currency: str
    status: str
    completed_at: Optional[str] = None


class PaymentHistoryResponse(BaseModel):
    payments: List[PaymentResponse]


@router.get("/verify", response_model=EntitlementResponse)
async def verify_subscription(
    account: AuthenticatedAccount = Depends(get_current_account),
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
):
    """Resolve the caller's entitlement (reconciled with the billing provider)."""
    entitlement = await resolver.resolve(account.account_id)
    return EntitlementResponse(**entitlement.to_dict())


@router.post("/check-access", response_model=AccessResponse)
async def check_access(
    body: CheckAccessRequest,
    account: AuthenticatedAccount = Depends(get_current_account),
    gate: FeatureGate = Depends(get_feature_gate),
):
    decision = await gate.check_access(account.account_id, body.feature_id)
    return AccessResponse(**decision.to_dict())


@router.post("/cancel", response_model=CancelResponse)
async def cancel_subscription(
    account: AuthenticatedAccount = Depends(get_current_account),
    billing_service: BillingService = Depends(get_billing_service),
):
    """
    Cancel at the end of the current billing period.

    Premium access continues until ends_at.
    """
    try:
        result = await billing_service.cancel(account.account_id)
    except NoProviderSubscriptionError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except BillingProviderError as e:
        raise provider_error_to_http(e, "cancel")
    except SubscriptionStoreError as e:
        logger.error("Failed to store cancellation", extra={
            "account_id": account.account_id,
            "error": str(e)
        })
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to record cancellation"
        )

    return CancelResponse(
        success=True,
        message="Subscription will be cancelled at the end of the billing period",
        ends_at=result.ends_at.isoformat() if result.ends_at else None,
    )


@router.post("/reactivate", response_model=CancelResponse)
async def reactivate_subscription(
    account: AuthenticatedAccount = Depends(get_current_account),
    billing_service: BillingService = Depends(get_billing_service),
):
    try:
        record = await billing_service.reactivate(account.account_id)
    except NoProviderSubscriptionError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except BillingProviderError as e:
        raise provider_error_to_http(e, "reactivate")
    except SubscriptionStoreError as e:
        logger.error("Failed to store reactivation", extra={
            "account_id": account.account_id,
            "error": str(e)
        })
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to record reactivation"
        )

    return CancelResponse(
        success=True,
        message="Subscription reactivated",
        ends_at=record.expires_at.isoformat() if record.expires_at else None,
    )


@router.get("/payments", response_model=PaymentHistoryResponse)
async def payment_history(
    limit: int = Query(100, ge=1, le=500),
    account: AuthenticatedAccount = Depends(get_current_account),
    billing_service: BillingService = Depends(get_billing_service),
):
    try:
        entries = billing_service.list_payment_history(account.account_id, limit=limit)
    except SubscriptionStoreError as e:
        logger.error("Failed to load payment history", extra={
            "account_id": account.account_id,
            "error": str(e)
        })
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to load payment history"
        )

    return PaymentHistoryResponse(payments=[
        PaymentResponse(
            payment_ref=entry.provider_payment_ref,
            amount=entry.amount,
            currency=entry.currency,
            status=entry.status,
            completed_at=entry.completed_at.isoformat() if entry.completed_at else None,
        )
        for entry in entries
    ])
