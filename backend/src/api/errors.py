"""
HTTP translation of billing provider failures.

- not found: 404
- unavailable (timeout, connection, rate limit, 5xx): 503
- anything else the provider rejected: 502 with the provider's message
"""

import logging

from fastapi import HTTPException, status

from src.integrations.stripe.billing_client import (
    BillingProviderError,
    BillingProviderUnavailableError,
    BillingObjectNotFoundError,
)

logger = logging.getLogger(__name__)


def provider_error_to_http(error: BillingProviderError, operation: str) -> HTTPException:
    if isinstance(error, BillingObjectNotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error.message
        )

    if isinstance(error, BillingProviderUnavailableError):
        logger.warning("Billing provider unavailable", extra={
            "operation": operation,
            "error": error.message
        })
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider is temporarily unavailable. Please try again."
        )

    logger.error("Billing provider error", extra={
        "operation": operation,
        "code": error.code,
        "error": error.message
    })
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=error.message
    )
