"""
Authentication dependency.

Resolves the caller from the application JWT in the Authorization header.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.auth.token_service import AuthenticatedAccount, TokenError
from src.api.dependencies.services import get_container
from src.platform.container import ServiceContainer

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    container: ServiceContainer = Depends(get_container),
) -> AuthenticatedAccount:
    """
    Dependency returning the authenticated account.

    Raises 401 Unauthorized when the token is missing or invalid.
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return container.token_service.verify(credentials.credentials)
    except TokenError as e:
        logger.info("Rejected application token", extra={"error_code": e.error_code})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
