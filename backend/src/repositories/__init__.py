"""Repository layer over the subscription store."""

from src.repositories.subscription_repository import (
    SubscriptionRepository,
    SubscriptionStoreError,
    SubscriptionNotFoundError,
)
from src.repositories.account_repository import AccountRepository

__all__ = [
    "SubscriptionRepository",
    "SubscriptionStoreError",
    "SubscriptionNotFoundError",
    "AccountRepository",
]
