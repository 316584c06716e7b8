"""
Business logic services.
"""

from src.services.entitlement_resolver import EntitlementResolver, Entitlement
from src.services.feature_gate import FeatureGate, AccessDecision
from src.services.billing_service import BillingService
from src.services.billing_webhook_handler import BillingWebhookHandler
from src.services.admin_override import AdminOverrideService
from src.services.sign_in_service import SignInService

__all__ = [
    "EntitlementResolver",
    "Entitlement",
    "FeatureGate",
    "AccessDecision",
    "BillingService",
    "BillingWebhookHandler",
    "AdminOverrideService",
    "SignInService",
]
