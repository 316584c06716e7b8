"""
Unit tests for BillingService.

Tests cover:
- Checkout session creation and the server-side cross-reference
- Payment verification: anti-spoofing, pending sessions, premium upgrade
- Cancel at period end / reactivate
- Customer portal and payment history
"""

import pytest
from datetime import datetime, timezone, timedelta

from src.integrations.stripe.billing_client import (
    BillingProviderUnavailableError,
    BillingObjectNotFoundError,
)
from src.models.payment_history import PaymentEntry
from src.models.subscription import (
    SubscriptionRecord,
    SubscriptionTier,
    SubscriptionStatus,
    BillingPeriod,
)
from src.services.admin_override import admin_record
from src.services.billing_service import (
    BillingService,
    AccountNotFoundError,
    CheckoutError,
    SessionOwnershipError,
    NoProviderSubscriptionError,
    NoBillingCustomerError,
    VerificationStatus,
)


@pytest.fixture
def billing_service(subscription_repository, account_repository, billing_client, fixed_now):
    return BillingService(
        subscription_repository,
        account_repository,
        billing_client,
        clock=lambda: fixed_now,
    )


@pytest.fixture
def account(create_account):
    return create_account("learner@example.com")


class TestCreateCheckoutSession:

    @pytest.mark.asyncio
    async def test_creates_session_with_account_cross_reference(self, billing_service, billing_client, account):
        result = await billing_service.create_checkout_session(
            account_id=account.id,
            plan_id="premium_monthly",
            price_ref="price_monthly",
            success_url="https://app.test/payment/success",
            cancel_url="https://app.test/subscription",
        )

        assert result.session_id.startswith("cs_test_")
        assert result.checkout_url
        assert billing_client.calls_to("create_checkout_session") == [
            ("create_checkout_session", account.id, "premium_monthly", "price_monthly")
        ]

    @pytest.mark.asyncio
    async def test_unknown_account_is_rejected(self, billing_service, billing_client):
        with pytest.raises(AccountNotFoundError):
            await billing_service.create_checkout_session(
                account_id="ghost",
                plan_id="premium_monthly",
                price_ref="price_monthly",
                success_url="https://app.test/ok",
                cancel_url="https://app.test/cancel",
            )
        assert billing_client.calls == []

    @pytest.mark.asyncio
    async def test_missing_price_is_rejected(self, billing_service, account):
        with pytest.raises(CheckoutError):
            await billing_service.create_checkout_session(
                account_id=account.id,
                plan_id="premium_monthly",
                price_ref="",
                success_url="https://app.test/ok",
                cancel_url="https://app.test/cancel",
            )


class TestVerifyPayment:

    @pytest.mark.asyncio
    async def test_paid_session_upgrades_account(self, billing_service, billing_client, subscription_repository, account):
        period_end = datetime(2030, 1, 31, tzinfo=timezone.utc)
        subscription = billing_client.add_subscription(
            "sub_paid", account_id=account.id, current_period_end=period_end, interval="year"
        )
        billing_client.add_checkout_session("cs_paid", account_id=account.id, subscription=subscription)

        result = await billing_service.verify_payment("cs_paid", account.id)

        assert result.status == VerificationStatus.COMPLETED
        assert result.amount_total == 9.99
        assert result.subscription_ref == "sub_paid"

        record = subscription_repository.get(account.id)
        assert record.tier == SubscriptionTier.PREMIUM
        assert record.status == SubscriptionStatus.ACTIVE
        assert record.expires_at == period_end
        assert record.billing_period == BillingPeriod.YEARLY
        assert record.plan_id == "premium_monthly"
        assert record.provider_subscription_ref == "sub_paid"
        assert record.provider_customer_ref == "cus_test_123"

    @pytest.mark.asyncio
    async def test_session_of_another_account_is_rejected(self, billing_service, billing_client, subscription_repository, account):
        subscription = billing_client.add_subscription("sub_other", account_id="someone-else")
        billing_client.add_checkout_session("cs_other", account_id="someone-else", subscription=subscription)

        with pytest.raises(SessionOwnershipError):
            await billing_service.verify_payment("cs_other", account.id)

        assert subscription_repository.find(account.id) is None
        assert subscription_repository.find("someone-else") is None

    @pytest.mark.asyncio
    async def test_session_without_originating_account_is_rejected(self, billing_service, billing_client, account):
        billing_client.add_checkout_session("cs_anon", account_id=None)

        with pytest.raises(SessionOwnershipError):
            await billing_service.verify_payment("cs_anon", account.id)

    @pytest.mark.asyncio
    async def test_unpaid_session_is_pending_and_writes_nothing(self, billing_service, billing_client, subscription_repository, account):
        subscription_repository.create_default(account.id)
        before = subscription_repository.get(account.id)
        billing_client.add_checkout_session("cs_unpaid", account_id=account.id, payment_status="unpaid")

        result = await billing_service.verify_payment("cs_unpaid", account.id)

        assert result.status == VerificationStatus.PENDING
        assert result.payment_status == "unpaid"
        assert subscription_repository.get(account.id) == before

    @pytest.mark.asyncio
    async def test_paid_session_keeps_admin_grant(self, billing_service, billing_client, subscription_repository, account):
        subscription_repository.upsert(admin_record(account.id))
        subscription = billing_client.add_subscription("sub_admin", account_id=account.id, customer_ref="cus_admin")
        billing_client.add_checkout_session("cs_admin", account_id=account.id, subscription=subscription)

        result = await billing_service.verify_payment("cs_admin", account.id)

        assert result.status == VerificationStatus.COMPLETED
        assert result.expires_at is None
        record = subscription_repository.get(account.id)
        assert record.is_admin_granted is True
        assert record.provider_subscription_ref is None
        assert record.provider_customer_ref == "cus_admin"

    @pytest.mark.asyncio
    async def test_unexpanded_subscription_is_fetched(self, billing_service, billing_client, subscription_repository, account):
        subscription = billing_client.add_subscription("sub_lazy", account_id=account.id)
        session = billing_client.add_checkout_session("cs_lazy", account_id=account.id, subscription=subscription)
        session.subscription = None

        await billing_service.verify_payment("cs_lazy", account.id)

        assert ("retrieve_subscription", "sub_lazy") in billing_client.calls
        assert subscription_repository.get(account.id).provider_subscription_ref == "sub_lazy"

    @pytest.mark.asyncio
    async def test_provider_outage_is_surfaced(self, billing_service, billing_client, subscription_repository, account):
        billing_client.configure_failure(BillingProviderUnavailableError("timed out", code="timeout"))

        with pytest.raises(BillingProviderUnavailableError):
            await billing_service.verify_payment("cs_any", account.id)

        assert subscription_repository.find(account.id) is None

    @pytest.mark.asyncio
    async def test_unknown_session_is_not_found(self, billing_service, account):
        with pytest.raises(BillingObjectNotFoundError):
            await billing_service.verify_payment("cs_missing", account.id)


def stored_premium(subscription_repository, account_id, expires_at, **changes):
    record = SubscriptionRecord(
        account_id=account_id,
        tier=SubscriptionTier.PREMIUM,
        status=SubscriptionStatus.ACTIVE,
        expires_at=expires_at,
        billing_period=BillingPeriod.MONTHLY,
        plan_id="premium_monthly",
        provider_customer_ref="cus_test_123",
        provider_subscription_ref="sub_1",
    ).with_changes(**changes)
    return subscription_repository.upsert(record)


class TestCancelAndReactivate:

    @pytest.mark.asyncio
    async def test_cancel_schedules_end_of_period(self, billing_service, billing_client, subscription_repository, fixed_now):
        period_end = fixed_now + timedelta(days=12)
        stored_premium(subscription_repository, "acc", expires_at=period_end)
        billing_client.add_subscription("sub_1", current_period_end=period_end)

        result = await billing_service.cancel("acc")

        assert result.ends_at == period_end
        assert billing_client.calls_to("set_cancel_at_period_end") == [("set_cancel_at_period_end", "sub_1", True)]

        record = subscription_repository.get("acc")
        assert record.status == SubscriptionStatus.CANCELLED
        assert record.cancelled_at == fixed_now
        assert record.expires_at == period_end
        assert record.tier == SubscriptionTier.PREMIUM

    @pytest.mark.asyncio
    async def test_cancel_without_provider_subscription(self, billing_service, subscription_repository):
        subscription_repository.create_default("acc")

        with pytest.raises(NoProviderSubscriptionError):
            await billing_service.cancel("acc")

    @pytest.mark.asyncio
    async def test_cancel_provider_failure_writes_nothing(self, billing_service, billing_client, subscription_repository, fixed_now):
        before = stored_premium(subscription_repository, "acc", expires_at=fixed_now + timedelta(days=3))
        billing_client.configure_failure(BillingProviderUnavailableError("down"))

        with pytest.raises(BillingProviderUnavailableError):
            await billing_service.cancel("acc")

        assert subscription_repository.get("acc") == before

    @pytest.mark.asyncio
    async def test_reactivate_clears_cancellation(self, billing_service, billing_client, subscription_repository, fixed_now):
        period_end = fixed_now + timedelta(days=12)
        stored_premium(
            subscription_repository, "acc",
            expires_at=period_end,
            status=SubscriptionStatus.CANCELLED,
            cancelled_at=fixed_now - timedelta(days=1),
        )
        billing_client.add_subscription("sub_1", current_period_end=period_end)

        record = await billing_service.reactivate("acc")

        assert record.status == SubscriptionStatus.ACTIVE
        assert record.cancelled_at is None
        assert subscription_repository.get("acc") == record
        assert billing_client.calls_to("set_cancel_at_period_end") == [("set_cancel_at_period_end", "sub_1", False)]

    @pytest.mark.asyncio
    async def test_verify_payment_again_after_cancel_keeps_cancellation(self, billing_service, billing_client, subscription_repository, account, fixed_now):
        period_end = fixed_now + timedelta(days=20)
        subscription = billing_client.add_subscription("sub_1", account_id=account.id, current_period_end=period_end)
        billing_client.add_checkout_session("cs_paid", account_id=account.id, subscription=subscription)
        await billing_service.verify_payment("cs_paid", account.id)

        await billing_service.cancel(account.id)
        await billing_service.verify_payment("cs_paid", account.id)

        record = subscription_repository.get(account.id)
        assert record.status == SubscriptionStatus.CANCELLED
        assert record.cancelled_at == fixed_now
        assert record.expires_at == period_end

    @pytest.mark.asyncio
    async def test_reactivate_ended_subscription_is_rejected(self, billing_service, billing_client, subscription_repository, fixed_now):
        stored_premium(subscription_repository, "acc", expires_at=fixed_now, status=SubscriptionStatus.CANCELLED)
        billing_client.add_subscription("sub_1", status="canceled")

        with pytest.raises(NoProviderSubscriptionError):
            await billing_service.reactivate("acc")


class TestPortalAndHistory:

    @pytest.mark.asyncio
    async def test_portal_requires_billing_customer(self, billing_service, subscription_repository):
        subscription_repository.create_default("acc")

        with pytest.raises(NoBillingCustomerError):
            await billing_service.create_portal_session("acc", "https://app.test/subscription")

    @pytest.mark.asyncio
    async def test_portal_url_for_customer(self, billing_service, subscription_repository, fixed_now):
        stored_premium(subscription_repository, "acc", expires_at=fixed_now + timedelta(days=1))

        url = await billing_service.create_portal_session("acc", "https://app.test/subscription")

        assert url == "https://billing.stripe.test/session/cus_test_123"

    @pytest.mark.asyncio
    async def test_update_payment_method_for_customer(self, billing_service, billing_client, subscription_repository, fixed_now):
        stored_premium(subscription_repository, "acc", expires_at=fixed_now + timedelta(days=1))

        await billing_service.update_payment_method("acc", "pm_new")

        assert billing_client.default_payment_methods == {"cus_test_123": "pm_new"}

    @pytest.mark.asyncio
    async def test_update_payment_method_requires_billing_customer(self, billing_service, billing_client, subscription_repository):
        subscription_repository.create_default("acc")

        with pytest.raises(NoBillingCustomerError):
            await billing_service.update_payment_method("acc", "pm_new")
        assert billing_client.calls == []

    def test_payment_history_newest_first(self, billing_service, subscription_repository):
        for day, ref in [(1, "pi_old"), (3, "pi_new"), (2, "pi_mid")]:
            subscription_repository.append_payment(PaymentEntry(
                account_id="acc",
                provider_payment_ref=ref,
                amount=999,
                currency="eur",
                completed_at=datetime(2025, 1, day, tzinfo=timezone.utc),
            ))

        history = billing_service.list_payment_history("acc")

        assert [entry.provider_payment_ref for entry in history] == ["pi_new", "pi_mid", "pi_old"]
        assert all(entry.currency == "EUR" for entry in history)
