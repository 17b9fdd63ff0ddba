"""Tests for the Stripe API wrapper and idempotency keys."""

from unittest.mock import AsyncMock, patch

import pytest
import stripe

from reimburse.core.conf import StripeCredentials
from reimburse.src.billing.external.stripe import StripeAPIWrapper, stripe_idempotency_manager
from reimburse.src.billing.shared.exceptions import BillingConfigurationError, UpstreamUnavailableError


class TestSafeStripeCall:

    @pytest.mark.asyncio
    async def test_passes_mode_credentials(self, stripe_credentials):
        """Test every call carries the configured mode's key and the pinned API version."""
        func = AsyncMock(return_value={'id': 'cus_1'})

        result = await StripeAPIWrapper.safe_stripe_call(func, email='a@example.com')

        assert result == {'id': 'cus_1'}
        kwargs = func.await_args.kwargs
        assert kwargs['api_key'] == 'sk_test_123'
        assert kwargs['stripe_version'] == '2024-06-20'
        assert kwargs['email'] == 'a@example.com'

    @pytest.mark.asyncio
    async def test_stripe_error_is_upstream_unavailable(self, stripe_credentials):
        func = AsyncMock(side_effect=stripe.APIConnectionError('Network error'))

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await StripeAPIWrapper.safe_stripe_call(func)

        assert exc_info.value.status_code == 503
        assert isinstance(exc_info.value.__cause__, stripe.APIConnectionError)

    @pytest.mark.asyncio
    async def test_missing_secret_key(self):
        func = AsyncMock()
        credentials = StripeCredentials(mode='live', secret_key='', webhook_secret='whsec')

        with patch('reimburse.src.billing.external.stripe.client.get_stripe_credentials', return_value=credentials):
            with pytest.raises(BillingConfigurationError) as exc_info:
                await StripeAPIWrapper.safe_stripe_call(func)

        assert exc_info.value.details == {'setting': 'STRIPE_SECRET_KEY_LIVE'}
        func.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_customer(self, stripe_credentials):
        with patch('stripe.Customer.create_async', new_callable=AsyncMock) as create:
            create.return_value = {'id': 'cus_1'}

            await StripeAPIWrapper.create_customer(email='a@example.com', idempotency_key='key')

        create.assert_awaited_once_with(
            api_key='sk_test_123', stripe_version='2024-06-20', email='a@example.com', idempotency_key='key'
        )


class TestIdempotencyKeys:

    def test_customer_key_is_stable(self):
        assert stripe_idempotency_manager.generate_customer_key('u1') == stripe_idempotency_manager.generate_customer_key('u1')
        assert stripe_idempotency_manager.generate_customer_key('u1') != stripe_idempotency_manager.generate_customer_key('u2')
        assert len(stripe_idempotency_manager.generate_customer_key('u1')) == 40

    def test_checkout_key_depends_on_plan(self):
        monthly = stripe_idempotency_manager.generate_checkout_key('u1', 'cus_1', 'pro', 'monthly')
        yearly = stripe_idempotency_manager.generate_checkout_key('u1', 'cus_1', 'pro', 'yearly')
        referred = stripe_idempotency_manager.generate_checkout_key('u1', 'cus_1', 'pro', 'monthly', 'REF')

        assert monthly != yearly
        assert monthly != referred
