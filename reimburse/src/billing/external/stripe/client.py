"""
Stripe API Client Wrapper

All Stripe API calls go through this wrapper. It passes the credentials of
the configured mode on every call and turns Stripe failures into
UpstreamUnavailableError so callers can answer with a retryable error.
"""

import logging
from typing import Any, Callable

import stripe

from reimburse.core.conf import get_settings, get_stripe_credentials
from reimburse.src.billing.shared.exceptions import BillingConfigurationError, UpstreamUnavailableError

logger = logging.getLogger(__name__)


class StripeAPIWrapper:
    """
    Safe wrapper for Stripe API calls.

    All methods are async class methods that can be called directly:
        customer = await StripeAPIWrapper.create_customer(email="test@example.com")
    """

    @classmethod
    def _request_options(cls) -> dict:
        """Per-call credentials for the configured mode."""
        credentials = get_stripe_credentials()
        if not credentials.secret_key:
            logger.error(f"[STRIPE CLIENT] No secret key configured for {credentials.mode} mode")
            raise BillingConfigurationError(
                f"Stripe {credentials.mode} secret key not configured",
                setting=f"STRIPE_SECRET_KEY_{credentials.mode.upper()}",
            )
        return {
            'api_key': credentials.secret_key,
            'stripe_version': get_settings().STRIPE_API_VERSION,
        }

    @classmethod
    async def safe_stripe_call(cls, func: Callable, *args, **kwargs) -> Any:
        """
        Execute a Stripe API call.

        Args:
            func: Async Stripe API function
            *args: Positional arguments
            **kwargs: Keyword arguments

        Returns:
            Result from Stripe API

        Raises:
            BillingConfigurationError: No secret key for the configured mode
            UpstreamUnavailableError: Stripe rejected the call or could not be reached
        """
        options = cls._request_options()
        try:
            return await func(*args, **options, **kwargs)
        except stripe.StripeError as e:
            operation = getattr(func, '__qualname__', str(func))
            logger.error(f"[STRIPE CLIENT] {operation} failed: {e}")
            raise UpstreamUnavailableError(
                operation=operation,
                stripe_error=getattr(e, 'user_message', None) or str(e),
            ) from e

    # -------------------------------------------------------------------------
    # Customer Operations
    # -------------------------------------------------------------------------

    @classmethod
    async def create_customer(cls, **kwargs) -> 'stripe.Customer':
        """
        Create a new Stripe customer.

        Args:
            email: Customer email
            metadata: Additional metadata (optional)
            idempotency_key: Deterministic key so a retry returns the same customer

        Returns:
            Stripe Customer object
        """
        return await cls.safe_stripe_call(stripe.Customer.create_async, **kwargs)

    # -------------------------------------------------------------------------
    # Checkout Session Operations
    # -------------------------------------------------------------------------

    @classmethod
    async def create_checkout_session(cls, **kwargs) -> 'stripe.checkout.Session':
        """
        Create a Stripe Checkout session.

        Args:
            mode: 'subscription'
            line_items: List of items
            success_url: Redirect URL on success
            cancel_url: Redirect URL on cancel
            customer: Existing customer ID
            metadata: Additional metadata

        Returns:
            Stripe Checkout Session object
        """
        return await cls.safe_stripe_call(stripe.checkout.Session.create_async, **kwargs)

    @classmethod
    async def retrieve_checkout_session(cls, session_id: str, **kwargs) -> 'stripe.checkout.Session':
        """Retrieve a checkout session by ID."""
        return await cls.safe_stripe_call(stripe.checkout.Session.retrieve_async, session_id, **kwargs)
