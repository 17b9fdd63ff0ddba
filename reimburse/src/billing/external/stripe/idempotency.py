"""
Stripe Idempotency Key Generation

Deterministic idempotency keys for Stripe calls, so a retried request
returns the object the first attempt created instead of a duplicate.
"""

import hashlib
import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


class StripeIdempotencyManager:
    """
    Generates deterministic idempotency keys for Stripe operations.

    Usage:
        key = stripe_idempotency_manager.generate_customer_key(user_id)
        customer = await StripeAPIWrapper.create_customer(idempotency_key=key, ...)
    """

    def generate_key(
        self,
        operation: str,
        user_id: str,
        *args,
        time_bucket_minutes: Optional[int] = 5,
        **kwargs
    ) -> str:
        """
        Generate an idempotency key.

        Args:
            operation: Operation type (e.g., 'checkout', 'create_customer')
            user_id: User identifier
            *args: Additional positional arguments to include in key
            time_bucket_minutes: Window within which retries share a key.
                None makes the key depend on the arguments only.
            **kwargs: Additional keyword arguments to include in key

        Returns:
            40-character hex idempotency key
        """
        components = [
            operation,
            user_id,
            *[str(arg) for arg in args],
            *[f"{k}={v}" for k, v in sorted(kwargs.items())],
        ]

        if time_bucket_minutes:
            bucket = int(datetime.now(timezone.utc).timestamp() // (time_bucket_minutes * 60))
            components.append(str(bucket))

        return hashlib.sha256("_".join(components).encode()).hexdigest()[:40]

    def generate_customer_key(self, user_id: str) -> str:
        """One customer per user, whenever the call is retried."""
        return self.generate_key('create_customer', user_id, time_bucket_minutes=None)

    def generate_checkout_key(
        self,
        user_id: str,
        customer_ref: str,
        tier: str,
        billing_cycle: str,
        referral_code: Optional[str] = None
    ) -> str:
        """Key for a checkout session; a double-submit within the window returns the same session."""
        return self.generate_key(
            'checkout',
            user_id,
            customer_ref,
            tier,
            billing_cycle,
            referral_code=referral_code or 'none'
        )


# Global instance
stripe_idempotency_manager = StripeIdempotencyManager()
