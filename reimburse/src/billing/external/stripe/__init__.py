"""
Stripe Integration Module

- Async API wrapper with per-call, mode-scoped credentials
- Idempotency key generation
- Webhook verification, parsing and dispatch

Usage:
    from reimburse.src.billing.external.stripe import (
        StripeAPIWrapper,
        stripe_idempotency_manager,
        webhook_service,
    )

    customer = await StripeAPIWrapper.create_customer(
        email="user@example.com",
        idempotency_key=stripe_idempotency_manager.generate_customer_key(user_id),
    )
"""

from .client import StripeAPIWrapper

from .idempotency import (
    StripeIdempotencyManager,
    stripe_idempotency_manager,
)

from .parser import parse_event

from .webhooks import (
    WebhookResult,
    WebhookService,
    webhook_service,
)

__all__ = [
    'StripeAPIWrapper',
    'StripeIdempotencyManager',
    'stripe_idempotency_manager',
    'parse_event',
    'WebhookResult',
    'WebhookService',
    'webhook_service',
]
