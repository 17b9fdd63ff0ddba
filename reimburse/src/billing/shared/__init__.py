"""
Shared Billing Utilities

- config: Tier catalogue and price/amount resolution
- exceptions: BillingError hierarchy
- audit: Non-blocking audit side-channel
- rate_limit: Redis fixed-window limiter
- users: Read access to the auth collaborator's users
"""

from .config import (
    Tier,
    TierLimits,
    TIERS,
    get_tier_by_name,
    get_tier_by_price_id,
    get_tier_by_amount,
    get_tier_limits,
    resolve_tier,
    resolve_tier_from_items,
)

from .exceptions import (
    BillingError,
    BillingConfigurationError,
    WebhookAuthenticationError,
    UserNotFoundError,
    InvariantViolationError,
    DuplicateEventError,
    UpstreamUnavailableError,
    EmailNotVerifiedError,
    ActiveSubscriptionError,
    InvalidPlanError,
    SessionOwnershipError,
    CheckoutSessionNotFoundError,
)

__all__ = [
    'Tier',
    'TierLimits',
    'TIERS',
    'get_tier_by_name',
    'get_tier_by_price_id',
    'get_tier_by_amount',
    'get_tier_limits',
    'resolve_tier',
    'resolve_tier_from_items',
    'BillingError',
    'BillingConfigurationError',
    'WebhookAuthenticationError',
    'UserNotFoundError',
    'InvariantViolationError',
    'DuplicateEventError',
    'UpstreamUnavailableError',
    'EmailNotVerifiedError',
    'ActiveSubscriptionError',
    'InvalidPlanError',
    'SessionOwnershipError',
    'CheckoutSessionNotFoundError',
]
