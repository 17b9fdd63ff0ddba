"""Domain entities for billing module."""

from .entitlement import (
    EntitlementRecord,
    EntitlementStatus,
    SubscriptionEventEntry,
    TransitionResult,
    find_invariant_violations,
)
from .events import (
    BillingEvent,
    CheckoutCompleted,
    InvoicePaymentFailed,
    InvoicePaymentSucceeded,
    SubscriptionChanged,
    SubscriptionDeleted,
    TrialWillEnd,
    UnknownEvent,
)

__all__ = [
    'EntitlementRecord',
    'EntitlementStatus',
    'SubscriptionEventEntry',
    'TransitionResult',
    'find_invariant_violations',
    'BillingEvent',
    'CheckoutCompleted',
    'InvoicePaymentFailed',
    'InvoicePaymentSucceeded',
    'SubscriptionChanged',
    'SubscriptionDeleted',
    'TrialWillEnd',
    'UnknownEvent',
]
