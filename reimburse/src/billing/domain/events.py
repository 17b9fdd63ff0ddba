"""
Billing Event Variants

Provider-neutral events produced from verified webhook payloads. The
webhook service dispatches on these classes; any type it does not know
arrives as UnknownEvent and is acknowledged without processing.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class BillingEvent:
    """
    Common envelope of every event.

    Attributes:
        event_id: Provider event id, the deduplication key
        event_type: Provider event type string
        created: When the provider generated the event
    """
    event_id: str
    event_type: str
    created: Optional[datetime] = None

    # Identifiers used to find the user, in lookup order
    subscription_ref: Optional[str] = None
    customer_ref: Optional[str] = None
    user_id: Optional[str] = None


@dataclass(frozen=True)
class CheckoutCompleted(BillingEvent):
    session_id: Optional[str] = None
    tier: Optional[str] = None
    billing_cycle: str = 'monthly'
    referral_code: Optional[str] = None
    amount_total: Optional[int] = None


@dataclass(frozen=True)
class SubscriptionChanged(BillingEvent):
    """created or updated: carries the absolute subscription state."""
    action: str = 'updated'
    provider_status: Optional[str] = None
    items: List[Dict[str, Any]] = field(default_factory=list)
    period_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None


@dataclass(frozen=True)
class SubscriptionDeleted(BillingEvent):
    pass


@dataclass(frozen=True)
class InvoicePaymentSucceeded(BillingEvent):
    invoice_id: Optional[str] = None
    amount_paid: Optional[int] = None
    billing_reason: Optional[str] = None


@dataclass(frozen=True)
class InvoicePaymentFailed(BillingEvent):
    invoice_id: Optional[str] = None
    attempt_count: Optional[int] = None


@dataclass(frozen=True)
class TrialWillEnd(BillingEvent):
    trial_end: Optional[datetime] = None


@dataclass(frozen=True)
class UnknownEvent(BillingEvent):
    pass
