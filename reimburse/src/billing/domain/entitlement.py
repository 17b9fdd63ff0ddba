"""
Entitlement Domain Entity

Represents what a user is currently entitled to: tier, lifecycle status,
period boundaries, Stripe references, discount state and usage counters.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from reimburse.src.billing.shared.config import PAID_TIERS, TIER_FREE


class EntitlementStatus(str, Enum):
    """Lifecycle statuses of an entitlement."""
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class EntitlementRecord:
    """
    One row per user, owned by the entitlement store.

    Attributes:
        user_id: Owner, immutable
        tier: 'free', 'pro' or 'premium'
        status: Lifecycle status
        trial_end: End of the signup trial
        period_end: End of the paid period
        billing_customer_ref: Stripe customer id, set once
        billing_subscription_ref: Stripe subscription id, cleared on cancellation
        early_adopter: Whether the lifetime discount applies
        lifetime_discount_percent: 0..100, never decreased
        receipt_uploads: Uploads in the current usage window
        report_exports: Exports in the current usage window
        usage_reset_at: When the usage window rolls over
        last_event_at: Timestamp of the newest lifecycle event applied
    """
    user_id: str
    tier: str = TIER_FREE
    status: EntitlementStatus = EntitlementStatus.TRIAL
    trial_end: Optional[datetime] = None
    period_end: Optional[datetime] = None
    billing_customer_ref: Optional[str] = None
    billing_subscription_ref: Optional[str] = None
    early_adopter: bool = False
    lifetime_discount_percent: int = 0
    receipt_uploads: int = 0
    report_exports: int = 0
    usage_reset_at: Optional[datetime] = None
    last_event_at: Optional[datetime] = None

    def is_paid(self) -> bool:
        return self.tier in PAID_TIERS

    def has_active_paid_subscription(self) -> bool:
        """Paid tier on any status that is still billed."""
        return self.is_paid() and self.status != EntitlementStatus.CANCELED

    def is_trial_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return (
            self.status == EntitlementStatus.TRIAL
            and self.trial_end is not None
            and self.trial_end < now
        )

    def usage_for(self, feature: str) -> int:
        return getattr(self, feature)

    def canceled(self) -> 'EntitlementRecord':
        """The deletion shape: free, canceled, no period, no subscription."""
        return replace(
            self,
            tier=TIER_FREE,
            status=EntitlementStatus.CANCELED,
            period_end=None,
            billing_subscription_ref=None,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'EntitlementRecord':
        return cls(
            user_id=row['user_id'],
            tier=row['tier'],
            status=EntitlementStatus(row['status']),
            trial_end=as_utc(row.get('trial_end')),
            period_end=as_utc(row.get('period_end')),
            billing_customer_ref=row.get('billing_customer_ref'),
            billing_subscription_ref=row.get('billing_subscription_ref'),
            early_adopter=bool(row.get('early_adopter')),
            lifetime_discount_percent=row.get('lifetime_discount_percent') or 0,
            receipt_uploads=row.get('receipt_uploads') or 0,
            report_exports=row.get('report_exports') or 0,
            usage_reset_at=as_utc(row.get('usage_reset_at')),
            last_event_at=as_utc(row.get('last_event_at')),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'tier': self.tier,
            'status': self.status.value,
            'trial_end': self.trial_end,
            'period_end': self.period_end,
            'billing_customer_ref': self.billing_customer_ref,
            'billing_subscription_ref': self.billing_subscription_ref,
            'early_adopter': self.early_adopter,
            'lifetime_discount_percent': self.lifetime_discount_percent,
            'receipt_uploads': self.receipt_uploads,
            'report_exports': self.report_exports,
            'usage_reset_at': self.usage_reset_at,
            'last_event_at': self.last_event_at,
        }

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses. Stripe refs are not exposed."""
        return {
            'tier': self.tier,
            'status': self.status.value,
            'trial_end': self.trial_end.isoformat() if self.trial_end else None,
            'period_end': self.period_end.isoformat() if self.period_end else None,
            'early_adopter': self.early_adopter,
            'lifetime_discount_percent': self.lifetime_discount_percent,
            'usage': {
                'receipt_uploads': self.receipt_uploads,
                'report_exports': self.report_exports,
                'reset_at': self.usage_reset_at.isoformat() if self.usage_reset_at else None,
            },
            'has_active_subscription': self.has_active_paid_subscription(),
        }


def find_invariant_violations(
    before: Optional[EntitlementRecord],
    after: EntitlementRecord,
) -> List[str]:
    """
    Check a candidate record, and its change from ``before``, for consistency.

    Returns:
        Human-readable violations, empty when the record is consistent
    """
    violations = []

    if after.status == EntitlementStatus.CANCELED and after.tier != TIER_FREE:
        violations.append(f"status canceled with tier {after.tier}")
    if after.tier == TIER_FREE and after.billing_subscription_ref is not None:
        violations.append("free tier with a subscription ref")
    if after.tier in PAID_TIERS and after.billing_customer_ref is None:
        violations.append(f"tier {after.tier} without a customer ref")
    if after.receipt_uploads < 0 or after.report_exports < 0:
        violations.append("negative usage counter")
    if not 0 <= after.lifetime_discount_percent <= 100:
        violations.append(f"discount {after.lifetime_discount_percent} outside 0..100")

    if before is not None:
        if after.user_id != before.user_id:
            violations.append("user_id changed")
        if after.lifetime_discount_percent < before.lifetime_discount_percent:
            violations.append("lifetime discount decreased")
        if (
            before.billing_customer_ref is not None
            and after.billing_customer_ref is not None
            and after.billing_customer_ref != before.billing_customer_ref
        ):
            violations.append("customer ref replaced")

    return violations


@dataclass(frozen=True)
class SubscriptionEventEntry:
    """
    A ledger row to append alongside a transition.

    The store fills user_id and the before/after tier and status.
    """
    event_type: str
    external_event_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of EntitlementStore.apply_transition."""
    before: EntitlementRecord
    after: EntitlementRecord
    stale: bool = False

    @property
    def changed(self) -> bool:
        return self.before != self.after
