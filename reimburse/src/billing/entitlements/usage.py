"""
Usage Meter

Gates countable and boolean features by tier. Two lazy maintenance steps run
before every check, both through the entitlement store:

- an expired signup trial is downgraded to free/canceled
- a passed usage window zeroes the counters and opens the next window

check_limit and increment_usage are separate calls. Concurrent requests for
the same user can overshoot a cap by at most the number in flight.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from dateutil.relativedelta import relativedelta

from reimburse.src.billing.domain.entitlement import EntitlementRecord, EntitlementStatus, utcnow
from reimburse.src.billing.shared.config import (
    BOOLEAN_FEATURES,
    COUNTABLE_FEATURES,
    TIERS,
    UNLIMITED,
    get_tier_limits,
    get_upgrade_tier,
)
from .store import EntitlementStore, entitlement_store

logger = logging.getLogger(__name__)


_COUNTABLE_DENIALS = {
    'receipt_uploads': "Upload limit reached ({limit}). Upgrade to {tier} for unlimited uploads.",
    'report_exports': "Report limit reached ({limit}). Upgrade to {tier} for unlimited reports.",
}

_FEATURE_DENIALS = {
    'email_ingestion': "Email receipt ingestion requires {tier} subscription.",
    'team_collaboration': "Team collaboration requires {tier} subscription.",
    'analytics': "Analytics dashboard requires {tier} subscription.",
    'custom_branding': "Custom branding requires {tier} subscription.",
    'csv_export': "CSV export requires {tier} subscription.",
    'priority_processing': "Priority processing requires {tier} subscription.",
}


@dataclass(frozen=True)
class UsageDecision:
    """
    Result of a usage check. A denial is a normal outcome, not an error.

    Attributes:
        allowed: Whether the gated operation may proceed
        reason: Why it was denied
        upgrade_required: Tier that unlocks the feature
        current_tier: Tier the decision was made against
        limit: Cap of a countable feature (-1 = unlimited)
        used: Current counter of a countable feature
    """
    allowed: bool
    reason: Optional[str] = None
    upgrade_required: Optional[str] = None
    current_tier: Optional[str] = None
    limit: Optional[int] = None
    used: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            'allowed': self.allowed,
            'reason': self.reason,
            'upgrade_required': self.upgrade_required,
            'current_tier': self.current_tier,
            'limit': self.limit,
            'used': self.used,
        }


def _expire_trial(record: EntitlementRecord) -> EntitlementRecord:
    # Re-checked on the locked row: a concurrent checkout may have activated it
    if not record.is_trial_expired():
        return record
    return record.canceled()


def _reset_usage_window(now: datetime):
    def mutation(record: EntitlementRecord) -> EntitlementRecord:
        if record.usage_reset_at is None or record.usage_reset_at > now:
            return record
        next_reset = record.usage_reset_at
        while next_reset <= now:
            next_reset = next_reset + relativedelta(months=1)
        return replace(record, receipt_uploads=0, report_exports=0, usage_reset_at=next_reset)
    return mutation


class UsageMeter:
    """Check-then-increment usage gate over the entitlement store."""

    def __init__(self, store: Optional[EntitlementStore] = None):
        self._store = store or entitlement_store

    async def check_limit(self, user_id: str, feature: str) -> UsageDecision:
        """
        Decide whether ``user_id`` may use ``feature`` right now.

        Args:
            user_id: User making the request
            feature: A countable feature (receipt_uploads, report_exports)
                or a boolean feature (csv_export, analytics, ...)

        Returns:
            UsageDecision
        """
        record = await self._store.find(user_id)
        if record is None:
            return UsageDecision(allowed=False, reason='User not found')

        record = await self._maintain(record)
        limits = get_tier_limits(record.tier)
        upgrade = get_upgrade_tier(feature)

        if feature in COUNTABLE_FEATURES:
            limit = getattr(limits, feature)
            used = record.usage_for(feature)
            if limit == UNLIMITED:
                return UsageDecision(allowed=True, current_tier=record.tier, limit=limit, used=used)
            if used >= limit:
                logger.info(f"[USAGE] {user_id} hit {feature} limit ({used}/{limit}) on {record.tier}")
                return UsageDecision(
                    allowed=False,
                    reason=_COUNTABLE_DENIALS[feature].format(limit=limit, tier=TIERS[upgrade].display_name),
                    upgrade_required=upgrade,
                    current_tier=record.tier,
                    limit=limit,
                    used=used,
                )
            return UsageDecision(allowed=True, current_tier=record.tier, limit=limit, used=used)

        if feature in BOOLEAN_FEATURES:
            if limits.has_feature(feature):
                return UsageDecision(allowed=True, current_tier=record.tier)
            return UsageDecision(
                allowed=False,
                reason=_FEATURE_DENIALS[feature].format(tier=TIERS[upgrade].display_name),
                upgrade_required=upgrade,
                current_tier=record.tier,
            )

        logger.warning(f"[USAGE] Unknown feature '{feature}' requested by {user_id}")
        return UsageDecision(allowed=False, reason='Unknown feature', current_tier=record.tier)

    async def increment_usage(self, user_id: str, feature: str) -> None:
        """
        Count one use. Call only after the gated operation succeeded.

        Raises:
            ValueError: feature is not countable
            UserNotFoundError: No record for this user
        """
        await self._store.increment_usage(user_id, feature)

    async def _maintain(self, record: EntitlementRecord) -> EntitlementRecord:
        now = utcnow()

        if record.is_trial_expired(now):
            logger.info(f"[USAGE] Trial expired for {record.user_id}, downgrading to free")
            result = await self._store.apply_transition(record.user_id, _expire_trial)
            record = result.after

        if record.usage_reset_at is not None and record.usage_reset_at <= now:
            logger.info(f"[USAGE] Usage window elapsed for {record.user_id}, resetting counters")
            result = await self._store.apply_transition(record.user_id, _reset_usage_window(now))
            record = result.after

        return record


usage_meter = UsageMeter()
