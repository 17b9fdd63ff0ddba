"""
Subscription Webhook Handler

Builds entitlement transitions for subscription lifecycle events:
- customer.subscription.created
- customer.subscription.updated
- customer.subscription.deleted

Every transition sets absolute state (tier, status, period end), never deltas.
"""

import logging
from dataclasses import replace
from typing import Optional

from reimburse.src.billing.domain.entitlement import EntitlementRecord, EntitlementStatus
from reimburse.src.billing.domain.events import SubscriptionChanged, SubscriptionDeleted
from reimburse.src.billing.shared.config import resolve_tier_from_items

logger = logging.getLogger(__name__)


# Stripe subscription status -> entitlement status
STRIPE_STATUS_MAP = {
    'trialing': EntitlementStatus.TRIAL,
    'active': EntitlementStatus.ACTIVE,
    'past_due': EntitlementStatus.PAST_DUE,
    'unpaid': EntitlementStatus.PAST_DUE,
    'incomplete': EntitlementStatus.PAST_DUE,
    'canceled': EntitlementStatus.CANCELED,
    'incomplete_expired': EntitlementStatus.CANCELED,
}


def map_stripe_status(provider_status: Optional[str]) -> Optional[EntitlementStatus]:
    return STRIPE_STATUS_MAP.get(provider_status)


class SubscriptionHandler:
    """Transitions for the subscription lifecycle."""

    @classmethod
    def build_changed_transition(cls, event: SubscriptionChanged):
        """
        created / updated: re-resolve the tier and take the provider's status
        and period end. Usage counters are left alone.
        """
        status = map_stripe_status(event.provider_status)
        tier = resolve_tier_from_items(event.items)

        def mutation(record: EntitlementRecord) -> EntitlementRecord:
            if status is None:
                logger.warning(
                    f"[SUBSCRIPTION] Unmapped status '{event.provider_status}' on "
                    f"{event.subscription_ref}, keeping {record.status.value}"
                )
                return record

            if status == EntitlementStatus.CANCELED:
                return cls._cancel(record, event.subscription_ref)

            return replace(
                record,
                tier=tier,
                status=status,
                period_end=event.period_end or record.period_end,
                trial_end=event.trial_end if status == EntitlementStatus.TRIAL and event.trial_end else record.trial_end,
                billing_subscription_ref=event.subscription_ref,
                billing_customer_ref=event.customer_ref or record.billing_customer_ref,
            )

        return mutation

    @classmethod
    def build_deleted_transition(cls, event: SubscriptionDeleted):
        """Back to free. Re-applying to a canceled record changes nothing."""
        def mutation(record: EntitlementRecord) -> EntitlementRecord:
            return cls._cancel(record, event.subscription_ref)

        return mutation

    @classmethod
    def _cancel(cls, record: EntitlementRecord, subscription_ref: Optional[str]) -> EntitlementRecord:
        if (
            record.billing_subscription_ref is not None
            and subscription_ref is not None
            and record.billing_subscription_ref != subscription_ref
        ):
            # A replaced subscription ending does not cancel the current one
            logger.info(
                f"[SUBSCRIPTION] {subscription_ref} is not the current subscription "
                f"({record.billing_subscription_ref}) of {record.user_id}, ignoring cancellation"
            )
            return record
        return record.canceled()
