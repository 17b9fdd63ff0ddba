"""
Checkout Webhook Handler

Builds the entitlement transition for checkout.session.completed.
"""

import logging
from dataclasses import replace

from dateutil.relativedelta import relativedelta

from reimburse.src.billing.domain.entitlement import EntitlementRecord, EntitlementStatus, utcnow
from reimburse.src.billing.domain.events import CheckoutCompleted
from reimburse.src.billing.shared.config import PAID_TIERS, resolve_tier

logger = logging.getLogger(__name__)


class CheckoutHandler:
    """
    checkout.session.completed activates the purchased tier, unless a
    subscription event already did.
    """

    @classmethod
    def resolve_plan(cls, event: CheckoutCompleted) -> str:
        """Tier from metadata, falling back to the amount resolver."""
        if event.tier in PAID_TIERS:
            return event.tier
        return resolve_tier(amount=event.amount_total)

    @classmethod
    def billing_interval(cls, billing_cycle: str) -> relativedelta:
        return relativedelta(years=1) if billing_cycle == 'yearly' else relativedelta(months=1)

    @classmethod
    def build_transition(cls, event: CheckoutCompleted):
        """
        Mutation for a completed checkout.

        Only applies when the record has no subscription ref yet. A record
        that already carries one was set by a subscription event, which holds
        the authoritative state.
        """
        tier = cls.resolve_plan(event)
        interval = cls.billing_interval(event.billing_cycle)

        def mutation(record: EntitlementRecord) -> EntitlementRecord:
            if record.billing_subscription_ref is not None:
                logger.info(
                    f"[CHECKOUT] {record.user_id} already has subscription "
                    f"{record.billing_subscription_ref}, checkout {event.session_id} changes nothing"
                )
                return record
            return replace(
                record,
                tier=tier,
                status=EntitlementStatus.ACTIVE,
                billing_customer_ref=event.customer_ref or record.billing_customer_ref,
                period_end=utcnow() + interval,
            )

        return mutation
