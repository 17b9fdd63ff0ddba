"""
Invoice Webhook Handler

Builds entitlement transitions for invoice payment events:
- invoice.payment_succeeded: clears past_due
- invoice.payment_failed: marks past_due, tier unchanged
"""

import logging
from dataclasses import replace

from reimburse.src.billing.domain.entitlement import EntitlementRecord, EntitlementStatus
from reimburse.src.billing.domain.events import BillingEvent

logger = logging.getLogger(__name__)


class InvoiceHandler:

    @classmethod
    def build_paid_transition(cls, event: BillingEvent):
        return cls._status_transition(event, EntitlementStatus.ACTIVE)

    @classmethod
    def build_failed_transition(cls, event: BillingEvent):
        return cls._status_transition(event, EntitlementStatus.PAST_DUE)

    @classmethod
    def _status_transition(cls, event: BillingEvent, status: EntitlementStatus):
        def mutation(record: EntitlementRecord) -> EntitlementRecord:
            # Invoices only move the status of a live paid subscription
            if not record.has_active_paid_subscription():
                logger.info(
                    f"[INVOICE] {event.event_type} for {record.user_id} on "
                    f"{record.tier}/{record.status.value}, nothing to update"
                )
                return record
            if (
                event.subscription_ref
                and record.billing_subscription_ref
                and event.subscription_ref != record.billing_subscription_ref
            ):
                logger.info(
                    f"[INVOICE] {event.event_type} for replaced subscription {event.subscription_ref}, ignoring"
                )
                return record
            return replace(record, status=status)

        return mutation
