"""
Stripe Webhook Service

Central dispatcher for Stripe webhook events.
Handles signature verification, deduplication, user lookup and routing to
the transition builders.

Result statuses (all answered with 200):
    processed, duplicate, ignored, user_not_found, stale
Authentication failures raise WebhookAuthenticationError (400). Store
failures propagate so the endpoint answers 500 and Stripe redelivers.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import stripe

from reimburse.core.conf import get_settings, get_stripe_credentials
from reimburse.src.billing.domain.entitlement import EntitlementRecord, SubscriptionEventEntry, TransitionResult
from reimburse.src.billing.domain.events import (
    BillingEvent,
    CheckoutCompleted,
    InvoicePaymentFailed,
    InvoicePaymentSucceeded,
    SubscriptionChanged,
    SubscriptionDeleted,
    TrialWillEnd,
    UnknownEvent,
)
from reimburse.src.billing.entitlements.store import EntitlementStore, entitlement_store
from reimburse.src.billing.referrals.service import ReferralService, referral_service
from reimburse.src.billing.shared.audit import AuditLogger, audit_logger
from reimburse.src.billing.shared.exceptions import (
    BillingConfigurationError,
    DuplicateEventError,
    UserNotFoundError,
    WebhookAuthenticationError,
)

from .handlers import CheckoutHandler, InvoiceHandler, SubscriptionHandler
from .parser import parse_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookResult:
    status: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {'status': self.status}
        if self.event_id:
            result['event_id'] = self.event_id
        if self.event_type:
            result['event_type'] = self.event_type
        return result


class WebhookService:
    """
    Central service for processing Stripe webhooks.

    Responsibilities:
    - Verify webhook signatures with the mode-scoped secret
    - Deduplicate by event id (fast check, then the ledger's unique key)
    - Find the affected user
    - Apply the transition and its ledger row atomically
    - Credit referrals after a completed checkout (best-effort)

    Usage:
        result = await webhook_service.process(payload, request.headers.get('stripe-signature'))
    """

    def __init__(
        self,
        store: Optional[EntitlementStore] = None,
        referrals: Optional[ReferralService] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self._store = store or entitlement_store
        self._referrals = referrals or referral_service
        self._audit = audit or audit_logger

    async def process(self, payload: bytes, signature: Optional[str]) -> WebhookResult:
        """
        Process an incoming Stripe webhook.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header value

        Returns:
            WebhookResult

        Raises:
            WebhookAuthenticationError: Missing or bad signature, or unparsable body
            BillingConfigurationError: No webhook secret for the configured mode
        """
        raw_event = self.verify(payload, signature)
        event = parse_event(raw_event)

        if not event.event_id:
            raise WebhookAuthenticationError("Invalid payload", reason="missing event id")

        if await self._store.event_exists(event.event_id):
            logger.info(f"[WEBHOOK] Skipping duplicate event {event.event_id} ({event.event_type})")
            return WebhookResult('duplicate', event.event_id, event.event_type)

        logger.info(f"[WEBHOOK] Processing event type: {event.event_type} (ID: {event.event_id})")

        match event:
            case UnknownEvent():
                logger.info(f"[WEBHOOK] Unhandled event type: {event.event_type}")
                return WebhookResult('ignored', event.event_id, event.event_type)

            case TrialWillEnd():
                return await self._record_only(event)

            case CheckoutCompleted():
                return await self._transition(event, CheckoutHandler.build_transition(event))

            case SubscriptionChanged():
                return await self._transition(event, SubscriptionHandler.build_changed_transition(event))

            case SubscriptionDeleted():
                return await self._transition(event, SubscriptionHandler.build_deleted_transition(event))

            case InvoicePaymentSucceeded():
                return await self._transition(event, InvoiceHandler.build_paid_transition(event))

            case InvoicePaymentFailed():
                return await self._transition(event, InvoiceHandler.build_failed_transition(event))

            case _:
                logger.warning(f"[WEBHOOK] No route for {type(event).__name__}, ignoring")
                return WebhookResult('ignored', event.event_id, event.event_type)

    def verify(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify the signature and decode the body.

        Returns:
            The decoded event dict
        """
        if not signature:
            raise WebhookAuthenticationError("Missing stripe-signature header", reason="missing_signature")

        credentials = get_stripe_credentials()
        if not credentials.webhook_secret:
            logger.error(f"[WEBHOOK] No webhook secret configured for {credentials.mode} mode")
            raise BillingConfigurationError(
                "Webhook secret not configured",
                setting=f"STRIPE_WEBHOOK_SECRET_{credentials.mode.upper()}",
            )

        try:
            body = payload.decode('utf-8')
        except UnicodeDecodeError as e:
            raise WebhookAuthenticationError("Invalid payload", reason="not utf-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                credentials.webhook_secret,
                get_settings().STRIPE_WEBHOOK_TOLERANCE_SECONDS,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"[WEBHOOK] Invalid signature: {e}")
            raise WebhookAuthenticationError(reason="bad_signature") from e

        try:
            event = json.loads(body)
        except ValueError as e:
            logger.warning(f"[WEBHOOK] Invalid payload: {e}")
            raise WebhookAuthenticationError("Invalid payload", reason="invalid_json") from e

        if not isinstance(event, dict):
            raise WebhookAuthenticationError("Invalid payload", reason="not an object")
        return event

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    async def _find_user(self, event: BillingEvent) -> Optional[EntitlementRecord]:
        """Subscription ref, then customer ref, then metadata user id."""
        record = await self._store.find_by_subscription_ref(event.subscription_ref)
        if record is None:
            record = await self._store.find_by_customer_ref(event.customer_ref)
        if record is None and event.user_id:
            record = await self._store.find(event.user_id)
        return record

    async def _transition(self, event: BillingEvent, mutation) -> WebhookResult:
        record = await self._find_user(event)
        if record is None:
            logger.warning(
                f"[WEBHOOK] No user for {event.event_type} {event.event_id} "
                f"(sub={event.subscription_ref}, customer={event.customer_ref}, user={event.user_id})"
            )
            return WebhookResult('user_not_found', event.event_id, event.event_type)

        ledger_entry = SubscriptionEventEntry(
            event_type=event.event_type,
            external_event_id=event.event_id,
            metadata=self._ledger_metadata(event),
        )

        event_at, advance = self._watermark(event)
        try:
            result = await self._store.apply_transition(
                record.user_id, mutation, ledger_entry, event_at=event_at, advance_watermark=advance
            )
        except DuplicateEventError:
            logger.info(f"[WEBHOOK] Event {event.event_id} recorded concurrently, skipping")
            return WebhookResult('duplicate', event.event_id, event.event_type, record.user_id)
        except UserNotFoundError:
            logger.warning(f"[WEBHOOK] User {record.user_id} removed before {event.event_id} was applied")
            return WebhookResult('user_not_found', event.event_id, event.event_type)

        self._emit(event, result)

        if isinstance(event, CheckoutCompleted) and event.referral_code:
            await self._credit_referral(event, record.user_id)

        status = 'stale' if result.stale else 'processed'
        return WebhookResult(status, event.event_id, event.event_type, record.user_id)

    async def _record_only(self, event: BillingEvent) -> WebhookResult:
        """Ledger the event without changing the record."""
        record = await self._find_user(event)
        if record is None:
            logger.warning(f"[WEBHOOK] No user for {event.event_type} {event.event_id}")
            return WebhookResult('user_not_found', event.event_id, event.event_type)

        try:
            await self._store.append_event(
                record.user_id,
                SubscriptionEventEntry(
                    event_type=event.event_type,
                    external_event_id=event.event_id,
                    metadata=self._ledger_metadata(event),
                ),
            )
        except DuplicateEventError:
            return WebhookResult('duplicate', event.event_id, event.event_type, record.user_id)
        except UserNotFoundError:
            logger.warning(f"[WEBHOOK] User {record.user_id} removed before {event.event_id} was recorded")
            return WebhookResult('user_not_found', event.event_id, event.event_type)

        self._audit.emit(record.user_id, event.event_type, self._ledger_metadata(event))
        return WebhookResult('processed', event.event_id, event.event_type, record.user_id)

    async def _credit_referral(self, event: CheckoutCompleted, user_id: str) -> None:
        # Referral failures never fail the webhook
        try:
            outcome = await self._referrals.credit_referral(event.referral_code, user_id)
            logger.info(f"[WEBHOOK] Referral {event.referral_code} for {user_id}: {outcome.status}")
        except Exception as e:
            logger.error(
                f"[WEBHOOK] Referral crediting failed for {user_id} (code={event.referral_code}): {e}",
                exc_info=True,
            )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _watermark(event: BillingEvent) -> Tuple[Optional[datetime], bool]:
        """
        Ordering inputs for apply_transition: (event_at, advance_watermark).

        Subscription events carry the full subscription state and move the
        watermark. Checkout and invoice events set only part of it: they are
        checked against the watermark but leave it alone, so a subscription
        event stamped before them still applies when delivered after them.
        """
        match event:
            case SubscriptionChanged() | SubscriptionDeleted():
                return event.created, True
            case _:
                return event.created, False

    @staticmethod
    def _ledger_metadata(event: BillingEvent) -> Dict[str, Any]:
        meta = {
            'subscription_ref': event.subscription_ref,
            'customer_ref': event.customer_ref,
            'created': event.created.isoformat() if event.created else None,
        }
        match event:
            case CheckoutCompleted():
                meta.update(
                    session_id=event.session_id,
                    plan=event.tier,
                    billing_cycle=event.billing_cycle,
                    referral_code=event.referral_code,
                )
            case SubscriptionChanged():
                meta.update(provider_status=event.provider_status)
            case InvoicePaymentSucceeded():
                meta.update(invoice_id=event.invoice_id, amount_paid=event.amount_paid)
            case InvoicePaymentFailed():
                meta.update(invoice_id=event.invoice_id, attempt_count=event.attempt_count)
            case TrialWillEnd():
                meta.update(trial_end=event.trial_end.isoformat() if event.trial_end else None)
        return {k: v for k, v in meta.items() if v is not None}

    def _emit(self, event: BillingEvent, result: TransitionResult) -> None:
        self._audit.emit(result.after.user_id, event.event_type, {
            'event_id': event.event_id,
            'old_tier': result.before.tier,
            'new_tier': result.after.tier,
            'old_status': result.before.status.value,
            'new_status': result.after.status.value,
            'stale': result.stale,
        })


# Global instance
webhook_service = WebhookService()
