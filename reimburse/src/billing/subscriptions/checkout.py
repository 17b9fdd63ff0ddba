"""
Checkout Orchestrator

Creates Stripe Checkout sessions for the paid tiers.
Features:
- Email verification and active-subscription preconditions
- Customer reuse: the customer ref is persisted before the session is built
- Early adopter coupon
- Configured price ids, or inline price_data from the tier catalogue
- Metadata for webhook processing

verify_checkout reports a session's payment state to the success page. It
never changes entitlements; the webhooks do that.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

import stripe

from reimburse.core.conf import settings
from reimburse.src.billing.domain.entitlement import EntitlementRecord
from reimburse.src.billing.entitlements.store import EntitlementStore, entitlement_store
from reimburse.src.billing.external.stripe import StripeAPIWrapper, stripe_idempotency_manager
from reimburse.src.billing.shared.audit import AuditLogger, audit_logger
from reimburse.src.billing.shared.config import BILLING_CYCLES, CURRENCY, PAID_TIERS, TIERS, resolve_tier_from_items
from reimburse.src.billing.shared.exceptions import (
    ActiveSubscriptionError,
    CheckoutSessionNotFoundError,
    EmailNotVerifiedError,
    InvalidPlanError,
    SessionOwnershipError,
    UpstreamUnavailableError,
)
from reimburse.src.billing.shared.users import UserDirectory, user_directory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutResult:
    url: str
    session_id: str

    def to_dict(self) -> Dict[str, str]:
        return {'checkout_url': self.url, 'session_id': self.session_id}


def early_adopter_coupon(record: EntitlementRecord) -> Optional[str]:
    if record.early_adopter and record.lifetime_discount_percent > 0:
        return f"early_adopter_{round(record.lifetime_discount_percent)}"
    return None


def build_line_item(tier: str, billing_cycle: str) -> Dict[str, Any]:
    """A configured price id when present, otherwise inline price data."""
    tier_config = TIERS[tier]
    price_id = tier_config.price_id_for(billing_cycle)
    if price_id:
        return {'price': price_id, 'quantity': 1}
    return {
        'price_data': {
            'currency': CURRENCY,
            'product_data': {'name': tier_config.product_name(billing_cycle)},
            'recurring': {'interval': 'year' if billing_cycle == 'yearly' else 'month'},
            'unit_amount': tier_config.price_for(billing_cycle),
        },
        'quantity': 1,
    }


class CheckoutService:
    """
    Checkout session orchestration.

    Usage:
        result = await checkout_service.create_checkout(user_id, 'pro', 'monthly')
        return {'checkout_url': result.url}
    """

    def __init__(
        self,
        store: Optional[EntitlementStore] = None,
        users: Optional[UserDirectory] = None,
        audit: Optional[AuditLogger] = None,
        stripe_client: type = StripeAPIWrapper,
    ):
        self._store = store or entitlement_store
        self._users = users or user_directory
        self._audit = audit or audit_logger
        self._stripe = stripe_client

    async def create_checkout(
        self,
        user_id: str,
        tier: str,
        billing_cycle: str,
        referral_code: Optional[str] = None,
    ) -> CheckoutResult:
        """
        Create a subscription checkout session.

        Args:
            user_id: Authenticated user
            tier: 'pro' or 'premium'
            billing_cycle: 'monthly' or 'yearly'
            referral_code: Code of the user who referred this one

        Returns:
            CheckoutResult with the hosted checkout URL

        Raises:
            InvalidPlanError: Unknown tier or billing cycle
            EmailNotVerifiedError: Email not verified
            UserNotFoundError: No entitlement record
            ActiveSubscriptionError: Already on a billed paid tier
            UpstreamUnavailableError: Stripe call failed
        """
        if tier not in PAID_TIERS:
            raise InvalidPlanError(tier=tier)
        if billing_cycle not in BILLING_CYCLES:
            raise InvalidPlanError("Invalid billing cycle", tier=tier, billing_cycle=billing_cycle)

        user = await self._users.get(user_id)
        if user is None or not user.is_email_verified:
            logger.info(f"[CHECKOUT] Email not verified for {user_id}")
            raise EmailNotVerifiedError(user_id)

        record = await self._store.get(user_id)
        if record.has_active_paid_subscription():
            logger.info(f"[CHECKOUT] {user_id} already on {record.tier}/{record.status.value}")
            raise ActiveSubscriptionError(record.tier)

        customer_ref = await self._ensure_customer(record, user.email)

        params: Dict[str, Any] = {
            'customer': customer_ref,
            'mode': 'subscription',
            'payment_method_types': ['card'],
            'line_items': [build_line_item(tier, billing_cycle)],
            'success_url': f"{settings.APP_URL}/dashboard?sub=success&session_id={{CHECKOUT_SESSION_ID}}",
            'cancel_url': f"{settings.APP_URL}/pricing?sub=cancelled",
            'metadata': {
                'user_id': user_id,
                'plan': tier,
                'billing_cycle': billing_cycle,
                'referral_code': referral_code or '',
            },
            'subscription_data': {'metadata': {'user_id': user_id}},
            'billing_address_collection': 'required',
            'idempotency_key': stripe_idempotency_manager.generate_checkout_key(
                user_id, customer_ref, tier, billing_cycle, referral_code
            ),
        }

        # Stripe rejects discounts combined with promotion codes
        coupon = early_adopter_coupon(record)
        if coupon:
            params['discounts'] = [{'coupon': coupon}]
        else:
            params['allow_promotion_codes'] = True

        session = await self._stripe.create_checkout_session(**params)

        logger.info(f"[CHECKOUT] Created session {session.id} for {user_id} ({tier}/{billing_cycle})")
        self._audit.emit(user_id, 'checkout_created', {
            'plan': tier,
            'billing_cycle': billing_cycle,
            'session_id': session.id,
            'coupon': coupon,
            'referral_code': referral_code,
        })

        return CheckoutResult(url=session.url, session_id=session.id)

    async def verify_checkout(self, user_id: str, session_id: str) -> Dict[str, Any]:
        """
        Report the payment state of a checkout session owned by ``user_id``.

        Returns:
            {'status': 'processing', ...} until Stripe marks the session paid,
            then {'status': 'completed', ...} with plan details

        Raises:
            CheckoutSessionNotFoundError: Stripe does not know the session
            SessionOwnershipError: Session was created for another user
        """
        try:
            session = await self._stripe.retrieve_checkout_session(session_id, expand=['subscription'])
        except UpstreamUnavailableError as e:
            if isinstance(e.__cause__, stripe.InvalidRequestError):
                raise CheckoutSessionNotFoundError(session_id) from e
            raise

        metadata = session.get('metadata') or {}
        if metadata.get('user_id') != user_id:
            logger.warning(f"[CHECKOUT] {user_id} tried to verify session {session_id} of another user")
            raise SessionOwnershipError(session_id)

        if session.get('payment_status') != 'paid':
            return {'status': 'processing', 'message': 'Payment is still being processed'}

        result: Dict[str, Any] = {
            'status': 'completed',
            'payment_status': session.get('payment_status'),
            'plan_name': metadata.get('plan'),
            'billing_cycle': metadata.get('billing_cycle'),
        }

        subscription = session.get('subscription')
        if isinstance(subscription, dict) or hasattr(subscription, 'get'):
            items = (subscription.get('items') or {}).get('data') or []
            price = (items[0].get('price') or {}) if items else {}
            result.update(
                subscription_id=subscription.get('id'),
                subscription_status=subscription.get('status'),
                amount=price.get('unit_amount'),
                interval=(price.get('recurring') or {}).get('interval'),
                next_billing=subscription.get('current_period_end'),
                tier=resolve_tier_from_items(items) if items else metadata.get('plan'),
            )

        return result

    async def _ensure_customer(self, record: EntitlementRecord, email: str) -> str:
        """
        The persisted customer ref, or a new Stripe customer persisted before use.

        The customer is created with a per-user idempotency key, so a retry after
        a crash gets the same customer back. If another request persisted a ref
        first, that one wins.
        """
        if record.billing_customer_ref:
            return record.billing_customer_ref

        customer = await self._stripe.create_customer(
            email=email,
            metadata={'user_id': record.user_id},
            idempotency_key=stripe_idempotency_manager.generate_customer_key(record.user_id),
        )
        logger.info(f"[CHECKOUT] Created Stripe customer {customer.id} for {record.user_id}")

        def persist(current: EntitlementRecord) -> EntitlementRecord:
            if current.billing_customer_ref:
                return current
            return replace(current, billing_customer_ref=customer.id)

        result = await self._store.apply_transition(record.user_id, persist)
        persisted = result.after.billing_customer_ref
        if persisted != customer.id:
            logger.warning(
                f"[CHECKOUT] {record.user_id} already had customer {persisted}, "
                f"{customer.id} is unused"
            )
        return persisted


checkout_service = CheckoutService()
