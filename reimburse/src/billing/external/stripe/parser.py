"""
Stripe Event Parser

Turns a verified Stripe event payload into one of the billing event
variants. Field locations that moved between Stripe API versions are read
from both places.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

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

logger = logging.getLogger(__name__)


def _ts(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _ref(value: Any) -> Optional[str]:
    """Stripe fields are either an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get('id')
    return value or None


def _items(subscription: Dict[str, Any]) -> list:
    return (subscription.get('items') or {}).get('data') or []


def _period_end(subscription: Dict[str, Any]) -> Optional[datetime]:
    if subscription.get('current_period_end'):
        return _ts(subscription['current_period_end'])
    # Newer API versions carry the period on the items
    ends = [item.get('current_period_end') for item in _items(subscription) if item.get('current_period_end')]
    return _ts(max(ends)) if ends else None


def _invoice_subscription(invoice: Dict[str, Any]) -> tuple:
    """(subscription ref, subscription metadata) of an invoice."""
    if invoice.get('subscription'):
        return _ref(invoice['subscription']), (invoice.get('subscription_details') or {}).get('metadata') or {}
    details = ((invoice.get('parent') or {}).get('subscription_details')) or {}
    return _ref(details.get('subscription')), details.get('metadata') or {}


def parse_event(payload: Dict[str, Any]) -> BillingEvent:
    """
    Build the event variant for a Stripe event dict.

    Args:
        payload: Decoded webhook body ({id, type, created, data: {object}})

    Returns:
        A BillingEvent subclass. Unrecognized types become UnknownEvent.
    """
    event_id = payload.get('id')
    event_type = payload.get('type', '')
    created = _ts(payload.get('created'))
    obj = (payload.get('data') or {}).get('object') or {}
    metadata = obj.get('metadata') or {}

    common = {'event_id': event_id, 'event_type': event_type, 'created': created}

    if event_type == 'checkout.session.completed':
        return CheckoutCompleted(
            **common,
            session_id=obj.get('id'),
            subscription_ref=_ref(obj.get('subscription')),
            customer_ref=_ref(obj.get('customer')),
            user_id=metadata.get('user_id') or obj.get('client_reference_id'),
            tier=metadata.get('plan'),
            billing_cycle=metadata.get('billing_cycle') or 'monthly',
            referral_code=metadata.get('referral_code') or None,
            amount_total=obj.get('amount_total'),
        )

    if event_type in ('customer.subscription.created', 'customer.subscription.updated'):
        return SubscriptionChanged(
            **common,
            action=event_type.rsplit('.', 1)[-1],
            subscription_ref=obj.get('id'),
            customer_ref=_ref(obj.get('customer')),
            user_id=metadata.get('user_id'),
            provider_status=obj.get('status'),
            items=_items(obj),
            period_end=_period_end(obj),
            trial_end=_ts(obj.get('trial_end')),
        )

    if event_type == 'customer.subscription.deleted':
        return SubscriptionDeleted(
            **common,
            subscription_ref=obj.get('id'),
            customer_ref=_ref(obj.get('customer')),
            user_id=metadata.get('user_id'),
        )

    if event_type == 'customer.subscription.trial_will_end':
        return TrialWillEnd(
            **common,
            subscription_ref=obj.get('id'),
            customer_ref=_ref(obj.get('customer')),
            user_id=metadata.get('user_id'),
            trial_end=_ts(obj.get('trial_end')),
        )

    if event_type in ('invoice.payment_succeeded', 'invoice.payment_failed'):
        subscription_ref, sub_metadata = _invoice_subscription(obj)
        invoice_common = {
            **common,
            'subscription_ref': subscription_ref,
            'customer_ref': _ref(obj.get('customer')),
            'user_id': sub_metadata.get('user_id') or metadata.get('user_id'),
            'invoice_id': obj.get('id'),
        }
        if event_type == 'invoice.payment_succeeded':
            return InvoicePaymentSucceeded(
                **invoice_common,
                amount_paid=obj.get('amount_paid'),
                billing_reason=obj.get('billing_reason'),
            )
        return InvoicePaymentFailed(**invoice_common, attempt_count=obj.get('attempt_count'))

    logger.debug(f"[WEBHOOK] No variant for event type {event_type}")
    return UnknownEvent(**common)
