"""Stripe-shaped webhook payloads and signatures for tests."""

import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional

WEBHOOK_SECRET = 'whsec_test_secret'


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Stripe-Signature header value for ``payload``."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode('utf-8')
    signature = hmac.new(secret.encode('utf-8'), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_type: str, obj: Dict[str, Any], event_id: str, created: Optional[int] = None) -> bytes:
    return json.dumps({
        'id': event_id,
        'object': 'event',
        'type': event_type,
        'created': int(time.time()) if created is None else created,
        'data': {'object': obj},
    }).encode('utf-8')


def checkout_session(
    user_id: str,
    plan: str = 'pro',
    billing_cycle: str = 'monthly',
    customer: str = 'cus_1',
    subscription: str = 'sub_1',
    referral_code: str = '',
    amount_total: int = 900,
) -> Dict[str, Any]:
    return {
        'id': 'cs_test_1',
        'object': 'checkout.session',
        'customer': customer,
        'subscription': subscription,
        'amount_total': amount_total,
        'payment_status': 'paid',
        'metadata': {
            'user_id': user_id,
            'plan': plan,
            'billing_cycle': billing_cycle,
            'referral_code': referral_code,
        },
    }


def subscription(
    sub_id: str = 'sub_1',
    customer: Optional[str] = 'cus_1',
    status: str = 'active',
    unit_amount: int = 900,
    price_id: str = 'price_unknown',
    period_end: Optional[int] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    obj = {
        'id': sub_id,
        'object': 'subscription',
        'status': status,
        'current_period_end': period_end or int(time.time()) + 30 * 86400,
        'items': {'data': [{'price': {'id': price_id, 'unit_amount': unit_amount}}]},
        'metadata': {'user_id': user_id} if user_id else {},
    }
    if customer:
        obj['customer'] = customer
    return obj


def invoice(sub_id: str = 'sub_1', customer: str = 'cus_1', invoice_id: str = 'in_1') -> Dict[str, Any]:
    return {
        'id': invoice_id,
        'object': 'invoice',
        'customer': customer,
        'subscription': sub_id,
        'amount_paid': 900,
        'attempt_count': 1,
        'billing_reason': 'subscription_cycle',
    }
