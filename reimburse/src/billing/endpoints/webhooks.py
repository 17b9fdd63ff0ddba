"""
Webhook Endpoints

Stripe webhook endpoint for processing billing events.
"""

import logging

from fastapi import APIRouter, Request

from reimburse.src.billing.external.stripe import webhook_service
from reimburse.src.billing.shared.exceptions import BillingError
from .dependencies import raise_http

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing-webhooks"])


@router.post("/webhook")
async def stripe_webhook(request: Request):
    """
    Process Stripe webhook events.

    Handles:
    - checkout.session.completed
    - customer.subscription.created
    - customer.subscription.updated
    - customer.subscription.deleted
    - customer.subscription.trial_will_end
    - invoice.payment_succeeded
    - invoice.payment_failed

    Anything else is acknowledged and ignored.
    """
    payload = await request.body()
    try:
        result = await webhook_service.process(payload, request.headers.get('stripe-signature'))
    except BillingError as e:
        raise_http(e)
    return result.to_dict()
