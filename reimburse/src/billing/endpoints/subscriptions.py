"""
Subscription Endpoints

API endpoints for checkout and the subscription summary.
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel

from reimburse.core.conf import settings
from reimburse.src.billing.entitlements.store import entitlement_store
from reimburse.src.billing.shared.config import TIERS, get_tier_limits
from reimburse.src.billing.shared.exceptions import BillingError
from reimburse.src.billing.shared.rate_limit import rate_limiter
from reimburse.src.billing.subscriptions import checkout_service
from .dependencies import get_current_user_id, raise_http

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing-subscriptions"])


# ============================================================================
# Request Models
# ============================================================================

class CreateCheckoutRequest(BaseModel):
    """Request for checkout session creation."""
    tier: str
    billing_cycle: str = 'monthly'
    referral_code: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    """Request for checkout session verification."""
    session_id: Optional[str] = None


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/checkout")
async def create_checkout(
    request: CreateCheckoutRequest,
    response: Response,
    user_id: str = Depends(get_current_user_id)
) -> Dict:
    """
    Create a Stripe checkout session for a paid tier.

    Rate limited per user.
    """
    limit = settings.BILLING_CHECKOUT_RATE_LIMIT
    allowance = await rate_limiter.check(
        f"checkout:{user_id}", settings.BILLING_CHECKOUT_RATE_WINDOW_SECONDS, limit
    )
    response.headers.update(allowance.headers(limit))
    if not allowance.ok:
        raise HTTPException(
            status_code=429,
            detail="Too many checkout attempts, try again later",
            headers={'Retry-After': str(allowance.reset_in)},
        )

    try:
        result = await checkout_service.create_checkout(
            user_id,
            request.tier,
            request.billing_cycle,
            referral_code=request.referral_code,
        )
    except BillingError as e:
        logger.info(f"[CHECKOUT] Rejected for {user_id}: {e.code}")
        raise_http(e)

    return result.to_dict()


@router.post("/verify-payment")
async def verify_payment(
    request: VerifyPaymentRequest,
    user_id: str = Depends(get_current_user_id)
) -> Dict:
    """Report whether a checkout session has been paid."""
    if not request.session_id:
        raise HTTPException(status_code=400, detail="Session ID is required")

    try:
        return await checkout_service.verify_checkout(user_id, request.session_id)
    except BillingError as e:
        raise_http(e)


@router.get("/subscription")
async def get_subscription(user_id: str = Depends(get_current_user_id)) -> Dict:
    """Entitlement summary with the tier's limits and current usage."""
    try:
        record = await entitlement_store.get(user_id)
    except BillingError as e:
        raise_http(e)

    tier = TIERS.get(record.tier)
    return {
        **record.to_dict(),
        'display_name': tier.display_name if tier else record.tier,
        'limits': get_tier_limits(record.tier).to_dict(),
    }
