"""
Endpoint Dependencies

Shared dependencies for billing API endpoints.
"""

import logging
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException

from reimburse.core.conf import settings
from reimburse.src.billing.entitlements.usage import UsageDecision, usage_meter
from reimburse.src.billing.shared.exceptions import BillingError

logger = logging.getLogger(__name__)


def raise_http(error: BillingError) -> None:
    """Re-raise a billing error as an HTTPException with its dict as detail."""
    raise HTTPException(status_code=error.status_code, detail=error.to_dict()) from error


async def get_current_user_id(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> str:
    """
    Extract and verify the user ID from a bearer JWT.

    This is a dependency that can be overridden in tests.
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    token = authorization
    if authorization.startswith("Bearer "):
        token = authorization[7:]

    try:
        decoded = jwt.decode(token, settings.TOKEN_SECRET_KEY, algorithms=[settings.TOKEN_ALGORITHM])
    except jwt.InvalidTokenError as e:
        logger.warning(f"[AUTH] Invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = decoded.get('sub') or decoded.get('user_id')
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return str(user_id)


def require_feature(feature: str):
    """
    Dependency factory gating a route on a feature.

    Usage:
        @router.post("/receipts", dependencies=[Depends(require_feature('receipt_uploads'))])

    Denials answer 402 with {reason, upgrade_required, current_tier}.
    """

    async def gate(user_id: str = Depends(get_current_user_id)) -> UsageDecision:
        decision = await usage_meter.check_limit(user_id, feature)
        if not decision.allowed:
            logger.info(f"[USAGE] Denied {feature} for {user_id}: {decision.reason}")
            raise HTTPException(
                status_code=402,
                detail={
                    'reason': decision.reason,
                    'upgrade_required': decision.upgrade_required,
                    'current_tier': decision.current_tier,
                },
            )
        return decision

    return gate
