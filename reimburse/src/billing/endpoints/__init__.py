"""
Billing Endpoints Module

API routes for billing operations.

Routers:
- subscriptions: Checkout, payment verification, subscription summary
- webhooks: Stripe webhook processing

Usage:
    from reimburse.src.billing.endpoints import billing_router

    app.include_router(billing_router, prefix="/billing")
"""

from fastapi import APIRouter

from .subscriptions import router as subscriptions_router
from .webhooks import router as webhooks_router
from .dependencies import get_current_user_id, require_feature

# Create main billing router
billing_router = APIRouter()

# Include all sub-routers
billing_router.include_router(subscriptions_router)
billing_router.include_router(webhooks_router)

__all__ = [
    'billing_router',
    'subscriptions_router',
    'webhooks_router',
    'get_current_user_id',
    'require_feature',
]
