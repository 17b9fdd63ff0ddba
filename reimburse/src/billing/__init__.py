"""
Billing Module

Subscription lifecycle and entitlement engine for ReimburseMe.
Integrates with Stripe for checkout and subscription webhooks.

Submodules:
- shared: Tier catalogue, exceptions, audit side-channel, rate limiter, user directory
- domain: Entitlement record and billing event variants
- entitlements: Persistence and usage metering
- external: Payment provider integration (Stripe)
- subscriptions: Checkout orchestration
- referrals: Referral crediting and bonuses
- endpoints: API routes

Usage:
    from reimburse.src.billing.endpoints import billing_router
    from reimburse.src.billing.entitlements import usage_meter

    decision = await usage_meter.check_limit(user_id, 'receipt_uploads')
"""
