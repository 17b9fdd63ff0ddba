"""
Billing Configuration

This module defines the subscription tiers, their checkout prices, usage limits,
feature flags, and the tier resolver used by webhooks and checkout.

Usage:
    from reimburse.src.billing.shared.config import resolve_tier, get_tier_limits

    resolve_tier(amount=1500)          # 'premium'
    get_tier_limits('free').receipt_uploads   # 10
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from reimburse.core.conf import settings

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================
TIER_FREE: str = 'free'
TIER_PRO: str = 'pro'
TIER_PREMIUM: str = 'premium'

PAID_TIERS: tuple = (TIER_PRO, TIER_PREMIUM)
BILLING_CYCLES: tuple = ('monthly', 'yearly')

# Tier assigned when neither a price id nor an amount resolves.
# Billing events are never dropped for an unrecognized price.
DEFAULT_TIER: str = TIER_PRO

# -1 means the check is skipped
UNLIMITED: int = -1

CURRENCY: str = 'usd'

COUNTABLE_FEATURES: tuple = ('receipt_uploads', 'report_exports')
BOOLEAN_FEATURES: tuple = (
    'email_ingestion',
    'team_collaboration',
    'analytics',
    'custom_branding',
    'csv_export',
    'priority_processing',
)


# =============================================================================
# TIER DEFINITION
# =============================================================================
@dataclass
class TierLimits:
    """
    Usage limits and feature flags of a tier.

    Attributes:
        receipt_uploads: Receipt uploads per usage window (-1 = unlimited)
        report_exports: Report exports per usage window (-1 = unlimited)
        features: Boolean feature flags, keyed by feature name
    """
    receipt_uploads: int
    report_exports: int
    features: Dict[str, bool] = field(default_factory=dict)

    def has_feature(self, feature: str) -> bool:
        return self.features.get(feature, False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'receipt_uploads': self.receipt_uploads,
            'report_exports': self.report_exports,
            **{name: self.has_feature(name) for name in BOOLEAN_FEATURES},
        }


@dataclass
class Tier:
    """
    Subscription tier configuration.

    Attributes:
        name: Internal tier identifier ('free', 'pro', 'premium')
        display_name: Human-readable name shown in UI
        monthly_price: Checkout price per month in minor units
        yearly_price: Checkout price per year in minor units
        legacy_amounts: Amounts charged by older checkout flows, for the fallback resolver
        price_id_settings: Settings names holding the Stripe price ids of this tier
        limits: Usage limits and feature flags
    """
    name: str
    display_name: str
    monthly_price: int
    yearly_price: int
    legacy_amounts: List[int]
    price_id_settings: Dict[str, str]
    limits: TierLimits

    @property
    def price_ids(self) -> List[str]:
        """Configured Stripe price ids, read from settings at call time."""
        return [pid for pid in (_get_stripe_id(attr) for attr in self.price_id_settings.values()) if pid]

    def price_id_for(self, billing_cycle: str) -> str:
        attr = self.price_id_settings.get(billing_cycle)
        return _get_stripe_id(attr) if attr else ''

    def price_for(self, billing_cycle: str) -> int:
        return self.yearly_price if billing_cycle == 'yearly' else self.monthly_price

    def product_name(self, billing_cycle: str) -> str:
        return f"ReimburseMe {self.display_name} Plan - {billing_cycle.capitalize()}"


def _get_stripe_id(attr_name: str, default: str = '') -> str:
    """Safely get a Stripe price ID from settings."""
    return getattr(settings, attr_name, default) or default


TIERS: Dict[str, Tier] = {
    # -------------------------------------------------------------------------
    # Free Tier - capped uploads and exports, no paid features
    # -------------------------------------------------------------------------
    TIER_FREE: Tier(
        name=TIER_FREE,
        display_name='Free',
        monthly_price=0,
        yearly_price=0,
        legacy_amounts=[],
        price_id_settings={},
        limits=TierLimits(receipt_uploads=10, report_exports=1),
    ),

    # -------------------------------------------------------------------------
    # Pro Tier - $9/month or $90/year
    # -------------------------------------------------------------------------
    TIER_PRO: Tier(
        name=TIER_PRO,
        display_name='Pro',
        monthly_price=900,
        yearly_price=9000,
        legacy_amounts=[900, 9000, 999, 9999],
        price_id_settings={
            'monthly': 'STRIPE_PRICE_PRO_MONTHLY',
            'yearly': 'STRIPE_PRICE_PRO_YEARLY',
        },
        limits=TierLimits(
            receipt_uploads=UNLIMITED,
            report_exports=UNLIMITED,
            features={
                'custom_branding': True,
                'csv_export': True,
                'priority_processing': True,
            },
        ),
    ),

    # -------------------------------------------------------------------------
    # Premium Tier - $15/month or $150/year, every feature
    # -------------------------------------------------------------------------
    TIER_PREMIUM: Tier(
        name=TIER_PREMIUM,
        display_name='Premium',
        monthly_price=1500,
        yearly_price=15000,
        legacy_amounts=[1500, 15000, 1499, 14999],
        price_id_settings={
            'monthly': 'STRIPE_PRICE_PREMIUM_MONTHLY',
            'yearly': 'STRIPE_PRICE_PREMIUM_YEARLY',
        },
        limits=TierLimits(
            receipt_uploads=UNLIMITED,
            report_exports=UNLIMITED,
            features={name: True for name in BOOLEAN_FEATURES},
        ),
    ),
}


# Which tier unlocks each feature, used in denial messages
FEATURE_UPGRADE_TIER: Dict[str, str] = {
    'receipt_uploads': TIER_PRO,
    'report_exports': TIER_PRO,
    'custom_branding': TIER_PRO,
    'csv_export': TIER_PRO,
    'priority_processing': TIER_PRO,
    'email_ingestion': TIER_PREMIUM,
    'team_collaboration': TIER_PREMIUM,
    'analytics': TIER_PREMIUM,
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_tier_by_name(tier_name: str) -> Optional[Tier]:
    """Look up a tier by its internal name."""
    return TIERS.get(tier_name)


def get_tier_by_price_id(price_id: Optional[str]) -> Optional[Tier]:
    """
    Look up a tier by its Stripe price ID.

    Args:
        price_id: Stripe price ID (e.g., 'price_xxx')

    Returns:
        Tier object if found, None otherwise
    """
    if not price_id:
        return None
    for tier in TIERS.values():
        if price_id in tier.price_ids:
            return tier
    return None


def get_tier_by_amount(amount: Optional[int]) -> Optional[Tier]:
    """Legacy lookup by the charged amount in minor units."""
    if amount is None:
        return None
    for tier in TIERS.values():
        if amount in tier.legacy_amounts:
            return tier
    return None


def resolve_tier(price_id: Optional[str] = None, amount: Optional[int] = None) -> str:
    """
    Map a price reference to a paid tier name. Never fails.

    Resolution order:
        1. Configured Stripe price id
        2. Legacy literal amount
        3. DEFAULT_TIER

    Args:
        price_id: Stripe price ID from a subscription item or checkout line
        amount: unit_amount in minor units

    Returns:
        Tier name
    """
    by_id = get_tier_by_price_id(price_id)
    by_amount = get_tier_by_amount(amount)

    if by_id and by_amount and by_id.name != by_amount.name:
        logger.warning(
            f"[TIER] Price {price_id} resolves to {by_id.name} but amount {amount} "
            f"resolves to {by_amount.name}; using {by_id.name}"
        )

    if by_id:
        return by_id.name
    if by_amount:
        return by_amount.name

    logger.warning(f"[TIER] Unrecognized price (id={price_id}, amount={amount}), defaulting to {DEFAULT_TIER}")
    return DEFAULT_TIER


def resolve_tier_from_items(items: Iterable[Dict[str, Any]]) -> str:
    """
    Resolve the tier of a subscription from its line items.

    The first item whose price resolves through the id or amount tables wins.
    """
    for item in items or []:
        price = item.get('price') or {}
        price_id = price.get('id')
        amount = price.get('unit_amount')
        if get_tier_by_price_id(price_id) or get_tier_by_amount(amount):
            return resolve_tier(price_id=price_id, amount=amount)

    logger.warning(f"[TIER] No subscription item resolved, defaulting to {DEFAULT_TIER}")
    return DEFAULT_TIER


def get_tier_limits(tier_name: str) -> TierLimits:
    """
    Get the limits for a tier. Unknown tiers get the free limits.

    The free caps come from settings so they can be tuned per deployment.
    """
    tier = TIERS.get(tier_name, TIERS[TIER_FREE])
    if tier.name != TIER_FREE:
        return tier.limits
    return TierLimits(
        receipt_uploads=settings.BILLING_FREE_RECEIPT_UPLOADS_LIMIT,
        report_exports=settings.BILLING_FREE_REPORT_EXPORTS_LIMIT,
        features=dict(tier.limits.features),
    )


def get_upgrade_tier(feature: str) -> Optional[str]:
    return FEATURE_UPGRADE_TIER.get(feature)
