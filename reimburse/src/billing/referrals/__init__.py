"""Referral crediting and threshold bonuses."""

from .service import ReferralOutcome, ReferralService, referral_service

__all__ = [
    'ReferralOutcome',
    'ReferralService',
    'referral_service',
]
