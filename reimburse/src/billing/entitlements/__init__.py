"""
Entitlements Module

- store: Durable per-user entitlement record and the subscription event ledger
- usage: Feature gating and usage counters
"""

from .store import EntitlementStore, entitlement_store
from .usage import UsageDecision, UsageMeter, usage_meter

__all__ = [
    'EntitlementStore',
    'entitlement_store',
    'UsageDecision',
    'UsageMeter',
    'usage_meter',
]
