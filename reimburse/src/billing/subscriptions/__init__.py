"""Subscription checkout."""

from .checkout import CheckoutResult, CheckoutService, checkout_service

__all__ = [
    'CheckoutResult',
    'CheckoutService',
    'checkout_service',
]
