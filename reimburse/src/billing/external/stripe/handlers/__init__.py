"""
Stripe Webhook Handlers

Each handler turns an event variant into a pure entitlement mutation:
- CheckoutHandler: checkout.session.completed
- SubscriptionHandler: subscription created / updated / deleted
- InvoiceHandler: invoice payment succeeded / failed
"""

from .checkout import CheckoutHandler
from .subscription import SubscriptionHandler, map_stripe_status
from .invoice import InvoiceHandler

__all__ = [
    'CheckoutHandler',
    'SubscriptionHandler',
    'InvoiceHandler',
    'map_stripe_status',
]
