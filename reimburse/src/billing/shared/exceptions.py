"""
Billing Exceptions

Custom exception classes for billing-related errors.
These provide structured error handling across the billing module and carry
the HTTP status the endpoints answer with.

A usage-limit denial is not an exception: it is a UsageDecision with
allowed=False.
"""


class BillingError(Exception):
    """
    Base exception for all billing-related errors.

    All billing exceptions inherit from this class, allowing for
    broad exception handling when needed.
    """

    status_code: int = 500

    def __init__(self, message: str, code: str = "BILLING_ERROR", details: dict = None, status_code: int = None):
        self.message = message
        self.code = code
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses."""
        return {
            'error': self.code,
            'message': self.message,
            'details': self.details
        }


class BillingConfigurationError(BillingError):
    """Raised when a required billing setting (e.g. a Stripe key) is missing."""

    def __init__(self, message: str = "Billing is not configured", setting: str = None):
        super().__init__(
            message=message,
            code="BILLING_NOT_CONFIGURED",
            details={'setting': setting} if setting else {},
            status_code=500,
        )
        self.setting = setting


class WebhookAuthenticationError(BillingError):
    """
    Raised when a webhook cannot be authenticated.

    Examples:
        - Missing signature header
        - Signature mismatch or expired timestamp
        - Body is not valid JSON
    """

    def __init__(self, message: str = "Invalid webhook signature", reason: str = None):
        super().__init__(
            message=message,
            code="WEBHOOK_AUTHENTICATION_FAILED",
            details={'reason': reason} if reason else {},
            status_code=400,
        )
        self.reason = reason


class UserNotFoundError(BillingError):
    """Raised when no entitlement record exists for a user."""

    def __init__(self, user_id: str = None):
        super().__init__(
            message="User not found",
            code="USER_NOT_FOUND",
            details={'user_id': user_id} if user_id else {},
            status_code=404,
        )
        self.user_id = user_id


class InvariantViolationError(BillingError):
    """
    Raised when a transition would leave an entitlement record inconsistent.

    The transition is rolled back and the prior state is kept.
    """

    def __init__(self, message: str, user_id: str = None, violations: list = None):
        super().__init__(
            message=message,
            code="INVARIANT_VIOLATION",
            details={'user_id': user_id, 'violations': violations or []},
            status_code=500,
        )
        self.user_id = user_id
        self.violations = violations or []


class DuplicateEventError(BillingError):
    """Raised when a ledger entry with the same external event id already exists."""

    def __init__(self, event_id: str = None):
        super().__init__(
            message="Event already processed",
            code="DUPLICATE_EVENT",
            details={'event_id': event_id} if event_id else {},
            status_code=200,
        )
        self.event_id = event_id


class UpstreamUnavailableError(BillingError):
    """Raised when a Stripe call fails. The caller may retry."""

    def __init__(
        self,
        message: str = "Payment provider unavailable. Please try again.",
        operation: str = None,
        stripe_error: str = None
    ):
        details = {'retryable': True}
        if operation:
            details['operation'] = operation
        if stripe_error:
            details['stripe_error'] = stripe_error

        super().__init__(
            message=message,
            code="UPSTREAM_UNAVAILABLE",
            details=details,
            status_code=503,
        )
        self.operation = operation
        self.stripe_error = stripe_error


class EmailNotVerifiedError(BillingError):
    def __init__(self, user_id: str = None):
        super().__init__(
            message="Please verify your email before selecting a plan",
            code="EMAIL_NOT_VERIFIED",
            details={'user_id': user_id} if user_id else {},
            status_code=403,
        )
        self.user_id = user_id


class ActiveSubscriptionError(BillingError):
    def __init__(self, tier: str = None):
        super().__init__(
            message="You already have an active subscription",
            code="ACTIVE_SUBSCRIPTION",
            details={'tier': tier} if tier else {},
            status_code=409,
        )
        self.tier = tier


class InvalidPlanError(BillingError):
    """Raised for an unknown tier or billing cycle at checkout."""

    def __init__(self, message: str = "Invalid plan selected", tier: str = None, billing_cycle: str = None):
        details = {}
        if tier:
            details['tier'] = tier
        if billing_cycle:
            details['billing_cycle'] = billing_cycle

        super().__init__(
            message=message,
            code="INVALID_PLAN",
            details=details,
            status_code=400,
        )
        self.tier = tier
        self.billing_cycle = billing_cycle


class SessionOwnershipError(BillingError):
    """Raised when a checkout session belongs to another user."""

    def __init__(self, session_id: str = None):
        super().__init__(
            message="Session does not belong to current user",
            code="SESSION_OWNERSHIP",
            details={'session_id': session_id} if session_id else {},
            status_code=403,
        )
        self.session_id = session_id


class CheckoutSessionNotFoundError(BillingError):
    def __init__(self, session_id: str = None):
        super().__init__(
            message="Invalid session ID",
            code="SESSION_NOT_FOUND",
            details={'session_id': session_id} if session_id else {},
            status_code=404,
        )
        self.session_id = session_id
