"""
Subscription error types.
"""


class SubscriptionError(Exception):
    """Base class for subscription subsystem errors"""
    pass


class InvalidPlanError(SubscriptionError):
    """Raised when a plan identifier is not recognised"""
    pass


class InvalidAccessCodeError(SubscriptionError):
    """Raised when a mobile access code does not have the XXXX-XXXX-XXXX shape"""
    pass


class StoreError(SubscriptionError):
    """Raised when the local key-value store cannot be read or written"""
    pass


class ProviderNotAvailableError(SubscriptionError):
    """Raised when no entitlement provider is registered for a platform"""
    pass


class SubscriptionAuthError(SubscriptionError):
    """
    Raised by the request-gating dependency.

    Carries the HTTP status and the exact JSON body to send back, so the
    exception handler can render ``{message, requiresSubscription}`` without
    FastAPI's ``detail`` wrapper.
    """

    def __init__(self, status_code: int, message: str, requires_subscription: bool = True):
        self.status_code = status_code
        self.message = message
        self.requires_subscription = requires_subscription
        super().__init__(message)

    def to_body(self) -> dict:
        body = {"message": self.message}
        if self.requires_subscription:
            body["requiresSubscription"] = True
        return body
