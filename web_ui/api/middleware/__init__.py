"""
Travel Planner API Middleware

Subscription token authentication for the FastAPI application.
"""

from .auth import (
    get_verification_adapter,
    require_subscription_token,
    require_plan,
    require_yearly_plan,
    install_auth_handlers,
    security_scheme,
)

__all__ = [
    "get_verification_adapter",
    "require_subscription_token",
    "require_plan",
    "require_yearly_plan",
    "install_auth_handlers",
    "security_scheme",
]
