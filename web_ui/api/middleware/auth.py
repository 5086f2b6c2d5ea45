"""
Subscription Authentication for the Travel Planner Web API

Gates premium endpoints on a subscription bearer token. The token is
checked against the server's own record store through the verification
adapter held on ``app.state``.

Response contract:
- no bearer token           -> 401 {message, requiresSubscription: true}
- token unknown/expired     -> 401 {message, requiresSubscription: true}
- plan not allowed          -> 403 {message, requiresSubscription: true}
- verification blew up      -> 500 {message}
- success                   -> request.state.subscription = {plan, expiresAt}
"""

import logging
from typing import Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from subscription.errors import SubscriptionAuthError
from subscription.models import SubscriptionPlan
from subscription.server_verification import ServerVerificationAdapter

logger = logging.getLogger(__name__)

NO_TOKEN_MESSAGE = "No subscription token, premium access denied"
INVALID_TOKEN_MESSAGE = "Subscription token is expired or invalid"
VERIFICATION_FAILED_MESSAGE = "Subscription verification failed"

# Security scheme for Swagger UI
security_scheme = HTTPBearer(auto_error=False)


def get_verification_adapter(request: Request) -> ServerVerificationAdapter:
    """The process-wide adapter built by the application factory"""
    return request.app.state.verification_adapter


async def require_subscription_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    adapter: ServerVerificationAdapter = Depends(get_verification_adapter),
) -> dict:
    """
    FastAPI dependency that requires a valid subscription token.

    Usage:
        @router.get("/premium/deals")
        async def deals(subscription: dict = Depends(require_subscription_token)):
            return {"plan": subscription["plan"]}
    """
    if credentials is None or not credentials.credentials:
        raise SubscriptionAuthError(status.HTTP_401_UNAUTHORIZED, NO_TOKEN_MESSAGE)

    try:
        verification = await adapter.verify_token(credentials.credentials)
    except Exception as e:
        # Don't expose internal details to the client
        logger.error(f"Token verification error: {e}")
        raise SubscriptionAuthError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            VERIFICATION_FAILED_MESSAGE,
            requires_subscription=False,
        )

    if not verification.valid:
        raise SubscriptionAuthError(status.HTTP_401_UNAUTHORIZED, INVALID_TOKEN_MESSAGE)

    subscription = {
        "plan": verification.plan,
        "expiresAt": verification.expires_at,
    }
    request.state.subscription = subscription
    return subscription


def require_plan(*allowed_plans: SubscriptionPlan):
    """
    Dependency factory to require specific subscription plans.

    Usage:
        @router.get("/premium/predictions")
        async def predictions(
            subscription: dict = Depends(require_plan(SubscriptionPlan.YEARLY_PREMIUM))
        ):
            ...
    """
    allowed = {p.value for p in allowed_plans}

    async def dependency(
        subscription: dict = Depends(require_subscription_token),
    ) -> dict:
        if allowed and subscription["plan"] not in allowed:
            plan_names = ", ".join(sorted(allowed))
            raise SubscriptionAuthError(
                status.HTTP_403_FORBIDDEN,
                f"This feature requires a {plan_names} subscription.",
            )
        return subscription

    return dependency


async def subscription_auth_error_handler(request: Request, exc: SubscriptionAuthError) -> JSONResponse:
    """Render SubscriptionAuthError with its exact body"""
    headers = None
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=headers)


def install_auth_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SubscriptionAuthError, subscription_auth_error_handler)


# Convenience dependencies for common plan requirements
require_yearly_plan = require_plan(
    SubscriptionPlan.YEARLY_PREMIUM,
    SubscriptionPlan.YEARLY,
)
