"""
Subscription Routes - API endpoints for subscription management

Three groups:
- /subscriptions: server-held records (issue, verify, activate by code, cancel)
- /premium: example routes gated on a subscription bearer token
- /device/subscription: the local entitlement of the device running the API,
  served through the provider for the caller's platform
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials

from subscription.entitlement_service import EntitlementService
from subscription.errors import InvalidPlanError
from subscription.feature_gate import FeatureGate
from subscription.models import SubscriptionPlan, VerificationReason
from subscription.providers import EntitlementProvider, ProviderRegistry
from subscription.server_verification import ServerVerificationAdapter
from subscription.usage_quota import DEFAULT_METERED_FEATURE, UsageQuota
from web_ui.api.middleware.auth import (
    get_verification_adapter,
    require_subscription_token,
    require_yearly_plan,
    security_scheme,
)
from web_ui.api.schemas.subscription_schemas import (
    ActivateCodeRequest,
    CreateSubscriptionRequest,
    DeviceCheckoutRequest,
    PlanFeaturesResponse,
    VerifyTokenRequest,
)


router = APIRouter(prefix="/subscriptions", tags=["subscription"])
premium_router = APIRouter(prefix="/premium", tags=["premium"])
device_router = APIRouter(prefix="/device/subscription", tags=["device"])

STORE_FAILED_MESSAGE = "Subscription storage on this device failed"


# ========== Dependencies ==========

def get_entitlement_service(request: Request) -> EntitlementService:
    return request.app.state.entitlement_service


def get_provider_registry(request: Request) -> ProviderRegistry:
    return request.app.state.provider_registry


def get_usage_quota(request: Request) -> UsageQuota:
    return request.app.state.usage_quota


def get_platform_provider(
    user_agent: Optional[str] = Header(default=None),
    registry: ProviderRegistry = Depends(get_provider_registry),
) -> EntitlementProvider:
    """Provider matching the caller's User-Agent"""
    return registry.select(user_agent)


def _parse_plan(plan: str) -> SubscriptionPlan:
    try:
        return SubscriptionPlan.from_value(plan)
    except InvalidPlanError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e)}
        )


# ========== Server-held subscriptions ==========

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_subscription(
    request: CreateSubscriptionRequest,
    adapter: ServerVerificationAdapter = Depends(get_verification_adapter),
):
    """
    Issue a subscription.

    The access token and mobile access code are only ever returned here.
    """
    plan = _parse_plan(request.plan)
    record = await adapter.create_subscription(
        email=request.email,
        plan=plan,
        payment_id=request.payment_id,
    )
    return {"success": True, **record.to_dict()}


@router.post("/verify")
async def verify_token(
    request: VerifyTokenRequest,
    adapter: ServerVerificationAdapter = Depends(get_verification_adapter),
):
    """Check whether an access token is entitled"""
    result = await adapter.verify_token(request.token)
    return result.to_dict()


@router.post("/activate-code")
async def activate_code(
    request: ActivateCodeRequest,
    adapter: ServerVerificationAdapter = Depends(get_verification_adapter),
):
    """
    Exchange a mobile access code for the subscription's access token.
    """
    result = await adapter.verify_mobile_code(request.code)
    if result.reason == VerificationReason.INVALID_FORMAT:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Invalid code format"}
        )
    return result.to_dict()


@router.post("/cancel")
async def cancel_subscription(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    adapter: ServerVerificationAdapter = Depends(get_verification_adapter),
):
    """Soft-cancel the subscription identified by the bearer token"""
    token = credentials.credentials if credentials else None
    outcome = await adapter.cancel_subscription(token)
    if not outcome["success"]:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=outcome)
    return outcome


@router.get("/by-email/{email}")
async def list_subscriptions(
    email: str,
    adapter: ServerVerificationAdapter = Depends(get_verification_adapter),
):
    """Subscriptions issued to an email (tokens are not included)"""
    records = await adapter.list_by_email(email)
    return {"subscriptions": [r.to_public_dict() for r in records]}


@router.get("/features/{plan}", response_model=PlanFeaturesResponse)
async def get_plan_features(plan: str):
    """Features unlocked by a plan"""
    plan_enum = _parse_plan(plan)
    return PlanFeaturesResponse(
        plan=plan_enum.value,
        features=sorted(FeatureGate.available_features(plan_enum)),
    )


# ========== Gated routes ==========

@premium_router.get("/status")
async def premium_status(
    request: Request,
    subscription: dict = Depends(require_subscription_token),
):
    """Echo the verified subscription attached to the request"""
    return {"subscription": request.state.subscription}


@premium_router.get("/price-predictions")
async def price_predictions(subscription: dict = Depends(require_yearly_plan)):
    """Yearly-plan feature"""
    return {
        "feature": "price_predictions",
        "plan": subscription["plan"],
        "available": FeatureGate.is_feature_available(subscription["plan"], "price_predictions"),
    }


# ========== Device (local) entitlement ==========

@device_router.get("/status")
async def device_status(
    provider: EntitlementProvider = Depends(get_platform_provider),
    service: EntitlementService = Depends(get_entitlement_service),
):
    """
    Get current subscription status for this device.

    Recomputed from the local store and the clock on every call.
    """
    current = await provider.refresh()
    return {
        **current.to_dict(),
        "state": service.state().value,
        "aboutToExpire": service.is_about_to_expire(),
    }


@device_router.get("/details")
async def device_details(service: EntitlementService = Depends(get_entitlement_service)):
    """Subscription details formatted for display"""
    return service.get_formatted_details()


@device_router.post("/checkout", status_code=status.HTTP_201_CREATED)
async def device_checkout(
    request: DeviceCheckoutRequest,
    provider: EntitlementProvider = Depends(get_platform_provider),
):
    """Start a subscription on this device after a completed payment"""
    plan = _parse_plan(request.plan)
    created = await provider.create(plan, email=request.email, payment_id=request.payment_id)
    if not created.is_subscribed:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": STORE_FAILED_MESSAGE}
        )
    return {
        "success": created.is_subscribed,
        **created.to_dict(),
        "mobileAccessCode": created.mobile_access_code,
    }


@device_router.post("/activate-code")
async def device_activate_code(
    request: ActivateCodeRequest,
    provider: EntitlementProvider = Depends(get_platform_provider),
):
    """Activate a subscription bought on the web with its mobile access code"""
    activated = await provider.activate_with_code(request.code)
    if not activated.is_subscribed:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": activated.error or "Failed to activate code"}
        )
    return {"success": True, **activated.to_dict()}


@device_router.post("/cancel")
async def device_cancel(provider: EntitlementProvider = Depends(get_platform_provider)):
    """Cancel and clear the subscription on this device"""
    cancelled = await provider.cancel()
    if cancelled.error:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": STORE_FAILED_MESSAGE}
        )
    return {"success": True, **cancelled.to_dict()}


@device_router.get("/usage/{user_id}")
async def usage_status(
    user_id: str,
    feature: str = DEFAULT_METERED_FEATURE,
    quota: UsageQuota = Depends(get_usage_quota),
):
    """Free uses left for a metered feature"""
    return quota.check(user_id, feature).to_dict()


@device_router.post("/usage/{user_id}/consume")
async def consume_usage(
    user_id: str,
    feature: str = DEFAULT_METERED_FEATURE,
    quota: UsageQuota = Depends(get_usage_quota),
):
    """
    Use one free unit of a metered feature.

    Subscribers are never counted. Refused with 403 once the free uses are gone.
    """
    result = quota.consume(user_id, feature)
    if not result.allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": result.reason, "requiresSubscription": True}
        )
    return result.to_dict()
