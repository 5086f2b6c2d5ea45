"""Subscription API schemas for issuing, verifying and activating subscriptions"""

from typing import List, Optional
from pydantic import BaseModel


class CreateSubscriptionRequest(BaseModel):
    """Request to issue a subscription after a completed checkout"""
    email: str
    plan: str  # e.g. "monthly_premium", "yearly_premium"
    payment_id: Optional[str] = None


class VerifyTokenRequest(BaseModel):
    """Request to verify an access token"""
    token: str


class ActivateCodeRequest(BaseModel):
    """Request to activate a subscription with a mobile access code"""
    code: str  # XXXX-XXXX-XXXX


class DeviceCheckoutRequest(BaseModel):
    """Request to start a subscription on this device"""
    plan: str
    email: Optional[str] = None
    payment_id: Optional[str] = None


class PlanFeaturesResponse(BaseModel):
    """Features unlocked by a plan"""
    plan: str
    features: List[str]
