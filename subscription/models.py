"""
Subscription Data Models

Defines the core data structures for the entitlement system: plans,
the single client-side subscription record, server-side records and the
typed results returned by verification.
"""

import calendar
import math
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from datetime import datetime, timedelta, timezone

from subscription.errors import InvalidPlanError


MS_PER_DAY = 86_400_000


class SubscriptionPlan(str, Enum):
    """
    Subscription plans.

    The *_premium plans are sold through checkout and code activation;
    monthly/yearly/free/premium are the account-based plan names.
    """
    MONTHLY_PREMIUM = "monthly_premium"
    YEARLY_PREMIUM = "yearly_premium"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    FREE = "free"
    PREMIUM = "premium"

    @classmethod
    def from_value(cls, value: Any) -> 'SubscriptionPlan':
        """Parse a plan, raising InvalidPlanError for unknown values"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise InvalidPlanError(f"Unknown plan '{value}'. Valid plans: {valid}")

    @property
    def is_yearly(self) -> bool:
        return self in (SubscriptionPlan.YEARLY_PREMIUM, SubscriptionPlan.YEARLY)

    @property
    def is_paid(self) -> bool:
        return self != SubscriptionPlan.FREE


class VerificationReason(str, Enum):
    """Why a verification failed"""
    MISSING_TOKEN = "missing_token"
    INVALID_TOKEN = "invalid_token"
    EXPIRED = "expired"
    TAMPERED = "tampered"
    ERROR = "error"
    INVALID_FORMAT = "invalid_format"


class EntitlementState(str, Enum):
    """Lifecycle states of the client-side record"""
    ABSENT = "absent"
    ACTIVE = "active"
    EXPIRED = "expired"
    TAMPERED = "tampered"
    INVALID = "invalid"


# ========== Time helpers ==========

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """Format as ISO-8601 UTC with millisecond precision and a Z suffix"""
    value = ensure_utc(value)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix accepted)"""
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day to the target month length"""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def expiry_for_plan(plan: SubscriptionPlan, now: Optional[datetime] = None) -> datetime:
    """
    Compute the expiry for a new subscription on ``plan``.

    Yearly plans run one calendar year, everything else one calendar month.
    """
    start = ensure_utc(now or utc_now())
    if plan.is_yearly:
        return add_months(start, 12)
    return add_months(start, 1)


def days_remaining(expires_at: datetime, now: Optional[datetime] = None) -> int:
    """Whole days left, rounded up and floored at zero"""
    now = ensure_utc(now or utc_now())
    delta_ms = (ensure_utc(expires_at) - now) / timedelta(milliseconds=1)
    return max(0, math.ceil(delta_ms / MS_PER_DAY))


# ========== Client-side record ==========

@dataclass
class SubscriptionRecord:
    """
    The single active subscription stored on a device.

    Every field is kept as the exact string that was written, so a
    store/load round trip is byte-for-byte. Fields other than ``token``
    may be None when the store holds a partially written record.
    """
    token: str
    plan: Optional[str]
    expires_at: Optional[str]
    created_at: Optional[str]
    validation_marker: Optional[str]
    mobile_access_code: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return all([self.token, self.plan, self.expires_at, self.validation_marker])

    def expires_at_datetime(self) -> datetime:
        return parse_iso(self.expires_at)

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "plan": self.plan,
            "expiresAt": self.expires_at,
            "createdAt": self.created_at,
            "validationMarker": self.validation_marker,
            "mobileAccessCode": self.mobile_access_code,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'SubscriptionRecord':
        return cls(
            token=data["token"],
            plan=data.get("plan"),
            expires_at=data.get("expiresAt"),
            created_at=data.get("createdAt"),
            validation_marker=data.get("validationMarker"),
            mobile_access_code=data.get("mobileAccessCode"),
        )


@dataclass
class VerificationResult:
    """Outcome of verifying a token or mobile code"""
    valid: bool
    reason: Optional[VerificationReason] = None
    plan: Optional[str] = None
    expires_at: Optional[str] = None
    days_remaining: Optional[int] = None
    access_token: Optional[str] = None

    @classmethod
    def failure(cls, reason: VerificationReason) -> 'VerificationResult':
        return cls(valid=False, reason=reason)

    def to_dict(self) -> dict:
        if not self.valid:
            data: Dict[str, Any] = {"valid": False}
            if self.reason is not None:
                data["reason"] = self.reason.value
            # Known but lapsed or cancelled records still report what they were
            if self.plan is not None:
                data["plan"] = self.plan
            if self.expires_at is not None:
                data["expiresAt"] = self.expires_at
            return data

        data = {
            "valid": True,
            "plan": self.plan,
            "expiresAt": self.expires_at,
        }
        if self.days_remaining is not None:
            data["daysRemaining"] = self.days_remaining
        if self.access_token is not None:
            data["accessToken"] = self.access_token
        return data


# ========== Server-side record ==========

@dataclass
class ServerSubscriptionRecord:
    """Subscription as held by the API server's record store"""
    id: str
    email: str
    access_token: str
    mobile_access_code: str
    plan: str
    start_date: datetime
    expires_at: datetime
    payment_id: Optional[str] = None
    active: bool = True
    created_at: datetime = field(default_factory=utc_now)

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """Served validity: active and not past expiry"""
        now = ensure_utc(now or utc_now())
        return self.active and now < ensure_utc(self.expires_at)

    def to_public_dict(self) -> dict:
        """Fields exposed to callers after creation (no token, no code)"""
        return {
            "id": self.id,
            "email": self.email,
            "plan": self.plan,
            "startDate": to_iso(self.start_date),
            "expiresAt": to_iso(self.expires_at),
            "active": self.active,
        }

    def to_dict(self) -> dict:
        return {
            **self.to_public_dict(),
            "accessToken": self.access_token,
            "mobileAccessCode": self.mobile_access_code,
            "paymentId": self.payment_id,
            "createdAt": to_iso(self.created_at),
        }


# ========== Provider-facing status ==========

@dataclass
class SubscriptionStatus:
    """What a UI surface needs to know about the current subscription"""
    is_subscribed: bool
    plan: Optional[str] = None
    expires_at: Optional[str] = None
    days_remaining: int = 0
    platform: Optional[str] = None
    error: Optional[str] = None
    mobile_access_code: Optional[str] = None

    @classmethod
    def unsubscribed(cls, platform: Optional[str] = None, error: Optional[str] = None) -> 'SubscriptionStatus':
        return cls(is_subscribed=False, platform=platform, error=error)

    def to_dict(self) -> dict:
        return {
            "isSubscribed": self.is_subscribed,
            "plan": self.plan,
            "expiresAt": self.expires_at,
            "daysRemaining": self.days_remaining,
            "platform": self.platform,
            "error": self.error,
        }
