"""
Free Usage Quota - metered features for users without a subscription

Free users get a fixed number of uses of each metered feature
(``FeatureGate.FREE_LIMITS``). Subscribers are unlimited and are never
counted. Counts live in the device key-value store, one key per user and
feature, and are wiped when the user subscribes.

Key layout for namespace ``usage``::

    usage_<feature>_<user_id> -> {"count": 2, "firstUsed": ..., "lastUsed": ...}
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from typing import Any, Callable, List, Optional

from subscription.entitlement_service import EntitlementService
from subscription.errors import StoreError
from subscription.feature_gate import FeatureGate, FeatureGateError
from subscription.models import VerificationReason, ensure_utc, to_iso, utc_now
from subscription.token_store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_METERED_FEATURE = 'limited_alerts'
NO_FREE_USES_REMAINING = "No free uses remaining"


@dataclass
class QuotaStatus:
    """Where a user stands on one metered feature"""
    allowed: bool
    remaining: Optional[int] = None
    used: int = 0
    unlimited: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "used": self.used,
            "unlimited": self.unlimited,
            "reason": self.reason,
        }


class UsageQuota:
    """
    Counts free uses per user.

    Args:
        backend: key-value store holding the counters
        service: the device entitlement; a valid paid subscription lifts every limit
        namespace: key prefix
        clock: returns the current time (UTC)
    """

    def __init__(
        self,
        backend: KeyValueStore,
        service: EntitlementService,
        namespace: str = "usage",
        clock: Callable[[], datetime] = utc_now,
    ):
        self.backend = backend
        self.service = service
        self.namespace = namespace
        self.clock = clock

    def key_for(self, user_id: str, feature: str) -> str:
        return f"{self.namespace}_{feature}_{user_id}"

    def _current_plan(self) -> Optional[str]:
        result = self.service.verify_current()
        return result.plan if result.valid else None

    def _read(self, key: str) -> dict:
        raw = self.backend.get(key)
        if raw is None:
            return {"count": 0}
        data = json.loads(raw)
        data["count"] = int(data["count"])
        return data

    def check(self, user_id: str, feature: str = DEFAULT_METERED_FEATURE) -> QuotaStatus:
        """Remaining free uses, without consuming one"""
        limit = FeatureGate.get_limit(self._current_plan(), feature)
        if limit is None:
            return QuotaStatus(allowed=True, unlimited=True)

        try:
            used = self._read(self.key_for(user_id, feature))["count"]
        except (StoreError, ValueError, TypeError, KeyError) as e:
            logger.error(f"Could not read usage for '{feature}': {e}")
            return QuotaStatus(allowed=False, remaining=0, reason=VerificationReason.ERROR.value)

        remaining = max(0, limit - used)
        if remaining == 0:
            return QuotaStatus(allowed=False, remaining=0, used=used, reason=NO_FREE_USES_REMAINING)
        return QuotaStatus(allowed=True, remaining=remaining, used=used)

    def consume(self, user_id: str, feature: str = DEFAULT_METERED_FEATURE) -> QuotaStatus:
        """Record one use; refused once the free uses are gone"""
        status = self.check(user_id, feature)
        if status.unlimited or not status.allowed:
            return status

        key = self.key_for(user_id, feature)
        now = to_iso(ensure_utc(self.clock()))
        try:
            data = self._read(key)
            data["count"] += 1
            data.setdefault("firstUsed", now)
            data["lastUsed"] = now
            self.backend.set(key, json.dumps(data))
        except (StoreError, ValueError, TypeError, KeyError) as e:
            logger.error(f"Could not record usage for '{feature}': {e}")
            return QuotaStatus(allowed=False, remaining=0, reason=VerificationReason.ERROR.value)

        return QuotaStatus(
            allowed=True,
            remaining=status.remaining - 1,
            used=data["count"],
        )

    def reset(self, user_id: str, features: Optional[List[str]] = None) -> bool:
        """Forget a user's counts (all metered features by default)"""
        try:
            for feature in features or list(FeatureGate.FREE_LIMITS):
                self.backend.remove(self.key_for(user_id, feature))
        except StoreError as e:
            logger.error(f"Could not reset usage: {e}")
            return False
        logger.debug("Reset free usage counters")
        return True


def limit_check(feature: str, quota: UsageQuota, user_id_getter: Callable[..., str]):
    """
    Decorator to consume one free use before executing a function.

    Args:
        feature: Name of the metered feature
        quota: Where the uses are counted
        user_id_getter: Function to get the user id from the call's args

    Usage:
        @limit_check('limited_alerts', quota, lambda user_id, route: user_id)
        def create_alert(user_id, route):
            ...

    Raises:
        FeatureGateError: when no free use is left
    """
    def consume(*args, **kwargs) -> None:
        status = quota.consume(user_id_getter(*args, **kwargs), feature)
        if not status.allowed:
            _, message = FeatureGate.check_limit(None, feature, status.used)
            raise FeatureGateError(
                feature=feature,
                required_plan='monthly_premium',
                message=message or "Usage could not be checked, try again later",
            )

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            consume(*args, **kwargs)
            return await func(*args, **kwargs)

        @wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            consume(*args, **kwargs)
            return func(*args, **kwargs)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
