"""
Feature Gate System - Controls access to premium features by plan

Usage:
    # Runtime check
    if FeatureGate.is_feature_available(plan, 'price_predictions'):
        show_predictions()

    # Decorator-based, against the device's entitlement service
    @feature_required('historical_data', service)
    async def load_price_history(...):
        ...
"""

import asyncio
import logging
from functools import wraps
from typing import Callable, Any, Dict, FrozenSet, Optional, Tuple, Union

from subscription.entitlement_service import EntitlementService
from subscription.errors import SubscriptionError
from subscription.models import SubscriptionPlan

logger = logging.getLogger(__name__)


class FeatureGateError(SubscriptionError):
    """Raised when a feature is not available"""

    def __init__(self, feature: str, required_plan: str, message: str):
        self.feature = feature
        self.required_plan = required_plan
        self.message = message
        super().__init__(message)


class FeatureGate:
    """
    Controls access to features based on the subscription plan.

    This is the central point for all feature access checks.
    """

    FREE_FEATURES: FrozenSet[str] = frozenset({
        'basic_search',
        'limited_alerts',
    })

    MONTHLY_FEATURES: FrozenSet[str] = FREE_FEATURES | frozenset({
        'premium_deals',
        'unlimited_alerts',
        'priority_notifications',
        'full_search',
    })

    YEARLY_FEATURES: FrozenSet[str] = MONTHLY_FEATURES | frozenset({
        'historical_data',
        'price_predictions',
    })

    PLAN_FEATURES = {
        SubscriptionPlan.FREE: FREE_FEATURES,
        SubscriptionPlan.MONTHLY_PREMIUM: MONTHLY_FEATURES,
        SubscriptionPlan.MONTHLY: MONTHLY_FEATURES,
        SubscriptionPlan.PREMIUM: MONTHLY_FEATURES,
        SubscriptionPlan.YEARLY_PREMIUM: YEARLY_FEATURES,
        SubscriptionPlan.YEARLY: YEARLY_FEATURES,
    }

    # Metered features: free users get a fixed number of uses, paid plans are unlimited
    FREE_LIMITS: Dict[str, int] = {
        'limited_alerts': 3,
    }

    @classmethod
    def _plan(cls, plan: Optional[Union[str, SubscriptionPlan]]) -> Optional[SubscriptionPlan]:
        if plan is None:
            return None
        try:
            return SubscriptionPlan.from_value(plan)
        except SubscriptionError:
            return None

    @classmethod
    def available_features(cls, plan: Optional[Union[str, SubscriptionPlan]]) -> FrozenSet[str]:
        """Features unlocked by a plan; unknown or missing plans get the free set"""
        plan_enum = cls._plan(plan)
        if plan_enum is None:
            return cls.FREE_FEATURES
        return cls.PLAN_FEATURES.get(plan_enum, cls.FREE_FEATURES)

    @classmethod
    def is_feature_available(cls, plan: Optional[Union[str, SubscriptionPlan]], feature_id: str) -> bool:
        """
        Check if a feature is available for a plan.

        ``plan`` is None when the user is not subscribed.
        """
        return feature_id in cls.available_features(plan)

    @classmethod
    def get_limit(cls, plan: Optional[Union[str, SubscriptionPlan]], limit_name: str) -> Optional[int]:
        """Usage cap for a plan; None means unlimited"""
        plan_enum = cls._plan(plan)
        if plan_enum is not None and plan_enum.is_paid:
            return None
        return cls.FREE_LIMITS.get(limit_name)

    @classmethod
    def check_limit(
        cls,
        plan: Optional[Union[str, SubscriptionPlan]],
        limit_name: str,
        current_value: int,
    ) -> Tuple[bool, Optional[str]]:
        """
        Check if a usage limit would be exceeded.

        Args:
            plan: Current plan (None when not subscribed)
            limit_name: Name of the metered feature (e.g. 'limited_alerts')
            current_value: Uses so far

        Returns:
            Tuple of (is_allowed, error_message)
        """
        max_value = cls.get_limit(plan, limit_name)
        if max_value is None:
            return True, None
        if current_value >= max_value:
            display = limit_name.replace('_', ' ')
            return False, f"Limit reached: all {max_value} free uses of {display} are used. Upgrade for unlimited access."
        return True, None

    @classmethod
    def get_required_plan(cls, feature_id: str) -> Optional[SubscriptionPlan]:
        """Cheapest plan that unlocks a feature"""
        if feature_id in cls.FREE_FEATURES:
            return SubscriptionPlan.FREE
        if feature_id in cls.MONTHLY_FEATURES:
            return SubscriptionPlan.MONTHLY_PREMIUM
        if feature_id in cls.YEARLY_FEATURES:
            return SubscriptionPlan.YEARLY_PREMIUM
        return None

    @classmethod
    def get_upgrade_message(cls, feature_id: str) -> str:
        """Get a user-friendly upgrade message for a feature"""
        required = cls.get_required_plan(feature_id)
        feature_display = feature_id.replace('_', ' ').title()

        if required == SubscriptionPlan.MONTHLY_PREMIUM:
            return f"'{feature_display}' requires a Premium subscription. Upgrade now to unlock this feature!"
        elif required == SubscriptionPlan.YEARLY_PREMIUM:
            return f"'{feature_display}' is included with the yearly Premium plan."
        else:
            return f"'{feature_display}' is not available with your current subscription."


def feature_required(feature_id: str, service: EntitlementService):
    """
    Decorator to require a feature for a function.

    The current plan comes from the service's stored subscription; an
    invalid or missing subscription counts as free.

    Raises:
        FeatureGateError: when the feature is locked
    """
    def check():
        result = service.verify_current()
        plan = result.plan if result.valid else None
        if not FeatureGate.is_feature_available(plan, feature_id):
            required = FeatureGate.get_required_plan(feature_id)
            message = FeatureGate.get_upgrade_message(feature_id)
            logger.debug(f"Feature '{feature_id}' locked for plan {plan}")
            raise FeatureGateError(
                feature=feature_id,
                required_plan=required.value if required else 'unknown',
                message=message,
            )

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            check()
            return await func(*args, **kwargs)

        @wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            check()
            return func(*args, **kwargs)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
