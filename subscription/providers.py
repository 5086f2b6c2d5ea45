"""
Entitlement Providers

One interface for every front-end surface (web, iOS, Android) instead of a
separate context/hook per platform. Each provider offers the same
capability set (create, verify, cancel, refresh, activate_with_code) and a
platform detector picks the provider for an incoming client.

Trust model: when a server adapter is wired in, it is the authority. New
subscriptions are issued server-side first and the local store only caches
the server's grant; cancellation goes to the server before the local
record is cleared. Without a server adapter the providers work purely
against the local store.
"""

import logging
import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Optional, Union

from subscription.entitlement_service import EntitlementService
from subscription.errors import ProviderNotAvailableError, StoreError
from subscription.models import (
    SubscriptionPlan,
    SubscriptionStatus,
    VerificationReason,
    VerificationResult,
)
from subscription.server_verification import ServerVerificationAdapter
from subscription.usage_quota import UsageQuota

logger = logging.getLogger(__name__)


class Platform(str, Enum):
    """Client platforms"""
    WEB = "web"
    IOS = "ios"
    ANDROID = "android"


class PlatformDetector:
    """Maps a User-Agent string to a platform"""

    IOS_PATTERN = re.compile(r"iphone|ipad|ipod", re.IGNORECASE)
    ANDROID_PATTERN = re.compile(r"android", re.IGNORECASE)

    def detect(self, user_agent: Optional[str]) -> Platform:
        if not user_agent:
            return Platform.WEB
        if self.IOS_PATTERN.search(user_agent):
            return Platform.IOS
        if self.ANDROID_PATTERN.search(user_agent):
            return Platform.ANDROID
        return Platform.WEB


class EntitlementProvider(ABC):
    """
    Abstract base class for entitlement providers.

    All surfaces must implement this interface.
    """

    @property
    @abstractmethod
    def platform(self) -> Platform:
        pass

    @abstractmethod
    async def create(
        self,
        plan: Union[str, SubscriptionPlan],
        email: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> SubscriptionStatus:
        """Start a subscription on this device"""
        pass

    @abstractmethod
    async def verify(self, token: Optional[str] = None) -> VerificationResult:
        """Verify a token, or the stored one when none is given"""
        pass

    @abstractmethod
    async def cancel(self) -> SubscriptionStatus:
        pass

    @abstractmethod
    async def refresh(self) -> SubscriptionStatus:
        """Recompute the status from current storage and clock"""
        pass

    @abstractmethod
    async def activate_with_code(self, code: str) -> SubscriptionStatus:
        pass


class StoreBackedProvider(EntitlementProvider):
    """Shared behaviour for providers that cache the grant in a local store"""

    def __init__(
        self,
        service: EntitlementService,
        server: Optional[ServerVerificationAdapter] = None,
        quota: Optional[UsageQuota] = None,
    ):
        self.service = service
        self.server = server
        self.quota = quota

    def _status(self, result: VerificationResult) -> SubscriptionStatus:
        if not result.valid:
            reason = result.reason.value if result.reason else None
            return SubscriptionStatus.unsubscribed(self.platform.value, error=reason)
        return SubscriptionStatus(
            is_subscribed=True,
            plan=result.plan,
            expires_at=result.expires_at,
            days_remaining=result.days_remaining or 0,
            platform=self.platform.value,
        )

    def _store_failed(self) -> SubscriptionStatus:
        return SubscriptionStatus.unsubscribed(self.platform.value, error=VerificationReason.ERROR.value)

    async def create(
        self,
        plan: Union[str, SubscriptionPlan],
        email: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> SubscriptionStatus:
        """
        Issue a subscription.

        With a server, the server record is created first and its token,
        code and expiry are stored locally. Otherwise the grant is local.
        If the local write fails, the server record is cancelled again so
        no active grant is left without a holder.
        """
        issued = None
        if self.server is not None:
            issued = await self.server.create_subscription(
                email=email or "",
                plan=plan,
                payment_id=payment_id,
            )

        try:
            if issued is not None:
                self.service.create(
                    issued.plan,
                    issued.expires_at,
                    mobile_access_code=issued.mobile_access_code,
                    token=issued.access_token,
                )
            else:
                self.service.create_for_plan(plan, self.service.codec.generate_mobile_access_code())
            record = self.service.store.load()
        except StoreError as e:
            logger.error(f"Could not store subscription on {self.platform.value}: {e}")
            if issued is not None:
                await self.server.cancel_subscription(issued.access_token)
            return self._store_failed()

        if self.quota is not None and email:
            self.quota.reset(email)

        status = await self.refresh()
        status.mobile_access_code = record.mobile_access_code if record else None
        return status

    async def verify(self, token: Optional[str] = None) -> VerificationResult:
        if token is None:
            return self.service.verify_current()
        return self.service.verify(token)

    async def cancel(self) -> SubscriptionStatus:
        """Cancel server-side (when wired), then clear the local record"""
        try:
            record = self.service.store.load()
        except StoreError as e:
            logger.error(f"Could not read subscription on {self.platform.value}: {e}")
            return self._store_failed()

        if self.server is not None and record is not None:
            outcome = await self.server.cancel_subscription(record.token)
            if not outcome["success"]:
                logger.warning(f"Server cancel failed: {outcome.get('error')}")

        try:
            self.service.clear()
        except StoreError as e:
            logger.error(f"Could not clear subscription on {self.platform.value}: {e}")
            return self._store_failed()
        return SubscriptionStatus.unsubscribed(self.platform.value)

    async def refresh(self) -> SubscriptionStatus:
        return self._status(self.service.verify_current())


class WebEntitlementProvider(StoreBackedProvider):
    """Browser surface; code activation is a mobile-only flow"""

    @property
    def platform(self) -> Platform:
        return Platform.WEB

    async def activate_with_code(self, code: str) -> SubscriptionStatus:
        return SubscriptionStatus.unsubscribed(
            self.platform.value,
            error="This function is only available on mobile devices",
        )


class MobileEntitlementProvider(StoreBackedProvider):
    """iOS / Android surface; activates subscriptions bought on the web by code"""

    def __init__(
        self,
        platform: Platform,
        service: EntitlementService,
        server: Optional[ServerVerificationAdapter] = None,
        quota: Optional[UsageQuota] = None,
    ):
        if platform == Platform.WEB:
            raise ValueError("MobileEntitlementProvider requires a mobile platform")
        super().__init__(service, server, quota)
        self._platform = platform

    @property
    def platform(self) -> Platform:
        return self._platform

    async def activate_with_code(self, code: str) -> SubscriptionStatus:
        result = await self.service.activate_with_code(code)
        if result.valid:
            logger.info(f"Activated {result.plan} subscription on {self.platform.value}")
        return self._status(result)


class ProviderRegistry:
    """
    Registry for entitlement providers.

    Holds one provider per platform and selects one for a client.
    """

    def __init__(self, detector: Optional[PlatformDetector] = None):
        self.detector = detector or PlatformDetector()
        self._providers: Dict[Platform, EntitlementProvider] = {}

    def register(self, provider: EntitlementProvider) -> None:
        self._providers[provider.platform] = provider
        logger.debug(f"Registered entitlement provider: {provider.platform.value}")

    def get(self, platform: Platform) -> EntitlementProvider:
        """
        Raises:
            ProviderNotAvailableError: if nothing is registered for the platform
        """
        if platform not in self._providers:
            raise ProviderNotAvailableError(f"Provider not registered: {platform.value}")
        return self._providers[platform]

    def select(self, user_agent: Optional[str]) -> EntitlementProvider:
        """Provider for the client's platform, falling back to web"""
        platform = self.detector.detect(user_agent)
        if platform in self._providers:
            return self._providers[platform]
        return self.get(Platform.WEB)

    def platforms(self):
        return list(self._providers.keys())


def build_provider_registry(
    service: EntitlementService,
    server: Optional[ServerVerificationAdapter] = None,
    quota: Optional[UsageQuota] = None,
) -> ProviderRegistry:
    """Registry with web, iOS and Android providers sharing one service"""
    registry = ProviderRegistry()
    registry.register(WebEntitlementProvider(service, server, quota))
    registry.register(MobileEntitlementProvider(Platform.IOS, service, server, quota))
    registry.register(MobileEntitlementProvider(Platform.ANDROID, service, server, quota))
    return registry
