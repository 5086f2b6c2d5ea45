#!/usr/bin/env python3
"""
Entitlement Provider Tests

Tests for platform detection, the provider registry, and the shared
create/verify/cancel/refresh/activate behaviour of web and mobile providers.
"""

import pytest

from subscription.entitlement_service import EntitlementService
from subscription.errors import ProviderNotAvailableError
from subscription.providers import (
    MobileEntitlementProvider,
    Platform,
    PlatformDetector,
    ProviderRegistry,
    WebEntitlementProvider,
    build_provider_registry,
)
from subscription.token_codec import MOBILE_CODE_PATTERN
from subscription.token_store import TokenStore
from tests.test_entitlement_service import BrokenKeyValueStore


IPHONE_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15"
IPAD_UA = "Mozilla/5.0 (iPad; CPU OS 16_6 like Mac OS X) AppleWebKit/605.1.15"
ANDROID_UA = "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 Chrome/120.0 Mobile"
DESKTOP_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120.0"


# ============================================================================
# PLATFORM DETECTION & REGISTRY
# ============================================================================

class TestPlatformDetector:
    """Tests for User-Agent based platform detection"""

    @pytest.mark.parametrize("user_agent,platform", [
        (IPHONE_UA, Platform.IOS),
        (IPAD_UA, Platform.IOS),
        (ANDROID_UA, Platform.ANDROID),
        (DESKTOP_UA, Platform.WEB),
        (None, Platform.WEB),
        ("", Platform.WEB),
    ])
    def test_detect(self, user_agent, platform):
        assert PlatformDetector().detect(user_agent) == platform


class TestProviderRegistry:
    """Tests for provider registration and selection"""

    def test_build_registers_every_platform(self, entitlement_service):
        registry = build_provider_registry(entitlement_service)
        assert set(registry.platforms()) == {Platform.WEB, Platform.IOS, Platform.ANDROID}

    def test_select_by_user_agent(self, entitlement_service):
        registry = build_provider_registry(entitlement_service)
        assert registry.select(IPHONE_UA).platform == Platform.IOS
        assert registry.select(ANDROID_UA).platform == Platform.ANDROID
        assert isinstance(registry.select(DESKTOP_UA), WebEntitlementProvider)

    def test_select_falls_back_to_web(self, entitlement_service):
        registry = ProviderRegistry()
        registry.register(WebEntitlementProvider(entitlement_service))
        assert registry.select(ANDROID_UA).platform == Platform.WEB

    def test_get_unregistered(self):
        with pytest.raises(ProviderNotAvailableError):
            ProviderRegistry().get(Platform.IOS)

    def test_mobile_provider_rejects_web(self, entitlement_service):
        with pytest.raises(ValueError):
            MobileEntitlementProvider(Platform.WEB, entitlement_service)


# ============================================================================
# LOCAL-ONLY PROVIDERS
# ============================================================================

class TestLocalProviders:
    """Providers without a server adapter work against the local store"""

    async def test_create(self, entitlement_service):
        provider = WebEntitlementProvider(entitlement_service)
        status = await provider.create("monthly_premium")

        assert status.is_subscribed
        assert status.plan == "monthly_premium"
        assert status.days_remaining == 31
        assert status.platform == "web"
        assert MOBILE_CODE_PATTERN.match(status.mobile_access_code)
        assert "mobileAccessCode" not in status.to_dict()

    async def test_verify_uses_stored_token(self, entitlement_service):
        provider = WebEntitlementProvider(entitlement_service)
        await provider.create("yearly_premium")
        token = entitlement_service.store.load().token

        assert (await provider.verify()).valid
        assert (await provider.verify(token)).plan == "yearly_premium"
        assert not (await provider.verify("tok_other")).valid

    async def test_refresh_after_expiry(self, entitlement_service, clock):
        provider = MobileEntitlementProvider(Platform.ANDROID, entitlement_service)
        await provider.create("monthly_premium")
        clock.advance(days=40)

        status = await provider.refresh()
        assert not status.is_subscribed
        assert status.error == "expired"
        assert status.platform == "android"

    async def test_cancel_clears_store(self, entitlement_service):
        provider = WebEntitlementProvider(entitlement_service)
        await provider.create("monthly_premium")
        status = await provider.cancel()

        assert not status.is_subscribed
        assert entitlement_service.store.load() is None

    async def test_web_code_activation_is_mobile_only(self, entitlement_service):
        provider = WebEntitlementProvider(entitlement_service)
        status = await provider.activate_with_code("ABCD-EFGH-JKMN")
        assert not status.is_subscribed
        assert status.error == "This function is only available on mobile devices"

    async def test_mobile_bad_code(self, entitlement_service):
        provider = MobileEntitlementProvider(Platform.IOS, entitlement_service)
        status = await provider.activate_with_code("bad-code")
        assert not status.is_subscribed
        assert status.error == "invalid_format"


# ============================================================================
# SERVER-BACKED PROVIDERS
# ============================================================================

class TestServerBackedProviders:
    """With a server adapter wired in, the server is the authority"""

    async def test_create_issues_server_side_first(self, server_backed_service, verification_adapter, repository):
        provider = WebEntitlementProvider(server_backed_service, verification_adapter)
        status = await provider.create("monthly_premium", email="a@example.com", payment_id="pay_1")

        issued = await repository.all()
        assert len(issued) == 1
        local = server_backed_service.store.load()
        assert local.token == issued[0].access_token
        assert status.mobile_access_code == issued[0].mobile_access_code
        assert (await verification_adapter.verify_token(local.token)).valid

    async def test_mobile_activation_with_web_purchase(self, server_backed_service, verification_adapter):
        issued = await verification_adapter.create_subscription("a@example.com", "yearly_premium")
        provider = MobileEntitlementProvider(Platform.IOS, server_backed_service, verification_adapter)

        status = await provider.activate_with_code(issued.mobile_access_code)

        assert status.is_subscribed
        assert status.plan == "yearly_premium"
        assert status.platform == "ios"
        assert server_backed_service.store.load().token == issued.access_token

    async def test_unknown_code_is_not_activated(self, server_backed_service, verification_adapter):
        provider = MobileEntitlementProvider(Platform.ANDROID, server_backed_service, verification_adapter)
        status = await provider.activate_with_code("ZZZZ-ZZZZ-ZZZZ")
        assert not status.is_subscribed
        assert status.error == "invalid_token"
        assert server_backed_service.store.load() is None

    async def test_cancel_reaches_server(self, server_backed_service, verification_adapter):
        provider = WebEntitlementProvider(server_backed_service, verification_adapter)
        await provider.create("monthly_premium", email="a@example.com")
        token = server_backed_service.store.load().token

        await provider.cancel()

        assert server_backed_service.store.load() is None
        result = await verification_adapter.verify_token(token)
        assert result.reason.value == "invalid_token"


# ============================================================================
# STORE FAILURES
# ============================================================================

class TestStoreFailures:
    """A failing device store is reported as an error status, never raised"""

    @pytest.fixture
    def broken_service(self, codec, clock, verification_adapter):
        return EntitlementService(
            TokenStore(BrokenKeyValueStore()),
            codec,
            clock=clock,
            code_verifier=verification_adapter.verify_mobile_code,
        )

    async def test_local_create(self, broken_service):
        status = await WebEntitlementProvider(broken_service).create("monthly_premium")
        assert not status.is_subscribed
        assert status.error == "error"
        assert status.platform == "web"

    async def test_server_create_withdraws_issued_record(self, broken_service, verification_adapter, repository):
        provider = WebEntitlementProvider(broken_service, verification_adapter)
        status = await provider.create("monthly_premium", email="a@example.com")

        assert not status.is_subscribed
        assert status.error == "error"
        issued = await repository.all()
        assert len(issued) == 1
        assert issued[0].active is False
        assert not (await verification_adapter.verify_token(issued[0].access_token)).valid

    async def test_cancel(self, broken_service):
        provider = MobileEntitlementProvider(Platform.IOS, broken_service)
        status = await provider.cancel()
        assert not status.is_subscribed
        assert status.error == "error"
        assert status.platform == "ios"
