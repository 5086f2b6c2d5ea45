"""
Subscription Entitlement System for the Travel Planner

Token-based premium access without user accounts:
- Opaque access tokens and hand-typeable mobile access codes
- Local record store with a keyed tamper-detection marker
- Lazy expiry checks (days remaining, near-expiry warning)
- Server-side record store and bearer-token verification for API routes
- One provider interface for web, iOS and Android surfaces
- A small free allowance of metered features for users without a subscription

Architecture:
- Checkout or code entry issues a token (server-side when a server is wired)
- The client caches the grant in its local store
- Gated API routes verify the bearer token against the server's records
"""

from subscription.errors import (
    SubscriptionError,
    InvalidPlanError,
    InvalidAccessCodeError,
    StoreError,
    ProviderNotAvailableError,
    SubscriptionAuthError,
)
from subscription.models import (
    SubscriptionPlan,
    VerificationReason,
    EntitlementState,
    SubscriptionRecord,
    VerificationResult,
    ServerSubscriptionRecord,
    SubscriptionStatus,
)
from subscription.token_codec import TokenCodec
from subscription.token_store import (
    KeyValueStore,
    MemoryKeyValueStore,
    JsonFileKeyValueStore,
    TokenStore,
)
from subscription.entitlement_service import EntitlementService, build_entitlement_service
from subscription.repository import SubscriptionRepository, InMemorySubscriptionRepository
from subscription.server_verification import ServerVerificationAdapter
from subscription.providers import (
    Platform,
    PlatformDetector,
    EntitlementProvider,
    WebEntitlementProvider,
    MobileEntitlementProvider,
    ProviderRegistry,
    build_provider_registry,
)
from subscription.feature_gate import FeatureGate, FeatureGateError, feature_required
from subscription.usage_quota import QuotaStatus, UsageQuota, limit_check

__all__ = [
    # Errors
    'SubscriptionError',
    'InvalidPlanError',
    'InvalidAccessCodeError',
    'StoreError',
    'ProviderNotAvailableError',
    'SubscriptionAuthError',
    # Models
    'SubscriptionPlan',
    'VerificationReason',
    'EntitlementState',
    'SubscriptionRecord',
    'VerificationResult',
    'ServerSubscriptionRecord',
    'SubscriptionStatus',
    # Client core
    'TokenCodec',
    'KeyValueStore',
    'MemoryKeyValueStore',
    'JsonFileKeyValueStore',
    'TokenStore',
    'EntitlementService',
    'build_entitlement_service',
    # Server side
    'SubscriptionRepository',
    'InMemorySubscriptionRepository',
    'ServerVerificationAdapter',
    # Providers
    'Platform',
    'PlatformDetector',
    'EntitlementProvider',
    'WebEntitlementProvider',
    'MobileEntitlementProvider',
    'ProviderRegistry',
    'build_provider_registry',
    # Feature gating
    'FeatureGate',
    'FeatureGateError',
    'feature_required',
    # Free usage
    'QuotaStatus',
    'UsageQuota',
    'limit_check',
]
