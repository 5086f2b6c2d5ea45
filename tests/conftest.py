#!/usr/bin/env python3
"""
Pytest Configuration and Shared Fixtures

Provides shared fixtures and configuration for all tests.
"""

import pytest
import tempfile
import sys
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Keep the process-wide settings away from the real app data directory
os.environ.setdefault("STORAGE_DIR", tempfile.mkdtemp(prefix="travel-planner-tests-"))
os.environ.setdefault("MARKER_SECRET", "test-marker-secret")

from config import Settings
from subscription.entitlement_service import EntitlementService
from subscription.repository import InMemorySubscriptionRepository
from subscription.server_verification import ServerVerificationAdapter
from subscription.token_codec import TokenCodec
from subscription.token_store import MemoryKeyValueStore, TokenStore


# ============================================================================
# CLOCK
# ============================================================================

FIXED_NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
TEST_SECRET = "test-marker-secret"


class FrozenClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """Clock frozen at FIXED_NOW"""
    return FrozenClock()


# ============================================================================
# TEMPORARY DIRECTORIES
# ============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ============================================================================
# CLIENT-SIDE FIXTURES
# ============================================================================

@pytest.fixture
def kv_backend():
    """Empty in-memory key-value backend"""
    return MemoryKeyValueStore()


@pytest.fixture
def token_store(kv_backend):
    return TokenStore(kv_backend)


@pytest.fixture
def codec():
    return TokenCodec(TEST_SECRET)


@pytest.fixture
def entitlement_service(token_store, codec, clock):
    """Local-only service (no code verifier, unverified codes rejected)"""
    return EntitlementService(store=token_store, codec=codec, clock=clock)


# ============================================================================
# SERVER-SIDE FIXTURES
# ============================================================================

@pytest.fixture
def repository():
    return InMemorySubscriptionRepository()


@pytest.fixture
def verification_adapter(repository, clock):
    return ServerVerificationAdapter(repository, clock=clock)


@pytest.fixture
def server_backed_service(token_store, codec, clock, verification_adapter):
    """Service whose mobile codes are looked up on the server"""
    return EntitlementService(
        store=token_store,
        codec=codec,
        clock=clock,
        code_verifier=verification_adapter.verify_mobile_code,
    )


# ============================================================================
# API FIXTURES
# ============================================================================

@pytest.fixture
def test_settings(temp_dir):
    return Settings(
        STORAGE_DIR=str(temp_dir),
        MARKER_SECRET=TEST_SECRET,
        ACCEPT_UNVERIFIED_MOBILE_CODES=False,
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def app(test_settings, repository, token_store, clock):
    """Application wired to in-memory stores and the frozen clock"""
    from web_ui.api.main import create_app
    return create_app(test_settings, repository=repository, store=token_store, clock=clock)


@pytest.fixture
def client(app):
    """FastAPI test client"""
    from fastapi.testclient import TestClient
    with TestClient(app) as test_client:
        yield test_client


# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================

def pytest_configure(config):
    """Configure pytest markers"""
    config.addinivalue_line(
        "markers", "api: marks tests that exercise the HTTP application"
    )
