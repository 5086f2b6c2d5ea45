"""
Travel Planner Entitlements Test Suite

Tests for:
- Token codec (tokens, mobile access codes, validation markers)
- Local token store backends
- Entitlement service lifecycle and verification
- Server verification adapter and record repository
- Platform providers and feature gating
- HTTP API and subscription-gated routes

Run tests with:
    pytest tests/ -v
"""
