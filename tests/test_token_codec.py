#!/usr/bin/env python3
"""
Token Codec Tests

Tests for access token and mobile access code generation, code
normalization and the keyed validation marker.
"""

import pytest

from subscription.errors import InvalidAccessCodeError
from subscription.models import SubscriptionPlan
from subscription.token_codec import (
    MOBILE_CODE_ALPHABET,
    MOBILE_CODE_PATTERN,
    TOKEN_PATTERN,
    TokenCodec,
    is_valid_mobile_access_code,
    normalize_mobile_access_code,
    to_base36,
)
from tests.conftest import FIXED_NOW, TEST_SECRET


EXPIRES = "2025-02-15T12:00:00.000Z"


# ============================================================================
# ACCESS TOKENS
# ============================================================================

class TestAccessTokens:
    """Tests for opaque access token generation"""

    def test_token_shape(self):
        """Generated tokens are tok_<48 hex>_<base36 ms>"""
        token = TokenCodec.generate_token(FIXED_NOW)
        assert TOKEN_PATTERN.match(token)
        assert token.startswith("tok_")
        assert len(token.split("_")[1]) == 48

    def test_token_embeds_creation_time(self):
        """The suffix decodes to the creation time in milliseconds"""
        token = TokenCodec.generate_token(FIXED_NOW)
        suffix = token.rsplit("_", 1)[1]
        assert int(suffix, 36) == int(FIXED_NOW.timestamp() * 1000)

    def test_tokens_are_unique(self):
        """Two tokens minted at the same instant still differ"""
        tokens = {TokenCodec.generate_token(FIXED_NOW) for _ in range(50)}
        assert len(tokens) == 50

    def test_is_well_formed_token(self):
        assert TokenCodec.is_well_formed_token(TokenCodec.generate_token())
        assert not TokenCodec.is_well_formed_token(None)
        assert not TokenCodec.is_well_formed_token("")
        assert not TokenCodec.is_well_formed_token("tok_abc_123")

    def test_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"

    def test_base36_rejects_negative(self):
        with pytest.raises(ValueError):
            to_base36(-1)


# ============================================================================
# MOBILE ACCESS CODES
# ============================================================================

class TestMobileAccessCodes:
    """Tests for hand-typeable mobile access codes"""

    def test_code_shape(self):
        """Codes are three groups of four from the unambiguous alphabet"""
        for _ in range(20):
            code = TokenCodec.generate_mobile_access_code()
            assert MOBILE_CODE_PATTERN.match(code)
            assert all(c in MOBILE_CODE_ALPHABET for c in code.replace("-", ""))

    def test_alphabet_excludes_confusable_glyphs(self):
        for glyph in "IO01":
            assert glyph not in MOBILE_CODE_ALPHABET

    def test_normalize_trims_and_uppercases(self):
        assert normalize_mobile_access_code("  abcd-efgh-jkmn ") == "ABCD-EFGH-JKMN"

    @pytest.mark.parametrize("code", [
        None,
        "",
        "ABCDEFGHJKMN",
        "ABCD-EFGH-JKM",
        "ABCD-EFGH-IJKM",
        "ABCD-EFGH-JK0M",
        "ABCD_EFGH_JKMN",
    ])
    def test_normalize_rejects_malformed(self, code):
        with pytest.raises(InvalidAccessCodeError):
            normalize_mobile_access_code(code)

    def test_is_valid_mobile_access_code(self):
        assert is_valid_mobile_access_code("abcd-efgh-jkmn")
        assert not is_valid_mobile_access_code("ABCD-EFGH-JK1M")


# ============================================================================
# VALIDATION MARKERS
# ============================================================================

class TestValidationMarker:
    """Tests for the keyed tamper-detection marker"""

    def test_marker_is_deterministic(self, codec):
        first = codec.compute_validation_marker("tok_a", "monthly_premium", EXPIRES)
        second = codec.compute_validation_marker("tok_a", SubscriptionPlan.MONTHLY_PREMIUM, EXPIRES)
        assert first == second

    def test_marker_binds_every_field(self, codec):
        base = codec.compute_validation_marker("tok_a", "monthly_premium", EXPIRES)
        assert codec.compute_validation_marker("tok_b", "monthly_premium", EXPIRES) != base
        assert codec.compute_validation_marker("tok_a", "yearly_premium", EXPIRES) != base
        assert codec.compute_validation_marker("tok_a", "monthly_premium", "2026-02-15T12:00:00.000Z") != base

    def test_verify_accepts_matching_marker(self, codec):
        marker = codec.compute_validation_marker("tok_a", "monthly_premium", EXPIRES)
        assert codec.verify_validation_marker(marker, "tok_a", "monthly_premium", EXPIRES)

    def test_verify_rejects_changed_plan(self, codec):
        marker = codec.compute_validation_marker("tok_a", "monthly_premium", EXPIRES)
        assert not codec.verify_validation_marker(marker, "tok_a", "yearly_premium", EXPIRES)

    def test_marker_depends_on_secret(self, codec):
        """A marker forged without the secret does not verify"""
        other = TokenCodec("some-other-secret")
        forged = other.compute_validation_marker("tok_a", "yearly_premium", EXPIRES)
        assert not codec.verify_validation_marker(forged, "tok_a", "yearly_premium", EXPIRES)

    def test_verify_rejects_missing_or_garbage(self, codec):
        assert not codec.verify_validation_marker(None, "tok_a", "monthly_premium", EXPIRES)
        assert not codec.verify_validation_marker("", "tok_a", "monthly_premium", EXPIRES)
        assert not codec.verify_validation_marker("%%%", "tok_a", "monthly_premium", EXPIRES)

    def test_verify_rejects_trailing_junk(self, codec):
        marker = codec.compute_validation_marker("tok_a", "monthly_premium", EXPIRES)
        assert not codec.verify_validation_marker(marker + "!!", "tok_a", "monthly_premium", EXPIRES)
        assert not codec.verify_validation_marker(marker + "\n", "tok_a", "monthly_premium", EXPIRES)

    def test_legacy_marker_is_never_accepted(self, codec):
        legacy = TokenCodec.legacy_marker("tok_a", "monthly_premium", EXPIRES)
        assert not codec.verify_validation_marker(legacy, "tok_a", "monthly_premium", EXPIRES)

    def test_legacy_marker_decodes(self):
        legacy = TokenCodec.legacy_marker("tok_a", "monthly_premium", EXPIRES)
        assert TokenCodec.decode_legacy_marker(legacy) == ("tok_a", "monthly_premium", EXPIRES)
        assert TokenCodec.decode_legacy_marker("not base64!") is None

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            TokenCodec("")

    def test_secret_constant_matches_fixture(self, codec):
        marker = TokenCodec(TEST_SECRET).compute_validation_marker("tok_a", "monthly", EXPIRES)
        assert codec.verify_validation_marker(marker, "tok_a", "monthly", EXPIRES)
