"""
Token Codec - access tokens, mobile access codes and validation markers

Access tokens look like ``tok_<48 hex chars>_<base36 ms timestamp>``.
Mobile access codes are 12 characters grouped ``XXXX-XXXX-XXXX`` over an
alphabet without the glyphs people confuse when typing (I, O, 0, 1).

The validation marker binds (token, plan, expiry) together. It is an
HMAC-SHA256 keyed with a server-held secret. The older unkeyed base64 form
is still decodable through ``legacy_marker`` but is never accepted as a
valid marker.
"""

import base64
import binascii
import re
import secrets
from datetime import datetime
from typing import Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import hmac as crypto_hmac

from subscription.errors import InvalidAccessCodeError
from subscription.models import SubscriptionPlan, ensure_utc, utc_now


TOKEN_PREFIX = "tok_"
TOKEN_RANDOM_BYTES = 24

MOBILE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
MOBILE_CODE_GROUPS = 3
MOBILE_CODE_GROUP_SIZE = 4

MOBILE_CODE_PATTERN = re.compile(
    r"^[{a}]{{4}}-[{a}]{{4}}-[{a}]{{4}}$".format(a=MOBILE_CODE_ALPHABET)
)
TOKEN_PATTERN = re.compile(r"^tok_[0-9a-f]{48}_[0-9a-z]+$")

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    """Encode a non-negative integer in lowercase base 36"""
    if value < 0:
        raise ValueError("base36 encoding requires a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def normalize_mobile_access_code(code: Optional[str]) -> str:
    """
    Trim and upper-case a hand-typed code, then check its shape.

    Raises:
        InvalidAccessCodeError: if the result is not XXXX-XXXX-XXXX over the alphabet
    """
    if not code or not isinstance(code, str):
        raise InvalidAccessCodeError("Invalid code format")
    normalized = code.strip().upper()
    if not MOBILE_CODE_PATTERN.match(normalized):
        raise InvalidAccessCodeError("Invalid code format")
    return normalized


def is_valid_mobile_access_code(code: Optional[str]) -> bool:
    try:
        normalize_mobile_access_code(code)
    except InvalidAccessCodeError:
        return False
    return True


def _marker_message(token: str, plan: Union[str, SubscriptionPlan], expires_at: str) -> bytes:
    plan_value = plan.value if isinstance(plan, SubscriptionPlan) else str(plan)
    return f"{token}:{plan_value}:{expires_at}".encode("utf-8")


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.b64decode(data + padding, altchars=b"-_", validate=True)


class TokenCodec:
    """
    Generates tokens and codes and computes/verifies validation markers.

    Token and code generation draw from ``secrets``; no uniqueness check
    is made against existing storage.
    """

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("TokenCodec requires a non-empty marker secret")
        self._key = secret.encode("utf-8")

    # ========== Generation ==========

    @staticmethod
    def generate_token(now: Optional[datetime] = None) -> str:
        """Create an opaque access token"""
        moment = ensure_utc(now or utc_now())
        timestamp_ms = int(moment.timestamp() * 1000)
        random_part = secrets.token_hex(TOKEN_RANDOM_BYTES)
        return f"{TOKEN_PREFIX}{random_part}_{to_base36(timestamp_ms)}"

    @staticmethod
    def generate_mobile_access_code() -> str:
        """Create a hand-typeable XXXX-XXXX-XXXX code"""
        groups = [
            "".join(secrets.choice(MOBILE_CODE_ALPHABET) for _ in range(MOBILE_CODE_GROUP_SIZE))
            for _ in range(MOBILE_CODE_GROUPS)
        ]
        return "-".join(groups)

    @staticmethod
    def is_well_formed_token(token: Optional[str]) -> bool:
        return bool(token) and bool(TOKEN_PATTERN.match(token))

    # ========== Validation marker ==========

    def compute_validation_marker(
        self,
        token: str,
        plan: Union[str, SubscriptionPlan],
        expires_at: str,
    ) -> str:
        """Deterministic keyed marker over ``token:plan:expiresISO``"""
        mac = crypto_hmac.HMAC(self._key, hashes.SHA256())
        mac.update(_marker_message(token, plan, expires_at))
        return _b64url(mac.finalize())

    def verify_validation_marker(
        self,
        marker: Optional[str],
        token: str,
        plan: Union[str, SubscriptionPlan],
        expires_at: str,
    ) -> bool:
        """Constant-time check of a stored marker against the three fields"""
        if not marker:
            return False
        try:
            signature = _b64url_decode(marker)
        except (binascii.Error, ValueError):
            return False

        mac = crypto_hmac.HMAC(self._key, hashes.SHA256())
        mac.update(_marker_message(token, plan, expires_at))
        try:
            mac.verify(signature)
        except InvalidSignature:
            return False
        return True

    @staticmethod
    def legacy_marker(token: str, plan: Union[str, SubscriptionPlan], expires_at: str) -> str:
        """
        The unkeyed base64 encoding used by older stores.

        Anyone holding the three fields can produce it, so it only serves to
        read old data; ``verify_validation_marker`` never accepts it.
        """
        return base64.b64encode(_marker_message(token, plan, expires_at)).decode("ascii")

    @staticmethod
    def decode_legacy_marker(marker: str) -> Optional[tuple]:
        """Split a legacy marker back into (token, plan, expires_at)"""
        try:
            decoded = base64.b64decode(marker, validate=True).decode("utf-8")
        except (binascii.Error, ValueError, UnicodeDecodeError):
            return None
        parts = decoded.split(":", 2)
        if len(parts) != 3:
            return None
        return parts[0], parts[1], parts[2]
