"""
Entitlement Service - client-side subscription lifecycle

Ties the token codec and the token store together:
- create a subscription record (checkout or code activation)
- verify a presented token against the stored record
- compute days remaining and the near-expiry warning
- clear the record

Every verification fails closed: negative cases come back as a
VerificationResult with a reason, never as an exception. Expiry is
computed lazily from the clock on each call; nothing runs in the background.
"""

import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Union

from config import Settings
from subscription.errors import InvalidAccessCodeError
from subscription.models import (
    EntitlementState,
    SubscriptionPlan,
    SubscriptionRecord,
    VerificationReason,
    VerificationResult,
    days_remaining,
    ensure_utc,
    expiry_for_plan,
    parse_iso,
    to_iso,
    utc_now,
)
from subscription.token_codec import TokenCodec, normalize_mobile_access_code
from subscription.token_store import JsonFileKeyValueStore, TokenStore

logger = logging.getLogger(__name__)

CodeVerifier = Callable[[str], Awaitable[VerificationResult]]


def mask_token(token: Optional[str]) -> str:
    """Short, log-safe form of a token"""
    if not token:
        return "<none>"
    return f"{token[:10]}..."


class EntitlementService:
    """
    Manages the single subscription record kept on this device.

    Args:
        store: where the record lives
        codec: token/code generation and marker computation
        clock: returns the current time (UTC); injectable for tests
        expiry_warning_days: window for ``is_about_to_expire``
        code_verifier: async lookup of mobile codes (e.g. the API server).
            Without one, codes are only accepted when
            ``accept_unverified_codes`` is on.
        accept_unverified_codes: development switch, see ``verify_mobile_code``
        mobile_code_grant_days: length of an unverified development grant
    """

    def __init__(
        self,
        store: TokenStore,
        codec: TokenCodec,
        clock: Callable[[], datetime] = utc_now,
        expiry_warning_days: int = 7,
        code_verifier: Optional[CodeVerifier] = None,
        accept_unverified_codes: bool = False,
        mobile_code_grant_days: int = 30,
    ):
        self.store = store
        self.codec = codec
        self.clock = clock
        self.expiry_warning_days = expiry_warning_days
        self.code_verifier = code_verifier
        self.accept_unverified_codes = accept_unverified_codes
        self.mobile_code_grant_days = mobile_code_grant_days

    def _now(self) -> datetime:
        return ensure_utc(self.clock())

    # ========== Creation ==========

    def create(
        self,
        plan: Union[str, SubscriptionPlan],
        expiry_date: datetime,
        mobile_access_code: Optional[str] = None,
        token: Optional[str] = None,
    ) -> SubscriptionRecord:
        """
        Create and persist a new subscription record.

        Any existing record is overwritten. A token is generated unless one
        was issued elsewhere (code activation).

        Raises:
            InvalidPlanError: if the plan is unknown
        """
        plan_value = SubscriptionPlan.from_value(plan).value
        now = self._now()

        token = token or self.codec.generate_token(now)
        expires_at = to_iso(expiry_date)
        record = SubscriptionRecord(
            token=token,
            plan=plan_value,
            expires_at=expires_at,
            created_at=to_iso(now),
            validation_marker=self.codec.compute_validation_marker(token, plan_value, expires_at),
            mobile_access_code=mobile_access_code,
        )
        self.store.store(record)
        logger.info(f"Created {plan_value} subscription {mask_token(token)} expiring {expires_at}")
        return record

    def create_for_plan(
        self,
        plan: Union[str, SubscriptionPlan],
        mobile_access_code: Optional[str] = None,
    ) -> SubscriptionRecord:
        """Create a record whose expiry follows from the plan's duration"""
        plan_enum = SubscriptionPlan.from_value(plan)
        return self.create(plan_enum, expiry_for_plan(plan_enum, self._now()), mobile_access_code)

    # ========== Verification ==========

    def verify(self, token: Optional[str]) -> VerificationResult:
        """
        Verify a presented token against the stored record.

        Checks, in order: a token was presented; it matches the stored one;
        the expiry has not passed; the marker still matches the fields.
        """
        if not token:
            return VerificationResult.failure(VerificationReason.MISSING_TOKEN)

        try:
            record = self.store.load()
            if record is None or record.token != token:
                return VerificationResult.failure(VerificationReason.INVALID_TOKEN)
            return self._check_record(record)
        except Exception as e:
            logger.error(f"Subscription verification failed: {e}")
            return VerificationResult.failure(VerificationReason.ERROR)

    def _check_record(self, record: SubscriptionRecord) -> VerificationResult:
        if not record.is_complete:
            return VerificationResult.failure(VerificationReason.TAMPERED)

        try:
            expires_at = record.expires_at_datetime()
        except ValueError:
            return VerificationResult.failure(VerificationReason.TAMPERED)

        now = self._now()
        if now >= expires_at:
            return VerificationResult.failure(VerificationReason.EXPIRED)

        if not self.codec.verify_validation_marker(
            record.validation_marker, record.token, record.plan, record.expires_at
        ):
            logger.warning(f"Validation marker mismatch for {mask_token(record.token)}")
            return VerificationResult.failure(VerificationReason.TAMPERED)

        return VerificationResult(
            valid=True,
            plan=record.plan,
            expires_at=record.expires_at,
            days_remaining=days_remaining(expires_at, now),
        )

    def verify_current(self) -> VerificationResult:
        """Verify whatever record is stored, using its own token"""
        try:
            record = self.store.load()
        except Exception as e:
            logger.error(f"Could not read subscription store: {e}")
            return VerificationResult.failure(VerificationReason.ERROR)
        if record is None:
            return VerificationResult.failure(VerificationReason.MISSING_TOKEN)
        return self.verify(record.token)

    def state(self) -> EntitlementState:
        """Current lifecycle state of the stored record"""
        try:
            record = self.store.load()
        except Exception as e:
            logger.error(f"Could not read subscription store: {e}")
            return EntitlementState.INVALID

        if record is None:
            return EntitlementState.ABSENT
        if not record.is_complete:
            return EntitlementState.INVALID

        result = self.verify(record.token)
        if result.valid:
            return EntitlementState.ACTIVE
        if result.reason == VerificationReason.EXPIRED:
            return EntitlementState.EXPIRED
        if result.reason == VerificationReason.TAMPERED:
            return EntitlementState.TAMPERED
        return EntitlementState.INVALID

    def get_days_remaining(self) -> int:
        result = self.verify_current()
        if not result.valid:
            return 0
        return result.days_remaining

    def is_about_to_expire(self) -> bool:
        """True when a valid subscription has 1..warning-window days left"""
        result = self.verify_current()
        if not result.valid:
            return False
        return 0 < result.days_remaining <= self.expiry_warning_days

    # ========== Mobile codes ==========

    async def verify_mobile_code(self, code: Optional[str]) -> VerificationResult:
        """
        Verify a hand-typed mobile access code.

        Malformed codes are rejected before any lookup. With a code
        verifier configured the decision is delegated to it. Without one,
        a well-formed code yields a fresh grant only when unverified codes
        are accepted (development mode); nothing is checked against issued
        codes in that mode.
        """
        try:
            normalized = normalize_mobile_access_code(code)
        except InvalidAccessCodeError:
            return VerificationResult.failure(VerificationReason.INVALID_FORMAT)

        if self.code_verifier is not None:
            try:
                return await self.code_verifier(normalized)
            except Exception as e:
                logger.error(f"Mobile code verification failed: {e}")
                return VerificationResult.failure(VerificationReason.ERROR)

        if not self.accept_unverified_codes:
            return VerificationResult.failure(VerificationReason.INVALID_TOKEN)

        logger.warning("Accepting unverified mobile access code (development mode)")
        now = self._now()
        expires_at = now + timedelta(days=self.mobile_code_grant_days)
        return VerificationResult(
            valid=True,
            plan=SubscriptionPlan.MONTHLY_PREMIUM.value,
            expires_at=to_iso(expires_at),
            days_remaining=days_remaining(expires_at, now),
            access_token=self.codec.generate_token(now),
        )

    async def activate_with_code(self, code: Optional[str]) -> VerificationResult:
        """Verify a mobile code and, if accepted, store the granted subscription"""
        result = await self.verify_mobile_code(code)
        if not result.valid:
            return result

        try:
            self.create(
                result.plan,
                parse_iso(result.expires_at),
                mobile_access_code=normalize_mobile_access_code(code),
                token=result.access_token,
            )
        except Exception as e:
            logger.error(f"Could not store activated subscription: {e}")
            return VerificationResult.failure(VerificationReason.ERROR)
        return self.verify_current()

    # ========== Removal & display ==========

    def clear(self) -> None:
        """Remove the stored record (any state -> absent)"""
        self.store.clear()
        logger.info("Cleared local subscription")

    def get_formatted_details(self) -> dict:
        """Subscription details for display"""
        state = self.state()
        if state == EntitlementState.ABSENT:
            return {"status": "Not subscribed"}

        if state != EntitlementState.ACTIVE:
            return {"status": state.value.title()}

        result = self.verify_current()
        expires = parse_iso(result.expires_at)
        return {
            "status": "Active",
            "plan": result.plan,
            "expiresAt": result.expires_at,
            "expiryDate": expires.date().isoformat(),
            "daysRemaining": result.days_remaining,
            "aboutToExpire": 0 < result.days_remaining <= self.expiry_warning_days,
        }


def build_entitlement_service(
    app_settings: Settings,
    store: Optional[TokenStore] = None,
    code_verifier: Optional[CodeVerifier] = None,
    clock: Callable[[], datetime] = utc_now,
) -> EntitlementService:
    """
    Build a service from settings.

    Defaults to the JSON file store in the app data directory.
    """
    if store is None:
        app_settings.create_directories()
        store = TokenStore(
            JsonFileKeyValueStore(app_settings.STORE_FILE),
            app_settings.STORAGE_NAMESPACE,
        )
    return EntitlementService(
        store=store,
        codec=TokenCodec(app_settings.MARKER_SECRET),
        clock=clock,
        expiry_warning_days=app_settings.EXPIRY_WARNING_DAYS,
        code_verifier=code_verifier,
        accept_unverified_codes=app_settings.ACCEPT_UNVERIFIED_MOBILE_CODES,
        mobile_code_grant_days=app_settings.MOBILE_CODE_GRANT_DAYS,
    )
