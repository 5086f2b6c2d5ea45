"""
Server Verification Adapter

API-side counterpart of the client entitlement service. It issues
subscriptions into the server's record store and answers "is this bearer
token entitled?" for gated routes. It never looks at any client store.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, List, Optional, Union

from subscription.errors import InvalidAccessCodeError
from subscription.models import (
    ServerSubscriptionRecord,
    SubscriptionPlan,
    VerificationReason,
    VerificationResult,
    days_remaining,
    ensure_utc,
    expiry_for_plan,
    to_iso,
    utc_now,
)
from subscription.repository import SubscriptionRepository
from subscription.token_codec import TokenCodec, normalize_mobile_access_code

logger = logging.getLogger(__name__)

SUBSCRIPTION_NOT_FOUND = "Subscription not found"


class ServerVerificationAdapter:
    """Issues, verifies and cancels server-held subscriptions"""

    def __init__(
        self,
        repository: SubscriptionRepository,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.clock = clock

    def _now(self) -> datetime:
        return ensure_utc(self.clock())

    async def create_subscription(
        self,
        email: str,
        plan: Union[str, SubscriptionPlan],
        payment_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> ServerSubscriptionRecord:
        """
        Issue a subscription with a fresh access token and mobile code.

        Raises:
            InvalidPlanError: if the plan is unknown
        """
        plan_enum = SubscriptionPlan.from_value(plan)
        now = self._now()

        record = ServerSubscriptionRecord(
            id=uuid.uuid4().hex,
            email=email.strip(),
            access_token=TokenCodec.generate_token(now),
            mobile_access_code=TokenCodec.generate_mobile_access_code(),
            plan=plan_enum.value,
            start_date=now,
            expires_at=ensure_utc(expires_at) if expires_at else expiry_for_plan(plan_enum, now),
            payment_id=payment_id,
            active=True,
            created_at=now,
        )
        await self.repository.create(record)
        logger.info(f"Issued {record.plan} subscription {record.id} until {to_iso(record.expires_at)}")
        return record

    def _result_for(self, record: ServerSubscriptionRecord, include_token: bool = False) -> VerificationResult:
        now = self._now()
        valid = record.is_valid(now)
        reason = None
        if not record.active:
            reason = VerificationReason.INVALID_TOKEN
        elif not valid:
            reason = VerificationReason.EXPIRED
        return VerificationResult(
            valid=valid,
            reason=reason,
            plan=record.plan,
            expires_at=to_iso(record.expires_at),
            days_remaining=days_remaining(record.expires_at, now) if valid else 0,
            access_token=record.access_token if include_token and valid else None,
        )

    async def verify_token(self, token: Optional[str]) -> VerificationResult:
        """
        Look a bearer token up in the record store.

        Valid means the record is active and not past expiry. Store errors
        propagate; the gating dependency turns them into a 500.
        """
        if not token:
            return VerificationResult.failure(VerificationReason.MISSING_TOKEN)

        record = await self.repository.find_by_token(token)
        if record is None:
            return VerificationResult.failure(VerificationReason.INVALID_TOKEN)
        return self._result_for(record)

    async def verify_mobile_code(self, code: Optional[str]) -> VerificationResult:
        """Look up an issued mobile code; a valid result carries the access token"""
        try:
            normalized = normalize_mobile_access_code(code)
        except InvalidAccessCodeError:
            return VerificationResult.failure(VerificationReason.INVALID_FORMAT)

        record = await self.repository.find_by_mobile_code(normalized)
        if record is None:
            return VerificationResult.failure(VerificationReason.INVALID_TOKEN)
        return self._result_for(record, include_token=True)

    async def cancel_subscription(self, token: Optional[str]) -> dict:
        """Soft-cancel the record holding ``token``"""
        if not token:
            return {"success": False, "error": SUBSCRIPTION_NOT_FOUND}

        record = await self.repository.cancel(token)
        if record is None:
            return {"success": False, "error": SUBSCRIPTION_NOT_FOUND}

        logger.info(f"Cancelled subscription {record.id}")
        return {"success": True}

    async def list_by_email(self, email: str) -> List[ServerSubscriptionRecord]:
        return await self.repository.find_by_email(email)
