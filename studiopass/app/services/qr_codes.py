"""
QR redemption: issuing single-use session codes and validating them at the desk.

Code lifecycle: unknown -> active -> expired | used.
``active -> used`` is the only write and happens at most once; it is
committed together with the balance decrement and the usage record, or
not at all.
"""
import secrets
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from studiopass.app.core.clock import utcnow
from studiopass.app.core.exceptions import (
    ValidationError,
    NotFoundError,
    StateConflictError,
    AuthorizationError,
    DependencyError,
)
from studiopass.app.core.logging import get_logger, code_hint
from studiopass.app.core.metrics import qr_codes_issued_total, qr_validations_total
from studiopass.app.core.settings import get_settings
from studiopass.app.core.transactions import transactional
from studiopass.app.models.operator import Operator
from studiopass.app.models.qr_code import QrCode
from studiopass.app.models.usage import SubscriptionUsage
from studiopass.app.services.subscription import (
    SubscriptionLedger,
    SubscriptionNotFoundError,
    SubscriptionExpiredError,
)

logger = get_logger(__name__)

CODE_BYTES = 16  # 128 bits of entropy, 32 hex chars
CODE_GENERATION_ATTEMPTS = 5


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class MissingFieldError(ValidationError):
    def __init__(self, field: str):
        super().__init__(f"{field} is required", code=f"missing_{_snake(field)}")


class NoActiveSubscriptionError(NotFoundError):
    code = "no_active_subscription"

    def __init__(self):
        super().__init__("No active subscription")


class NoSessionsLeftError(StateConflictError):
    code = "no_sessions_left"

    def __init__(self):
        super().__init__("No sessions left on the subscription")


class InvalidCodeError(NotFoundError):
    code = "invalid_qr"

    def __init__(self):
        super().__init__("QR code not found")


class CodeExpiredError(StateConflictError):
    code = "qr_expired"

    def __init__(self):
        super().__init__("QR code has expired")


class CodeAlreadyUsedError(StateConflictError):
    code = "qr_already_used"

    def __init__(self):
        super().__init__("QR code has already been used")


class OperatorNotAuthorizedError(AuthorizationError):
    code = "admin_not_found"

    def __init__(self):
        super().__init__("Admin not found")


class CodeGenerationError(DependencyError):
    def __init__(self):
        super().__init__("Could not generate a unique QR code")


def _snake(name: str) -> str:
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in name)


def generate_code() -> str:
    return secrets.token_hex(CODE_BYTES)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class QrCodeService:
    """Issues and validates redemption QR codes."""

    def __init__(self, session: AsyncSession, ttl_seconds: Optional[int] = None):
        self.session = session
        self.ledger = SubscriptionLedger(session)
        self.ttl = timedelta(seconds=ttl_seconds or get_settings().QR_CODE_TTL_SECONDS)

    async def _unique_code(self) -> str:
        for _ in range(CODE_GENERATION_ATTEMPTS):
            candidate = generate_code()
            if await self.session.get(QrCode, candidate) is None:
                return candidate
        raise CodeGenerationError()

    async def issue_code(self, user_id: Optional[str]) -> Dict[str, Any]:
        """
        Mint a QR code for the user's active subscription.

        Issuing does not touch the balance; ``remainingSessions`` in the
        result is informational.
        """
        if not user_id:
            raise MissingFieldError("userId")

        sub = await self.ledger.get_active_subscription(user_id)
        if not sub:
            raise NoActiveSubscriptionError()
        if sub.remaining_sessions <= 0:
            raise NoSessionsLeftError()

        now = utcnow()
        code = await self._unique_code()
        qr = QrCode(
            code=code,
            subscription_id=sub.id,
            user_id=user_id,
            created_at=now,
            expires_at=now + self.ttl,
            is_used=False,
        )
        async with transactional(self.session):
            self.session.add(qr)

        qr_codes_issued_total.inc()
        logger.info(
            "QR code issued",
            user_id=user_id,
            subscription_id=sub.id,
            code=code_hint(code),
            expires_at=qr.expires_at.isoformat(),
        )
        return {
            "qrCode": code,
            "expiresAt": qr.expires_at,
            "remainingSessions": sub.remaining_sessions,
        }

    async def validate_code(self, code: Optional[str], operator_id: Optional[str]) -> Dict[str, Any]:
        """
        Redeem ``code`` on behalf of ``operator_id``.

        Checks run in a fixed order: existence, expiry, used flag, operator,
        subscription (present, active, before its end date). Then the code
        is marked used, one session is taken off and a usage record is
        appended, all in one transaction.
        """
        try:
            remaining = await self._validate(code, operator_id)
        except (ValidationError, NotFoundError, StateConflictError, AuthorizationError) as exc:
            qr_validations_total.labels(result=exc.code).inc()
            logger.info(
                "QR validation rejected",
                code=code_hint(code or ""),
                admin_id=operator_id,
                reason=exc.code,
            )
            raise
        qr_validations_total.labels(result="success").inc()
        return {"success": True, "remainingSessions": remaining}

    async def _validate(self, code: Optional[str], operator_id: Optional[str]) -> int:
        if not code:
            raise MissingFieldError("qrCode")
        if not operator_id:
            raise MissingFieldError("adminId")

        qr = await self.session.get(QrCode, code, populate_existing=True)
        if not qr:
            raise InvalidCodeError()

        now = utcnow()
        if qr.is_expired(now):
            raise CodeExpiredError()
        if qr.is_used:
            raise CodeAlreadyUsedError()

        operator = await self.session.get(Operator, operator_id)
        if not operator or not operator.is_active:
            raise OperatorNotAuthorizedError()

        sub = await self.ledger.get_subscription(qr.subscription_id)
        if not sub:
            raise SubscriptionNotFoundError(qr.subscription_id)
        if not sub.is_active or sub.end_date <= now:
            raise SubscriptionExpiredError(sub.id)

        async with transactional(self.session):
            await self._mark_used(qr, operator_id, now)
            remaining = await self.ledger.apply_decrement(sub.id, now)
            self.session.add(SubscriptionUsage(
                subscription_id=sub.id,
                user_id=qr.user_id,
                admin_id=operator_id,
                qr_code=qr.code,
                remaining_sessions=remaining,
                used_at=now,
            ))

        logger.info(
            "QR code redeemed",
            code=code_hint(code),
            subscription_id=sub.id,
            user_id=qr.user_id,
            admin_id=operator_id,
            remaining_sessions=remaining,
        )
        return remaining

    async def _mark_used(self, qr: QrCode, operator_id: str, now: datetime) -> None:
        # Conditional on is_used = false: a concurrent validator that got
        # here first leaves nothing to update.
        result = await self.session.execute(
            update(QrCode)
            .where(QrCode.code == qr.code, QrCode.is_used == False)  # noqa: E712
            .values(is_used=True, used_at=now, used_by=operator_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise CodeAlreadyUsedError()
