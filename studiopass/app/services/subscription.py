"""
Subscription ledger: lifecycle and session balance of client subscriptions.

A subscription is created once per successful payment and afterwards only
its ``remaining_sessions`` changes (one session per redeemed QR code).
The decrement is a conditional UPDATE executed by the database, so two
concurrent redemptions of the last session cannot both succeed, whichever
service instance handles them.
"""
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from studiopass.app.core.clock import utcnow
from studiopass.app.core.durations import compute_end_date
from studiopass.app.core.exceptions import ValidationError, NotFoundError, StateConflictError
from studiopass.app.core.logging import get_logger, code_hint
from studiopass.app.core.metrics import subscriptions_created_total
from studiopass.app.core.transactions import transactional
from studiopass.app.models.subscription import Subscription
from studiopass.app.models.tariff import Tariff
from studiopass.app.models.usage import SubscriptionUsage
from studiopass.app.models.user import User

logger = get_logger(__name__)

DEFAULT_TARIFF_NAME = "Абонемент"
USAGE_HISTORY_LIMIT = 50


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class TariffInvalidError(ValidationError):
    code = "tariff_invalid"

    def __init__(self, message: str = "Tariff data is missing"):
        super().__init__(message)


class SubscriptionNotFoundError(NotFoundError):
    code = "subscription_not_found"

    def __init__(self, subscription_id: Optional[int] = None):
        super().__init__("Subscription not found")
        self.subscription_id = subscription_id


class InsufficientSessionsError(StateConflictError):
    code = "no_sessions_left"

    def __init__(self, subscription_id: Optional[int] = None):
        super().__init__("No sessions left on the subscription")
        self.subscription_id = subscription_id


class SubscriptionExpiredError(StateConflictError):
    code = "subscription_expired"

    def __init__(self, subscription_id: Optional[int] = None):
        super().__init__("Subscription is no longer active")
        self.subscription_id = subscription_id


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class SubscriptionLedger:
    """Creates subscriptions and moves their session balance."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # -- Lookups ----------------------------------------------------------------

    async def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        return await self.session.get(Subscription, subscription_id, populate_existing=True)

    async def get_by_payment_id(self, payment_id: str) -> Optional[Subscription]:
        result = await self.session.execute(
            select(Subscription)
            .where(Subscription.payment_id == payment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active_subscription(self, user_id: str) -> Optional[Subscription]:
        """Most recently created subscription of the user that is active and not past its end date."""
        result = await self.session.execute(
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.is_active == True,  # noqa: E712
                Subscription.end_date > utcnow(),
            )
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_usage_history(self, user_id: str, limit: int = USAGE_HISTORY_LIMIT) -> List[SubscriptionUsage]:
        result = await self.session.execute(
            select(SubscriptionUsage)
            .where(SubscriptionUsage.user_id == user_id)
            .order_by(SubscriptionUsage.used_at.desc(), SubscriptionUsage.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # -- Lifecycle --------------------------------------------------------------

    async def create_subscription(
        self,
        user_id: str,
        tariff: Optional[Tariff],
        payment_id: Optional[str],
    ) -> Subscription:
        """
        Create an active subscription for ``user_id`` from ``tariff``.

        Idempotent per ``payment_id``: a second call for the same payment
        returns the subscription created by the first one.
        A tariff without ``session_count`` yields a zero-session subscription
        rather than an error, so the payment pipeline never blocks on it.
        """
        if tariff is None:
            raise TariffInvalidError()

        session_count = tariff.session_count or 0
        if session_count < 0:
            raise TariffInvalidError(f"Tariff {tariff.id} has a negative session count")

        if payment_id:
            existing = await self.get_by_payment_id(payment_id)
            if existing:
                logger.info(
                    "Subscription already created for payment",
                    payment_id=payment_id,
                    subscription_id=existing.id,
                )
                return existing

        now = utcnow()
        sub = Subscription(
            user_id=user_id,
            tariff_id=tariff.id,
            payment_id=payment_id,
            start_date=now,
            end_date=compute_end_date(now, tariff.duration),
            total_sessions=session_count,
            remaining_sessions=session_count,
            is_active=True,
            created_at=now,
        )

        try:
            async with transactional(self.session):
                self.session.add(sub)
                await self.session.flush()  # get sub.id
                await self._mirror_new_subscription(sub, tariff, now)
        except IntegrityError:
            # Concurrent delivery of the same payment event won the unique payment_id
            if not payment_id:
                raise
            existing = await self.get_by_payment_id(payment_id)
            if existing is None:
                raise
            logger.info(
                "Subscription created concurrently for payment",
                payment_id=payment_id,
                subscription_id=existing.id,
            )
            return existing

        subscriptions_created_total.inc()
        logger.info(
            "Subscription created",
            subscription_id=sub.id,
            user_id=user_id,
            tariff_id=tariff.id,
            payment_id=payment_id,
            total_sessions=session_count,
            start_date=sub.start_date.isoformat(),
            end_date=sub.end_date.isoformat(),
        )
        return sub

    async def _mirror_new_subscription(self, sub: Subscription, tariff: Tariff, now: datetime) -> None:
        user = await self.session.get(User, sub.user_id)
        if not user:
            logger.warning("Subscription owner has no profile row", user_id=sub.user_id, subscription_id=sub.id)
            return
        user.active_subscription_id = sub.id
        user.active_tariff_id = tariff.id
        user.active_tariff_name = tariff.title or DEFAULT_TARIFF_NAME
        user.subscription_start_date = sub.start_date
        user.subscription_end_date = sub.end_date
        user.remaining_sessions = sub.remaining_sessions
        user.total_sessions = sub.total_sessions
        user.payment_status = "success"
        user.last_payment_id = sub.payment_id
        user.is_subscription_active = True
        user.updated_at = now

    # -- Session balance --------------------------------------------------------

    async def decrement_session(self, subscription_id: int) -> int:
        """Take one session off the subscription as its own unit of work.

        Returns the new balance. Raises InsufficientSessionsError when the
        balance is already zero; the balance is never clamped.
        """
        async with transactional(self.session):
            return await self.apply_decrement(subscription_id, utcnow())

    async def apply_decrement(self, subscription_id: int, now: datetime) -> int:
        """Decrement inside the caller's transaction (no commit)."""
        result = await self.session.execute(
            update(Subscription)
            .where(
                Subscription.id == subscription_id,
                Subscription.remaining_sessions > 0,
            )
            .values(
                remaining_sessions=Subscription.remaining_sessions - 1,
                last_used=now,
            )
            .execution_options(synchronize_session=False)
        )
        sub = await self.get_subscription(subscription_id)
        if sub is None:
            raise SubscriptionNotFoundError(subscription_id)
        if result.rowcount != 1:
            raise InsufficientSessionsError(subscription_id)

        await self.session.execute(
            update(User)
            .where(
                User.id == sub.user_id,
                User.active_subscription_id == sub.id,
            )
            .values(remaining_sessions=sub.remaining_sessions, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return sub.remaining_sessions

    # -- Expiry management ------------------------------------------------------

    async def expire_subscriptions(self) -> int:
        """Deactivate subscriptions whose end date has passed. Returns count."""
        now = utcnow()
        async with transactional(self.session):
            result = await self.session.execute(
                select(Subscription).where(
                    Subscription.is_active == True,  # noqa: E712
                    Subscription.end_date <= now,
                )
            )
            expired = list(result.scalars().all())
            for sub in expired:
                sub.is_active = False
                await self.session.execute(
                    update(User)
                    .where(User.active_subscription_id == sub.id)
                    .values(is_subscription_active=False, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
        if expired:
            logger.info("Subscriptions expired", count=len(expired))
        return len(expired)


def subscription_to_dict(sub: Subscription) -> Dict[str, Any]:
    return {
        "id": sub.id,
        "userId": sub.user_id,
        "tariffId": sub.tariff_id,
        "paymentId": sub.payment_id,
        "startDate": sub.start_date.isoformat() if sub.start_date else None,
        "endDate": sub.end_date.isoformat() if sub.end_date else None,
        "totalSessions": sub.total_sessions,
        "remainingSessions": sub.remaining_sessions,
        "isActive": sub.is_active,
        "lastUsed": sub.last_used.isoformat() if sub.last_used else None,
    }


def usage_to_dict(usage: SubscriptionUsage) -> Dict[str, Any]:
    return {
        "subscriptionId": usage.subscription_id,
        "userId": usage.user_id,
        "adminId": usage.admin_id,
        "qrCode": code_hint(usage.qr_code),
        "remainingSessions": usage.remaining_sessions,
        "usedAt": usage.used_at.isoformat() if usage.used_at else None,
    }
