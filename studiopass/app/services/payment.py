"""
Payment service: YooKassa payments for tariff purchases.

Creating a payment stores a local payment record keyed by the YooKassa
payment id. Gateway notifications update that record and, once a payment
has succeeded, activate the purchased tariff through the subscription ledger.
"""
import asyncio
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Dict, Any, List

from dateutil.parser import isoparse
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from yookassa import Configuration, Payment as YooPayment

from studiopass.app.core.clock import utcnow
from studiopass.app.core.exceptions import (
    ValidationError,
    NotFoundError,
    DependencyError,
    ServiceUnavailableError,
)
from studiopass.app.core.logging import get_logger
from studiopass.app.core.metrics import payment_notifications_total
from studiopass.app.core.settings import get_settings
from studiopass.app.core.transactions import transactional
from studiopass.app.models.payment import Payment
from studiopass.app.models.user import User
from studiopass.app.services.subscription import SubscriptionLedger
from studiopass.app.services.tariffs import TariffCatalog, tariff_to_dict

logger = get_logger(__name__)

SUCCEEDED = "succeeded"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class MissingFieldsError(ValidationError):
    code = "missing_fields"

    def __init__(self, missing: List[str]):
        super().__init__(f"Missing required fields: {', '.join(missing)}")
        self.missing = missing


class InvalidAmountError(ValidationError):
    code = "invalid_value"

    def __init__(self, value: Any):
        super().__init__(f"Invalid payment amount: {value!r}")


class InvalidNotificationError(ValidationError):
    code = "invalid_notification"

    def __init__(self):
        super().__init__("Invalid notification payload")


class UserNotFoundError(NotFoundError):
    code = "user_not_found"

    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} not found")


class PaymentNotFoundError(NotFoundError):
    code = "payment_not_found"

    def __init__(self, payment_id: str):
        super().__init__(f"Payment {payment_id} not found")


class PaymentNotConfiguredError(ServiceUnavailableError):
    """YOOKASSA_SHOP_ID / YOOKASSA_SECRET_KEY not set."""

    code = "payment_not_configured"

    def __init__(self):
        super().__init__("Payment system is not configured")


class PaymentFailedError(DependencyError):
    code = "payment_failed"

    def __init__(self, details: str):
        super().__init__(f"Payment failed: {details}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(value)
    if amount <= 0:
        raise InvalidAmountError(value)
    return amount


def _parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    """Gateway timestamps are ISO 8601 in UTC ("2024-05-01T10:00:00.000Z")."""
    if not raw:
        return None
    try:
        parsed = isoparse(raw)
    except (ValueError, TypeError):
        logger.warning("Unparseable gateway timestamp", value=raw)
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class PaymentService:
    """Creates YooKassa payments and reacts to their notifications."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._configure_sdk()

    # -- SDK configuration --------------------------------------------------

    def _configure_sdk(self) -> None:
        settings = get_settings()
        if settings.YOOKASSA_SHOP_ID and settings.YOOKASSA_SECRET_KEY:
            Configuration.account_id = settings.YOOKASSA_SHOP_ID
            Configuration.secret_key = settings.YOOKASSA_SECRET_KEY
            self._configured = True
        else:
            self._configured = False

    def _ensure_configured(self) -> None:
        if not self._configured:
            raise PaymentNotConfiguredError()

    # -- Payment creation ---------------------------------------------------

    async def create_payment(
        self,
        *,
        value: Any,
        user_id: Optional[str],
        order_id: Optional[str],
        return_url: Optional[str],
        tariff_id: Optional[str],
    ) -> Dict[str, Any]:
        """
        Create a redirect-confirmation payment for a tariff purchase.

        ``order_id`` doubles as the idempotence key, so a retried request for
        the same order gets the same YooKassa payment back.
        Returns ``paymentId``, ``confirmationUrl`` and ``status``.
        """
        settings = get_settings()
        return_url = return_url or settings.YOOKASSA_RETURN_URL
        fields = {
            "value": value,
            "userId": user_id,
            "orderId": order_id,
            "return_url": return_url,
            "tariffId": tariff_id,
        }
        missing = [name for name, field_value in fields.items() if not field_value]
        if missing:
            raise MissingFieldsError(missing)

        amount = _parse_amount(value)
        self._ensure_configured()

        user = await self.session.get(User, user_id)
        if not user:
            raise UserNotFoundError(user_id)
        tariff = await TariffCatalog(self.session).get_tariff(tariff_id)

        payment_params: Dict[str, Any] = {
            "amount": {
                "value": str(amount),
                "currency": settings.PAYMENT_CURRENCY,
            },
            "payment_method_data": {
                "type": "bank_card",
            },
            "confirmation": {
                "type": "redirect",
                "return_url": return_url,
            },
            "capture": True,
            "description": f"Абонемент «{tariff.title or tariff.id}»",
            "metadata": {
                "userId": user_id,
                "orderId": order_id,
                "tariffId": tariff_id,
            },
        }

        try:
            payment = await asyncio.to_thread(YooPayment.create, payment_params, order_id)
        except Exception as exc:
            logger.error(
                "YooKassa payment creation failed",
                order_id=order_id,
                user_id=user_id,
                tariff_id=tariff_id,
                error=str(exc),
            )
            raise PaymentFailedError(str(exc))

        confirmation_url = None
        if payment.confirmation:
            confirmation_url = payment.confirmation.confirmation_url

        async with transactional(self.session):
            record = await self.session.get(Payment, payment.id)
            if record is None:
                record = Payment(id=payment.id, created_at=utcnow())
                self.session.add(record)
            record.user_id = user_id
            record.order_id = order_id
            record.tariff_id = tariff_id
            record.value = amount
            record.status = payment.status
            record.confirmation_url = confirmation_url
            record.tariff_data = tariff_to_dict(tariff)

        logger.info(
            "Payment created",
            payment_id=payment.id,
            order_id=order_id,
            user_id=user_id,
            tariff_id=tariff_id,
            amount=str(amount),
            status=payment.status,
        )

        return {
            "paymentId": payment.id,
            "confirmationUrl": confirmation_url,
            "status": payment.status,
        }

    async def get_payment_status(self, payment_id: str) -> Dict[str, Any]:
        record = await self.session.get(Payment, payment_id, populate_existing=True)
        if not record:
            raise PaymentNotFoundError(payment_id)
        return {
            "status": record.status,
            "paid": record.paid,
            "userProfileUpdated": record.user_profile_updated,
        }

    # -- Notifications ------------------------------------------------------

    async def handle_notification(self, event_data: Dict[str, Any]) -> Dict[str, str]:
        """
        Process a YooKassa payment notification.

        The payment record is committed first. Subscription activation runs
        afterwards and its failures are stored on the payment and logged,
        never raised: the gateway redelivers anything that is not a 2xx.
        """
        payment_object = event_data.get("object")
        if not isinstance(payment_object, dict) or not payment_object.get("id"):
            logger.warning("Invalid notification payload", webhook_event=event_data.get("event"))
            raise InvalidNotificationError()
        payment_id = str(payment_object["id"])

        status = payment_object.get("status")
        paid = payment_object.get("paid") is True
        captured_at = _parse_timestamp(payment_object.get("captured_at"))
        metadata = payment_object.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        user_id = metadata.get("userId") or metadata.get("userUID")
        tariff_id = metadata.get("tariffId")

        payment_notifications_total.labels(status=status or "unknown").inc()
        logger.info(
            "Payment notification",
            payment_id=payment_id,
            status=status,
            paid=paid,
            user_id=user_id,
            webhook_event=event_data.get("event"),
        )

        await self._record_notification(
            payment_id,
            status=status,
            paid=paid,
            captured_at=captured_at,
            user_id=user_id,
            tariff_id=tariff_id,
            order_id=metadata.get("orderId") or metadata.get("orderID"),
        )

        if status == SUCCEEDED and paid and user_id and tariff_id:
            await self._activate_subscription(payment_id, user_id, tariff_id)

        return {"status": "ok"}

    async def _record_notification(
        self,
        payment_id: str,
        *,
        status: Optional[str],
        paid: bool,
        captured_at: Optional[datetime],
        user_id: Optional[str],
        tariff_id: Optional[str],
        order_id: Optional[str],
    ) -> None:
        now = utcnow()
        async with transactional(self.session):
            record = await self.session.get(Payment, payment_id)
            if record is None:
                logger.warning("Notification for unknown payment, recording it", payment_id=payment_id)
                record = Payment(
                    id=payment_id,
                    user_id=user_id,
                    tariff_id=tariff_id,
                    order_id=order_id,
                    created_at=now,
                )
                self.session.add(record)
            if status:
                record.status = status
            record.paid = paid
            record.updated_at = now
            if captured_at:
                record.captured_at = captured_at

    async def _activate_subscription(self, payment_id: str, user_id: str, tariff_id: str) -> None:
        try:
            tariff = await TariffCatalog(self.session).get_tariff(tariff_id)
            sub = await SubscriptionLedger(self.session).create_subscription(user_id, tariff, payment_id)
            subscription_id = sub.id
            async with transactional(self.session):
                await self.session.execute(
                    update(Payment)
                    .where(Payment.id == payment_id)
                    .values(
                        user_profile_updated=True,
                        profile_updated_at=utcnow(),
                        profile_update_error=None,
                    )
                    .execution_options(synchronize_session=False)
                )
        except Exception as exc:
            await self.session.rollback()
            logger.error(
                "Failed to activate subscription",
                payment_id=payment_id,
                user_id=user_id,
                tariff_id=tariff_id,
                error=str(exc),
            )
            await self._store_activation_error(payment_id, str(exc))
            return

        logger.info(
            "Subscription activated from payment",
            payment_id=payment_id,
            user_id=user_id,
            subscription_id=subscription_id,
        )

    async def _store_activation_error(self, payment_id: str, message: str) -> None:
        try:
            async with transactional(self.session):
                await self.session.execute(
                    update(Payment)
                    .where(Payment.id == payment_id)
                    .values(profile_update_error=message[:2000], updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
        except Exception as exc:
            logger.error("Failed to store activation error", payment_id=payment_id, error=str(exc))
