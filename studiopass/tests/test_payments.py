"""
Unit tests for PaymentService: YooKassa integration.

Tests cover:
- SDK configuration & input validation
- Payment creation (params sent to YooKassa, local record, SDK failure)
- Notification processing (record upsert, subscription activation,
  idempotent redelivery, activation failures kept on the payment)
- Payment status lookup

All YooKassa SDK calls are mocked, no external network calls.
"""
import pytest
from datetime import datetime
from decimal import Decimal
from unittest.mock import MagicMock, patch

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from studiopass.app.models.payment import Payment
from studiopass.app.models.subscription import Subscription
from studiopass.app.models.tariff import Tariff
from studiopass.app.models.user import User


# ============================================
# Helpers
# ============================================

def _make_yoo_payment(
    payment_id: str = "pay_123",
    status: str = "pending",
    confirmation_url: str = "https://yoomoney.ru/checkout/pay_123",
):
    """Create a mock YooKassa payment object."""
    payment = MagicMock()
    payment.id = payment_id
    payment.status = status
    payment.paid = False
    payment.confirmation = MagicMock()
    payment.confirmation.confirmation_url = confirmation_url
    return payment


def _notification(
    payment_id: str = "pay_123",
    status: str = "succeeded",
    paid: bool = True,
    user_id: str = "user-1",
    tariff_id: str = "tariff-8",
    **extra_metadata,
) -> dict:
    metadata = {"userId": user_id, "tariffId": tariff_id, "orderId": "order-1"}
    metadata.update(extra_metadata)
    return {
        "type": "notification",
        "event": f"payment.{status}",
        "object": {
            "id": payment_id,
            "status": status,
            "paid": paid,
            "amount": {"value": "4000.00", "currency": "RUB"},
            "captured_at": "2024-05-01T10:00:00.000Z",
            "metadata": metadata,
        },
    }


async def _subscription_count(session: AsyncSession) -> int:
    return await session.scalar(select(func.count()).select_from(Subscription))


@pytest.fixture
def mock_yookassa_configured():
    """Patch settings so PaymentService thinks YooKassa is configured."""
    with patch("studiopass.app.services.payment.get_settings") as mock_settings:
        settings = MagicMock()
        settings.YOOKASSA_SHOP_ID = "test_shop_id"
        settings.YOOKASSA_SECRET_KEY = "test_secret_key"
        settings.YOOKASSA_RETURN_URL = "https://studio.example.com/profile"
        settings.PAYMENT_CURRENCY = "RUB"
        mock_settings.return_value = settings
        yield settings


@pytest.fixture
def mock_yookassa_not_configured():
    """Patch settings so PaymentService sees no YooKassa credentials."""
    with patch("studiopass.app.services.payment.get_settings") as mock_settings:
        settings = MagicMock()
        settings.YOOKASSA_SHOP_ID = None
        settings.YOOKASSA_SECRET_KEY = None
        settings.YOOKASSA_RETURN_URL = None
        settings.PAYMENT_CURRENCY = "RUB"
        mock_settings.return_value = settings
        yield settings


def _payment_kwargs(**overrides) -> dict:
    kwargs = {
        "value": "4000",
        "user_id": "user-1",
        "order_id": "order-1",
        "return_url": "https://studio.example.com/done",
        "tariff_id": "tariff-8",
    }
    kwargs.update(overrides)
    return kwargs


# ============================================
# SDK CONFIGURATION
# ============================================

@pytest.mark.asyncio
async def test_service_configured_when_credentials_set(
    test_session: AsyncSession,
    mock_yookassa_configured,
):
    from studiopass.app.services.payment import PaymentService

    service = PaymentService(test_session)
    assert service._configured is True


@pytest.mark.asyncio
async def test_create_payment_not_configured(
    test_session: AsyncSession,
    mock_yookassa_not_configured,
):
    from studiopass.app.services.payment import PaymentService, PaymentNotConfiguredError

    service = PaymentService(test_session)
    assert service._configured is False

    with pytest.raises(PaymentNotConfiguredError) as exc_info:
        await service.create_payment(**_payment_kwargs())
    assert exc_info.value.status_code == 503


# ============================================
# CREATE PAYMENT: validation
# ============================================

@pytest.mark.asyncio
async def test_create_payment_missing_fields(
    test_session: AsyncSession,
    mock_yookassa_not_configured,
):
    """Missing return_url with no fallback in settings is reported too."""
    from studiopass.app.services.payment import PaymentService, MissingFieldsError

    service = PaymentService(test_session)
    with pytest.raises(MissingFieldsError) as exc_info:
        await service.create_payment(**_payment_kwargs(user_id=None, tariff_id="", return_url=None))

    assert exc_info.value.code == "missing_fields"
    assert exc_info.value.missing == ["userId", "return_url", "tariffId"]


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["abc", "-10", "0"])
async def test_create_payment_invalid_amount(
    test_session: AsyncSession,
    mock_yookassa_configured,
    value,
):
    from studiopass.app.services.payment import PaymentService, InvalidAmountError

    service = PaymentService(test_session)
    with pytest.raises(InvalidAmountError):
        await service.create_payment(**_payment_kwargs(value=value))


@pytest.mark.asyncio
async def test_create_payment_unknown_user(
    test_session: AsyncSession,
    test_tariff: Tariff,
    mock_yookassa_configured,
):
    from studiopass.app.services.payment import PaymentService, UserNotFoundError

    service = PaymentService(test_session)
    with pytest.raises(UserNotFoundError) as exc_info:
        await service.create_payment(**_payment_kwargs(user_id="nobody"))
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_create_payment_unknown_tariff(
    test_session: AsyncSession,
    test_user: User,
    mock_yookassa_configured,
):
    from studiopass.app.services.payment import PaymentService
    from studiopass.app.services.tariffs import TariffNotFoundError

    service = PaymentService(test_session)
    with pytest.raises(TariffNotFoundError):
        await service.create_payment(**_payment_kwargs(tariff_id="missing"))


# ============================================
# CREATE PAYMENT: YooKassa
# ============================================

@pytest.mark.asyncio
async def test_create_payment(
    test_session: AsyncSession,
    test_user: User,
    test_tariff: Tariff,
    mock_yookassa_configured,
):
    from studiopass.app.services.payment import PaymentService

    with patch("studiopass.app.services.payment.YooPayment") as mock_yoo:
        mock_yoo.create.return_value = _make_yoo_payment()
        service = PaymentService(test_session)
        result = await service.create_payment(**_payment_kwargs(value="4000"))

    assert result == {
        "paymentId": "pay_123",
        "confirmationUrl": "https://yoomoney.ru/checkout/pay_123",
        "status": "pending",
    }

    params, idempotence_key = mock_yoo.create.call_args[0]
    assert idempotence_key == "order-1"
    assert params["amount"] == {"value": "4000.00", "currency": "RUB"}
    assert params["confirmation"] == {"type": "redirect", "return_url": "https://studio.example.com/done"}
    assert params["capture"] is True
    assert params["metadata"] == {"userId": "user-1", "orderId": "order-1", "tariffId": "tariff-8"}
    assert "8 занятий" in params["description"]

    record = await test_session.get(Payment, "pay_123", populate_existing=True)
    assert record.user_id == "user-1"
    assert record.order_id == "order-1"
    assert record.tariff_id == "tariff-8"
    assert record.value == Decimal("4000.00")
    assert record.status == "pending"
    assert record.paid is False
    assert record.tariff_data["sessionCount"] == 8
    assert record.tariff_data["durationUnit"] == "month"


@pytest.mark.asyncio
async def test_create_payment_return_url_fallback(
    test_session: AsyncSession,
    test_user: User,
    test_tariff: Tariff,
    mock_yookassa_configured,
):
    from studiopass.app.services.payment import PaymentService

    with patch("studiopass.app.services.payment.YooPayment") as mock_yoo:
        mock_yoo.create.return_value = _make_yoo_payment()
        await PaymentService(test_session).create_payment(**_payment_kwargs(return_url=None))

    params = mock_yoo.create.call_args[0][0]
    assert params["confirmation"]["return_url"] == "https://studio.example.com/profile"


@pytest.mark.asyncio
async def test_create_payment_sdk_failure(
    test_session: AsyncSession,
    test_user: User,
    test_tariff: Tariff,
    mock_yookassa_configured,
):
    from studiopass.app.services.payment import PaymentService, PaymentFailedError

    with patch("studiopass.app.services.payment.YooPayment") as mock_yoo:
        mock_yoo.create.side_effect = Exception("YooKassa is down")
        with pytest.raises(PaymentFailedError) as exc_info:
            await PaymentService(test_session).create_payment(**_payment_kwargs())

    assert exc_info.value.status_code == 500
    assert exc_info.value.code == "payment_failed"
    assert await test_session.get(Payment, "pay_123") is None


# ============================================
# NOTIFICATIONS
# ============================================

@pytest.mark.asyncio
async def test_notification_activates_subscription(
    test_session: AsyncSession,
    test_user: User,
    test_tariff: Tariff,
):
    from studiopass.app.services.payment import PaymentService

    result = await PaymentService(test_session).handle_notification(_notification())
    assert result == {"status": "ok"}

    record = await test_session.get(Payment, "pay_123", populate_existing=True)
    assert record.status == "succeeded"
    assert record.paid is True
    assert record.captured_at == datetime(2024, 5, 1, 10, 0, 0)
    assert record.user_profile_updated is True
    assert record.profile_updated_at is not None
    assert record.profile_update_error is None

    sub = (await test_session.execute(select(Subscription))).scalar_one()
    assert sub.payment_id == "pay_123"
    assert sub.user_id == "user-1"
    assert sub.remaining_sessions == 8

    user = await test_session.get(User, "user-1", populate_existing=True)
    assert user.active_subscription_id == sub.id
    assert user.is_subscription_active is True


@pytest.mark.asyncio
async def test_notification_redelivery_is_idempotent(
    test_session: AsyncSession,
    test_user: User,
    test_tariff: Tariff,
):
    from studiopass.app.services.payment import PaymentService

    service = PaymentService(test_session)
    await service.handle_notification(_notification())
    await service.handle_notification(_notification())

    assert await _subscription_count(test_session) == 1


@pytest.mark.asyncio
async def test_notification_accepts_legacy_metadata_keys(
    test_session: AsyncSession,
    test_user: User,
    test_tariff: Tariff,
):
    from studiopass.app.services.payment import PaymentService

    event = _notification()
    event["object"]["metadata"] = {"userUID": "user-1", "tariffId": "tariff-8", "orderID": "order-9"}
    await PaymentService(test_session).handle_notification(event)

    record = await test_session.get(Payment, "pay_123", populate_existing=True)
    assert record.order_id == "order-9"
    assert await _subscription_count(test_session) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, paid",
    [("canceled", False), ("waiting_for_capture", False), ("succeeded", False)],
)
async def test_notification_without_success_creates_nothing(
    test_session: AsyncSession,
    test_user: User,
    test_tariff: Tariff,
    status,
    paid,
):
    from studiopass.app.services.payment import PaymentService

    await PaymentService(test_session).handle_notification(_notification(status=status, paid=paid))

    record = await test_session.get(Payment, "pay_123", populate_existing=True)
    assert record.status == status
    assert record.user_profile_updated is False
    assert await _subscription_count(test_session) == 0


@pytest.mark.asyncio
async def test_notification_updates_existing_payment(
    test_session: AsyncSession,
    test_user: User,
    test_tariff: Tariff,
):
    from studiopass.app.services.payment import PaymentService

    test_session.add(Payment(id="pay_123", user_id="user-1", tariff_id="tariff-8", status="pending"))
    await test_session.commit()

    await PaymentService(test_session).handle_notification(_notification())

    count = await test_session.scalar(select(func.count()).select_from(Payment))
    assert count == 1
    record = await test_session.get(Payment, "pay_123", populate_existing=True)
    assert record.status == "succeeded"


@pytest.mark.asyncio
async def test_notification_without_payment_id(test_session: AsyncSession):
    from studiopass.app.services.payment import PaymentService, InvalidNotificationError

    with pytest.raises(InvalidNotificationError) as exc_info:
        await PaymentService(test_session).handle_notification({"event": "payment.succeeded", "object": {}})
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize("payment_object", ["oops", ["pay_123"], None, 42])
async def test_notification_with_non_object_payment(test_session: AsyncSession, payment_object):
    from studiopass.app.services.payment import PaymentService, InvalidNotificationError

    with pytest.raises(InvalidNotificationError) as exc_info:
        await PaymentService(test_session).handle_notification({"object": payment_object})
    assert exc_info.value.code == "invalid_notification"

    count = await test_session.scalar(select(func.count()).select_from(Payment))
    assert count == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("metadata", [["x"], "user-1", None])
async def test_notification_with_non_object_metadata(test_session: AsyncSession, metadata):
    """Payment is still recorded; without metadata there is nothing to activate."""
    from studiopass.app.services.payment import PaymentService

    event = _notification()
    event["object"]["metadata"] = metadata
    assert await PaymentService(test_session).handle_notification(event) == {"status": "ok"}

    record = await test_session.get(Payment, "pay_123", populate_existing=True)
    assert record.status == "succeeded"
    assert record.user_id is None
    assert record.user_profile_updated is False
    assert await _subscription_count(test_session) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("paid", ["false", "true", 1, None])
async def test_notification_paid_must_be_boolean_true(
    test_session: AsyncSession,
    test_user: User,
    test_tariff: Tariff,
    paid,
):
    from studiopass.app.services.payment import PaymentService

    await PaymentService(test_session).handle_notification(_notification(paid=paid))

    record = await test_session.get(Payment, "pay_123", populate_existing=True)
    assert record.paid is False
    assert await _subscription_count(test_session) == 0


@pytest.mark.asyncio
async def test_notification_activation_failure_is_stored(
    test_session: AsyncSession,
    test_user: User,
):
    """Unknown tariff: the event is acknowledged and the error kept on the payment."""
    from studiopass.app.services.payment import PaymentService

    result = await PaymentService(test_session).handle_notification(_notification(tariff_id="gone"))
    assert result == {"status": "ok"}

    record = await test_session.get(Payment, "pay_123", populate_existing=True)
    assert record.status == "succeeded"
    assert record.paid is True
    assert record.user_profile_updated is False
    assert "gone" in record.profile_update_error
    assert await _subscription_count(test_session) == 0


@pytest.mark.asyncio
async def test_notification_for_user_without_profile(
    test_session: AsyncSession,
    test_tariff: Tariff,
):
    from studiopass.app.services.payment import PaymentService

    await PaymentService(test_session).handle_notification(_notification(user_id="no-profile"))

    sub = (await test_session.execute(select(Subscription))).scalar_one()
    assert sub.user_id == "no-profile"


# ============================================
# STATUS
# ============================================

@pytest.mark.asyncio
async def test_get_payment_status(
    test_session: AsyncSession,
    test_user: User,
    test_tariff: Tariff,
):
    from studiopass.app.services.payment import PaymentService

    service = PaymentService(test_session)
    await service.handle_notification(_notification())

    assert await service.get_payment_status("pay_123") == {
        "status": "succeeded",
        "paid": True,
        "userProfileUpdated": True,
    }


@pytest.mark.asyncio
async def test_get_payment_status_unknown(test_session: AsyncSession):
    from studiopass.app.services.payment import PaymentService, PaymentNotFoundError

    with pytest.raises(PaymentNotFoundError):
        await PaymentService(test_session).get_payment_status("nope")
