"""Payment API endpoints for YooKassa tariff purchases."""
import ipaddress
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from studiopass.app.api.deps import get_session
from studiopass.app.core.exceptions import ServiceError, DependencyError
from studiopass.app.core.logging import get_logger
from studiopass.app.core.settings import get_settings
from studiopass.app.services.payment import PaymentService, InvalidNotificationError

router = APIRouter()
logger = get_logger(__name__)

# YooKassa webhook source IPs (https://yookassa.ru/developers/using-api/webhooks)
YOOKASSA_IP_NETWORKS = [
    ipaddress.ip_network("185.71.76.0/27"),
    ipaddress.ip_network("185.71.77.0/27"),
    ipaddress.ip_network("77.75.153.0/25"),
    ipaddress.ip_network("77.75.154.128/25"),
    ipaddress.ip_network("2a02:5180::/32"),
]
YOOKASSA_SINGLE_IPS = {
    ipaddress.ip_address("77.75.156.11"),
    ipaddress.ip_address("77.75.156.35"),
}


def _is_yookassa_ip(ip_str: str) -> bool:
    """Check if the given IP belongs to YooKassa's allowed ranges."""
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    if addr in YOOKASSA_SINGLE_IPS:
        return True
    return any(addr in net for net in YOOKASSA_IP_NETWORKS)


def _client_ip(request: Request) -> str:
    client_ip = request.headers.get("X-Real-IP") or request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else ""
    return client_ip


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class CreatePaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    value: Optional[Any] = None
    user_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("userId", "userUID"))
    order_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("orderId", "orderID"))
    return_url: Optional[str] = None
    tariff_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("tariffId", "tariff_id"))


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("")
async def create_payment(
    data: CreatePaymentRequest,
    session: AsyncSession = Depends(get_session),
):
    """
    Create a YooKassa payment for a tariff purchase.

    Returns ``confirmationUrl`` to redirect the client to the payment page.
    """
    service = PaymentService(session)
    return await service.create_payment(
        value=data.value,
        user_id=data.user_id,
        order_id=data.order_id,
        return_url=data.return_url,
        tariff_id=data.tariff_id,
    )


@router.post("/notification")
async def payment_notification(
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    """
    YooKassa notification endpoint.

    Answers 200 once the payment event is stored, even when activating the
    subscription fails (that error is kept on the payment record).
    Anything else makes YooKassa deliver the event again.
    """
    if get_settings().YOOKASSA_WEBHOOK_IP_CHECK:
        client_ip = _client_ip(request)
        if client_ip and not _is_yookassa_ip(client_ip):
            logger.warning("Notification from non-YooKassa IP", source_ip=client_ip)
            # Still return 200 to not leak information, but don't process
            return {"status": "ok"}

    try:
        body = await request.json()
    except ValueError:
        raise InvalidNotificationError()
    if not isinstance(body, dict):
        raise InvalidNotificationError()

    service = PaymentService(session)
    try:
        return await service.handle_notification(body)
    except ServiceError:
        raise
    except Exception as exc:
        logger.error("Notification processing failed", error=str(exc))
        raise DependencyError("Failed to process notification") from exc


@router.get("/{payment_id}/status")
async def get_payment_status(
    payment_id: str,
    session: AsyncSession = Depends(get_session),
):
    """Stored payment status and whether the tariff has been activated."""
    service = PaymentService(session)
    return await service.get_payment_status(payment_id)
