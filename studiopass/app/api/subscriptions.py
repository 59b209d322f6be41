"""
Subscription API: QR code issuing for clients and QR validation for staff.

Every failure carries a machine-readable ``code`` (see core/exceptions.py),
so the client and desk apps can branch on it.
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from studiopass.app.api.deps import get_session
from studiopass.app.core.exceptions import ServiceError, DependencyError
from studiopass.app.core.logging import get_logger
from studiopass.app.services.qr_codes import QrCodeService
from studiopass.app.services.subscription import (
    SubscriptionLedger,
    subscription_to_dict,
    usage_to_dict,
)

logger = get_logger(__name__)

router = APIRouter()


def _iso_utc(value: datetime) -> str:
    return value.replace(tzinfo=timezone.utc).isoformat()


class GenerateQrRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")


class ValidateQrRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    qr_code: Optional[str] = Field(default=None, alias="qrCode")
    admin_id: Optional[str] = Field(default=None, alias="adminId")


@router.post("/generate-qr")
async def generate_qr(
    data: GenerateQrRequest,
    session: AsyncSession = Depends(get_session),
):
    """Issue a short-lived single-use QR code for the user's active subscription."""
    service = QrCodeService(session)
    try:
        result = await service.issue_code(data.user_id)
    except ServiceError:
        raise
    except Exception as exc:
        logger.error("QR generation failed", user_id=data.user_id, error=str(exc))
        raise DependencyError("Failed to generate QR code") from exc

    return {
        "qrCode": result["qrCode"],
        "expiresAt": _iso_utc(result["expiresAt"]),
        "remainingSessions": result["remainingSessions"],
    }


@router.post("/validate-qr")
async def validate_qr(
    data: ValidateQrRequest,
    session: AsyncSession = Depends(get_session),
):
    """Redeem a QR code at the desk: one session is taken off the subscription."""
    service = QrCodeService(session)
    try:
        return await service.validate_code(data.qr_code, data.admin_id)
    except ServiceError:
        raise
    except Exception as exc:
        logger.error("QR validation failed", admin_id=data.admin_id, error=str(exc))
        raise DependencyError("Failed to validate QR code") from exc


@router.get("/{user_id}")
async def get_subscription_status(
    user_id: str,
    session: AsyncSession = Depends(get_session),
):
    """Current active subscription (or null) and recent redemptions."""
    ledger = SubscriptionLedger(session)
    current = await ledger.get_active_subscription(user_id)
    history = await ledger.get_usage_history(user_id)
    return {
        "current": subscription_to_dict(current) if current else None,
        "history": [usage_to_dict(u) for u in history],
    }
