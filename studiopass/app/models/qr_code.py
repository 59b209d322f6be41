from sqlalchemy import String, ForeignKey, Integer, DateTime, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional
from studiopass.app.core.base import Base


class QrCode(Base):
    """Single-use redemption code. Rows are never deleted: a used or
    expired code stays as an audit entry."""
    __tablename__ = 'qr_codes'

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    subscription_id: Mapped[int] = mapped_column(Integer, ForeignKey('subscriptions.id'), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    used_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)  # operator id

    __table_args__ = (
        Index('ix_qr_codes_subscription_id', 'subscription_id'),
        Index('ix_qr_codes_expires_at', 'expires_at'),
    )

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at
