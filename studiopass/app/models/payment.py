from sqlalchemy import String, DateTime, Numeric, Boolean, Text, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from typing import Optional
from studiopass.app.core.base import Base
from studiopass.app.core.clock import utcnow


class Payment(Base):
    __tablename__ = 'payments'

    id: Mapped[str] = mapped_column(String(255), primary_key=True)  # YooKassa payment ID
    user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    order_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    tariff_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    value: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    status: Mapped[str] = mapped_column(String(32), default='pending')  # pending/waiting_for_capture/succeeded/canceled
    paid: Mapped[bool] = mapped_column(Boolean, default=False)
    captured_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    confirmation_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    tariff_data: Mapped[Optional[dict]] = mapped_column(JSON(), nullable=True)  # tariff snapshot at purchase time

    user_profile_updated: Mapped[bool] = mapped_column(Boolean, default=False)
    profile_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    profile_update_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index('ix_payments_user_id', 'user_id'),
    )
