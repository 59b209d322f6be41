from sqlalchemy import String, DateTime, Integer, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional
from studiopass.app.core.base import Base
from studiopass.app.core.clock import utcnow


class User(Base):
    """Client profile. Registration lives elsewhere; the ledger only mirrors
    the active subscription and session balance into it."""
    __tablename__ = 'users'

    id: Mapped[str] = mapped_column(String(128), primary_key=True)  # auth provider UID
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    # --- Зеркало активного абонемента ---
    active_subscription_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    active_tariff_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    active_tariff_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    subscription_start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    subscription_end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    remaining_sessions: Mapped[int] = mapped_column(Integer, default=0)
    total_sessions: Mapped[int] = mapped_column(Integer, default=0)
    payment_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    last_payment_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_subscription_active: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
