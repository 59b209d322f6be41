from sqlalchemy import String, ForeignKey, Integer, DateTime, Boolean, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Optional
from studiopass.app.core.base import Base
from studiopass.app.core.clock import utcnow


class Subscription(Base):
    __tablename__ = 'subscriptions'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    tariff_id: Mapped[str] = mapped_column(String(128), ForeignKey('tariffs.id'), nullable=False)
    payment_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)  # YooKassa payment ID
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    total_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    remaining_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_used: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            'remaining_sessions >= 0 AND remaining_sessions <= total_sessions',
            name='ck_subscriptions_remaining_sessions',
        ),
        Index('ix_subscriptions_user_active', 'user_id', 'is_active'),
        Index('ix_subscriptions_end_date', 'end_date'),
    )
