from sqlalchemy import String, ForeignKey, Integer, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from studiopass.app.core.base import Base


class SubscriptionUsage(Base):
    """Append-only record of one redeemed session."""
    __tablename__ = 'subscription_usage'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subscription_id: Mapped[int] = mapped_column(Integer, ForeignKey('subscriptions.id'), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    admin_id: Mapped[str] = mapped_column(String(128), nullable=False)
    qr_code: Mapped[str] = mapped_column(String(64), ForeignKey('qr_codes.code'), nullable=False)
    remaining_sessions: Mapped[int] = mapped_column(Integer, nullable=False)  # balance after this redemption
    used_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index('ix_subscription_usage_subscription_id', 'subscription_id'),
        Index('ix_subscription_usage_user_id', 'user_id'),
    )
