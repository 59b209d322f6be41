from sqlalchemy import String, Integer, Numeric, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from decimal import Decimal
from typing import Optional
from studiopass.app.core.base import Base


class Tariff(Base):
    __tablename__ = 'tariffs'

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    duration: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)  # "3 месяца", "30 дней"
    session_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    is_visible: Mapped[bool] = mapped_column(Boolean, default=True)
