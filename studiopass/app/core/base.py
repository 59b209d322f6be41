"""
SQLAlchemy Base class for all models.

Kept apart from database.py so models and tests can import Base
without creating the asyncpg engine.
"""
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass
