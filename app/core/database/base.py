"""
SQLAlchemy declarative base and common model utilities.

All SQLAlchemy models should inherit from Base.
"""
from datetime import datetime
from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    Usage:
        from app.core.database.base import Base

        class PermissionPolicyRecord(Base):
            __tablename__ = "permission_policies"

            id: Mapped[str] = mapped_column(String(36), primary_key=True)
    """
    pass


class TimestampMixin:
    """
    Mixin adding created_at and updated_at columns.

    The database fills them in when the caller leaves them unset; aggregates
    that carry their own timestamps assign them explicitly.
    """
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
