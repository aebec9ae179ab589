"""
Declarative base and shared mixins for all models.
"""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from liquidlab.utils.time import utc_now


class Base(DeclarativeBase):
    """Root declarative base holding the shared metadata."""


class BaseModel(Base):
    """Abstract base model with serialization helpers."""

    __abstract__ = True

    def to_dict(self) -> Dict[str, Any]:
        """Column values keyed by attribute name."""
        return {
            column.key: getattr(self, column.key)
            for column in self.__mapper__.column_attrs
        }


class TimestampMixin:
    """Adds created_at / updated_at columns (naive UTC)."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utc_now,
        nullable=False,
        index=True,
        comment="Row creation time (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
        comment="Last modification time (UTC)"
    )
