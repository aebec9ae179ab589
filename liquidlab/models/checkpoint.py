"""
Durable ingestion checkpoints.
"""

from datetime import datetime

from sqlalchemy import Integer, BigInteger, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel
from liquidlab.utils.time import utc_now


class IngestionCheckpoint(BaseModel):
    """Highest fill timestamp durably recorded for a platform."""

    __tablename__ = "ingestion_checkpoints"

    platform_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("trading_platforms.id", ondelete="CASCADE"),
        primary_key=True
    )

    last_processed_timestamp: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        comment="Max fill time (ms) whose row is persisted"
    )

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    def __repr__(self) -> str:
        return f"<IngestionCheckpoint(platform={self.platform_id}, ts={self.last_processed_timestamp})>"
