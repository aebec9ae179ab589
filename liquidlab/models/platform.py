"""
Trading platform registry model.
"""

from typing import Optional

from sqlalchemy import String, Integer, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class TradingPlatform(BaseModel, TimestampMixin):
    """A branded trading front-end whose trades are attributed to its owner."""

    __tablename__ = "trading_platforms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        Integer,
        index=True,
        comment="Owner user id"
    )

    name: Mapped[str] = mapped_column(String(120), comment="Display name")

    slug: Mapped[str] = mapped_column(String(120), unique=True, comment="URL slug")

    owner_wallet_address: Mapped[Optional[str]] = mapped_column(
        String(42),
        comment="Wallet whose fills are attributed to this platform"
    )

    payout_wallet_address: Mapped[Optional[str]] = mapped_column(
        String(42),
        comment="Recipient of revenue-share payouts (defaults to owner wallet)"
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        comment="Inactive platforms are skipped by ingestion"
    )

    __table_args__ = (
        Index("idx_trading_platforms_active", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<TradingPlatform(id={self.id}, slug={self.slug})>"

    @property
    def recipient_address(self) -> Optional[str]:
        return self.payout_wallet_address or self.owner_wallet_address
