"""
Fee ledger model: one append-only row per attributed venue fill.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String, Integer, BigInteger, Numeric, DateTime, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


MONEY = Numeric(28, 8)


class TradeType(str, Enum):
    """Market type of a fill."""
    SPOT = "spot"
    PERP = "perp"


class FeeStatus(str, Enum):
    """Lifecycle status of a ledger row."""
    PENDING = "pending"
    CLAIMED = "claimed"
    DISTRIBUTED = "distributed"
    FAILED = "failed"


# Forward-only transitions; anything else needs an admin override
FEE_STATUS_TRANSITIONS = {
    FeeStatus.PENDING: {FeeStatus.CLAIMED, FeeStatus.FAILED},
    FeeStatus.CLAIMED: {FeeStatus.DISTRIBUTED, FeeStatus.FAILED},
    FeeStatus.DISTRIBUTED: set(),
    FeeStatus.FAILED: set(),
}


class FeeTransaction(BaseModel, TimestampMixin):
    """Fee attributed to a platform for a single venue fill."""

    __tablename__ = "fee_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    platform_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("trading_platforms.id", ondelete="CASCADE"),
        comment="Platform the fee is attributed to"
    )

    trade_id: Mapped[str] = mapped_column(
        String(100),
        comment="Venue trade id (dedup key together with platform_id)"
    )

    trade_type: Mapped[str] = mapped_column(String(10), comment="spot or perp")

    coin: Mapped[Optional[str]] = mapped_column(String(40), comment="Venue market symbol")

    side: Mapped[Optional[str]] = mapped_column(String(10), comment="buy or sell")

    is_maker: Mapped[bool] = mapped_column(default=False, comment="Maker side of the fill")

    # Fee breakdown
    trade_volume: Mapped[Decimal] = mapped_column(MONEY, comment="size * price")
    fee_rate: Mapped[Decimal] = mapped_column(Numeric(12, 8), comment="Contract fee rate")
    total_fee: Mapped[Decimal] = mapped_column(MONEY, comment="trade_volume * fee_rate")
    platform_share: Mapped[Decimal] = mapped_column(MONEY, comment="Platform owner share")
    liquidlab_share: Mapped[Decimal] = mapped_column(MONEY, comment="total_fee - platform_share")

    status: Mapped[str] = mapped_column(
        String(20),
        default=FeeStatus.PENDING.value,
        comment="pending, claimed, distributed or failed"
    )

    # Venue timing
    trade_timestamp: Mapped[int] = mapped_column(
        BigInteger,
        comment="Fill time in milliseconds since epoch"
    )

    source: Mapped[str] = mapped_column(
        String(20),
        default="poll",
        comment="How the fill arrived (poll or webhook)"
    )

    # Lifecycle
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, comment="When fees were claimed")
    claim_tx_hash: Mapped[Optional[str]] = mapped_column(String(100), comment="Claim transaction hash")
    distributed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, comment="When fees were distributed")

    __table_args__ = (
        UniqueConstraint("platform_id", "trade_id", name="uq_fee_transactions_platform_trade"),
        Index("idx_fee_transactions_platform_created", "platform_id", "created_at"),
        Index("idx_fee_transactions_status", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<FeeTransaction(platform={self.platform_id}, trade={self.trade_id}, "
            f"fee={self.total_fee}, status={self.status})>"
        )

    @property
    def shares_balanced(self) -> bool:
        return self.platform_share + self.liquidlab_share == self.total_fee
