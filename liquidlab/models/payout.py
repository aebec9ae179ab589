"""
Payout records for revenue-share transfers to platform owners.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, DateTime, ForeignKey, Index, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin
from .fee_transaction import MONEY


class PayoutStatus(str, Enum):
    """Payout state machine."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


PAYOUT_STATUS_TRANSITIONS = {
    PayoutStatus.PENDING: {PayoutStatus.PROCESSING, PayoutStatus.FAILED},
    PayoutStatus.PROCESSING: {PayoutStatus.COMPLETED, PayoutStatus.FAILED},
    PayoutStatus.COMPLETED: set(),
    PayoutStatus.FAILED: set(),
}

# Statuses that count against the amount owed for a window
ACTIVE_PAYOUT_STATUSES = (
    PayoutStatus.PENDING.value,
    PayoutStatus.PROCESSING.value,
    PayoutStatus.COMPLETED.value,
)

# At most one pending or processing record per platform window
IN_FLIGHT_PAYOUT_FILTER = "status IN ('pending', 'processing')"


class PayoutRecord(BaseModel, TimestampMixin):
    """One payout attempt for a platform and window. Failed records are never reused."""

    __tablename__ = "payout_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    platform_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("trading_platforms.id", ondelete="CASCADE"),
        comment="Platform being paid"
    )

    user_id: Mapped[int] = mapped_column(Integer, comment="Recipient user id")

    amount: Mapped[Decimal] = mapped_column(MONEY, comment="Amount owed for the window")

    currency: Mapped[str] = mapped_column(String(10), default="USDC")

    status: Mapped[str] = mapped_column(
        String(20),
        default=PayoutStatus.PENDING.value,
        comment="pending, processing, completed or failed"
    )

    period: Mapped[str] = mapped_column(String(20), comment="Summary period the window belongs to")

    period_start: Mapped[datetime] = mapped_column(DateTime, comment="Window start (UTC)")

    period_end: Mapped[datetime] = mapped_column(DateTime, comment="Window end (UTC, exclusive)")

    recipient_address: Mapped[str] = mapped_column(String(42), comment="Destination wallet")

    tx_hash: Mapped[Optional[str]] = mapped_column(String(100), comment="Executor transaction hash")

    error: Mapped[Optional[str]] = mapped_column(Text, comment="Executor error for failed payouts")

    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, comment="Terminal status time")

    __table_args__ = (
        Index("idx_payout_records_window", "platform_id", "period_start", "period_end"),
        Index("idx_payout_records_status", "status"),
        Index(
            "uq_payout_records_in_flight",
            "platform_id", "period_start", "period_end",
            unique=True,
            postgresql_where=text(IN_FLIGHT_PAYOUT_FILTER),
            sqlite_where=text(IN_FLIGHT_PAYOUT_FILTER),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<PayoutRecord(id={self.id}, platform={self.platform_id}, "
            f"amount={self.amount}, status={self.status})>"
        )
