"""
Rolling revenue summaries derived from the fee ledger.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import String, Integer, Date, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel
from .fee_transaction import MONEY
from liquidlab.utils.time import utc_now


class RevenuePeriod(str, Enum):
    """Aggregation windows."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all-time"


class PlatformRevenueSummary(BaseModel):
    """
    Cached totals of the ledger over one window.

    Always recomputable from fee_transactions; never the source of truth.
    """

    __tablename__ = "platform_revenue_summary"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    platform_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("trading_platforms.id", ondelete="CASCADE"),
        comment="Platform the summary belongs to"
    )

    period: Mapped[str] = mapped_column(String(20), comment="daily, weekly, monthly or all-time")

    start_date: Mapped[date] = mapped_column(Date, comment="Window start (date part, key)")

    window_start: Mapped[datetime] = mapped_column(DateTime, comment="Exact window start (UTC)")

    window_end: Mapped[datetime] = mapped_column(
        DateTime,
        comment="Exclusive window end the totals were computed up to"
    )

    period_end: Mapped[datetime] = mapped_column(
        DateTime,
        comment="Nominal end of the window (next calendar boundary for daily/monthly)"
    )

    total_volume: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    total_fees: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    platform_earnings: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    liquidlab_earnings: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    trade_count: Mapped[int] = mapped_column(Integer, default=0)

    last_updated: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    __table_args__ = (
        UniqueConstraint("platform_id", "period", "start_date", name="uq_revenue_summary_window"),
        Index("idx_revenue_summary_period_earnings", "period", "platform_earnings"),
    )

    def __repr__(self) -> str:
        return (
            f"<PlatformRevenueSummary(platform={self.platform_id}, period={self.period}, "
            f"start={self.start_date}, fees={self.total_fees})>"
        )

    @property
    def is_closed(self) -> bool:
        """True once the window's nominal end has been reached."""
        return self.window_end >= self.period_end
