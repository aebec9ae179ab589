"""
Revenue aggregation: recompute per-platform summaries from the fee ledger.

Summaries are pure functions of the ledger over a window. Nothing is kept
incrementally, so re-running with the same ledger and clock yields the same
rows.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from liquidlab.core.database import session_scope, dialect_insert
from liquidlab.core.exceptions import ValidationError
from liquidlab.models.fee_transaction import FeeTransaction
from liquidlab.models.revenue_summary import PlatformRevenueSummary, RevenuePeriod
from liquidlab.utils.time import utc_now
from .fee_ledger import to_decimal
from .platform_registry import PlatformRegistry


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Window:
    """Aggregation window. Totals cover created_at in [start, end]."""
    period: RevenuePeriod
    start: datetime
    end: datetime
    period_end: datetime

    @property
    def start_date(self) -> date:
        return self.start.date()

    @property
    def is_closed(self) -> bool:
        return self.end >= self.period_end


@dataclass(frozen=True)
class WindowTotals:
    total_volume: Decimal
    total_fees: Decimal
    platform_earnings: Decimal
    liquidlab_earnings: Decimal
    trade_count: int


def parse_period(value: str) -> RevenuePeriod:
    try:
        return RevenuePeriod(value)
    except ValueError:
        raise ValidationError(
            f"Invalid period: {value}",
            {"allowed": [p.value for p in RevenuePeriod]}
        )


def _midnight(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.min)


def _month_start(value: datetime) -> datetime:
    return datetime(value.year, value.month, 1)


def _next_month(value: datetime) -> datetime:
    if value.month == 12:
        return datetime(value.year + 1, 1, 1)
    return datetime(value.year, value.month + 1, 1)


def current_window(period: RevenuePeriod, now: datetime, epoch: date) -> Window:
    """
    Window boundaries for the period containing `now`.

    daily: start of the calendar day; weekly: rolling 7 days;
    monthly: start of the calendar month; all-time: fixed epoch.
    """
    if period == RevenuePeriod.DAILY:
        start = _midnight(now)
        return Window(period, start, now, start + timedelta(days=1))
    if period == RevenuePeriod.WEEKLY:
        return Window(period, now - timedelta(days=7), now, now)
    if period == RevenuePeriod.MONTHLY:
        start = _month_start(now)
        return Window(period, start, now, _next_month(start))
    if period == RevenuePeriod.ALL_TIME:
        return Window(period, datetime.combine(epoch, time.min), now, now)
    raise ValidationError(f"Invalid period: {period}")


def previous_window(period: RevenuePeriod, now: datetime) -> Optional[Window]:
    """The calendar window just before the current one (daily and monthly only), fully closed."""
    if period == RevenuePeriod.DAILY:
        end = _midnight(now)
        return Window(period, end - timedelta(days=1), end, end)
    if period == RevenuePeriod.MONTHLY:
        end = _month_start(now)
        start = _month_start(end - timedelta(days=1))
        return Window(period, start, end, end)
    return None


class RevenueAggregator:
    """Recomputes and serves platform revenue summaries."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        registry: PlatformRegistry,
        epoch: date
    ):
        self.session_maker = session_maker
        self.registry = registry
        self.epoch = epoch
        self.logger = logger.bind(service="revenue_aggregator")

    async def compute_totals(self, platform_id: int, window: Window) -> WindowTotals:
        """Sum ledger rows for a platform over a window."""
        async with session_scope(self.session_maker) as session:
            return await self._totals(session, platform_id, window)

    async def _totals(self, session: AsyncSession, platform_id: int, window: Window) -> WindowTotals:
        conditions = [
            FeeTransaction.platform_id == platform_id,
            FeeTransaction.created_at >= window.start,
        ]
        # Closed calendar windows are half-open so adjacent windows never share a row
        if window.is_closed and window.end == window.period_end and window.period in (
            RevenuePeriod.DAILY, RevenuePeriod.MONTHLY
        ):
            conditions.append(FeeTransaction.created_at < window.end)
        else:
            conditions.append(FeeTransaction.created_at <= window.end)

        row = (await session.execute(
            select(
                func.sum(FeeTransaction.trade_volume),
                func.sum(FeeTransaction.total_fee),
                func.sum(FeeTransaction.platform_share),
                func.sum(FeeTransaction.liquidlab_share),
                func.count(FeeTransaction.id),
            ).where(*conditions)
        )).one()

        return WindowTotals(
            total_volume=to_decimal(row[0]),
            total_fees=to_decimal(row[1]),
            platform_earnings=to_decimal(row[2]),
            liquidlab_earnings=to_decimal(row[3]),
            trade_count=int(row[4] or 0),
        )

    async def update_summary(
        self,
        platform_id: int,
        period: RevenuePeriod,
        now: Optional[datetime] = None
    ) -> PlatformRevenueSummary:
        """Recompute the current window for (platform, period) and upsert it."""
        now = now or utc_now()
        window = current_window(period, now, self.epoch)
        async with session_scope(self.session_maker) as session:
            totals = await self._totals(session, platform_id, window)
            await self._upsert(session, platform_id, window, totals, now)
            summary = await self._get_row(session, platform_id, period, window.start_date)

        self.logger.debug(
            "Revenue summary updated",
            platform_id=platform_id,
            period=period.value,
            start_date=window.start_date.isoformat(),
            trade_count=totals.trade_count,
            total_fees=str(totals.total_fees)
        )
        return summary

    async def finalize_previous(
        self,
        platform_id: int,
        period: RevenuePeriod,
        now: Optional[datetime] = None
    ) -> Optional[PlatformRevenueSummary]:
        """
        Recompute the previous calendar window if it has not been closed yet.

        Picks up rows recorded after the last refresh inside that window.
        """
        now = now or utc_now()
        window = previous_window(period, now)
        if window is None:
            return None
        return await self.close_window(platform_id, window, now)

    async def close_window(
        self,
        platform_id: int,
        window: Window,
        now: Optional[datetime] = None
    ) -> Optional[PlatformRevenueSummary]:
        """Compute final totals for a window whose nominal end has passed."""
        now = now or utc_now()
        period = window.period
        async with session_scope(self.session_maker) as session:
            existing = await self._get_row(session, platform_id, period, window.start_date)
            if existing is not None and existing.window_end >= existing.period_end:
                return existing

            totals = await self._totals(session, platform_id, window)
            if existing is None and totals.trade_count == 0:
                return None

            await self._upsert(session, platform_id, window, totals, now)
            summary = await self._get_row(session, platform_id, period, window.start_date)

        self.logger.info(
            "Closed revenue window finalized",
            platform_id=platform_id,
            period=period.value,
            start_date=window.start_date.isoformat(),
            total_fees=str(totals.total_fees)
        )
        return summary

    async def refresh_platform(self, platform_id: int, now: Optional[datetime] = None) -> List[PlatformRevenueSummary]:
        """Refresh every period for a platform, closing out finished calendar windows first."""
        now = now or utc_now()
        summaries = []
        for period in RevenuePeriod:
            await self.finalize_previous(platform_id, period, now)
            summaries.append(await self.update_summary(platform_id, period, now))
        return summaries

    async def refresh_all(self, now: Optional[datetime] = None) -> dict:
        """Refresh summaries for every registered platform; one failure does not stop the rest."""
        now = now or utc_now()
        platforms = await self.registry.list_platforms()
        refreshed, failed = 0, 0

        for platform in platforms:
            try:
                await self.refresh_platform(platform.id, now)
                refreshed += 1
            except Exception as e:
                failed += 1
                self.logger.error(
                    "Revenue refresh failed",
                    platform_id=platform.id,
                    stage="aggregate",
                    error=str(e)
                )

        self.logger.info("Revenue summaries refreshed", refreshed=refreshed, failed=failed)
        return {"refreshed": refreshed, "failed": failed}

    async def _upsert(
        self,
        session: AsyncSession,
        platform_id: int,
        window: Window,
        totals: WindowTotals,
        now: datetime
    ) -> None:
        values = {
            "window_start": window.start,
            "window_end": window.end,
            "period_end": window.period_end,
            "total_volume": totals.total_volume,
            "total_fees": totals.total_fees,
            "platform_earnings": totals.platform_earnings,
            "liquidlab_earnings": totals.liquidlab_earnings,
            "trade_count": totals.trade_count,
            "last_updated": now,
        }
        stmt = dialect_insert(session, PlatformRevenueSummary).values(
            platform_id=platform_id,
            period=window.period.value,
            start_date=window.start_date,
            **values
        ).on_conflict_do_update(
            index_elements=["platform_id", "period", "start_date"],
            set_=values,
        )
        await session.execute(stmt)

    async def _get_row(
        self,
        session: AsyncSession,
        platform_id: int,
        period: RevenuePeriod,
        start_date: date
    ) -> Optional[PlatformRevenueSummary]:
        result = await session.execute(
            select(PlatformRevenueSummary)
            .where(
                PlatformRevenueSummary.platform_id == platform_id,
                PlatformRevenueSummary.period == period.value,
                PlatformRevenueSummary.start_date == start_date,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_summary(self, platform_id: int, period: RevenuePeriod) -> Optional[PlatformRevenueSummary]:
        """Most recent summary row for (platform, period), or None."""
        async with session_scope(self.session_maker) as session:
            result = await session.execute(
                select(PlatformRevenueSummary)
                .where(
                    PlatformRevenueSummary.platform_id == platform_id,
                    PlatformRevenueSummary.period == period.value,
                )
                .order_by(PlatformRevenueSummary.start_date.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_summaries(self, platform_id: int, period: RevenuePeriod) -> List[PlatformRevenueSummary]:
        async with session_scope(self.session_maker) as session:
            result = await session.execute(
                select(PlatformRevenueSummary)
                .where(
                    PlatformRevenueSummary.platform_id == platform_id,
                    PlatformRevenueSummary.period == period.value,
                )
                .order_by(PlatformRevenueSummary.start_date)
            )
            return list(result.scalars().all())

    async def get_all_platform_revenues(
        self,
        period: Optional[RevenuePeriod] = None,
        min_revenue: Optional[Decimal] = None
    ) -> List[PlatformRevenueSummary]:
        """Summaries across platforms, highest platform earnings first."""
        query = select(PlatformRevenueSummary)
        if period is not None:
            query = query.where(PlatformRevenueSummary.period == period.value)
        if min_revenue is not None:
            query = query.where(PlatformRevenueSummary.platform_earnings >= min_revenue)
        query = query.order_by(
            PlatformRevenueSummary.platform_earnings.desc(),
            PlatformRevenueSummary.platform_id
        )

        async with session_scope(self.session_maker) as session:
            result = await session.execute(query)
            return list(result.scalars().all())
