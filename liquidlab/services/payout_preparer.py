"""
Payout preparation and bookkeeping.

Decides how much each platform is owed per payout window, creates payout
records for closed windows and records what the executor reports. Funds are
never moved here.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from liquidlab.core.database import session_scope
from liquidlab.core.exceptions import (
    ConfigurationError,
    InvalidStatusTransitionError,
    PayoutNotFoundError,
)
from liquidlab.models.fee_transaction import FeeStatus
from liquidlab.models.payout import (
    PayoutRecord,
    PayoutStatus,
    PAYOUT_STATUS_TRANSITIONS,
    ACTIVE_PAYOUT_STATUSES,
)
from liquidlab.models.revenue_summary import PlatformRevenueSummary, RevenuePeriod
from liquidlab.utils.time import utc_now
from .fee_ledger import FeeLedger, to_decimal
from .payout_executor import PayoutExecutor, PayoutRequest, PayoutResult
from .platform_registry import PlatformRegistry, PlatformRef
from .revenue_aggregator import RevenueAggregator, Window


logger = structlog.get_logger(__name__)

IN_FLIGHT_STATUSES = (PayoutStatus.PENDING.value, PayoutStatus.PROCESSING.value)


@dataclass(frozen=True)
class PendingPayout:
    """Amount still owed to a platform for one payout window."""
    platform_id: int
    amount: Decimal
    period: str
    period_start: datetime
    period_end: datetime
    earned: Decimal
    already_paid: Decimal
    closed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform_id": self.platform_id,
            "amount": str(self.amount),
            "period": self.period,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "earned": str(self.earned),
            "already_paid": str(self.already_paid),
            "closed": self.closed,
        }


class PayoutPreparer:
    """Computes outstanding amounts and manages payout records."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        registry: PlatformRegistry,
        aggregator: RevenueAggregator,
        ledger: FeeLedger,
        payout_period: str = "monthly",
        min_payout_amount: Decimal = Decimal("10"),
        currency: str = "USDC",
        executor: Optional[PayoutExecutor] = None
    ):
        self.session_maker = session_maker
        self.registry = registry
        self.aggregator = aggregator
        self.ledger = ledger
        self.period = RevenuePeriod(payout_period)
        self.min_payout_amount = min_payout_amount
        self.currency = currency
        self.executor = executor
        self.logger = logger.bind(service="payout_preparer")

    async def pending_payouts(self, platform_id: int, now: Optional[datetime] = None) -> List[PendingPayout]:
        """
        Outstanding amount per payout window for a platform.

        amount = platform earnings for the window minus every non-failed
        payout already recorded for the same (period_start, period_end).
        Open windows are included with closed=False; only closed ones are paid.
        """
        now = now or utc_now()
        summaries = await self.aggregator.list_summaries(platform_id, self.period)

        pending = []
        async with session_scope(self.session_maker) as session:
            for summary in summaries:
                paid = await self._paid_for_window(
                    session, platform_id, summary.window_start, summary.period_end
                )
                earned = to_decimal(summary.platform_earnings)
                amount = earned - paid
                if amount <= 0:
                    continue
                pending.append(PendingPayout(
                    platform_id=platform_id,
                    amount=amount,
                    period=summary.period,
                    period_start=summary.window_start,
                    period_end=summary.period_end,
                    earned=earned,
                    already_paid=paid,
                    closed=summary.is_closed,
                ))
        return pending

    async def _paid_for_window(
        self,
        session: AsyncSession,
        platform_id: int,
        period_start: datetime,
        period_end: datetime
    ) -> Decimal:
        total = await session.scalar(
            select(func.sum(PayoutRecord.amount)).where(
                PayoutRecord.platform_id == platform_id,
                PayoutRecord.period_start == period_start,
                PayoutRecord.period_end == period_end,
                PayoutRecord.status.in_(ACTIVE_PAYOUT_STATUSES),
            )
        )
        return to_decimal(total)

    async def _has_in_flight(
        self,
        session: AsyncSession,
        platform_id: int,
        period_start: datetime,
        period_end: datetime
    ) -> bool:
        count = await session.scalar(
            select(func.count(PayoutRecord.id)).where(
                PayoutRecord.platform_id == platform_id,
                PayoutRecord.period_start == period_start,
                PayoutRecord.period_end == period_end,
                PayoutRecord.status.in_(IN_FLIGHT_STATUSES),
            )
        )
        return bool(count)

    async def _close_elapsed_windows(self, platform_id: int, now: datetime) -> None:
        """Finalize summaries whose window ended but were last computed before the end."""
        await self.aggregator.finalize_previous(platform_id, self.period, now)
        for summary in await self.aggregator.list_summaries(platform_id, self.period):
            if summary.period_end <= now and not summary.is_closed:
                window = Window(self.period, summary.window_start, summary.period_end, summary.period_end)
                await self.aggregator.close_window(platform_id, window, now)

    async def prepare_platform(self, platform: PlatformRef, now: Optional[datetime] = None) -> Dict[str, int]:
        """Create pending payout records for a platform's closed windows."""
        now = now or utc_now()
        counts = {"created": 0, "below_minimum": 0, "in_flight": 0, "no_recipient": 0}

        await self._close_elapsed_windows(platform.id, now)
        owed = [p for p in await self.pending_payouts(platform.id, now) if p.closed]
        if not owed:
            return counts

        if not platform.recipient_address:
            counts["no_recipient"] = len(owed)
            self.logger.warning("Platform has no payout address", platform_id=platform.id)
            return counts

        for item in owed:
            counts[await self._create_payout(platform, item)] += 1
        return counts

    async def _create_payout(self, platform: PlatformRef, item: PendingPayout) -> str:
        """Insert one pending record; returns the counter the window falls under."""
        try:
            async with session_scope(self.session_maker) as session:
                if await self._has_in_flight(session, platform.id, item.period_start, item.period_end):
                    return "in_flight"
                if item.amount < self.min_payout_amount:
                    self.logger.debug(
                        "Payout below minimum",
                        platform_id=platform.id,
                        amount=str(item.amount),
                        minimum=str(self.min_payout_amount)
                    )
                    return "below_minimum"

                session.add(PayoutRecord(
                    platform_id=platform.id,
                    user_id=platform.user_id,
                    amount=item.amount,
                    currency=self.currency,
                    status=PayoutStatus.PENDING.value,
                    period=item.period,
                    period_start=item.period_start,
                    period_end=item.period_end,
                    recipient_address=platform.recipient_address,
                ))
        except IntegrityError:
            # A concurrent preparation inserted the in-flight record first
            self.logger.info(
                "Payout already in flight",
                platform_id=platform.id,
                period_start=item.period_start.isoformat()
            )
            return "in_flight"

        self.logger.info(
            "Payout prepared",
            platform_id=platform.id,
            amount=str(item.amount),
            period_start=item.period_start.isoformat(),
            period_end=item.period_end.isoformat()
        )
        return "created"

    async def prepare_payouts(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Prepare payouts for every platform; one platform failing does not stop the rest."""
        now = now or utc_now()
        totals = {"created": 0, "below_minimum": 0, "in_flight": 0, "no_recipient": 0, "failed_platforms": 0}

        for platform in await self.registry.list_platforms():
            try:
                counts = await self.prepare_platform(platform, now)
            except Exception as e:
                totals["failed_platforms"] += 1
                self.logger.error(
                    "Payout preparation failed",
                    platform_id=platform.id,
                    stage="payout",
                    error=str(e)
                )
                continue
            for key, value in counts.items():
                totals[key] += value

        self.logger.info("Payout preparation completed", **totals)
        return totals

    async def update_status(
        self,
        payout_id: int,
        status: PayoutStatus,
        tx_hash: Optional[str] = None,
        error: Optional[str] = None
    ) -> PayoutRecord:
        """Apply one state-machine transition to a payout record."""
        async with session_scope(self.session_maker) as session:
            payout = await session.get(PayoutRecord, payout_id)
            if payout is None:
                raise PayoutNotFoundError(payout_id)

            current = PayoutStatus(payout.status)
            if status not in PAYOUT_STATUS_TRANSITIONS[current]:
                raise InvalidStatusTransitionError("payout", current.value, status.value)

            now = utc_now()
            values: Dict[str, Any] = {"status": status.value, "updated_at": now}
            if tx_hash:
                values["tx_hash"] = tx_hash
            if error:
                values["error"] = error
            if status in (PayoutStatus.COMPLETED, PayoutStatus.FAILED):
                values["processed_at"] = now

            # Compare-and-set against the status read above
            outcome = await session.execute(
                update(PayoutRecord)
                .where(PayoutRecord.id == payout_id, PayoutRecord.status == current.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if outcome.rowcount != 1:
                raise InvalidStatusTransitionError("payout", current.value, status.value)

            await session.refresh(payout)
            return payout

    async def _claim_for_processing(self, payout_id: int) -> bool:
        """Move a pending payout to processing. False when another run already took it."""
        async with session_scope(self.session_maker) as session:
            outcome = await session.execute(
                update(PayoutRecord)
                .where(
                    PayoutRecord.id == payout_id,
                    PayoutRecord.status == PayoutStatus.PENDING.value,
                )
                .values(status=PayoutStatus.PROCESSING.value, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            return outcome.rowcount == 1

    async def execute_pending(self, executor: Optional[PayoutExecutor] = None) -> Dict[str, int]:
        """
        Hand every pending payout to the executor and record the outcome.

        Each record is moved pending -> processing with a conditional update
        and committed before the executor is called; a record another run
        already moved is skipped. Failures are recorded, never retried here.
        """
        executor = executor or self.executor
        if executor is None:
            raise ConfigurationError("No payout executor configured")

        async with session_scope(self.session_maker) as session:
            result = await session.execute(
                select(PayoutRecord)
                .where(PayoutRecord.status == PayoutStatus.PENDING.value)
                .order_by(PayoutRecord.id)
            )
            pending = list(result.scalars().all())

        counts = {"completed": 0, "failed": 0, "skipped": 0}
        for payout in pending:
            if not await self._claim_for_processing(payout.id):
                counts["skipped"] += 1
                self.logger.info("Payout taken by another run", payout_id=payout.id)
                continue

            request = PayoutRequest(
                payout_id=payout.id,
                platform_id=payout.platform_id,
                amount=to_decimal(payout.amount),
                currency=payout.currency,
                recipient_address=payout.recipient_address,
            )

            try:
                outcome = await executor.execute(request)
            except Exception as e:
                self.logger.error(
                    "Payout executor raised",
                    payout_id=payout.id,
                    platform_id=payout.platform_id,
                    error=str(e)
                )
                outcome = PayoutResult(success=False, error=str(e))

            if outcome.success:
                await self.update_status(payout.id, PayoutStatus.COMPLETED, tx_hash=outcome.tx_hash)
                await self.ledger.mark_distributed(payout.platform_id, payout.period_start, payout.period_end)
                counts["completed"] += 1
            else:
                await self.update_status(payout.id, PayoutStatus.FAILED, error=outcome.error)
                counts["failed"] += 1

        if pending:
            self.logger.info("Payout execution completed", **counts)
        return counts

    async def payout_history(self, platform_id: int, limit: int = 50) -> List[PayoutRecord]:
        """Payout records for a platform, newest first."""
        async with session_scope(self.session_maker) as session:
            result = await session.execute(
                select(PayoutRecord)
                .where(PayoutRecord.platform_id == platform_id)
                .order_by(PayoutRecord.created_at.desc(), PayoutRecord.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def readiness(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Claimable, distributable and owed amounts, plus whether the executor can cover them."""
        now = now or utc_now()
        unclaimed = await self.ledger.fee_totals_by_status(FeeStatus.PENDING)
        undistributed = await self.ledger.fee_totals_by_status(FeeStatus.CLAIMED)

        owed: Dict[int, Decimal] = {}
        for platform in await self.registry.list_platforms():
            amount = sum(
                (p.amount for p in await self.pending_payouts(platform.id, now) if p.closed),
                Decimal("0")
            )
            if amount > 0:
                owed[platform.id] = amount

        total_owed = sum(owed.values(), Decimal("0"))
        balance = await self.executor.get_balance(self.currency) if self.executor else None

        return {
            "currency": self.currency,
            "payout_period": self.period.value,
            "unclaimed_fees": {str(k): str(v) for k, v in unclaimed.items()},
            "total_unclaimed_fees": str(sum(unclaimed.values(), Decimal("0"))),
            "undistributed_fees": {str(k): str(v) for k, v in undistributed.items()},
            "total_undistributed_fees": str(sum(undistributed.values(), Decimal("0"))),
            "owed_to_platforms": {str(k): str(v) for k, v in owed.items()},
            "total_owed": str(total_owed),
            "executor_balance": str(balance) if balance is not None else None,
            "can_pay_all": balance >= total_owed if balance is not None else None,
        }
