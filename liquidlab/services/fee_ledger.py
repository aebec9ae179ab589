"""
Repository for the fee ledger (fee_transactions).

Rows are inserted once per (platform_id, trade_id); replays converge through
the unique constraint instead of application locks.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from liquidlab.core.database import session_scope, dialect_insert
from liquidlab.core.exceptions import FeeTransactionNotFoundError, InvalidStatusTransitionError
from liquidlab.models.fee_transaction import FeeTransaction, FeeStatus, FEE_STATUS_TRANSITIONS
from liquidlab.utils.time import utc_now
from .fee_computation import AMOUNT_QUANT, FeeComputation
from .venue.base import Fill


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    """A fill together with its computed fee, ready to persist."""
    fill: Fill
    computation: FeeComputation


@dataclass
class BatchResult:
    """Outcome of persisting one batch of entries."""
    inserted: int = 0
    duplicates: int = 0


def to_decimal(value) -> Decimal:
    """
    Normalize driver-returned aggregates (Decimal, float, int or None).

    Every stored amount has 8 decimal places, so sums are quantized back to
    that scale; drivers without native decimals sum in floating point.
    """
    if value is None:
        return Decimal("0").quantize(AMOUNT_QUANT)
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(AMOUNT_QUANT)


class FeeLedger:
    """Read/write access to fee transactions."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker
        self.logger = logger.bind(service="fee_ledger")

    async def record_batch(
        self,
        platform_id: int,
        entries: Iterable[LedgerEntry],
        source: str = "poll"
    ) -> BatchResult:
        """
        Persist entries for one platform in a single transaction.

        Entries already in the ledger are skipped and counted as duplicates.
        """
        entries = list(entries)
        result = BatchResult()
        if not entries:
            return result

        async with session_scope(self.session_maker) as session:
            existing = await self._existing_trade_ids(
                session, platform_id, [entry.fill.trade_id for entry in entries]
            )
            seen = set(existing)

            for entry in entries:
                trade_id = entry.fill.trade_id
                if trade_id in seen:
                    result.duplicates += 1
                    continue
                inserted = await self._insert(session, platform_id, entry, source)
                seen.add(trade_id)
                if inserted:
                    result.inserted += 1
                else:
                    result.duplicates += 1

        if result.duplicates:
            self.logger.info(
                "Skipped duplicate trades",
                platform_id=platform_id,
                duplicates=result.duplicates
            )
        return result

    async def _existing_trade_ids(
        self,
        session: AsyncSession,
        platform_id: int,
        trade_ids: List[str]
    ) -> List[str]:
        if not trade_ids:
            return []
        rows = await session.execute(
            select(FeeTransaction.trade_id).where(
                FeeTransaction.platform_id == platform_id,
                FeeTransaction.trade_id.in_(trade_ids)
            )
        )
        return [row[0] for row in rows.all()]

    async def _insert(
        self,
        session: AsyncSession,
        platform_id: int,
        entry: LedgerEntry,
        source: str
    ) -> bool:
        fill, fee = entry.fill, entry.computation
        now = utc_now()
        stmt = dialect_insert(session, FeeTransaction).values(
            platform_id=platform_id,
            trade_id=fill.trade_id,
            trade_type=fill.trade_type.value,
            coin=fill.coin,
            side=fill.side,
            is_maker=fill.is_maker,
            trade_volume=fee.trade_volume,
            fee_rate=fee.fee_rate,
            total_fee=fee.total_fee,
            platform_share=fee.platform_share,
            liquidlab_share=fee.liquidlab_share,
            status=FeeStatus.PENDING.value,
            trade_timestamp=fill.timestamp,
            source=source,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=["platform_id", "trade_id"])
        outcome = await session.execute(stmt)
        return outcome.rowcount == 1

    async def list_transactions(
        self,
        platform_id: int,
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0
    ) -> Tuple[List[FeeTransaction], int]:
        """Ledger rows for a platform, newest first, with the unpaginated total."""
        conditions = [FeeTransaction.platform_id == platform_id]
        if status:
            conditions.append(FeeTransaction.status == status)
        if start_date:
            conditions.append(FeeTransaction.created_at >= start_date)
        if end_date:
            conditions.append(FeeTransaction.created_at <= end_date)

        async with session_scope(self.session_maker) as session:
            total = await session.scalar(
                select(func.count(FeeTransaction.id)).where(and_(*conditions))
            )
            rows = await session.execute(
                select(FeeTransaction)
                .where(and_(*conditions))
                .order_by(FeeTransaction.created_at.desc(), FeeTransaction.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(rows.scalars().all()), total or 0

    async def update_status(self, fee_id: int, status: FeeStatus, force: bool = False) -> FeeTransaction:
        """
        Move a ledger row to a new status.

        Transitions only go forward unless `force` is set (admin override).
        """
        async with session_scope(self.session_maker) as session:
            fee = await session.get(FeeTransaction, fee_id)
            if fee is None:
                raise FeeTransactionNotFoundError(fee_id)

            current = FeeStatus(fee.status)
            if not force and status not in FEE_STATUS_TRANSITIONS[current]:
                raise InvalidStatusTransitionError("fee", current.value, status.value)

            now = utc_now()
            fee.status = status.value
            if status == FeeStatus.CLAIMED and fee.claimed_at is None:
                fee.claimed_at = now
            if status == FeeStatus.DISTRIBUTED and fee.distributed_at is None:
                fee.distributed_at = now

            self.logger.info(
                "Fee status updated",
                fee_id=fee_id,
                previous=current.value,
                status=status.value,
                forced=force
            )
            return fee

    async def mark_claimed(self, start_date: datetime, end_date: datetime, claim_tx_hash: str) -> int:
        """Mark pending fees created within [start_date, end_date] as claimed from the venue."""
        now = utc_now()
        async with session_scope(self.session_maker) as session:
            outcome = await session.execute(
                update(FeeTransaction)
                .where(
                    FeeTransaction.status == FeeStatus.PENDING.value,
                    FeeTransaction.created_at >= start_date,
                    FeeTransaction.created_at <= end_date,
                )
                .values(
                    status=FeeStatus.CLAIMED.value,
                    claimed_at=now,
                    claim_tx_hash=claim_tx_hash,
                    updated_at=now,
                )
            )
            updated = outcome.rowcount or 0

        self.logger.info(
            "Fees marked as claimed",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            claim_tx_hash=claim_tx_hash,
            fees_updated=updated
        )
        return updated

    async def mark_distributed(
        self,
        platform_id: int,
        start_date: datetime,
        end_date: datetime
    ) -> int:
        """Mark a platform's claimed fees within a window as distributed."""
        now = utc_now()
        async with session_scope(self.session_maker) as session:
            outcome = await session.execute(
                update(FeeTransaction)
                .where(
                    FeeTransaction.platform_id == platform_id,
                    FeeTransaction.status == FeeStatus.CLAIMED.value,
                    FeeTransaction.created_at >= start_date,
                    FeeTransaction.created_at < end_date,
                )
                .values(status=FeeStatus.DISTRIBUTED.value, distributed_at=now, updated_at=now)
            )
            updated = outcome.rowcount or 0

        self.logger.info(
            "Fees marked as distributed",
            platform_id=platform_id,
            fees_updated=updated
        )
        return updated

    async def fee_totals_by_status(self, status: FeeStatus) -> Dict[int, Decimal]:
        """Sum of total_fee per platform for rows in the given status."""
        async with session_scope(self.session_maker) as session:
            rows = await session.execute(
                select(FeeTransaction.platform_id, func.sum(FeeTransaction.total_fee))
                .where(FeeTransaction.status == status.value)
                .group_by(FeeTransaction.platform_id)
            )
            return {platform_id: to_decimal(total) for platform_id, total in rows.all()}
