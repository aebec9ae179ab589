"""
Payout preparation, execution bookkeeping and readiness.
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from liquidlab.core.exceptions import (
    ConfigurationError,
    InvalidStatusTransitionError,
    PayoutNotFoundError,
)
from liquidlab.models import FeeStatus, FeeTransaction, PayoutRecord, PayoutStatus
from liquidlab.services.payout_executor import PayoutRequest, PayoutResult


OWNER = "0x" + "c" * 40
PAYOUT_WALLET = "0x" + "d" * 40

FEB_START = datetime(2024, 2, 1)
MAR_START = datetime(2024, 3, 1)
NOW = datetime(2024, 3, 5, 12, 0)


class FakeExecutor:
    def __init__(self, succeed: bool = True, raise_error: bool = False, balance: Optional[Decimal] = None):
        self.succeed = succeed
        self.raise_error = raise_error
        self.balance = balance
        self.requests: List[PayoutRequest] = []

    async def execute(self, request: PayoutRequest) -> PayoutResult:
        self.requests.append(request)
        if self.raise_error:
            raise ConnectionError("executor unreachable")
        if self.succeed:
            return PayoutResult(success=True, tx_hash=f"0xtx{request.payout_id}")
        return PayoutResult(success=False, error="insufficient balance")

    async def get_balance(self, currency: str) -> Optional[Decimal]:
        return self.balance

    async def close(self) -> None:
        pass


async def add_payout(session_maker, platform_id, amount, status, start=FEB_START, end=MAR_START):
    async with session_maker() as session:
        record = PayoutRecord(
            platform_id=platform_id,
            user_id=1,
            amount=Decimal(amount),
            currency="USDC",
            status=status.value,
            period="monthly",
            period_start=start,
            period_end=end,
            recipient_address=PAYOUT_WALLET,
        )
        session.add(record)
        await session.commit()
        return record.id


async def payout_rows(session_maker, platform_id):
    async with session_maker() as session:
        result = await session.execute(
            select(PayoutRecord)
            .where(PayoutRecord.platform_id == platform_id)
            .order_by(PayoutRecord.id)
        )
        return list(result.scalars().all())


@pytest.fixture
async def february_platform(make_platform, add_fee):
    """Platform that earned 100 in February 2024."""
    platform_id = await make_platform(OWNER, payout_wallet=PAYOUT_WALLET)
    await add_fee(platform_id, datetime(2024, 2, 10), total_fee="100", platform_share="70",
                  status=FeeStatus.CLAIMED)
    await add_fee(platform_id, datetime(2024, 2, 20), total_fee="30", platform_share="30",
                  status=FeeStatus.CLAIMED)
    return platform_id


async def test_pending_amount_subtracts_existing_payouts(container, session_maker, february_platform):
    await container.aggregator.refresh_platform(february_platform, NOW)
    await add_payout(session_maker, february_platform, "80", PayoutStatus.COMPLETED)

    pending = await container.payouts.pending_payouts(february_platform, NOW)

    feb = next(p for p in pending if p.period_start == FEB_START)
    assert feb.amount == Decimal("20")
    assert feb.earned == Decimal("100")
    assert feb.already_paid == Decimal("80")
    assert feb.closed is True


async def test_failed_payouts_do_not_reduce_amount(container, session_maker, february_platform):
    await container.aggregator.refresh_platform(february_platform, NOW)
    await add_payout(session_maker, february_platform, "80", PayoutStatus.FAILED)

    pending = await container.payouts.pending_payouts(february_platform, NOW)

    assert [p.amount for p in pending] == [Decimal("100")]


async def test_fully_paid_window_is_not_pending(container, session_maker, february_platform):
    await container.aggregator.refresh_platform(february_platform, NOW)
    await add_payout(session_maker, february_platform, "100", PayoutStatus.COMPLETED)

    assert await container.payouts.pending_payouts(february_platform, NOW) == []


async def test_prepare_creates_payout_for_closed_window(container, session_maker, february_platform):
    counts = await container.payouts.prepare_payouts(NOW)

    assert counts["created"] == 1
    rows = await payout_rows(session_maker, february_platform)
    assert len(rows) == 1
    assert rows[0].amount == Decimal("100")
    assert rows[0].status == PayoutStatus.PENDING.value
    assert rows[0].recipient_address == PAYOUT_WALLET
    assert (rows[0].period_start, rows[0].period_end) == (FEB_START, MAR_START)


async def test_prepare_does_not_duplicate_in_flight_payout(container, session_maker, february_platform):
    await container.payouts.prepare_payouts(NOW)
    counts = await container.payouts.prepare_payouts(NOW)

    assert counts["created"] == 0
    assert len(await payout_rows(session_maker, february_platform)) == 1


async def test_prepare_tops_up_partially_paid_window(container, session_maker, february_platform):
    await add_payout(session_maker, february_platform, "80", PayoutStatus.COMPLETED)

    counts = await container.payouts.prepare_payouts(NOW)

    assert counts["created"] == 1
    rows = await payout_rows(session_maker, february_platform)
    assert rows[-1].amount == Decimal("20")


async def test_below_minimum_is_not_paid(container, session_maker, make_platform, add_fee):
    platform_id = await make_platform(OWNER)
    await add_fee(platform_id, datetime(2024, 2, 10), total_fee="5", platform_share="3.5")

    counts = await container.payouts.prepare_payouts(NOW)

    assert counts["created"] == 0
    assert counts["below_minimum"] == 1
    assert await payout_rows(session_maker, platform_id) == []


async def test_open_window_is_never_paid(container, session_maker, make_platform, add_fee):
    platform_id = await make_platform(OWNER)
    await add_fee(platform_id, datetime(2024, 3, 2), total_fee="500", platform_share="350")
    await container.aggregator.refresh_platform(platform_id, NOW)

    pending = await container.payouts.pending_payouts(platform_id, NOW)
    counts = await container.payouts.prepare_payouts(NOW)

    assert [p.closed for p in pending] == [False]
    assert counts["created"] == 0
    assert await payout_rows(session_maker, platform_id) == []


async def test_platform_without_recipient_is_skipped(container, make_platform, add_fee):
    platform_id = await make_platform(None)
    await add_fee(platform_id, datetime(2024, 2, 10), total_fee="100", platform_share="70")

    counts = await container.payouts.prepare_payouts(NOW)

    assert counts["no_recipient"] == 1
    assert counts["created"] == 0


async def test_execute_completes_payout_and_distributes_fees(container, session_maker, february_platform):
    await container.payouts.prepare_payouts(NOW)
    executor = FakeExecutor()

    counts = await container.payouts.execute_pending(executor)

    assert counts == {"completed": 1, "failed": 0, "skipped": 0}
    assert executor.requests[0].amount == Decimal("100")
    assert executor.requests[0].recipient_address == PAYOUT_WALLET

    payout = (await payout_rows(session_maker, february_platform))[0]
    assert payout.status == PayoutStatus.COMPLETED.value
    assert payout.tx_hash == f"0xtx{payout.id}"
    assert payout.processed_at is not None

    async with session_maker() as session:
        statuses = (await session.execute(
            select(FeeTransaction.status).where(FeeTransaction.platform_id == february_platform)
        )).scalars().all()
    assert set(statuses) == {FeeStatus.DISTRIBUTED.value}

    assert await container.payouts.pending_payouts(february_platform, NOW) == []


@pytest.mark.parametrize("executor", [FakeExecutor(succeed=False), FakeExecutor(raise_error=True)])
async def test_failed_execution_is_recorded_not_retried(container, session_maker, february_platform, executor):
    await container.payouts.prepare_payouts(NOW)

    counts = await container.payouts.execute_pending(executor)
    assert counts == {"completed": 0, "failed": 1, "skipped": 0}

    failed = (await payout_rows(session_maker, february_platform))[0]
    assert failed.status == PayoutStatus.FAILED.value
    assert failed.error

    # The failed record stays failed; the amount becomes owed again under a new record
    assert await container.payouts.execute_pending(executor) == {"completed": 0, "failed": 0, "skipped": 0}
    await container.payouts.prepare_payouts(NOW)
    rows = await payout_rows(session_maker, february_platform)
    assert [r.status for r in rows] == [PayoutStatus.FAILED.value, PayoutStatus.PENDING.value]


class SlowExecutor(FakeExecutor):
    async def execute(self, request: PayoutRequest) -> PayoutResult:
        await asyncio.sleep(0.05)
        return await super().execute(request)


async def test_concurrent_executions_pay_each_record_once(container, session_maker, february_platform):
    await container.payouts.prepare_payouts(NOW)
    executor = SlowExecutor()

    results = await asyncio.gather(
        container.payouts.execute_pending(executor),
        container.payouts.execute_pending(executor),
    )

    assert len(executor.requests) == 1
    assert sum(r["completed"] for r in results) == 1
    assert sum(r["failed"] for r in results) == 0
    rows = await payout_rows(session_maker, february_platform)
    assert [r.status for r in rows] == [PayoutStatus.COMPLETED.value]


async def test_claim_for_processing_succeeds_once(container, session_maker, february_platform):
    payout_id = await add_payout(session_maker, february_platform, "100", PayoutStatus.PENDING)

    assert await container.payouts._claim_for_processing(payout_id) is True
    assert await container.payouts._claim_for_processing(payout_id) is False

    rows = await payout_rows(session_maker, february_platform)
    assert rows[0].status == PayoutStatus.PROCESSING.value


async def test_window_allows_one_in_flight_record(session_maker, february_platform):
    await add_payout(session_maker, february_platform, "60", PayoutStatus.FAILED)
    await add_payout(session_maker, february_platform, "60", PayoutStatus.PENDING)

    with pytest.raises(IntegrityError):
        await add_payout(session_maker, february_platform, "40", PayoutStatus.PROCESSING)


async def test_conflicting_insert_counts_as_in_flight(container, session_maker, february_platform, monkeypatch):
    await add_payout(session_maker, february_platform, "40", PayoutStatus.PENDING)

    async def never_in_flight(*args, **kwargs):
        return False

    # Lose the race: the check passes but the row already exists
    monkeypatch.setattr(container.payouts, "_has_in_flight", never_in_flight)

    counts = await container.payouts.prepare_payouts(NOW)

    assert counts["in_flight"] == 1
    assert counts["created"] == 0
    assert counts["failed_platforms"] == 0
    assert len(await payout_rows(session_maker, february_platform)) == 1


async def test_concurrent_preparations_create_one_record(container, session_maker, february_platform):
    results = await asyncio.gather(
        container.payouts.prepare_payouts(NOW),
        container.payouts.prepare_payouts(NOW),
    )

    assert sum(r["created"] for r in results) == 1
    rows = await payout_rows(session_maker, february_platform)
    assert len(rows) == 1
    assert rows[0].amount == Decimal("100")


async def test_execute_without_executor_is_configuration_error(container):
    with pytest.raises(ConfigurationError):
        await container.payouts.execute_pending()


async def test_status_transitions_are_enforced(container, session_maker, february_platform):
    payout_id = await add_payout(session_maker, february_platform, "50", PayoutStatus.COMPLETED)

    with pytest.raises(InvalidStatusTransitionError):
        await container.payouts.update_status(payout_id, PayoutStatus.PROCESSING)

    with pytest.raises(PayoutNotFoundError):
        await container.payouts.update_status(9999, PayoutStatus.PROCESSING)


async def test_payout_history_newest_first(container, session_maker, february_platform):
    first = await add_payout(session_maker, february_platform, "10", PayoutStatus.FAILED)
    second = await add_payout(session_maker, february_platform, "20", PayoutStatus.PENDING)

    history = await container.payouts.payout_history(february_platform)

    assert [p.id for p in history] == [second, first]


async def test_readiness_compares_balance_with_amount_owed(container, february_platform):
    container.payouts.executor = FakeExecutor(balance=Decimal("60"))
    await container.aggregator.refresh_platform(february_platform, NOW)

    report = await container.payouts.readiness(NOW)

    assert report["owed_to_platforms"] == {str(february_platform): "100.00000000"}
    assert report["total_undistributed_fees"] == "130.00000000"
    assert report["executor_balance"] == "60"
    assert report["can_pay_all"] is False
