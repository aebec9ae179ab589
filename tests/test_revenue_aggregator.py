"""
Revenue summaries recomputed from the fee ledger.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from liquidlab.core.exceptions import ValidationError
from liquidlab.models import RevenuePeriod
from liquidlab.services.fee_ledger import LedgerEntry
from liquidlab.services.revenue_aggregator import current_window, parse_period, previous_window
from liquidlab.utils.time import utc_now

from conftest import make_fill


EPOCH = date(2024, 1, 1)


async def record_fills(container, platform_id, fills):
    entries = [LedgerEntry(fill, container.calculator.compute(fill)) for fill in fills]
    return await container.ledger.record_batch(platform_id, entries)


def test_daily_window():
    now = datetime(2024, 3, 15, 13, 30)
    window = current_window(RevenuePeriod.DAILY, now, EPOCH)

    assert window.start == datetime(2024, 3, 15)
    assert window.end == now
    assert window.period_end == datetime(2024, 3, 16)
    assert window.is_closed is False


def test_weekly_window_is_rolling():
    now = datetime(2024, 3, 15, 13, 30)
    window = current_window(RevenuePeriod.WEEKLY, now, EPOCH)

    assert window.start == datetime(2024, 3, 8, 13, 30)
    assert window.period_end == now


def test_monthly_window_rolls_over_year():
    window = current_window(RevenuePeriod.MONTHLY, datetime(2024, 12, 31, 23, 0), EPOCH)

    assert window.start == datetime(2024, 12, 1)
    assert window.period_end == datetime(2025, 1, 1)


def test_all_time_window_starts_at_epoch():
    now = datetime(2024, 6, 1)
    window = current_window(RevenuePeriod.ALL_TIME, now, EPOCH)

    assert window.start == datetime(2024, 1, 1)
    assert window.start_date == EPOCH


def test_previous_windows():
    now = datetime(2024, 1, 1, 0, 5)

    daily = previous_window(RevenuePeriod.DAILY, now)
    monthly = previous_window(RevenuePeriod.MONTHLY, now)

    assert (daily.start, daily.end) == (datetime(2023, 12, 31), datetime(2024, 1, 1))
    assert (monthly.start, monthly.end) == (datetime(2023, 12, 1), datetime(2024, 1, 1))
    assert daily.is_closed and monthly.is_closed
    assert previous_window(RevenuePeriod.WEEKLY, now) is None
    assert previous_window(RevenuePeriod.ALL_TIME, now) is None


def test_parse_period():
    assert parse_period("all-time") == RevenuePeriod.ALL_TIME

    with pytest.raises(ValidationError):
        parse_period("yearly")


async def test_summary_totals_match_ledger(container, make_platform):
    platform_id = await make_platform("0x" + "1" * 40)
    await record_fills(container, platform_id, [
        make_fill("a", 1, price="100"),
        make_fill("b", 2, price="200"),
        make_fill("c", 3, price="50"),
    ])

    summary = await container.aggregator.update_summary(platform_id, RevenuePeriod.ALL_TIME, utc_now())

    assert summary.trade_count == 3
    assert summary.total_volume == Decimal("350")
    assert summary.total_fees == Decimal("0.35")
    assert summary.platform_earnings == Decimal("0.245")
    assert summary.liquidlab_earnings == Decimal("0.105")
    assert summary.platform_earnings + summary.liquidlab_earnings == summary.total_fees


async def test_recompute_is_idempotent(container, make_platform):
    platform_id = await make_platform("0x" + "1" * 40)
    await record_fills(container, platform_id, [make_fill("a", 1), make_fill("b", 2, price="333.33")])
    now = utc_now()

    first = await container.aggregator.update_summary(platform_id, RevenuePeriod.MONTHLY, now)
    second = await container.aggregator.update_summary(platform_id, RevenuePeriod.MONTHLY, now)

    assert first.id == second.id
    assert len(await container.aggregator.list_summaries(platform_id, RevenuePeriod.MONTHLY)) == 1
    assert (first.total_fees, first.platform_earnings, first.trade_count) == (
        second.total_fees, second.platform_earnings, second.trade_count
    )


async def test_closed_daily_window_excludes_next_midnight(container, make_platform, add_fee):
    platform_id = await make_platform("0x" + "1" * 40)
    await add_fee(platform_id, datetime(2024, 3, 1, 0, 0))
    await add_fee(platform_id, datetime(2024, 3, 1, 23, 59, 59))
    await add_fee(platform_id, datetime(2024, 3, 2, 0, 0))
    now = datetime(2024, 3, 2, 12, 0)

    closed = await container.aggregator.finalize_previous(platform_id, RevenuePeriod.DAILY, now)
    today = await container.aggregator.update_summary(platform_id, RevenuePeriod.DAILY, now)

    assert closed.start_date == date(2024, 3, 1)
    assert closed.trade_count == 2
    assert closed.is_closed
    assert today.start_date == date(2024, 3, 2)
    assert today.trade_count == 1
    assert today.is_closed is False


async def test_finalize_picks_up_late_rows_once(container, make_platform, add_fee):
    platform_id = await make_platform("0x" + "1" * 40)
    await add_fee(platform_id, datetime(2024, 3, 1, 10, 0))

    # Last refresh of March 1st happened before the day ended
    await container.aggregator.update_summary(platform_id, RevenuePeriod.DAILY, datetime(2024, 3, 1, 12, 0))
    await add_fee(platform_id, datetime(2024, 3, 1, 18, 0))

    now = datetime(2024, 3, 2, 1, 0)
    closed = await container.aggregator.finalize_previous(platform_id, RevenuePeriod.DAILY, now)
    assert closed.trade_count == 2
    assert closed.window_end == datetime(2024, 3, 2)

    # Once closed the window is not recomputed
    await add_fee(platform_id, datetime(2024, 3, 1, 20, 0))
    again = await container.aggregator.finalize_previous(platform_id, RevenuePeriod.DAILY, now)
    assert again.trade_count == 2


async def test_close_window_without_trades_writes_nothing(container, make_platform):
    platform_id = await make_platform("0x" + "1" * 40)

    result = await container.aggregator.finalize_previous(
        platform_id, RevenuePeriod.MONTHLY, datetime(2024, 5, 3)
    )

    assert result is None
    assert await container.aggregator.list_summaries(platform_id, RevenuePeriod.MONTHLY) == []


async def test_refresh_platform_writes_every_period(container, make_platform, add_fee):
    platform_id = await make_platform("0x" + "1" * 40)
    now = datetime(2024, 4, 10, 9, 0)
    await add_fee(platform_id, datetime(2024, 4, 10, 8, 0))

    summaries = await container.aggregator.refresh_platform(platform_id, now)

    assert [s.period for s in summaries] == [p.value for p in RevenuePeriod]
    assert all(s.trade_count == 1 for s in summaries)


async def test_get_summary_returns_none_without_data(container, make_platform):
    platform_id = await make_platform("0x" + "1" * 40)

    assert await container.aggregator.get_summary(platform_id, RevenuePeriod.DAILY) is None


async def test_get_summary_returns_latest_window(container, make_platform, add_fee):
    platform_id = await make_platform("0x" + "1" * 40)
    await add_fee(platform_id, datetime(2024, 3, 1, 10, 0))
    await add_fee(platform_id, datetime(2024, 3, 2, 10, 0), total_fee="2", platform_share="1.4")

    await container.aggregator.refresh_platform(platform_id, datetime(2024, 3, 2, 12, 0))
    summary = await container.aggregator.get_summary(platform_id, RevenuePeriod.DAILY)

    assert summary.start_date == date(2024, 3, 2)
    assert summary.total_fees == Decimal("2")


async def test_platform_revenues_sorted_and_filtered(container, make_platform, add_fee):
    small = await make_platform("0x" + "1" * 40)
    large = await make_platform("0x" + "2" * 40)
    now = datetime(2024, 3, 5, 12, 0)
    await add_fee(small, datetime(2024, 3, 5, 9, 0), total_fee="1", platform_share="0.7")
    await add_fee(large, datetime(2024, 3, 5, 9, 0), total_fee="30", platform_share="21")

    await container.aggregator.refresh_all(now)

    ranked = await container.aggregator.get_all_platform_revenues(RevenuePeriod.ALL_TIME)
    assert [s.platform_id for s in ranked] == [large, small]

    filtered = await container.aggregator.get_all_platform_revenues(
        RevenuePeriod.ALL_TIME, min_revenue=Decimal("10")
    )
    assert [s.platform_id for s in filtered] == [large]


async def test_refresh_all_isolates_failures(container, make_platform, add_fee, monkeypatch):
    broken = await make_platform("0x" + "1" * 40)
    healthy = await make_platform("0x" + "2" * 40)
    now = datetime(2024, 3, 5, 12, 0)
    await add_fee(healthy, datetime(2024, 3, 5, 9, 0))

    original = container.aggregator.refresh_platform

    async def flaky(platform_id, now=None):
        if platform_id == broken:
            raise RuntimeError("deadlock detected")
        return await original(platform_id, now)

    monkeypatch.setattr(container.aggregator, "refresh_platform", flaky)

    result = await container.aggregator.refresh_all(now)

    assert result == {"refreshed": 1, "failed": 1}
    assert await container.aggregator.get_summary(healthy, RevenuePeriod.DAILY) is not None
