"""
Fee ledger queries and status changes.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from liquidlab.core.exceptions import FeeTransactionNotFoundError, InvalidStatusTransitionError
from liquidlab.models import FeeStatus


async def test_list_transactions_paginates_newest_first(container, make_platform, add_fee):
    platform_id = await make_platform()
    ids = [await add_fee(platform_id, datetime(2024, 3, day)) for day in (1, 2, 3)]

    page, total = await container.ledger.list_transactions(platform_id, limit=2)
    rest, _ = await container.ledger.list_transactions(platform_id, limit=2, offset=2)

    assert total == 3
    assert [row.id for row in page] == [ids[2], ids[1]]
    assert [row.id for row in rest] == [ids[0]]


async def test_list_transactions_filters_by_date_and_status(container, make_platform, add_fee):
    platform_id = await make_platform()
    await add_fee(platform_id, datetime(2024, 3, 1))
    march_5 = await add_fee(platform_id, datetime(2024, 3, 5), status=FeeStatus.CLAIMED)

    rows, total = await container.ledger.list_transactions(
        platform_id,
        status=FeeStatus.CLAIMED.value,
        start_date=datetime(2024, 3, 2),
        end_date=datetime(2024, 3, 31),
    )

    assert total == 1
    assert rows[0].id == march_5


async def test_mark_claimed_only_touches_pending_rows_in_range(container, make_platform, add_fee):
    platform_id = await make_platform()
    inside = await add_fee(platform_id, datetime(2024, 3, 10))
    await add_fee(platform_id, datetime(2024, 4, 2))
    await add_fee(platform_id, datetime(2024, 3, 11), status=FeeStatus.FAILED)

    updated = await container.ledger.mark_claimed(datetime(2024, 3, 1), datetime(2024, 3, 31), "0xclaim")

    assert updated == 1
    rows, _ = await container.ledger.list_transactions(platform_id, status=FeeStatus.CLAIMED.value)
    assert [row.id for row in rows] == [inside]
    assert rows[0].claim_tx_hash == "0xclaim"
    assert rows[0].claimed_at is not None


async def test_mark_distributed_requires_claimed(container, make_platform, add_fee):
    platform_id = await make_platform()
    await add_fee(platform_id, datetime(2024, 3, 10), status=FeeStatus.CLAIMED)
    await add_fee(platform_id, datetime(2024, 3, 12))

    updated = await container.ledger.mark_distributed(platform_id, datetime(2024, 3, 1), datetime(2024, 4, 1))

    assert updated == 1


async def test_update_status_moves_forward(container, make_platform, add_fee):
    platform_id = await make_platform()
    fee_id = await add_fee(platform_id, datetime(2024, 3, 10))

    fee = await container.ledger.update_status(fee_id, FeeStatus.CLAIMED)

    assert fee.status == FeeStatus.CLAIMED.value
    assert fee.claimed_at is not None


async def test_update_status_rejects_backwards_without_force(container, make_platform, add_fee):
    platform_id = await make_platform()
    fee_id = await add_fee(platform_id, datetime(2024, 3, 10), status=FeeStatus.DISTRIBUTED)

    with pytest.raises(InvalidStatusTransitionError):
        await container.ledger.update_status(fee_id, FeeStatus.PENDING)

    fee = await container.ledger.update_status(fee_id, FeeStatus.PENDING, force=True)
    assert fee.status == FeeStatus.PENDING.value


async def test_update_status_unknown_fee(container):
    with pytest.raises(FeeTransactionNotFoundError):
        await container.ledger.update_status(12345, FeeStatus.CLAIMED)


async def test_fee_totals_by_status(container, make_platform, add_fee):
    first = await make_platform()
    second = await make_platform()
    await add_fee(first, datetime(2024, 3, 1), total_fee="1.5")
    await add_fee(first, datetime(2024, 3, 2), total_fee="2.25")
    await add_fee(second, datetime(2024, 3, 2), total_fee="4")
    await add_fee(second, datetime(2024, 3, 3), total_fee="9", status=FeeStatus.CLAIMED)

    totals = await container.ledger.fee_totals_by_status(FeeStatus.PENDING)

    assert totals == {first: Decimal("3.75"), second: Decimal("4")}
