"""
Shared fixtures: a throwaway SQLite database, the static venue and a wired
service container.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from liquidlab.core.config import Settings
from liquidlab.core.database import DatabaseManager
from liquidlab.models import FeeTransaction, FeeStatus, TradingPlatform, TradeType
from liquidlab.services.container import build_services
from liquidlab.services.venue import Fill, StaticVenueAdapter, detect_trade_type


ADMIN_KEY = "test-admin-key"
WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'liquidlab_test.db'}",
        environment="development",
        log_format="console",
        venue_adapter="static",
        ingestion_max_concurrency=1,
        scheduler_enabled=False,
        rate_limit_enabled=False,
        admin_api_key=ADMIN_KEY,
        webhook_secret=WEBHOOK_SECRET,
        payouts_enabled=True,
        payout_period="monthly",
        min_payout_amount=Decimal("10"),
    )


@pytest.fixture
async def session_maker(test_settings):
    engine = create_async_engine(test_settings.database_url)
    await DatabaseManager.create_tables(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def venue() -> StaticVenueAdapter:
    return StaticVenueAdapter()


@pytest.fixture
def container(test_settings, session_maker, venue):
    return build_services(test_settings, session_maker, venue=venue)


@pytest.fixture
def make_platform(session_maker):
    """Factory inserting a trading platform and returning its id."""
    counter = {"n": 0}

    async def _make(
        wallet: Optional[str] = None,
        payout_wallet: Optional[str] = None,
        user_id: int = 1,
        is_active: bool = True
    ) -> int:
        counter["n"] += 1
        async with session_maker() as session:
            platform = TradingPlatform(
                user_id=user_id,
                name=f"Platform {counter['n']}",
                slug=f"platform-{counter['n']}",
                owner_wallet_address=wallet,
                payout_wallet_address=payout_wallet,
                is_active=is_active,
            )
            session.add(platform)
            await session.commit()
            return platform.id

    return _make


def make_fill(
    trade_id: str,
    timestamp: int,
    size: str = "1",
    price: str = "100",
    coin: str = "BTC",
    is_maker: bool = False,
    builder_fee: Optional[str] = None,
    trade_type: Optional[TradeType] = None
) -> Fill:
    return Fill(
        trade_id=trade_id,
        coin=coin,
        side="buy",
        size=Decimal(size),
        price=Decimal(price),
        timestamp=timestamp,
        is_maker=is_maker,
        trade_type=trade_type or detect_trade_type(coin),
        builder_fee=Decimal(builder_fee) if builder_fee is not None else None,
    )


@pytest.fixture
def add_fee(session_maker):
    """Factory inserting a ledger row with an explicit created_at."""
    counter = {"n": 0}

    async def _add(
        platform_id: int,
        created_at: datetime,
        total_fee: str = "1",
        platform_share: str = "0.7",
        status: FeeStatus = FeeStatus.PENDING
    ) -> int:
        counter["n"] += 1
        total = Decimal(total_fee)
        share = Decimal(platform_share)
        async with session_maker() as session:
            row = FeeTransaction(
                platform_id=platform_id,
                trade_id=f"seed-{counter['n']}",
                trade_type=TradeType.PERP.value,
                coin="BTC",
                side="buy",
                is_maker=False,
                trade_volume=total * 1000,
                fee_rate=Decimal("0.001"),
                total_fee=total,
                platform_share=share,
                liquidlab_share=total - share,
                status=status.value,
                trade_timestamp=int(created_at.timestamp() * 1000),
                source="poll",
                created_at=created_at,
                updated_at=created_at,
            )
            session.add(row)
            await session.commit()
            return row.id

    return _add


async def count_fees(session_maker, platform_id: int) -> int:
    async with session_maker() as session:
        return await session.scalar(
            select(func.count(FeeTransaction.id)).where(FeeTransaction.platform_id == platform_id)
        )
