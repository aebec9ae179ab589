"""
Service wiring.

Everything is constructed once at startup and handed to the API and the
scheduler; nothing resolves services lazily at call time.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from liquidlab.core.config import Settings
from liquidlab.core.exceptions import ConfigurationError
from .checkpoint_store import CheckpointStore
from .fee_computation import FeeCalculator
from .fee_ledger import FeeLedger
from .ingestion import TradeIngestionService
from .payout_executor import PayoutExecutor, HttpPayoutExecutor
from .payout_preparer import PayoutPreparer
from .platform_registry import PlatformRegistry
from .revenue_aggregator import RevenueAggregator
from .venue.base import VenueAdapter
from .venue.hyperliquid import HyperliquidVenueAdapter
from .venue.static import StaticVenueAdapter


logger = structlog.get_logger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    session_maker: async_sessionmaker[AsyncSession]
    venue: VenueAdapter
    calculator: FeeCalculator
    registry: PlatformRegistry
    ledger: FeeLedger
    checkpoints: CheckpointStore
    aggregator: RevenueAggregator
    ingestion: TradeIngestionService
    payouts: PayoutPreparer
    executor: Optional[PayoutExecutor] = None

    async def close(self) -> None:
        await self.venue.close()
        if self.executor is not None:
            await self.executor.close()


def build_venue_adapter(settings: Settings) -> VenueAdapter:
    if settings.venue_adapter == "hyperliquid":
        return HyperliquidVenueAdapter(settings.hyperliquid_api_url, settings.venue_request_timeout)
    if settings.venue_adapter == "static":
        return StaticVenueAdapter()
    raise ConfigurationError(f"Unknown venue adapter: {settings.venue_adapter}")


def build_services(
    settings: Settings,
    session_maker: async_sessionmaker[AsyncSession],
    venue: Optional[VenueAdapter] = None,
    executor: Optional[PayoutExecutor] = None
) -> ServiceContainer:
    """Construct and wire all services. `venue` and `executor` override the configured ones."""
    venue = venue or build_venue_adapter(settings)
    if executor is None and settings.payout_executor_url:
        executor = HttpPayoutExecutor(settings.payout_executor_url, settings.payout_executor_token)

    calculator = FeeCalculator.from_settings(settings)
    registry = PlatformRegistry(session_maker)
    ledger = FeeLedger(session_maker)
    checkpoints = CheckpointStore(session_maker)
    aggregator = RevenueAggregator(session_maker, registry, settings.revenue_epoch)

    ingestion = TradeIngestionService(
        venue=venue,
        registry=registry,
        ledger=ledger,
        checkpoints=checkpoints,
        aggregator=aggregator,
        calculator=calculator,
        max_concurrency=settings.ingestion_max_concurrency,
        builder_fills_only=settings.builder_fills_only,
        builder_code=settings.builder_code,
    )

    payouts = PayoutPreparer(
        session_maker=session_maker,
        registry=registry,
        aggregator=aggregator,
        ledger=ledger,
        payout_period=settings.payout_period,
        min_payout_amount=settings.min_payout_amount,
        currency=settings.payout_currency,
        executor=executor,
    )

    logger.info(
        "Services built",
        venue_adapter=type(venue).__name__,
        payout_executor=type(executor).__name__ if executor else None,
        fee_contract=calculator.describe()
    )

    return ServiceContainer(
        settings=settings,
        session_maker=session_maker,
        venue=venue,
        calculator=calculator,
        registry=registry,
        ledger=ledger,
        checkpoints=checkpoints,
        aggregator=aggregator,
        ingestion=ingestion,
        payouts=payouts,
        executor=executor,
    )
