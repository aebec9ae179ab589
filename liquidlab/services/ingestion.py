"""
Checkpointed trade ingestion.

Each cycle pulls new fills for every registered platform, turns them into
ledger rows, refreshes that platform's summaries and only then moves the
platform's checkpoint forward. Platforms are processed concurrently up to a
fixed limit and fail independently of each other.
"""

import asyncio
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from liquidlab.core.exceptions import FeeInvariantError, ValidationError
from liquidlab.utils.time import utc_now
from .checkpoint_store import CheckpointStore
from .fee_computation import FeeCalculator
from .fee_ledger import FeeLedger, LedgerEntry, BatchResult
from .platform_registry import PlatformRegistry, PlatformRef
from .revenue_aggregator import RevenueAggregator
from .venue.base import Fill, VenueAdapter
from .venue.hyperliquid import parse_webhook_trade


logger = structlog.get_logger(__name__)


@dataclass
class PlatformResult:
    """Outcome of ingesting one platform."""
    platform_id: int
    fetched: int = 0
    inserted: int = 0
    duplicates: int = 0
    invalid: int = 0
    filtered: int = 0
    checkpoint_before: int = 0
    checkpoint_after: int = 0
    error: Optional[str] = None
    stage: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class CycleStats:
    """Statistics for one ingestion cycle."""
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    skipped: bool = False
    platforms_total: int = 0
    platforms_succeeded: int = 0
    platforms_failed: int = 0
    platforms_without_wallet: int = 0
    fills_fetched: int = 0
    trades_inserted: int = 0
    duplicates_skipped: int = 0
    invalid_fills: int = 0
    results: List[PlatformResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


class TradeIngestionService:
    """Pulls attributed fills from the venue into the fee ledger."""

    def __init__(
        self,
        venue: VenueAdapter,
        registry: PlatformRegistry,
        ledger: FeeLedger,
        checkpoints: CheckpointStore,
        aggregator: RevenueAggregator,
        calculator: FeeCalculator,
        max_concurrency: int = 4,
        builder_fills_only: bool = False,
        builder_code: Optional[str] = None
    ):
        self.venue = venue
        self.registry = registry
        self.ledger = ledger
        self.checkpoints = checkpoints
        self.aggregator = aggregator
        self.calculator = calculator
        self.max_concurrency = max_concurrency
        self.builder_fills_only = builder_fills_only
        self.builder_code = builder_code

        self._running = False
        self.last_cycle: Optional[CycleStats] = None
        self.logger = logger.bind(service="trade_ingestion")

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_cycle(self) -> CycleStats:
        """
        Run one ingestion cycle over all platforms.

        If a cycle is already in progress the call returns immediately with
        `skipped=True`; overlapping triggers are dropped, not queued.
        """
        if self._running:
            self.logger.warning("Ingestion cycle already running, skipping trigger")
            return CycleStats(skipped=True, finished_at=utc_now())

        self._running = True
        stats = CycleStats()
        try:
            platforms = await self.registry.list_platforms()
            stats.platforms_total = len(platforms)

            eligible = []
            for platform in platforms:
                if not platform.owner_wallet_address:
                    stats.platforms_without_wallet += 1
                    self.logger.warning(
                        "Platform has no wallet address, skipping",
                        platform_id=platform.id,
                        stage="fetch"
                    )
                    continue
                eligible.append(platform)

            self.logger.info(
                "Ingestion cycle started",
                platforms=len(eligible),
                skipped_without_wallet=stats.platforms_without_wallet
            )

            semaphore = asyncio.Semaphore(self.max_concurrency)
            results = await asyncio.gather(
                *[self._process_with_limit(semaphore, platform) for platform in eligible]
            )

            for result in results:
                stats.results.append(result)
                stats.fills_fetched += result.fetched
                stats.trades_inserted += result.inserted
                stats.duplicates_skipped += result.duplicates
                stats.invalid_fills += result.invalid
                if result.succeeded:
                    stats.platforms_succeeded += 1
                else:
                    stats.platforms_failed += 1

            stats.finished_at = utc_now()
            self.last_cycle = stats
            self.logger.info(
                "Ingestion cycle completed",
                platforms_succeeded=stats.platforms_succeeded,
                platforms_failed=stats.platforms_failed,
                trades_inserted=stats.trades_inserted,
                duplicates_skipped=stats.duplicates_skipped,
                invalid_fills=stats.invalid_fills,
                duration_seconds=(stats.finished_at - stats.started_at).total_seconds()
            )
            return stats
        finally:
            self._running = False

    async def _process_with_limit(self, semaphore: asyncio.Semaphore, platform: PlatformRef) -> PlatformResult:
        async with semaphore:
            return await self.process_platform(platform)

    async def process_platform(self, platform: PlatformRef) -> PlatformResult:
        """
        Ingest new fills for one platform.

        Errors are caught, logged with the failing stage and returned in the
        result; the checkpoint is left untouched when any stage before it fails.
        """
        result = PlatformResult(platform_id=platform.id)
        stage = "checkpoint"
        try:
            checkpoint = await self.checkpoints.get(platform.id)
            result.checkpoint_before = result.checkpoint_after = checkpoint

            stage = "fetch"
            fills = await self.venue.get_user_fills(
                platform.owner_wallet_address,
                start_time=checkpoint or None
            )
            new_fills = sorted(
                (fill for fill in fills if fill.timestamp > checkpoint),
                key=lambda fill: (fill.timestamp, fill.trade_id)
            )
            result.fetched = len(new_fills)
            if not new_fills:
                return result

            stage = "compute"
            entries, blocked_at = self._compute_entries(platform.id, new_fills, result)

            stage = "persist"
            batch: BatchResult = await self.ledger.record_batch(platform.id, entries, source="poll")
            result.inserted = batch.inserted
            result.duplicates = batch.duplicates

            if batch.inserted:
                await self._refresh_summaries(platform.id)

            stage = "checkpoint"
            target = _safe_checkpoint(new_fills, blocked_at)
            if target is not None and target > checkpoint:
                result.checkpoint_after = await self.checkpoints.advance(platform.id, target)

            self.logger.info(
                "Platform ingested",
                platform_id=platform.id,
                fetched=result.fetched,
                inserted=result.inserted,
                duplicates=result.duplicates,
                invalid=result.invalid,
                checkpoint=result.checkpoint_after
            )
            return result

        except Exception as e:
            result.error = str(e)
            result.stage = stage
            self.logger.error(
                "Platform ingestion failed",
                platform_id=platform.id,
                stage=stage,
                error=str(e),
                error_type=type(e).__name__
            )
            return result

    def _compute_entries(
        self,
        platform_id: int,
        fills: List[Fill],
        result: PlatformResult
    ) -> "tuple[List[LedgerEntry], Optional[int]]":
        """Compute ledger entries; returns them with the timestamp of the first rejected fill."""
        entries = []
        blocked_at = None
        for fill in fills:
            if self.builder_fills_only and not fill.builder_fee:
                result.filtered += 1
                continue
            try:
                entries.append(LedgerEntry(fill, self.calculator.compute(fill)))
            except FeeInvariantError as e:
                result.invalid += 1
                if blocked_at is None:
                    blocked_at = fill.timestamp
                self.logger.error(
                    "Fee invariant violated, fill not recorded",
                    platform_id=platform_id,
                    stage="compute",
                    trade_id=fill.trade_id,
                    coin=fill.coin,
                    size=str(fill.size),
                    price=str(fill.price),
                    timestamp=fill.timestamp,
                    details=e.details
                )
        return entries, blocked_at

    async def _refresh_summaries(self, platform_id: int) -> None:
        # The ledger is already committed; a failed refresh is healed by the periodic refresh job.
        try:
            await self.aggregator.refresh_platform(platform_id)
        except Exception as e:
            self.logger.error(
                "Summary refresh failed after ingestion",
                platform_id=platform_id,
                stage="aggregate",
                error=str(e)
            )

    async def record_webhook_trade(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Record a trade pushed by the venue webhook.

        Goes through the same fee computation and dedup path as polling but
        leaves the checkpoint alone; the next poll skips it as a duplicate.
        """
        platform_id, fill, builder_code = parse_webhook_trade(data)
        if self.builder_code and builder_code != self.builder_code:
            self.logger.info(
                "Webhook trade without our builder code ignored",
                platform_id=platform_id,
                trade_id=fill.trade_id
            )
            return {"recorded": False, "reason": "builder_code_mismatch"}

        await self.registry.get_platform(platform_id)

        try:
            computation = self.calculator.compute(fill)
        except FeeInvariantError as e:
            self.logger.error(
                "Fee invariant violated, webhook trade not recorded",
                platform_id=platform_id,
                stage="compute",
                trade_id=fill.trade_id,
                details=e.details
            )
            raise ValidationError(e.message, e.details) from e

        batch = await self.ledger.record_batch(platform_id, [LedgerEntry(fill, computation)], source="webhook")
        if batch.inserted:
            await self._refresh_summaries(platform_id)

        self.logger.info(
            "Webhook trade processed",
            platform_id=platform_id,
            trade_id=fill.trade_id,
            duplicate=bool(batch.duplicates)
        )
        return {
            "recorded": bool(batch.inserted),
            "duplicate": bool(batch.duplicates),
            "trade_id": fill.trade_id,
            "total_fee": str(computation.total_fee),
            "platform_share": str(computation.platform_share),
        }


def _safe_checkpoint(fills: List[Fill], blocked_at: Optional[int]) -> Optional[int]:
    """Highest fill timestamp the checkpoint may move to without passing a rejected fill."""
    candidates = [
        fill.timestamp for fill in fills
        if blocked_at is None or fill.timestamp < blocked_at
    ]
    return max(candidates) if candidates else None
