"""
Durable per-platform ingestion checkpoints.

The checkpoint is only ever moved forward, and only after the ledger rows
up to that timestamp have been committed.
"""

from typing import Dict, Optional

import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from liquidlab.core.database import session_scope, dialect_insert
from liquidlab.models.checkpoint import IngestionCheckpoint
from liquidlab.utils.time import utc_now


logger = structlog.get_logger(__name__)


class CheckpointStore:
    """Reads and advances ingestion checkpoints."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker
        self.logger = logger.bind(service="checkpoint_store")

    async def get(self, platform_id: int) -> int:
        """Last processed fill timestamp (ms) for a platform, 0 if none."""
        async with session_scope(self.session_maker) as session:
            value = await session.scalar(
                select(IngestionCheckpoint.last_processed_timestamp)
                .where(IngestionCheckpoint.platform_id == platform_id)
            )
            return int(value or 0)

    async def get_all(self) -> Dict[int, int]:
        async with session_scope(self.session_maker) as session:
            rows = await session.execute(
                select(IngestionCheckpoint.platform_id, IngestionCheckpoint.last_processed_timestamp)
            )
            return {platform_id: int(ts) for platform_id, ts in rows.all()}

    async def get_global(self) -> Optional[int]:
        """
        Process-wide checkpoint: the lowest platform checkpoint.

        Every fill at or before this timestamp is recorded for every platform
        that has a checkpoint.
        """
        async with session_scope(self.session_maker) as session:
            value = await session.scalar(select(func.min(IngestionCheckpoint.last_processed_timestamp)))
            return int(value) if value is not None else None

    async def advance(self, platform_id: int, timestamp: int) -> int:
        """
        Move a platform's checkpoint forward to `timestamp`.

        Never moves backwards; returns the stored value after the call.
        """
        now = utc_now()
        async with session_scope(self.session_maker) as session:
            stmt = dialect_insert(session, IngestionCheckpoint).values(
                platform_id=platform_id,
                last_processed_timestamp=timestamp,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["platform_id"],
                set_={
                    "last_processed_timestamp": timestamp,
                    "updated_at": now,
                },
                where=IngestionCheckpoint.last_processed_timestamp < timestamp,
            )
            await session.execute(stmt)

        stored = await self.get(platform_id)
        self.logger.debug(
            "Checkpoint advanced",
            platform_id=platform_id,
            requested=timestamp,
            stored=stored
        )
        return stored
