"""
Platform registry: which platforms exist and which wallet their fills come from.
"""

from dataclasses import dataclass
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from liquidlab.core.database import session_scope
from liquidlab.core.exceptions import PlatformNotFoundError
from liquidlab.models.platform import TradingPlatform


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PlatformRef:
    """Minimal view of a platform used by the pipeline."""
    id: int
    user_id: int
    owner_wallet_address: Optional[str]
    payout_wallet_address: Optional[str]

    @property
    def recipient_address(self) -> Optional[str]:
        return self.payout_wallet_address or self.owner_wallet_address


class PlatformRegistry:
    """Reads registered platforms from the database."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker
        self.logger = logger.bind(service="platform_registry")

    async def list_platforms(self) -> List[PlatformRef]:
        """All active platforms, ordered by id."""
        async with session_scope(self.session_maker) as session:
            result = await session.execute(
                select(TradingPlatform)
                .where(TradingPlatform.is_active.is_(True))
                .order_by(TradingPlatform.id)
            )
            platforms = [_to_ref(platform) for platform in result.scalars().all()]

        self.logger.debug("Loaded platforms", count=len(platforms))
        return platforms

    async def get_platform(self, platform_id: int) -> PlatformRef:
        async with session_scope(self.session_maker) as session:
            platform = await session.get(TradingPlatform, platform_id)
            if platform is None:
                raise PlatformNotFoundError(platform_id)
            return _to_ref(platform)


def _to_ref(platform: TradingPlatform) -> PlatformRef:
    return PlatformRef(
        id=platform.id,
        user_id=platform.user_id,
        owner_wallet_address=platform.owner_wallet_address,
        payout_wallet_address=platform.payout_wallet_address,
    )
