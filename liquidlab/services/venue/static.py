"""
In-memory venue adapter.

Selected with VENUE_ADAPTER=static for local development and used by the
test suite; business code never knows which adapter it is talking to.
"""

from typing import Dict, Iterable, List, Optional

import structlog

from .base import Fill


logger = structlog.get_logger(__name__)


class StaticVenueAdapter:
    """Serves preloaded fills per wallet and can simulate venue failures."""

    def __init__(self, fills: Optional[Dict[str, Iterable[Fill]]] = None):
        self._fills: Dict[str, List[Fill]] = {
            wallet: list(wallet_fills) for wallet, wallet_fills in (fills or {}).items()
        }
        self._failures: Dict[str, Exception] = {}
        self.calls: List[str] = []

    def set_fills(self, wallet_address: str, fills: Iterable[Fill]) -> None:
        self._fills[wallet_address] = list(fills)

    def add_fills(self, wallet_address: str, fills: Iterable[Fill]) -> None:
        self._fills.setdefault(wallet_address, []).extend(fills)

    def fail_for(self, wallet_address: str, error: Exception) -> None:
        self._failures[wallet_address] = error

    def clear_failure(self, wallet_address: str) -> None:
        self._failures.pop(wallet_address, None)

    async def get_user_fills(self, wallet_address: str, start_time: Optional[int] = None) -> List[Fill]:
        self.calls.append(wallet_address)
        if wallet_address in self._failures:
            raise self._failures[wallet_address]

        fills = self._fills.get(wallet_address, [])
        if start_time:
            fills = [fill for fill in fills if fill.timestamp >= start_time]
        return list(fills)

    async def close(self) -> None:
        logger.debug("Static venue adapter closed")
