"""
Venue adapter contract shared by the real Hyperliquid client and test doubles.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Protocol, runtime_checkable

from liquidlab.models.fee_transaction import TradeType


@dataclass(frozen=True)
class Fill:
    """A single execution reported by the venue for a wallet."""
    trade_id: str
    coin: str
    side: str
    size: Decimal
    price: Decimal
    timestamp: int  # milliseconds since epoch
    is_maker: bool
    trade_type: TradeType
    builder_fee: Optional[Decimal] = None

    @property
    def maker_or_taker(self) -> str:
        return "maker" if self.is_maker else "taker"


def detect_trade_type(coin: str) -> TradeType:
    """
    Classify a venue coin symbol.

    Hyperliquid names spot markets "@<index>" or "BASE/QUOTE"; perpetuals use
    the bare asset name.
    """
    if coin.startswith("@") or "/" in coin:
        return TradeType.SPOT
    return TradeType.PERP


@runtime_checkable
class VenueAdapter(Protocol):
    """Read-only boundary to the trading venue."""

    async def get_user_fills(self, wallet_address: str, start_time: Optional[int] = None) -> List[Fill]:
        """Return fills for a wallet, optionally only those at or after start_time (ms)."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        ...
