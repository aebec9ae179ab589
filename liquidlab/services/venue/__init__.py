"""Venue adapters."""

from .base import Fill, VenueAdapter, detect_trade_type
from .hyperliquid import HyperliquidVenueAdapter, parse_fill, parse_webhook_trade
from .static import StaticVenueAdapter

__all__ = [
    "Fill",
    "VenueAdapter",
    "detect_trade_type",
    "HyperliquidVenueAdapter",
    "parse_fill",
    "parse_webhook_trade",
    "StaticVenueAdapter",
]
