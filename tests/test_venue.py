"""
Venue payload parsing and the static test venue.
"""

from decimal import Decimal

import pytest

from liquidlab.core.exceptions import ValidationError, VenueError
from liquidlab.models import TradeType
from liquidlab.services.venue import (
    StaticVenueAdapter,
    VenueAdapter,
    HyperliquidVenueAdapter,
    detect_trade_type,
    parse_fill,
    parse_webhook_trade,
)

from conftest import make_fill


RAW_FILL = {
    "coin": "ETH",
    "px": "3120.5",
    "sz": "0.25",
    "side": "A",
    "time": 1717000000123,
    "startPosition": "1.0",
    "dir": "Close Long",
    "closedPnl": "12.3",
    "hash": "0xabc",
    "oid": 42,
    "crossed": True,
    "fee": "0.35",
    "tid": 987654321,
    "feeToken": "USDC",
    "builderFee": "0.078",
}


def test_parse_fill_maps_venue_fields():
    fill = parse_fill(RAW_FILL)

    assert fill.trade_id == "987654321"
    assert fill.side == "sell"
    assert fill.size == Decimal("0.25")
    assert fill.price == Decimal("3120.5")
    assert fill.timestamp == 1717000000123
    assert fill.is_maker is False
    assert fill.maker_or_taker == "taker"
    assert fill.trade_type == TradeType.PERP
    assert fill.builder_fee == Decimal("0.078")


def test_parse_fill_maker_without_builder_fee():
    raw = {k: v for k, v in RAW_FILL.items() if k != "builderFee"}
    raw.update(crossed=False, side="B")

    fill = parse_fill(raw)

    assert fill.is_maker is True
    assert fill.side == "buy"
    assert fill.builder_fee is None


def test_parse_fill_rejects_malformed_entry():
    raw = {k: v for k, v in RAW_FILL.items() if k != "tid"}

    with pytest.raises(VenueError):
        parse_fill(raw)


@pytest.mark.parametrize("coin,expected", [
    ("BTC", TradeType.PERP),
    ("@107", TradeType.SPOT),
    ("PURR/USDC", TradeType.SPOT),
    ("kPEPE", TradeType.PERP),
])
def test_detect_trade_type(coin, expected):
    assert detect_trade_type(coin) == expected


def test_parse_webhook_trade():
    platform_id, fill, builder_code = parse_webhook_trade({
        "platformId": "7",
        "tradeId": "wh-1",
        "market": "@1",
        "side": "buy",
        "size": "4",
        "price": "2.5",
        "timestamp": 1717000000000,
        "builderCode": "LIQUIDLAB2025",
    })

    assert platform_id == 7
    assert fill.trade_id == "wh-1"
    assert fill.trade_type == TradeType.SPOT
    assert fill.side == "buy"
    assert builder_code == "LIQUIDLAB2025"


def test_parse_webhook_trade_rejects_missing_fields():
    with pytest.raises(ValidationError):
        parse_webhook_trade({"platformId": 1, "tradeId": "x"})


def test_adapters_satisfy_contract():
    assert isinstance(StaticVenueAdapter(), VenueAdapter)
    assert isinstance(HyperliquidVenueAdapter("https://api.hyperliquid.xyz"), VenueAdapter)


async def test_static_venue_filters_by_start_time():
    venue = StaticVenueAdapter({"0xabc": [make_fill("a", 100), make_fill("b", 200)]})

    fills = await venue.get_user_fills("0xabc", start_time=150)

    assert [f.trade_id for f in fills] == ["b"]
    assert venue.calls == ["0xabc"]


async def test_static_venue_simulated_failure():
    venue = StaticVenueAdapter()
    venue.fail_for("0xdead", VenueError("boom"))

    with pytest.raises(VenueError):
        await venue.get_user_fills("0xdead")

    venue.clear_failure("0xdead")
    assert await venue.get_user_fills("0xdead") == []
