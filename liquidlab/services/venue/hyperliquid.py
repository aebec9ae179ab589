"""
Hyperliquid info API client used to pull attributed fills.
"""

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from liquidlab.core.exceptions import VenueError, ValidationError
from .base import Fill, detect_trade_type


logger = structlog.get_logger(__name__)


SIDE_NAMES = {"B": "buy", "A": "sell"}


def parse_fill(raw: Dict[str, Any]) -> Fill:
    """
    Convert one userFills entry into a Fill.

    Hyperliquid reports `crossed=True` for the taker side of a fill and
    includes `builderFee` only when the order carried a builder code.
    """
    try:
        coin = str(raw["coin"])
        builder_fee = raw.get("builderFee")
        return Fill(
            trade_id=str(raw["tid"]),
            coin=coin,
            side=SIDE_NAMES.get(raw.get("side"), str(raw.get("side", "")).lower()),
            size=Decimal(str(raw["sz"])),
            price=Decimal(str(raw["px"])),
            timestamp=int(raw["time"]),
            is_maker=not bool(raw.get("crossed", True)),
            trade_type=detect_trade_type(coin),
            builder_fee=Decimal(str(builder_fee)) if builder_fee is not None else None,
        )
    except (KeyError, TypeError, ValueError, InvalidOperation) as e:
        raise VenueError(
            "Malformed fill in venue response",
            {"fill": raw, "error": str(e)}
        ) from e


def parse_webhook_trade(data: Dict[str, Any]) -> "tuple[int, Fill, Optional[str]]":
    """
    Convert a `trade.executed` webhook payload into (platform_id, fill, builder_code).

    Webhook trades carry the platform explicitly and a `maker` flag instead
    of `crossed`.
    """
    try:
        coin = str(data["market"])
        timestamp = int(data["timestamp"])
        side = str(data.get("side", "")).lower()
        fill = Fill(
            trade_id=str(data["tradeId"]),
            coin=coin,
            side=SIDE_NAMES.get(side.upper(), side),
            size=Decimal(str(data["size"])),
            price=Decimal(str(data["price"])),
            timestamp=timestamp,
            is_maker=bool(data.get("maker", False)),
            trade_type=detect_trade_type(coin),
        )
        return int(data["platformId"]), fill, data.get("builderCode")
    except (KeyError, TypeError, ValueError, InvalidOperation) as e:
        raise ValidationError(
            "Malformed trade.executed payload",
            {"error": str(e)}
        ) from e


class HyperliquidVenueAdapter:
    """Async client for the Hyperliquid `/info` endpoint."""

    def __init__(self, base_url: str, timeout_seconds: int = 15):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None
        self.logger = logger.bind(service="hyperliquid_venue")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def _post_info(self, payload: Dict[str, Any]) -> Any:
        session = await self._get_session()
        url = f"{self.base_url}/info"
        try:
            async with session.post(url, json=payload) as response:
                if response.status != 200:
                    body = await response.text()
                    raise VenueError(
                        f"Hyperliquid returned HTTP {response.status}",
                        {"status": response.status, "body": body[:500], "request_type": payload.get("type")}
                    )
                return await response.json()
        except asyncio.TimeoutError as e:
            raise VenueError("Hyperliquid request timed out", {"request_type": payload.get("type")}) from e
        except aiohttp.ClientError as e:
            raise VenueError(
                "Hyperliquid request failed",
                {"request_type": payload.get("type"), "error": str(e)}
            ) from e

    async def get_user_fills(self, wallet_address: str, start_time: Optional[int] = None) -> List[Fill]:
        """Fetch fills for a wallet; uses the time-ranged query when start_time is given."""
        if start_time:
            payload = {"type": "userFillsByTime", "user": wallet_address, "startTime": start_time}
        else:
            payload = {"type": "userFills", "user": wallet_address}

        data = await self._post_info(payload)
        if not isinstance(data, list):
            raise VenueError(
                "Unexpected userFills response shape",
                {"wallet": wallet_address, "type": type(data).__name__}
            )

        fills = [parse_fill(raw) for raw in data]
        self.logger.debug("Fetched user fills", wallet=wallet_address, count=len(fills))
        return fills

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
