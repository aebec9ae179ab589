"""
Payout executor boundary.

The executor moves funds; this service only tells it who gets how much and
records what it answered.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import aiohttp
import structlog

from liquidlab.core.exceptions import PayoutError


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PayoutRequest:
    payout_id: int
    platform_id: int
    amount: Decimal
    currency: str
    recipient_address: str


@dataclass(frozen=True)
class PayoutResult:
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@runtime_checkable
class PayoutExecutor(Protocol):
    """Transfers funds to a platform owner."""

    async def execute(self, request: PayoutRequest) -> PayoutResult:
        ...

    async def get_balance(self, currency: str) -> Optional[Decimal]:
        """Available balance, or None when the executor cannot report one."""
        ...

    async def close(self) -> None:
        ...


class HttpPayoutExecutor:
    """Talks to an external payout service over HTTP with a bearer token."""

    def __init__(self, base_url: str, token: Optional[str] = None, timeout_seconds: int = 30):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None
        self.logger = logger.bind(service="payout_executor")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers=headers)
        return self._session

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        try:
            async with session.request(method, url, json=payload) as response:
                data = await response.json(content_type=None)
                if response.status >= 500:
                    raise PayoutError(
                        f"Payout executor returned HTTP {response.status}",
                        {"status": response.status, "path": path}
                    )
                return data or {}
        except asyncio.TimeoutError as e:
            raise PayoutError("Payout executor request timed out", {"path": path}) from e
        except aiohttp.ClientError as e:
            raise PayoutError("Payout executor request failed", {"path": path, "error": str(e)}) from e

    async def execute(self, request: PayoutRequest) -> PayoutResult:
        data = await self._request("POST", "/payouts", {
            "reference": f"payout-{request.payout_id}",
            "platform_id": request.platform_id,
            "amount": str(request.amount),
            "currency": request.currency,
            "recipient_address": request.recipient_address,
        })

        if data.get("success"):
            tx_hash = data.get("tx_hash") or data.get("txHash")
            self.logger.info(
                "Payout executed",
                payout_id=request.payout_id,
                platform_id=request.platform_id,
                amount=str(request.amount),
                tx_hash=tx_hash
            )
            return PayoutResult(success=True, tx_hash=tx_hash)

        error = data.get("error") or "Payout rejected by executor"
        self.logger.warning(
            "Payout rejected",
            payout_id=request.payout_id,
            platform_id=request.platform_id,
            error=error
        )
        return PayoutResult(success=False, error=error)

    async def get_balance(self, currency: str) -> Optional[Decimal]:
        try:
            data = await self._request("GET", f"/balance?currency={currency}")
        except PayoutError as e:
            self.logger.warning("Could not read executor balance", error=e.message)
            return None
        balance = data.get("balance")
        return Decimal(str(balance)) if balance is not None else None

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
