"""
Venue webhook receiver.
"""

import hashlib
import hmac
import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import PlainTextResponse

import structlog

from liquidlab.api.dependencies import get_container
from liquidlab.core.exceptions import AuthenticationError, ConfigurationError, ValidationError
from liquidlab.services.container import ServiceContainer

logger = structlog.get_logger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "X-Hyperliquid-Signature"
TRADE_EXECUTED = "trade.executed"


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(signature.strip(), compute_signature(body, secret))


@router.post(
    "/hyperliquid",
    summary="Hyperliquid Webhook",
    description="Receive signed trade events and record them in the fee ledger"
)
async def receive_hyperliquid_webhook(
    request: Request,
    signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
    container: ServiceContainer = Depends(get_container)
):
    secret = container.settings.webhook_secret
    if not secret:
        raise ConfigurationError("Webhook secret not configured")

    body = await request.body()
    if not verify_signature(body, signature, secret):
        logger.warning(
            "Webhook signature rejected",
            client_ip=request.client.host if request.client else None
        )
        raise AuthenticationError("Invalid webhook signature")

    try:
        payload = json.loads(body)
    except ValueError as e:
        raise ValidationError("Webhook body is not valid JSON") from e

    event_type = payload.get("type") if isinstance(payload, dict) else None
    if event_type != TRADE_EXECUTED:
        logger.debug("Ignoring webhook event", event_type=event_type)
        return {"received": True, "processed": False}

    result = await container.ingestion.record_webhook_trade(payload.get("data") or {})
    return {"received": True, "processed": True, **result}


@router.get(
    "/hyperliquid",
    summary="Webhook Verification",
    description="Echo the verification challenge sent during webhook setup"
)
async def verify_hyperliquid_webhook(challenge: Optional[str] = Query(None)):
    if challenge:
        return PlainTextResponse(challenge)
    return {"status": "ready"}
