"""
Database models for the LiquidLab revenue backend.

The fee ledger is the source of truth; summaries are recomputable caches and
payout records track money leaving the operator.
"""

from .base import Base, BaseModel, TimestampMixin
from .platform import TradingPlatform
from .fee_transaction import FeeTransaction, FeeStatus, TradeType, FEE_STATUS_TRANSITIONS
from .revenue_summary import PlatformRevenueSummary, RevenuePeriod
from .payout import PayoutRecord, PayoutStatus, PAYOUT_STATUS_TRANSITIONS, ACTIVE_PAYOUT_STATUSES
from .checkpoint import IngestionCheckpoint

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "TradingPlatform",
    "FeeTransaction",
    "FeeStatus",
    "TradeType",
    "FEE_STATUS_TRANSITIONS",
    "PlatformRevenueSummary",
    "RevenuePeriod",
    "PayoutRecord",
    "PayoutStatus",
    "PAYOUT_STATUS_TRANSITIONS",
    "ACTIVE_PAYOUT_STATUSES",
    "IngestionCheckpoint",
]
