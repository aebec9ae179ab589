"""
Revenue, fee and payout schemas for the API.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from liquidlab.models.fee_transaction import FeeStatus


class MoneyModel(BaseModel):
    """Read model built from ORM rows; Decimal amounts serialize as strings in JSON."""
    model_config = ConfigDict(from_attributes=True)


class FeeTransactionResponse(MoneyModel):
    """One ledger row."""
    id: int
    platform_id: int
    trade_id: str
    trade_type: str
    coin: Optional[str] = None
    side: Optional[str] = None
    is_maker: bool
    trade_volume: Decimal
    fee_rate: Decimal
    total_fee: Decimal
    platform_share: Decimal
    liquidlab_share: Decimal
    status: str
    trade_timestamp: int
    source: str
    claimed_at: Optional[datetime] = None
    claim_tx_hash: Optional[str] = None
    distributed_at: Optional[datetime] = None
    created_at: datetime


class RevenueSummaryResponse(MoneyModel):
    """Aggregated totals for a platform over one window."""
    platform_id: int
    period: str
    start_date: date
    window_start: datetime
    window_end: datetime
    period_end: datetime
    total_volume: Decimal
    total_fees: Decimal
    platform_earnings: Decimal
    liquidlab_earnings: Decimal
    trade_count: int
    last_updated: datetime


class PayoutRecordResponse(MoneyModel):
    """A payout attempt."""
    id: int
    platform_id: int
    user_id: int
    amount: Decimal
    currency: str
    status: str
    period: str
    period_start: datetime
    period_end: datetime
    recipient_address: str
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime


class ClaimFeesRequest(BaseModel):
    """Mark pending fees in a date range as claimed from the venue."""
    start_date: datetime
    end_date: datetime
    claim_tx_hash: str = Field(min_length=1, max_length=100)


class DistributeFeesRequest(BaseModel):
    """Mark a platform's claimed fees in a date range as distributed."""
    platform_id: int
    start_date: datetime
    end_date: datetime


class FeeStatusUpdateRequest(BaseModel):
    """Change the status of a single fee transaction."""
    status: FeeStatus
    force: bool = Field(default=False, description="Allow non-forward transitions")
