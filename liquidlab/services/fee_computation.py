"""
Fee computation under the revenue-sharing contract.

Everything here is pure: no I/O, no clocks, deterministic for a given fill.
Fee rates and split ratios come from a single FeeSchedule / RevenueSplitPolicy
table built from settings; call sites never inline their own numbers.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Optional

from liquidlab.core.exceptions import FeeInvariantError, ConfigurationError
from liquidlab.models.fee_transaction import TradeType
from .venue.base import Fill


AMOUNT_QUANT = Decimal("0.00000001")


class RevenueStream(str, Enum):
    """Revenue sources that are shared with platform owners."""
    TRADING = "trading"
    ONRAMP = "onramp"


@dataclass(frozen=True)
class RevenueSplitPolicy:
    """Share of a fee owed to the platform owner; the operator keeps the rest."""
    stream: RevenueStream
    platform_ratio: Decimal

    def __post_init__(self):
        if self.platform_ratio < 0 or self.platform_ratio > 1:
            raise ConfigurationError(
                "Platform split ratio must be between 0 and 1",
                {"stream": self.stream.value, "ratio": str(self.platform_ratio)}
            )

    @property
    def operator_ratio(self) -> Decimal:
        return Decimal("1") - self.platform_ratio

    def split(self, total_fee: Decimal) -> "tuple[Decimal, Decimal]":
        """Return (platform_share, operator_share); the second is derived by subtraction."""
        platform_share = (total_fee * self.platform_ratio).quantize(AMOUNT_QUANT, rounding=ROUND_DOWN)
        return platform_share, total_fee - platform_share


@dataclass(frozen=True)
class FeeSchedule:
    """Contract fee rates by trade type, optionally differentiated for makers."""
    taker_rates: Dict[TradeType, Decimal]
    maker_rates: Dict[TradeType, Decimal] = field(default_factory=dict)

    def rate_for(self, trade_type: TradeType, is_maker: bool) -> Decimal:
        if is_maker and trade_type in self.maker_rates:
            return self.maker_rates[trade_type]
        try:
            return self.taker_rates[trade_type]
        except KeyError:
            raise ConfigurationError(
                f"No fee rate configured for trade type {trade_type.value}",
                {"trade_type": trade_type.value}
            )


@dataclass(frozen=True)
class FeeComputation:
    """Fee breakdown for one fill."""
    trade_volume: Decimal
    fee_rate: Decimal
    total_fee: Decimal
    platform_share: Decimal
    liquidlab_share: Decimal


def build_fee_schedule(settings) -> FeeSchedule:
    """Build the canonical fee schedule from settings."""
    maker_rates = {}
    if settings.spot_maker_fee_rate is not None:
        maker_rates[TradeType.SPOT] = settings.spot_maker_fee_rate
    if settings.perp_maker_fee_rate is not None:
        maker_rates[TradeType.PERP] = settings.perp_maker_fee_rate

    return FeeSchedule(
        taker_rates={
            TradeType.SPOT: settings.spot_fee_rate,
            TradeType.PERP: settings.perp_fee_rate,
        },
        maker_rates=maker_rates,
    )


def build_split_policies(settings) -> Dict[RevenueStream, RevenueSplitPolicy]:
    """Build the per-stream revenue split table from settings."""
    return {
        RevenueStream.TRADING: RevenueSplitPolicy(RevenueStream.TRADING, settings.trading_platform_split),
        RevenueStream.ONRAMP: RevenueSplitPolicy(RevenueStream.ONRAMP, settings.onramp_platform_split),
    }


def compute_fee(fill: Fill, schedule: FeeSchedule, policy: RevenueSplitPolicy) -> FeeComputation:
    """
    Compute the fee breakdown for a fill.

    Raises:
        FeeInvariantError: if the input is unusable or the shares do not sum
            to the total fee. Such a row must never reach the ledger.
    """
    if fill.size <= 0 or fill.price <= 0:
        raise FeeInvariantError(
            fill.trade_id,
            {"reason": "non-positive size or price", "size": str(fill.size), "price": str(fill.price)}
        )

    fee_rate = schedule.rate_for(fill.trade_type, fill.is_maker)
    trade_volume = (fill.size * fill.price).quantize(AMOUNT_QUANT, rounding=ROUND_HALF_UP)
    total_fee = (trade_volume * fee_rate).quantize(AMOUNT_QUANT, rounding=ROUND_HALF_UP)
    platform_share, liquidlab_share = policy.split(total_fee)

    computation = FeeComputation(
        trade_volume=trade_volume,
        fee_rate=fee_rate,
        total_fee=total_fee,
        platform_share=platform_share,
        liquidlab_share=liquidlab_share,
    )
    verify_fee_computation(fill.trade_id, computation)
    return computation


def verify_fee_computation(trade_id: str, computation: FeeComputation) -> None:
    """Check the invariants the ledger relies on."""
    if computation.platform_share + computation.liquidlab_share != computation.total_fee:
        raise FeeInvariantError(trade_id, {
            "reason": "shares do not sum to total fee",
            "total_fee": str(computation.total_fee),
            "platform_share": str(computation.platform_share),
            "liquidlab_share": str(computation.liquidlab_share),
        })
    if computation.platform_share < 0 or computation.liquidlab_share < 0:
        raise FeeInvariantError(trade_id, {
            "reason": "negative share",
            "platform_share": str(computation.platform_share),
            "liquidlab_share": str(computation.liquidlab_share),
        })


class FeeCalculator:
    """Binds the canonical schedule and trading split policy for repeated use."""

    def __init__(self, schedule: FeeSchedule, policies: Dict[RevenueStream, RevenueSplitPolicy]):
        self.schedule = schedule
        self.policies = policies

    @classmethod
    def from_settings(cls, settings) -> "FeeCalculator":
        return cls(build_fee_schedule(settings), build_split_policies(settings))

    def policy_for(self, stream: RevenueStream) -> RevenueSplitPolicy:
        return self.policies[stream]

    def compute(self, fill: Fill, stream: RevenueStream = RevenueStream.TRADING) -> FeeComputation:
        return compute_fee(fill, self.schedule, self.policy_for(stream))

    def split(self, amount: Decimal, stream: RevenueStream) -> "tuple[Decimal, Decimal]":
        """Split an already-known fee (e.g. an on-ramp affiliate fee) for a stream."""
        return self.policy_for(stream).split(amount.quantize(AMOUNT_QUANT, rounding=ROUND_HALF_UP))

    def describe(self) -> Dict[str, Optional[str]]:
        return {
            "spot_fee_rate": str(self.schedule.taker_rates.get(TradeType.SPOT)),
            "perp_fee_rate": str(self.schedule.taker_rates.get(TradeType.PERP)),
            "spot_maker_fee_rate": _opt(self.schedule.maker_rates.get(TradeType.SPOT)),
            "perp_maker_fee_rate": _opt(self.schedule.maker_rates.get(TradeType.PERP)),
            "trading_platform_split": str(self.policies[RevenueStream.TRADING].platform_ratio),
            "onramp_platform_split": str(self.policies[RevenueStream.ONRAMP].platform_ratio),
        }


def _opt(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None
