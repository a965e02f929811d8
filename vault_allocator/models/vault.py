"""Vault and strategy snapshot models."""
from dataclasses import dataclass
from enum import Enum


class Protocol(Enum):
    """Supported lending protocols."""
    EULER = "euler"


@dataclass(frozen=True)
class KinkIrm:
    """Linear-kink interest rate model parameters (per-second rates scaled by 1e27)."""
    base_rate: int
    kink: int
    slope1: int
    slope2: int


@dataclass(frozen=True)
class AdaptiveCurveIrm:
    """Adaptive-curve interest rate model parameters (WAD scaled)."""
    rate_at_target: int
    target_utilization: int
    initial_rate_at_target: int
    min_rate_at_target: int
    max_rate_at_target: int
    curve_steepness: int
    adjustment_speed: int


@dataclass(frozen=True)
class NoIrm:
    """Escrow vault without an interest rate model."""


IrmConfig = KinkIrm | AdaptiveCurveIrm | NoIrm


@dataclass(frozen=True)
class RewardCampaign:
    """An active reward campaign, expressed in asset terms."""
    daily_reward: float         # Asset units (not scaled) distributed per day
    blacklisted_supply: int     # Supply excluded from the campaign, smallest unit


@dataclass(frozen=True)
class StrategyDetails:
    """On-chain state of a lending market at snapshot time."""
    vault: str
    symbol: str
    protocol: Protocol
    supply_apy: float
    reward_apy: float
    cash: int
    total_borrows: int
    total_shares: int
    interest_fee: int           # Basis points
    supply_cap: int
    irm_config: IrmConfig
    borrow_apy: float = 0.0
    reward_campaigns: tuple[RewardCampaign, ...] = ()


@dataclass(frozen=True)
class Strategy:
    """One lending destination of the vault."""
    cap: int
    allocation: int
    details: StrategyDetails

    @property
    def protocol(self) -> Protocol:
        return self.details.protocol


@dataclass(frozen=True)
class Vault:
    """Aggregate being optimized.

    Attributes:
        strategies: Strategy identifier -> Strategy
        idle_strategy: Zero-yield always-liquid sink, if the vault has one
        allocation_queue: Strategy identifiers in search iteration order
        asset_decimals: Decimal precision of the underlying asset
    """
    strategies: dict[str, Strategy]
    allocation_queue: tuple[str, ...]
    asset_decimals: int
    idle_strategy: str | None = None

    def __post_init__(self):
        unknown = [s for s in self.allocation_queue if s not in self.strategies]
        if unknown:
            raise ValueError(f"Allocation queue references unknown strategies: {unknown}")
        if len(set(self.allocation_queue)) != len(self.allocation_queue):
            raise ValueError("Allocation queue contains duplicate strategies")

    @property
    def total_assets(self) -> int:
        """Sum of amounts currently deployed across all strategies."""
        return sum(s.allocation for s in self.strategies.values())

    def is_idle(self, strategy_id: str) -> bool:
        return self.idle_strategy is not None and strategy_id == self.idle_strategy

    def discretionary_queue(self) -> tuple[str, ...]:
        """Allocation queue without the idle sink."""
        return tuple(s for s in self.allocation_queue if not self.is_idle(s))
