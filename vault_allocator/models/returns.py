"""Post-impact yield figures for an allocation."""
from dataclasses import dataclass, asdict
from typing import Any


@dataclass(frozen=True)
class StrategyReturns:
    """Yield a strategy would offer after an allocation is applied."""
    interest_apy: float
    rewards_apy: float
    utilization: float

    @property
    def combined_apy(self) -> float:
        return self.interest_apy + self.rewards_apy

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# Strategy identifier -> StrategyReturns. Derived from an Allocation, never stored.
ReturnsDetails = dict[str, StrategyReturns]
