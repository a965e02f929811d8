"""Run record model: the audit artifact of one allocation run."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from vault_allocator.models.allocation import Allocation
from vault_allocator.models.returns import ReturnsDetails


class OptimizationMode(Enum):
    """Which optimizer(s) run and which tolerance checks apply."""
    ANNEALING = "annealing"
    EQUALIZATION = "equalization"
    COMBINED = "combined"

    @property
    def requires_spread_check(self) -> bool:
        return self is not OptimizationMode.ANNEALING


# Non-hash outcomes of a run. Any other result string is a transaction hash.
RESULT_ABORT = "abort"
RESULT_SIMULATION = "simulation"
RESULT_ERROR = "error"


@dataclass(frozen=True)
class SpreadSummary:
    """APY spread before and after, plus the configured limit."""
    current: float | None = None
    final: float | None = None
    tolerance: float | None = None


@dataclass(frozen=True)
class AllocationSnapshot:
    """An allocation together with its scored returns."""
    allocation: Allocation
    total_returns: float
    details: ReturnsDetails

    def to_dict(self) -> dict[str, Any]:
        return {
            "allocation": self.allocation.to_dict(),
            "returns_total": self.total_returns,
            "returns_details": {k: v.to_dict() for k, v in self.details.items()},
        }


@dataclass(frozen=True)
class RunRecord:
    """Everything needed to audit one Decision Gate run."""
    timestamp: datetime
    vault: str
    mode: OptimizationMode
    current: AllocationSnapshot
    new: AllocationSnapshot
    allocatable_amount: int
    cash_amount: int
    result: str
    spread: SpreadSummary | None = None
    error: BaseException | None = None
    reasoning: str = ""

    @property
    def is_transaction(self) -> bool:
        return self.result not in (RESULT_ABORT, RESULT_SIMULATION, RESULT_ERROR)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "vault": self.vault,
            "mode": self.mode.value,
            "current": self.current.to_dict(),
            "new": self.new.to_dict(),
            "allocation_amount": self.allocatable_amount,
            "cash_amount": self.cash_amount,
            "spread": None if self.spread is None else {
                "current": self.spread.current,
                "final": self.spread.final,
                "tolerance": self.spread.tolerance,
            },
            "result": self.result,
            "error": None if self.error is None else f"{type(self.error).__name__}: {self.error}",
            "reasoning": self.reasoning,
        }
