"""Data models for the vault allocator."""

from vault_allocator.models.vault import (
    Protocol,
    KinkIrm,
    AdaptiveCurveIrm,
    NoIrm,
    IrmConfig,
    RewardCampaign,
    StrategyDetails,
    Strategy,
    Vault,
)
from vault_allocator.models.allocation import AllocationEntry, Allocation
from vault_allocator.models.returns import StrategyReturns, ReturnsDetails
from vault_allocator.models.run_record import (
    OptimizationMode,
    SpreadSummary,
    AllocationSnapshot,
    RunRecord,
    RESULT_ABORT,
    RESULT_SIMULATION,
    RESULT_ERROR,
)

__all__ = [
    "Protocol",
    "KinkIrm",
    "AdaptiveCurveIrm",
    "NoIrm",
    "IrmConfig",
    "RewardCampaign",
    "StrategyDetails",
    "Strategy",
    "Vault",
    "AllocationEntry",
    "Allocation",
    "StrategyReturns",
    "ReturnsDetails",
    "OptimizationMode",
    "SpreadSummary",
    "AllocationSnapshot",
    "RunRecord",
    "RESULT_ABORT",
    "RESULT_SIMULATION",
    "RESULT_ERROR",
]
