"""Greedy APY equalization.

Repeatedly moves capital from the lowest-yielding discretionary strategy to
the highest-yielding one, halving the transfer until the move narrows the APY
spread, until no improving pair remains.
"""
import logging
from dataclasses import dataclass

from vault_allocator.core.config import Constraints, EqualizationConfig
from vault_allocator.models import Allocation, ReturnsDetails, Vault
from vault_allocator.optimizer.constraints import SafetyPredicates, is_min_allocation
from vault_allocator.optimizer.objective import score
from vault_allocator.optimizer.transfers import max_transfer
from vault_allocator.protocols.yield_model import YieldModel, protocol_yield_model

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidatePair:
    """Source and destination for one equalization move."""

    source: str
    destination: str
    capacity: int
    spread: float


@dataclass(frozen=True)
class EqualizationResult:
    """Best allocation found by equalization."""

    allocation: Allocation
    total_returns: float
    details: ReturnsDetails
    spread: float


class ApyEqualizationOptimizer:
    """Deterministic local search narrowing the APY spread across strategies."""

    def __init__(
        self,
        vault: Vault,
        constraints: Constraints,
        config: EqualizationConfig | None = None,
        yield_model: YieldModel = protocol_yield_model,
    ):
        self.vault = vault
        self.constraints = constraints
        self.config = config or EqualizationConfig()
        self.yield_model = yield_model
        self.predicates = SafetyPredicates(vault, constraints)
        self.allowed_strategies = vault.discretionary_queue()

    def _max_transfer(self, allocation: Allocation, source: str, destination: str) -> int:
        if source not in allocation or destination not in allocation:
            return 0
        if allocation[source].new_amount <= 0:
            return 0
        return max_transfer(self.vault, self.constraints, allocation, source, destination)

    def find_candidate_pair(self, allocation: Allocation, details: ReturnsDetails) -> CandidatePair | None:
        """Lowest-APY source and highest-APY destination with room to move.

        Sources need a positive, non-forced allocation; destinations any entry.
        The destination must out-yield the source by more than the epsilon.
        """
        apys = {
            strategy_id: details[strategy_id].combined_apy
            for strategy_id in self.allowed_strategies
            if strategy_id in details
        }
        if len(apys) < 2:
            return None

        sources = sorted(
            (
                s for s in apys
                if s in allocation
                and allocation[s].new_amount > 0
                and not is_min_allocation(self.constraints, s, allocation)
            ),
            key=lambda s: apys[s],
        )
        destinations = sorted((s for s in apys if s in allocation), key=lambda s: apys[s], reverse=True)

        for source in sources:
            for destination in destinations:
                if destination == source:
                    continue
                if apys[destination] <= apys[source] + self.config.spread_epsilon:
                    continue

                capacity = self._max_transfer(allocation, source, destination)
                if capacity > 0:
                    return CandidatePair(
                        source=source,
                        destination=destination,
                        capacity=capacity,
                        spread=apys[destination] - apys[source],
                    )

        return None

    def _is_improvement(
        self,
        current_spread: float,
        candidate_spread: float,
        current_returns: float,
        candidate_returns: float,
    ) -> bool:
        eps = self.config.spread_epsilon
        if candidate_spread + eps < current_spread:
            return True
        if abs(candidate_spread - current_spread) <= eps:
            return candidate_returns >= current_returns
        return False

    def _is_new_best(
        self,
        best_spread: float,
        candidate_spread: float,
        best_returns: float,
        candidate_returns: float,
    ) -> bool:
        eps = self.config.spread_epsilon
        if candidate_spread + eps < best_spread:
            return True
        return abs(candidate_spread - best_spread) <= eps and candidate_returns > best_returns

    def optimize(self, initial_allocation: Allocation) -> EqualizationResult:
        """Equalize APYs starting from the given allocation.

        Args:
            initial_allocation: Starting allocation (deployed, or an annealing result)

        Returns:
            EqualizationResult for the best allocation seen. Its spread never
            exceeds the initial spread.
        """
        target_spread = self.constraints.max_strategy_apy_diff or None
        eps = self.config.spread_epsilon

        current = initial_allocation
        current_returns, current_details = score(self.vault, current, self.yield_model)

        best = current
        best_returns = current_returns
        best_details = current_details
        best_spread = self.predicates.apy_spread(current, current_details)

        for iteration in range(self.config.max_iterations):
            current_spread = self.predicates.apy_spread(current, current_details)

            if (
                not self.predicates.is_over_utilized(current_details)
                and not self.predicates.is_outside_soft_cap(current)
                and target_spread is not None
                and current_spread <= target_spread + eps
            ):
                logger.debug(f"Spread {current_spread:.6f} within target {target_spread}")
                break

            pair = self.find_candidate_pair(current, current_details)
            if pair is None:
                break

            attempt = pair.capacity // 2 or pair.capacity
            improved = False

            while attempt > 0:
                trial = current.transfer(pair.source, pair.destination, attempt)
                trial_returns, trial_details = score(self.vault, trial, self.yield_model)
                trial_spread = self.predicates.apy_spread(trial, trial_details)

                if self.predicates.is_allocation_allowed(
                    current, current_details, trial, trial_details
                ) and self._is_improvement(current_spread, trial_spread, current_returns, trial_returns):
                    current = trial
                    current_returns = trial_returns
                    current_details = trial_details
                    improved = True

                    if self._is_new_best(best_spread, trial_spread, best_returns, trial_returns):
                        best = trial
                        best_returns = trial_returns
                        best_details = trial_details
                        best_spread = trial_spread
                    break

                attempt //= 2

            logger.debug(
                f"Equalization iteration {iteration}: {pair.source} -> {pair.destination}",
                extra={
                    "extra_data": {
                        "action": "equalization_iteration",
                        "iteration": iteration,
                        "source": pair.source,
                        "destination": pair.destination,
                        "capacity": pair.capacity,
                        "moved": attempt if improved else 0,
                        "spread": current_spread,
                        "best_spread": best_spread,
                    }
                },
            )

            if not improved:
                break

        logger.info(f"Equalization finished: spread {best_spread:.6f}, returns {best_returns:.4f}%")

        return EqualizationResult(
            allocation=best,
            total_returns=best_returns,
            details=best_details,
            spread=best_spread,
        )
