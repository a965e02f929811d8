"""Safety predicates over allocations and their post-impact returns.

All checks rank states the same way: utilization first, then soft caps, then
(only for healthy states) return and APY spread.
"""
from typing import NamedTuple

from vault_allocator.core.config import Constraints
from vault_allocator.models import Allocation, ReturnsDetails, Vault

# Allocations within this percentage above their soft cap minimum are forced, not chosen.
MIN_ALLOCATION_BAND_PERCENT = 10


class Health(NamedTuple):
    """Magnitude of unsafe conditions. Lower is better, compared lexicographically."""
    utilization_excess: float
    soft_cap_breach: int


def calculate_apy_spread(
    vault: Vault,
    constraints: Constraints,
    allocation: Allocation,
    details: ReturnsDetails,
) -> float:
    """Max minus min combined APY among discretionary strategies.

    The idle strategy, empty strategies and forced soft cap minimums are
    excluded. Returns 0 when no strategy qualifies.
    """
    apys = []
    for strategy_id in vault.discretionary_queue():
        entry = allocation.get(strategy_id)
        if entry is None or entry.new_amount == 0:
            continue
        if is_min_allocation(constraints, strategy_id, allocation):
            continue
        returns = details.get(strategy_id)
        if returns is None:
            continue
        apys.append(returns.combined_apy)

    if not apys:
        return 0.0
    return max(apys) - min(apys)


def is_min_allocation(constraints: Constraints, strategy_id: str, allocation: Allocation) -> bool:
    """True if the strategy only holds (about) its soft cap minimum."""
    soft_cap = constraints.soft_cap(strategy_id)
    if soft_cap is None or soft_cap.min == 0:
        return False
    amount = allocation[strategy_id].new_amount
    return amount * 100 <= soft_cap.min * (100 + MIN_ALLOCATION_BAND_PERCENT)


class SafetyPredicates:
    """Constraint checks bound to one vault snapshot and one set of constraints."""

    def __init__(self, vault: Vault, constraints: Constraints):
        self.vault = vault
        self.constraints = constraints

    def _utilization_checked(self, strategy_id: str) -> bool:
        soft_cap = self.constraints.soft_cap(strategy_id)
        return soft_cap is None or not soft_cap.disabled

    def is_over_utilized(self, details: ReturnsDetails) -> bool:
        """True if any checked strategy's utilization exceeds the limit."""
        limit = self.constraints.max_utilization
        if not limit:
            return False
        return any(
            returns.utilization > limit
            for strategy_id, returns in details.items()
            if self._utilization_checked(strategy_id)
        )

    def is_fully_over_utilized(self, details: ReturnsDetails) -> bool:
        """True only if every checked strategy exceeds the limit."""
        limit = self.constraints.max_utilization
        if not limit:
            return False
        checked = [r for s, r in details.items() if self._utilization_checked(s)]
        if not checked:
            return False
        return all(returns.utilization > limit for returns in checked)

    def utilization_excess(self, allocation: Allocation, details: ReturnsDetails) -> float:
        """Sum of (utilization - limit) over offending strategies, weighted by amount."""
        limit = self.constraints.max_utilization
        if not limit:
            return 0.0
        scale = 10**self.vault.asset_decimals
        excess = 0.0
        for strategy_id, returns in details.items():
            if not self._utilization_checked(strategy_id) or returns.utilization <= limit:
                continue
            excess += (returns.utilization - limit) * allocation[strategy_id].new_amount / scale
        return excess

    def is_over_utilization_improved(
        self,
        old_allocation: Allocation,
        old_details: ReturnsDetails,
        new_allocation: Allocation,
        new_details: ReturnsDetails,
    ) -> bool:
        return (
            self.utilization_excess(new_allocation, new_details)
            <= self.utilization_excess(old_allocation, old_details)
        )

    def soft_cap_breach(self, allocation: Allocation) -> int:
        """Total amount by which strategies sit outside their soft caps."""
        breach = 0
        for strategy_id, entry in allocation.items():
            soft_cap = self.constraints.soft_cap(strategy_id)
            if soft_cap is None:
                continue
            breach += max(0, soft_cap.min - entry.new_amount)
            breach += max(0, entry.new_amount - soft_cap.max)
        return breach

    def is_outside_soft_cap(self, allocation: Allocation) -> bool:
        return self.soft_cap_breach(allocation) > 0

    def is_soft_cap_improved(self, old_allocation: Allocation, new_allocation: Allocation) -> bool:
        """True iff the total soft cap breach strictly decreased."""
        return self.soft_cap_breach(new_allocation) < self.soft_cap_breach(old_allocation)

    def has_dust(self, allocation: Allocation) -> bool:
        """True if any deposit is non-zero but below the minimum deposit."""
        return any(0 < entry.diff < self.constraints.min_deposit for entry in allocation.values())

    def health(self, allocation: Allocation, details: ReturnsDetails) -> Health:
        return Health(
            utilization_excess=self.utilization_excess(allocation, details),
            soft_cap_breach=self.soft_cap_breach(allocation),
        )

    def is_healthy(self, allocation: Allocation, details: ReturnsDetails) -> bool:
        return not self.is_over_utilized(details) and not self.is_outside_soft_cap(allocation)

    def apy_spread(self, allocation: Allocation, details: ReturnsDetails) -> float:
        return calculate_apy_spread(self.vault, self.constraints, allocation, details)

    def is_allocation_allowed(
        self,
        old_allocation: Allocation,
        old_details: ReturnsDetails,
        new_allocation: Allocation,
        new_details: ReturnsDetails,
    ) -> bool:
        """Whether a move from the old state to the new state may be taken.

        A condition that was healthy must stay healthy, a condition that was
        unhealthy must not get worse (utilization) or must strictly improve
        (soft caps), and no deposit may be dust.
        """
        if self.is_over_utilized(old_details):
            if not self.is_over_utilization_improved(old_allocation, old_details, new_allocation, new_details):
                return False
        elif self.is_over_utilized(new_details):
            return False

        if self.is_outside_soft_cap(old_allocation):
            if not self.is_soft_cap_improved(old_allocation, new_allocation):
                return False
        elif self.is_outside_soft_cap(new_allocation):
            return False

        return not self.has_dust(new_allocation)

    def is_better_allocation(
        self,
        best_allocation: Allocation,
        best_details: ReturnsDetails,
        best_returns: float,
        candidate_allocation: Allocation,
        candidate_details: ReturnsDetails,
        candidate_returns: float,
        initial_allocation: Allocation,
        initial_details: ReturnsDetails,
    ) -> bool:
        """Rank a candidate against the current best.

        Better health always wins. With equal health, only a healthy candidate
        can win, by strictly higher return, and only if it keeps the APY spread
        under the configured limit (or, when the initial state was already
        beyond the limit, narrows it relative to both initial and best).
        """
        if not self.is_allocation_allowed(best_allocation, best_details, candidate_allocation, candidate_details):
            return False

        best_health = self.health(best_allocation, best_details)
        candidate_health = self.health(candidate_allocation, candidate_details)
        if candidate_health != best_health:
            return candidate_health < best_health

        if not self.is_healthy(candidate_allocation, candidate_details):
            return False
        if candidate_returns <= best_returns:
            return False

        max_diff = self.constraints.max_strategy_apy_diff
        if not max_diff:
            return True

        initial_spread = self.apy_spread(initial_allocation, initial_details)
        best_spread = self.apy_spread(best_allocation, best_details)
        candidate_spread = self.apy_spread(candidate_allocation, candidate_details)

        if candidate_spread < max_diff:
            return True
        if initial_spread > max_diff:
            return candidate_spread < initial_spread and candidate_spread < best_spread
        return False
