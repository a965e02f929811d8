"""Simulated annealing search over allocations."""
import logging
import math
import random
import time

from vault_allocator.core.config import AnnealingConfig, Constraints
from vault_allocator.models import Allocation, ReturnsDetails, Vault
from vault_allocator.optimizer.constraints import SafetyPredicates
from vault_allocator.optimizer.objective import score
from vault_allocator.optimizer.transfers import max_transfer, scale_amount
from vault_allocator.protocols.yield_model import YieldModel, protocol_yield_model

logger = logging.getLogger(__name__)


class SimulatedAnnealingOptimizer:
    """Stochastic global search for the highest-yield safe allocation.

    The search walks `current` through random pairwise transfers accepted by
    the Metropolis criterion, while `best` only ever moves to a candidate that
    ranks strictly better under SafetyPredicates.is_better_allocation. The
    returned allocation is therefore never worse than the initial one.
    """

    def __init__(
        self,
        vault: Vault,
        constraints: Constraints,
        config: AnnealingConfig | None = None,
        yield_model: YieldModel = protocol_yield_model,
        rng: random.Random | None = None,
    ):
        """Initialize the optimizer.

        Args:
            vault: Vault snapshot to optimize
            constraints: Safety constraints applied to candidates
            config: Cooling schedule (defaults to AnnealingConfig())
            yield_model: Post-impact yield function used for scoring
            rng: Source of uniform [0, 1) draws; any object with random()
        """
        self.vault = vault
        self.config = config or AnnealingConfig()
        self.yield_model = yield_model
        self.rng = rng if rng is not None else random.Random()
        self.predicates = SafetyPredicates(vault, constraints)
        self.pool = self._neighbor_pool()

        self.temperature = self.config.initial_temp
        self.consecutive_failures = 0

        self.initial_allocation: Allocation | None = None
        self.initial_returns = 0.0
        self.initial_details: ReturnsDetails = {}
        self.current_allocation: Allocation | None = None
        self.current_returns = 0.0
        self.best_allocation: Allocation | None = None
        self.best_returns = 0.0
        self.best_details: ReturnsDetails = {}

    def _neighbor_pool(self) -> tuple[str, ...]:
        # The idle strategy only joins the pool when too few others remain
        pool = self.vault.discretionary_queue()
        if len(pool) < 2:
            pool = self.vault.allocation_queue
        return pool

    def _score(self, allocation: Allocation) -> tuple[float, ReturnsDetails]:
        return score(self.vault, allocation, self.yield_model)

    def reset(self, initial_allocation: Allocation) -> None:
        """Start a new search from the given allocation."""
        returns, details = self._score(initial_allocation)

        self.initial_allocation = initial_allocation
        self.initial_returns = returns
        self.initial_details = details
        self.current_allocation = initial_allocation
        self.current_returns = returns
        self.best_allocation = initial_allocation
        self.best_returns = returns
        self.best_details = details

        self.temperature = self.config.initial_temp
        self.consecutive_failures = 0

    def generate_neighbor(self, allocation: Allocation, temperature: float) -> Allocation:
        """Move a random, temperature-scaled amount between two random strategies.

        Args:
            allocation: Allocation to start from (left untouched)
            temperature: Fraction of the feasible transfer bound to consider

        Returns:
            The neighboring allocation, or `allocation` itself if nothing can move
        """
        n = len(self.pool)
        if n < 2:
            return allocation

        source_idx = math.floor(self.rng.random() * n)
        dest_idx = (source_idx + 1 + math.floor(self.rng.random() * (n - 1))) % n
        source = self.pool[source_idx]
        destination = self.pool[dest_idx]

        bound = max_transfer(self.vault, self.predicates.constraints, allocation, source, destination)
        amount = scale_amount(scale_amount(bound, temperature), self.rng.random())

        return allocation.transfer(source, destination, amount)

    def step(self) -> bool:
        """Propose one neighbor at the current temperature.

        Returns:
            True if the neighbor was accepted into the current state
        """
        candidate = self.generate_neighbor(self.current_allocation, self.temperature)
        candidate_returns, candidate_details = self._score(candidate)

        delta = candidate_returns - self.current_returns
        threshold = 1.0 if delta >= 0 else math.exp(delta / self.temperature)

        if self.rng.random() < threshold and not self.predicates.is_over_utilized(candidate_details):
            self.current_allocation = candidate
            self.current_returns = candidate_returns
            self.consecutive_failures = 0

            if self.predicates.is_better_allocation(
                self.best_allocation,
                self.best_details,
                self.best_returns,
                candidate,
                candidate_details,
                candidate_returns,
                self.initial_allocation,
                self.initial_details,
            ):
                self.best_allocation = candidate
                self.best_returns = candidate_returns
                self.best_details = candidate_details
            return True

        self.consecutive_failures += 1
        return False

    def optimize(self, initial_allocation: Allocation) -> tuple[Allocation, float]:
        """Run the full cooling schedule.

        Args:
            initial_allocation: Starting allocation (usually the deployed one)

        Returns:
            Tuple of (best allocation, its total returns)
        """
        self.reset(initial_allocation)
        config = self.config
        started = time.monotonic()

        logger.debug(
            "ENTER: SimulatedAnnealingOptimizer.optimize",
            extra={
                "extra_data": {
                    "action": "annealing_start",
                    "pool": list(self.pool),
                    "initial_returns": self.best_returns,
                }
            },
        )

        while (
            self.temperature > config.min_temp
            and self.consecutive_failures < config.max_consecutive_failures
        ):
            accepted_moves = sum(self.step() for _ in range(config.iterations_per_temp))

            logger.debug(
                f"Temperature {self.temperature:.6f}: accepted {accepted_moves}/{config.iterations_per_temp}",
                extra={
                    "extra_data": {
                        "action": "annealing_temperature_step",
                        "temperature": self.temperature,
                        "accepted_moves": accepted_moves,
                        "current_returns": self.current_returns,
                        "best_returns": self.best_returns,
                    }
                },
            )

            self.temperature *= config.cooling_rate

            if accepted_moves / config.iterations_per_temp < config.min_acceptance_rate:
                self.consecutive_failures += config.iterations_per_temp

            if (
                config.max_duration_seconds is not None
                and time.monotonic() - started >= config.max_duration_seconds
            ):
                logger.warning(
                    f"Annealing stopped after {config.max_duration_seconds}s at temperature {self.temperature:.6f}"
                )
                break

        logger.info(
            f"Annealing finished: returns {self.best_returns:.4f}% "
            f"(initial {self.initial_returns:.4f}%)"
        )

        return self.best_allocation, self.best_returns
