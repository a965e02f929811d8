"""Allocation decision gate.

Turns a vault snapshot into one RunRecord: score the deployed allocation, run
the configured optimizer(s), verify the candidate and either abort or hand it
to the executor.
"""
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from vault_allocator.core.config import AnnealingConfig, Constraints, EqualizationConfig
from vault_allocator.models import (
    Allocation,
    AllocationSnapshot,
    OptimizationMode,
    ReturnsDetails,
    RunRecord,
    SpreadSummary,
    Vault,
    RESULT_ABORT,
    RESULT_ERROR,
    RESULT_SIMULATION,
)
from vault_allocator.optimizer.annealing import SimulatedAnnealingOptimizer
from vault_allocator.optimizer.constraints import SafetyPredicates
from vault_allocator.optimizer.equalization import ApyEqualizationOptimizer
from vault_allocator.optimizer.objective import score
from vault_allocator.optimizer.transfers import scale_amount
from vault_allocator.protocols.yield_model import YieldModel, protocol_yield_model

logger = logging.getLogger(__name__)

APY_SPREAD_EPSILON = 1e-6


class AllocatorError(Exception):
    """Base class for errors that make a run's candidate unusable."""

    pass


class AllocationPreconditionError(AllocatorError):
    """Candidate allocation is malformed (unknown strategy, negative amount)."""

    pass


class ConservationError(AllocationPreconditionError):
    """Candidate allocation does not allocate exactly the vault's total assets."""

    pass


class UnresolvedOverUtilizationError(AllocatorError):
    """Over-utilization was resolvable but the candidate leaves it in place."""

    pass


@runtime_checkable
class AllocationExecutor(Protocol):
    """Submits a verified allocation.

    Returns "simulation" or a transaction hash; raises on failure.
    """

    async def execute(self, allocation: Allocation) -> str:
        ...


@dataclass
class AllocationContext:
    """Deployed state a run starts from."""

    vault: Vault
    current_allocation: Allocation
    current_returns: float
    current_details: ReturnsDetails
    allocatable_amount: int
    cash_amount: int
    current_spread: float | None = None


@dataclass
class OptimizationOutcome:
    """Candidate produced by the optimizer(s)."""

    allocation: Allocation
    total_returns: float
    details: ReturnsDetails
    spread: float | None = None


class DecisionGate:
    """Runs one optimize-verify-decide cycle per vault snapshot."""

    def __init__(
        self,
        constraints: Constraints,
        mode: OptimizationMode = OptimizationMode.ANNEALING,
        executor: AllocationExecutor | None = None,
        annealing_config: AnnealingConfig | None = None,
        equalization_config: EqualizationConfig | None = None,
        cash_percentage: float = 0.0,
        yield_model: YieldModel = protocol_yield_model,
        rng: random.Random | None = None,
        vault_label: str = "",
    ):
        """Initialize the decision gate.

        Args:
            constraints: Safety constraints and tolerances
            mode: Which optimizer(s) run and which tolerance checks apply
            executor: Receives verified candidates; None means dry run
            annealing_config: Cooling schedule for the annealing optimizer
            equalization_config: Bounds for the equalization optimizer
            cash_percentage: Fraction of total assets reserved as cash
            yield_model: Post-impact yield function
            rng: Random source for annealing (process-wide generator if None)
            vault_label: Vault identifier recorded in the RunRecord
        """
        self.constraints = constraints
        self.mode = mode
        self.executor = executor
        self.annealing_config = annealing_config or AnnealingConfig()
        self.equalization_config = equalization_config or EqualizationConfig()
        self.cash_percentage = cash_percentage
        self.yield_model = yield_model
        self.rng = rng if rng is not None else random.Random()
        self.vault_label = vault_label

    def build_context(self, vault: Vault) -> AllocationContext:
        """Score the deployed allocation and split total assets into allocatable and cash."""
        current = Allocation.from_vault(vault)
        current_returns, current_details = score(vault, current, self.yield_model)

        total_assets = vault.total_assets
        cash_amount = scale_amount(total_assets, self.cash_percentage)

        current_spread = None
        if self.mode.requires_spread_check:
            current_spread = SafetyPredicates(vault, self.constraints).apy_spread(current, current_details)

        return AllocationContext(
            vault=vault,
            current_allocation=current,
            current_returns=current_returns,
            current_details=current_details,
            allocatable_amount=total_assets - cash_amount,
            cash_amount=cash_amount,
            current_spread=current_spread,
        )

    def optimize(self, context: AllocationContext) -> OptimizationOutcome:
        """Run the optimizer(s) selected by the mode."""
        vault = context.vault
        seed = context.current_allocation

        if self.mode in (OptimizationMode.ANNEALING, OptimizationMode.COMBINED):
            annealer = SimulatedAnnealingOptimizer(
                vault,
                self.constraints,
                self.annealing_config,
                yield_model=self.yield_model,
                rng=self.rng,
            )
            seed, _ = annealer.optimize(seed)

            if self.mode is OptimizationMode.ANNEALING:
                returns, details = score(vault, seed, self.yield_model)
                return OptimizationOutcome(allocation=seed, total_returns=returns, details=details)

        equalizer = ApyEqualizationOptimizer(
            vault,
            self.constraints,
            self.equalization_config,
            yield_model=self.yield_model,
        )
        result = equalizer.optimize(seed)
        return OptimizationOutcome(
            allocation=result.allocation,
            total_returns=result.total_returns,
            details=result.details,
            spread=result.spread,
        )

    def check_preconditions(self, vault: Vault, allocation: Allocation) -> None:
        """Raise if the candidate is not a complete, conserving allocation of the vault.

        Raises:
            AllocationPreconditionError: Unknown or missing strategy, negative amount
            ConservationError: Total allocated differs from total assets
        """
        unknown = set(allocation) - set(vault.strategies)
        if unknown:
            raise AllocationPreconditionError(f"Allocation references unknown strategies: {sorted(unknown)}")

        missing = set(vault.strategies) - set(allocation)
        if missing:
            raise AllocationPreconditionError(f"Allocation is missing strategies: {sorted(missing)}")

        negative = [s for s, entry in allocation.items() if entry.new_amount < 0]
        if negative:
            raise AllocationPreconditionError(f"Negative allocation for strategies: {negative}")

        if allocation.total_new != vault.total_assets:
            raise ConservationError(
                f"Total assets / total allocated mismatch: {vault.total_assets} != {allocation.total_new}"
            )

    def verify(
        self,
        context: AllocationContext,
        outcome: OptimizationOutcome,
        spread: SpreadSummary | None = None,
    ) -> tuple[bool, str]:
        """Decide whether the candidate is worth executing.

        Args:
            context: Deployed state
            outcome: Candidate allocation and its returns
            spread: Spread before and after (spread-checking modes only)

        Returns:
            Tuple of (accepted, reasoning)

        Raises:
            AllocatorError: If the candidate is malformed or leaves a resolvable
                            over-utilization unresolved
        """
        predicates = SafetyPredicates(context.vault, self.constraints)
        self.check_preconditions(context.vault, outcome.allocation)

        currently_over = predicates.is_over_utilized(context.current_details)
        still_over = predicates.is_over_utilized(outcome.details)

        if currently_over and not predicates.is_fully_over_utilized(context.current_details) and still_over:
            raise UnresolvedOverUtilizationError("Over-utilization unresolved")

        if currently_over:
            return not still_over, "over-utilization resolved" if not still_over else "over-utilization remains"

        if predicates.is_outside_soft_cap(context.current_allocation):
            improved = predicates.is_soft_cap_improved(context.current_allocation, outcome.allocation)
            return improved, "soft cap breach reduced" if improved else "soft cap breach not reduced"

        returns_gain = outcome.total_returns - context.current_returns
        meets_returns = returns_gain >= self.constraints.allocation_diff_tolerance
        meets_spread = self._meets_spread_tolerance(spread)

        if self.mode is OptimizationMode.ANNEALING:
            accepted = meets_returns
        elif self.mode is OptimizationMode.EQUALIZATION:
            accepted = meets_spread
        else:
            accepted = meets_returns and meets_spread

        reasoning = (
            f"returns {returns_gain:+.4f}% (tolerance {self.constraints.allocation_diff_tolerance}), "
            f"returns ok={meets_returns}"
        )
        if self.mode.requires_spread_check:
            reasoning += f", spread ok={meets_spread}"
        return accepted, reasoning

    def _meets_spread_tolerance(self, spread: SpreadSummary | None) -> bool:
        if not self.mode.requires_spread_check:
            return True
        if spread is None or spread.final is None:
            return False
        if self.constraints.apy_spread_tolerance > 0:
            return spread.final <= self.constraints.apy_spread_tolerance
        if spread.current is None:
            return True
        return spread.final + APY_SPREAD_EPSILON < spread.current

    async def run(self, vault: Vault) -> RunRecord | None:
        """Run one allocation cycle.

        Args:
            vault: Fully fetched vault snapshot

        Returns:
            RunRecord describing the decision, or None if there is nothing to allocate
        """
        context = self.build_context(vault)

        if context.allocatable_amount + context.cash_amount == 0:
            logger.info("Nothing to allocate")
            return None

        logger.info(
            f"Optimizing {len(vault.strategies)} strategies (mode: {self.mode.value}, "
            f"current returns {context.current_returns:.4f}%)"
        )
        outcome = self.optimize(context)
        return await self.finalize(context, outcome)

    async def finalize(self, context: AllocationContext, outcome: OptimizationOutcome) -> RunRecord:
        """Verify the candidate, execute it if accepted and build the RunRecord."""
        spread = None
        if self.mode.requires_spread_check:
            final_spread = outcome.spread
            if final_spread is None:
                final_spread = SafetyPredicates(context.vault, self.constraints).apy_spread(
                    outcome.allocation, outcome.details
                )
            spread = SpreadSummary(
                current=context.current_spread,
                final=final_spread,
                tolerance=self.constraints.apy_spread_tolerance or None,
            )

        error: BaseException | None = None
        try:
            accepted, reasoning = self.verify(context, outcome, spread)
        except AllocatorError as e:
            logger.error(f"Candidate allocation rejected: {e}")
            accepted, reasoning, error = False, str(e), e

        if error is not None:
            result = RESULT_ERROR
        elif not accepted:
            result = RESULT_ABORT
        elif self.executor is None:
            result = RESULT_SIMULATION
        else:
            try:
                result = await self.executor.execute(outcome.allocation)
            except Exception as e:
                logger.exception(f"Rebalance execution failed: {e}")
                result, error = RESULT_ERROR, e

        logger.debug(
            f"Decision: {result}",
            extra={
                "extra_data": {
                    "action": "gate_decision",
                    "mode": self.mode.value,
                    "accepted": accepted,
                    "result": result,
                    "reasoning": reasoning,
                }
            },
        )

        return RunRecord(
            timestamp=datetime.now(timezone.utc),
            vault=self.vault_label,
            mode=self.mode,
            current=AllocationSnapshot(
                allocation=context.current_allocation,
                total_returns=context.current_returns,
                details=context.current_details,
            ),
            new=AllocationSnapshot(
                allocation=outcome.allocation,
                total_returns=outcome.total_returns,
                details=outcome.details,
            ),
            allocatable_amount=context.allocatable_amount,
            cash_amount=context.cash_amount,
            result=result,
            spread=spread,
            error=error,
            reasoning=reasoning,
        )
