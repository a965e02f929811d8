"""Allocation scoring by amount-weighted post-impact yield."""
from vault_allocator.models import Allocation, ReturnsDetails, Vault
from vault_allocator.protocols.yield_model import YieldModel, protocol_yield_model


def score(
    vault: Vault,
    allocation: Allocation,
    yield_model: YieldModel = protocol_yield_model,
) -> tuple[float, ReturnsDetails]:
    """Score an allocation.

    Each strategy's post-impact yield depends only on its own entry, so the
    allocation must be fully materialized before scoring.

    Args:
        vault: Vault snapshot the allocation applies to
        allocation: Complete allocation over the vault's strategies
        yield_model: Post-impact yield function for a single strategy

    Returns:
        Tuple of (amount-weighted average combined APY, per-strategy returns).
        The average is 0 when nothing is allocated.
    """
    scale = 10**vault.asset_decimals
    weighted_returns = 0.0
    total_allocation = 0.0
    details: ReturnsDetails = {}

    for strategy_id, entry in allocation.items():
        strategy = vault.strategies[strategy_id]
        returns = yield_model(strategy, entry, vault.asset_decimals)

        amount = entry.new_amount / scale
        total_allocation += amount
        weighted_returns += amount * returns.combined_apy
        details[strategy_id] = returns

    total_returns = weighted_returns / total_allocation if total_allocation else 0.0
    return total_returns, details
