"""Post-impact yield of an Euler vault."""
from vault_allocator.models import AllocationEntry, Strategy, StrategyReturns
from vault_allocator.protocols.euler import irm, rewards


def post_impact_returns(strategy: Strategy, entry: AllocationEntry, asset_decimals: int) -> StrategyReturns:
    """Yield the market would offer once `entry.diff` is deposited or withdrawn."""
    details = strategy.details
    cash = details.cash + entry.diff

    rate = irm.interest_rate(cash, details.total_borrows, details.irm_config)
    interest = irm.supply_apy(
        irm.borrow_apy(rate),
        cash,
        details.total_borrows,
        details.interest_fee,
    )
    reward = rewards.reward_apy(asset_decimals, cash, details.total_borrows, details.reward_campaigns)

    return StrategyReturns(
        interest_apy=interest,
        rewards_apy=reward,
        utilization=irm.utilization(cash, details.total_borrows),
    )
