"""Shared builders for unit tests."""
import pytest


class ScriptedRng:
    """Returns pre-recorded uniform draws in order."""

    def __init__(self, values):
        self.values = list(values)
        self.calls = 0

    def random(self) -> float:
        value = self.values[self.calls]
        self.calls += 1
        return value


def make_strategy(
    address: str,
    allocation: int,
    cash: int = 10**12,
    total_borrows: int = 0,
    supply_cap: int = 2**256 - 1,
    cap: int = 10_000_000,
    interest_fee: int = 0,
    irm_config=None,
    reward_campaigns=(),
    symbol: str = "",
):
    from vault_allocator.models import NoIrm, Protocol, Strategy, StrategyDetails

    return Strategy(
        cap=cap,
        allocation=allocation,
        details=StrategyDetails(
            vault=address,
            symbol=symbol or address,
            protocol=Protocol.EULER,
            supply_apy=0.0,
            reward_apy=0.0,
            cash=cash,
            total_borrows=total_borrows,
            total_shares=cash + total_borrows,
            interest_fee=interest_fee,
            supply_cap=supply_cap,
            irm_config=irm_config if irm_config is not None else NoIrm(),
            reward_campaigns=tuple(reward_campaigns),
        ),
    )


def make_vault(strategies: dict, queue=None, idle=None, asset_decimals: int = 0):
    from vault_allocator.models import Vault

    return Vault(
        strategies=strategies,
        allocation_queue=tuple(queue if queue is not None else strategies),
        asset_decimals=asset_decimals,
        idle_strategy=idle,
    )


def returns(apy: float, utilization: float = 0.0):
    from vault_allocator.models import StrategyReturns

    return StrategyReturns(interest_apy=apy, rewards_apy=0.0, utilization=utilization)


def linear_yield_model(curves: dict):
    """Yield model where each strategy's APY is `base - slope * new_amount`."""

    def model(strategy, entry, asset_decimals):
        base, slope = curves[strategy.details.vault]
        return returns(base - slope * entry.new_amount)

    return model


@pytest.fixture
def two_strategy_vault():
    """Two markets holding 500 each, ample liquidity and caps."""
    return make_vault({
        "0xlow": make_strategy("0xlow", 500, cash=2000, total_borrows=500, supply_cap=12000, cap=10000),
        "0xhigh": make_strategy("0xhigh", 500, cash=2000, total_borrows=500, supply_cap=12000, cap=10000),
    })


@pytest.fixture
def equalizing_yield_model():
    return linear_yield_model({"0xlow": (4.0, 0.002), "0xhigh": (9.0, 0.004)})
