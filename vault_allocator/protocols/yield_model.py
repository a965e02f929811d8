"""Yield model dispatch over supported protocols."""
from typing import Protocol as TypingProtocol

from vault_allocator.models import AllocationEntry, Protocol, Strategy, StrategyReturns
from vault_allocator.protocols import euler


class YieldModel(TypingProtocol):
    """Maps a strategy and its proposed allocation entry to post-impact returns."""

    def __call__(self, strategy: Strategy, entry: AllocationEntry, asset_decimals: int) -> StrategyReturns:
        ...


def protocol_yield_model(strategy: Strategy, entry: AllocationEntry, asset_decimals: int) -> StrategyReturns:
    """Default yield model: dispatch on the strategy's protocol."""
    if strategy.protocol is Protocol.EULER:
        return euler.post_impact_returns(strategy, entry, asset_decimals)
    raise TypeError(f"Unsupported protocol: {strategy.protocol}")
