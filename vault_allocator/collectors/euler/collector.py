"""Euler Earn vault snapshot provider.

Reads the earn vault's queues and per-strategy positions plus every strategy
vault's market state, and assembles a Vault for the decision gate.
"""
import asyncio
import logging

from web3 import AsyncWeb3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from vault_allocator.collectors.chain.connection import ChainConnection
from vault_allocator.collectors.euler.abis import (
    ADAPTIVE_CURVE_IRM_ABI,
    EULER_EARN_ABI,
    EVAULT_ABI,
    KINK_IRM_ABI,
)
from vault_allocator.collectors.merkl import MerklRewardsProvider
from vault_allocator.models import (
    AdaptiveCurveIrm,
    IrmConfig,
    KinkIrm,
    NoIrm,
    Protocol,
    RewardCampaign,
    Strategy,
    StrategyDetails,
    Vault,
)
from vault_allocator.protocols.euler import irm, rewards

logger = logging.getLogger(__name__)

# Probing a contract for a function it doesn't have reverts or returns empty data
_PROBE_ERRORS = (ContractLogicError, BadFunctionCallOutput, ValueError)


class CollectorError(Exception):
    """Raised when a vault snapshot cannot be built."""

    pass


class EulerEarnCollector:
    """Builds Vault snapshots of one Euler Earn vault."""

    def __init__(
        self,
        connection: ChainConnection,
        earn_vault_address: str,
        rewards_provider: MerklRewardsProvider | None = None,
        strategies_override: list[str] | None = None,
    ):
        """Initialize the collector.

        Args:
            connection: Chain connection
            earn_vault_address: Euler Earn vault to snapshot
            rewards_provider: Reward campaign source (no rewards if None)
            strategies_override: Optional `protocol:address` entries replacing
                                 the on-chain search order
        """
        self.connection = connection
        self.earn_vault_address = earn_vault_address
        self.rewards_provider = rewards_provider
        self.strategies_override = strategies_override or []
        self._earn = connection.contract(earn_vault_address, EULER_EARN_ABI)

    async def _queue(self, length_fn: str, item_fn: str) -> list[str]:
        length = await getattr(self._earn.functions, length_fn)().call()
        return list(
            await asyncio.gather(
                *(getattr(self._earn.functions, item_fn)(i).call() for i in range(length))
            )
        )

    async def fetch_irm_config(self, irm_address: str, vault_address: str) -> IrmConfig:
        """Identify and read the interest rate model of a strategy vault.

        Raises:
            CollectorError: If the model is neither kink nor adaptive-curve
        """
        if int(irm_address, 16) == 0:
            return NoIrm()

        kink_irm = self.connection.contract(irm_address, KINK_IRM_ABI)
        try:
            base_rate, slope1, slope2, kink = await asyncio.gather(
                kink_irm.functions.baseRate().call(),
                kink_irm.functions.slope1().call(),
                kink_irm.functions.slope2().call(),
                kink_irm.functions.kink().call(),
            )
            return KinkIrm(base_rate=base_rate, kink=kink, slope1=slope1, slope2=slope2)
        except _PROBE_ERRORS:
            logger.debug(f"IRM {irm_address} is not a kink model")

        adaptive = self.connection.contract(irm_address, ADAPTIVE_CURVE_IRM_ABI)
        try:
            fns = adaptive.functions
            (
                target_utilization,
                initial_rate_at_target,
                min_rate_at_target,
                max_rate_at_target,
                curve_steepness,
                adjustment_speed,
                rate_at_target,
            ) = await asyncio.gather(
                fns.TARGET_UTILIZATION().call(),
                fns.INITIAL_RATE_AT_TARGET().call(),
                fns.MIN_RATE_AT_TARGET().call(),
                fns.MAX_RATE_AT_TARGET().call(),
                fns.CURVE_STEEPNESS().call(),
                fns.ADJUSTMENT_SPEED().call(),
                # cash and borrows don't affect the rate at target
                fns.computeRateAtTargetView(AsyncWeb3.to_checksum_address(vault_address), 0, 0).call(),
            )
        except _PROBE_ERRORS as e:
            raise CollectorError(f"Unknown interest rate model at {irm_address}") from e

        return AdaptiveCurveIrm(
            rate_at_target=rate_at_target // 10**9,
            target_utilization=target_utilization,
            initial_rate_at_target=initial_rate_at_target,
            min_rate_at_target=min_rate_at_target,
            max_rate_at_target=max_rate_at_target,
            curve_steepness=curve_steepness,
            adjustment_speed=adjustment_speed,
        )

    async def fetch_strategy(
        self,
        strategy_address: str,
        asset_decimals: int,
        campaigns: list[dict],
    ) -> Strategy:
        """Read one strategy vault and the earn vault's position in it."""
        evault = self.connection.contract(strategy_address, EVAULT_ABI)
        fns = evault.functions

        symbol, cash, total_borrows, total_shares, interest_fee, caps, irm_address, config = await asyncio.gather(
            fns.symbol().call(),
            fns.cash().call(),
            fns.totalBorrows().call(),
            fns.totalSupply().call(),
            fns.interestFee().call(),
            fns.caps().call(),
            fns.interestRateModel().call(),
            self._earn.functions.config(strategy_address).call(),
        )
        shares, cap = config[0], config[1]

        irm_config = await self.fetch_irm_config(irm_address, strategy_address)

        reward_campaigns: tuple[RewardCampaign, ...] = ()
        if self.rewards_provider is not None and campaigns:

            async def balance_of(account: str) -> int:
                account_shares = await fns.balanceOf(AsyncWeb3.to_checksum_address(account)).call()
                return irm.convert_shares_to_assets(account_shares, cash, total_borrows, total_shares)

            reward_campaigns = await self.rewards_provider.reward_campaigns(
                strategy_address, campaigns, balance_of
            )

        borrow_apy = irm.borrow_apy(irm.interest_rate(cash, total_borrows, irm_config))
        details = StrategyDetails(
            vault=strategy_address,
            symbol=symbol,
            protocol=Protocol.EULER,
            supply_apy=irm.supply_apy(borrow_apy, cash, total_borrows, interest_fee),
            reward_apy=rewards.reward_apy(asset_decimals, cash, total_borrows, reward_campaigns),
            cash=cash,
            total_borrows=total_borrows,
            total_shares=total_shares,
            interest_fee=interest_fee,
            supply_cap=irm.resolve_supply_cap(caps[0]),
            irm_config=irm_config,
            borrow_apy=borrow_apy,
            reward_campaigns=reward_campaigns,
        )

        return Strategy(
            cap=cap,
            allocation=irm.convert_shares_to_assets(shares, cash, total_borrows, total_shares),
            details=details,
        )

    def _apply_override(self, strategies: dict[str, Strategy], order: list[str]) -> list[str]:
        if not self.strategies_override:
            return order

        by_lower = {address.lower(): address for address in strategies}
        override = []
        for entry in self.strategies_override:
            protocol, _, address = entry.rpartition(":")
            if protocol and protocol != Protocol.EULER.value:
                raise CollectorError(f"Unsupported protocol in strategies override: {entry}")
            if address.lower() not in by_lower:
                raise CollectorError(f"Invalid strategies override entry {entry}")
            override.append(by_lower[address.lower()])
        return override

    async def fetch_vault(self) -> Vault:
        """Build a complete snapshot of the earn vault.

        Raises:
            CollectorError: If a strategy can't be read or the override is invalid
        """
        logger.info(f"Fetching Euler Earn vault {self.earn_vault_address}")

        asset_decimals, supply_queue, withdraw_queue = await asyncio.gather(
            self._earn.functions.decimals().call(),
            self._queue("supplyQueueLength", "supplyQueue"),
            self._queue("withdrawQueueLength", "withdrawQueue"),
        )

        campaigns: list[dict] = []
        if self.rewards_provider is not None:
            campaigns = await self.rewards_provider.fetch_campaigns()

        fetched = await asyncio.gather(
            *(self.fetch_strategy(address, asset_decimals, campaigns) for address in withdraw_queue)
        )
        strategies = dict(zip(withdraw_queue, fetched))

        idle = supply_queue[-1] if supply_queue else None
        order = self._apply_override(strategies, list(reversed(withdraw_queue)))

        logger.debug(
            f"Fetched {len(strategies)} strategies",
            extra={
                "extra_data": {
                    "action": "vault_snapshot",
                    "vault": self.earn_vault_address,
                    "strategies": list(strategies),
                    "idle": idle,
                    "total_assets": sum(s.allocation for s in strategies.values()),
                }
            },
        )

        return Vault(
            strategies=strategies,
            allocation_queue=tuple(order),
            asset_decimals=asset_decimals,
            idle_strategy=idle if idle in strategies else None,
        )
