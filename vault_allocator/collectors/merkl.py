"""Reward campaign provider backed by the Merkl API and DefiLlama prices."""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

import aiohttp

from vault_allocator.models import RewardCampaign
from vault_allocator.protocols.euler.rewards import campaign_daily_reward

logger = logging.getLogger(__name__)

# DefiLlama chain slugs by chain id
DEFILLAMA_CHAINS = {
    1: "ethereum",
    8453: "base",
    42161: "arbitrum",
    9745: "plasma",
}


class MerklRewardsProvider:
    """Fetches active Merkl campaigns and converts them to RewardCampaigns."""

    def __init__(
        self,
        chain_id: int,
        api_url: str = "https://api.merkl.xyz/v4",
        price_api_url: str = "https://coins.llama.fi",
        timeout_seconds: float = 15.0,
    ):
        self.chain_id = chain_id
        self.api_url = api_url.rstrip("/")
        self.price_api_url = price_api_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(url, params=params) as response:
                response.raise_for_status()
                return await response.json()

    async def fetch_campaigns(self) -> list[dict[str, Any]]:
        """All Euler campaigns on the chain. Empty if the API has none or fails."""
        try:
            data = await self._get_json(
                f"{self.api_url}/campaigns/",
                params={"chainId": self.chain_id, "type": "EULER"},
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to fetch Merkl campaigns: {e}")
            return []

        if not data:
            logger.warning(f"No Merkl data found for chain {self.chain_id}")
            return []
        return data

    async def token_price(self, address: str) -> float | None:
        """USD price of a token, or None if unknown."""
        chain = DEFILLAMA_CHAINS.get(self.chain_id)
        if chain is None:
            logger.warning(f"No DefiLlama chain slug for chain {self.chain_id}")
            return None

        key = f"{chain}:{address}"
        try:
            data = await self._get_json(
                f"{self.price_api_url}/prices/current/{key}",
                params={"searchWidth": "2h"},
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to fetch price for {address}: {e}")
            return None

        price = data.get("coins", {}).get(key, {}).get("price")
        if not price:
            logger.warning(f"No price found for {address} on chain {self.chain_id}")
            return None
        return float(price)

    @staticmethod
    def is_active_campaign(campaign: dict[str, Any], vault_address: str, now: int | None = None) -> bool:
        """Active, open (no whitelist), plain-supply campaign targeting the vault."""
        now = now if now is not None else int(time.time())
        params = campaign.get("params", {})
        return (
            campaign.get("subType") == 0
            and campaign["startTimestamp"] <= now <= campaign["endTimestamp"]
            and not params.get("whitelist")
            and str(params.get("evkAddress", "")).lower() == vault_address.lower()
        )

    async def reward_campaigns(
        self,
        vault_address: str,
        campaigns: list[dict[str, Any]],
        balance_of: Callable[[str], Awaitable[int]],
    ) -> tuple[RewardCampaign, ...]:
        """Active campaigns of one vault, in asset terms.

        Args:
            vault_address: Strategy vault address
            campaigns: Raw campaigns from fetch_campaigns()
            balance_of: Resolves an account's asset balance in the vault, used
                        to sum the blacklisted supply

        Returns:
            RewardCampaigns for every active campaign with a known asset price
        """
        result = []
        now = int(time.time())

        for campaign in campaigns:
            if not self.is_active_campaign(campaign, vault_address, now):
                continue

            params = campaign["params"]
            underlying_price = await self.token_price(params["addressAsset"])
            if not underlying_price:
                continue

            balances = await asyncio.gather(*(balance_of(a) for a in params.get("blacklist", [])))

            reward_token = campaign["rewardToken"]
            result.append(
                RewardCampaign(
                    daily_reward=campaign_daily_reward(
                        amount=int(campaign["amount"]),
                        reward_decimals=int(reward_token["decimals"]),
                        reward_price=float(reward_token["price"]),
                        underlying_price=underlying_price,
                        duration_seconds=int(params["duration"]),
                    ),
                    blacklisted_supply=sum(balances),
                )
            )

        logger.debug(
            f"Found {len(result)} active campaigns for {vault_address}",
            extra={
                "extra_data": {
                    "action": "reward_campaigns",
                    "vault": vault_address,
                    "count": len(result),
                }
            },
        )
        return tuple(result)
