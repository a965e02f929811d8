"""Reward campaign APY math."""
from vault_allocator.models import RewardCampaign

DAYS_PER_YEAR = 365
SECONDS_PER_DAY = 86400


def campaign_daily_reward(
    amount: int,
    reward_decimals: int,
    reward_price: float,
    underlying_price: float,
    duration_seconds: int,
) -> float:
    """Daily campaign emission expressed in units of the vault's asset."""
    reward_amount = amount / 10**reward_decimals
    amount_in_underlying = reward_amount * reward_price / underlying_price
    return amount_in_underlying * SECONDS_PER_DAY / duration_seconds


def reward_apy(
    asset_decimals: int,
    cash: int,
    total_borrows: int,
    campaigns: tuple[RewardCampaign, ...] | list[RewardCampaign],
) -> float:
    """Annualized reward APY (percent) across all campaigns of a market."""
    apy = 0.0
    total_assets = cash + total_borrows
    for campaign in campaigns:
        eligible_supply = (total_assets - campaign.blacklisted_supply) / 10**asset_decimals
        if eligible_supply <= 0:
            continue
        apy += campaign.daily_reward * DAYS_PER_YEAR / eligible_supply
    return apy * 100
