"""Euler vault interest rate math.

Integer arithmetic mirrors the on-chain IRM contracts; APYs are returned as
float percentages (5.0 == 5%).
"""
import math

from vault_allocator.models import KinkIrm, AdaptiveCurveIrm, NoIrm, IrmConfig

WAD = 10**18
RAY = 10**27
SECONDS_PER_YEAR = int(365.2425 * 86400)
VIRTUAL_DEPOSIT_AMOUNT = 10**6
MAX_UINT256 = 2**256 - 1
KINK_UTILIZATION_SCALE = 2**32 - 1


def _sdiv(a: int, b: int) -> int:
    """Signed integer division truncating toward zero, as in Solidity."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def utilization(cash: int, total_borrows: int) -> float:
    """Borrowed fraction of a market's assets."""
    total = cash + total_borrows
    if total <= 0:
        return 0.0
    return total_borrows / total


def resolve_supply_cap(amount_cap: int) -> int:
    """Decode a supply cap from Euler's compact uint16 format.

    A zero cap means "no cap".
    """
    if amount_cap == 0:
        return MAX_UINT256
    exponent = amount_cap & 63
    mantissa = amount_cap >> 6
    return 10**exponent * mantissa // 100


def convert_shares_to_assets(shares: int, cash: int, total_borrows: int, total_shares: int) -> int:
    """Convert vault shares to underlying assets, including the virtual deposit."""
    return (
        shares * (cash + total_borrows + VIRTUAL_DEPOSIT_AMOUNT)
        // (total_shares + VIRTUAL_DEPOSIT_AMOUNT)
    )


def kink_interest_rate(cash: int, total_borrows: int, irm: KinkIrm) -> int:
    """Per-second borrow rate (RAY) of the linear-kink model."""
    total_assets = cash + total_borrows
    util = total_borrows * KINK_UTILIZATION_SCALE // total_assets if total_assets else 0

    rate = irm.base_rate
    if util <= irm.kink:
        rate += util * irm.slope1
    else:
        rate += irm.kink * irm.slope1
        rate += irm.slope2 * (util - irm.kink)
    return rate


def adaptive_interest_rate(cash: int, total_borrows: int, irm: AdaptiveCurveIrm) -> int:
    """Per-second borrow rate (RAY) of the adaptive-curve model at its current rate at target."""
    total_assets = cash + total_borrows
    util = total_borrows * WAD // total_assets if total_assets else 0

    if util > irm.target_utilization:
        err_norm_factor = WAD - irm.target_utilization
    else:
        err_norm_factor = irm.target_utilization
    err = _sdiv((util - irm.target_utilization) * WAD, err_norm_factor)

    if err < 0:
        coeff = WAD - _sdiv(WAD * WAD, irm.curve_steepness)
    else:
        coeff = irm.curve_steepness - WAD

    rate = _sdiv((_sdiv(coeff * err, WAD) + WAD) * irm.rate_at_target, WAD)
    return rate * 10**9


def interest_rate(cash: int, total_borrows: int, irm: IrmConfig) -> int:
    """Resolve the borrow rate for any supported IRM variant."""
    if isinstance(irm, KinkIrm):
        return kink_interest_rate(cash, total_borrows, irm)
    if isinstance(irm, AdaptiveCurveIrm):
        return adaptive_interest_rate(cash, total_borrows, irm)
    if isinstance(irm, NoIrm):
        return 0
    raise TypeError(f"Unsupported interest rate model: {type(irm).__name__}")


def borrow_apy(rate: int) -> float:
    """Continuously compounded annual borrow APY from a per-second RAY rate."""
    if rate == 0:
        return 0.0
    return (math.exp(rate * SECONDS_PER_YEAR / RAY) - 1) * 100


def supply_apy(borrow_apy_pct: float, cash: int, total_borrows: int, interest_fee: int) -> float:
    """Supply APY = borrow APY * (1 - fee) * utilization. Fee is in basis points."""
    total = cash + total_borrows
    if total <= 0:
        return 0.0
    return borrow_apy_pct * (1 - interest_fee / 1e4) * (total_borrows / total)
