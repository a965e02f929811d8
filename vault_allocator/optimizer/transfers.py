"""Feasible transfer bounds between two strategies."""
from decimal import Decimal

from vault_allocator.core.config import Constraints
from vault_allocator.models import Allocation, Vault

WAD = 10**18


def to_wad(value: float) -> int:
    """Fixed-point (18 decimals) representation of a float fraction."""
    return int(Decimal(str(value)) * WAD)


def scale_amount(amount: int, fraction: float) -> int:
    """Floor `amount * fraction` using 18-decimal fixed point."""
    return amount * to_wad(fraction) // WAD


def max_transfer(
    vault: Vault,
    constraints: Constraints,
    allocation: Allocation,
    source: str,
    destination: str,
) -> int:
    """Largest amount that can move from source to destination.

    Bounded by what the source holds, the source market's withdrawable cash,
    the destination market's supply cap headroom, the destination's allocation
    cap headroom and its soft cap headroom. Never negative.
    """
    src_entry = allocation[source]
    dst_entry = allocation[destination]
    src_details = vault.strategies[source].details
    dst_details = vault.strategies[destination].details

    bounds = [
        src_entry.new_amount,
        src_details.cash + src_entry.diff,
        dst_details.supply_cap - dst_details.total_borrows - dst_details.cash - dst_entry.diff,
        vault.strategies[destination].cap - dst_entry.new_amount,
    ]

    soft_cap = constraints.soft_cap(destination)
    if soft_cap is not None:
        bounds.append(soft_cap.max - dst_entry.new_amount)

    return max(0, min(bounds))
