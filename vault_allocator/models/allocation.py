"""Allocation value type.

An Allocation is immutable: every proposed move builds a new Allocation, so
the optimizers' `current` and `best` states can never alias each other.
"""
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from vault_allocator.models.vault import Vault


@dataclass(frozen=True)
class AllocationEntry:
    """Old and proposed amount for one strategy."""
    old_amount: int
    new_amount: int

    @property
    def diff(self) -> int:
        return self.new_amount - self.old_amount

    def to_dict(self) -> dict[str, int]:
        return {
            "old_amount": self.old_amount,
            "new_amount": self.new_amount,
            "diff": self.diff,
        }


class Allocation(Mapping[str, AllocationEntry]):
    """Strategy identifier -> AllocationEntry, with structural updates."""

    __slots__ = ("_entries",)

    def __init__(self, entries: Mapping[str, AllocationEntry]):
        self._entries = MappingProxyType(dict(entries))

    @classmethod
    def from_vault(cls, vault: Vault) -> "Allocation":
        """Build the currently deployed allocation (no changes proposed)."""
        return cls({
            strategy_id: AllocationEntry(old_amount=s.allocation, new_amount=s.allocation)
            for strategy_id, s in vault.strategies.items()
        })

    @classmethod
    def from_amounts(cls, old: Mapping[str, int], new: Mapping[str, int]) -> "Allocation":
        return cls({k: AllocationEntry(old_amount=old[k], new_amount=new[k]) for k in old})

    def __getitem__(self, strategy_id: str) -> AllocationEntry:
        return self._entries[strategy_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Allocation):
            return dict(self._entries) == dict(other._entries)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(frozenset(self._entries.items()))

    def __repr__(self) -> str:
        return f"Allocation({dict(self._entries)!r})"

    @property
    def total_old(self) -> int:
        return sum(e.old_amount for e in self._entries.values())

    @property
    def total_new(self) -> int:
        return sum(e.new_amount for e in self._entries.values())

    def transfer(self, source: str, destination: str, amount: int) -> "Allocation":
        """Return a new Allocation with `amount` moved from source to destination."""
        if amount == 0:
            return self
        entries = dict(self._entries)
        src = entries[source]
        dst = entries[destination]
        entries[source] = AllocationEntry(src.old_amount, src.new_amount - amount)
        entries[destination] = AllocationEntry(dst.old_amount, dst.new_amount + amount)
        return Allocation(entries)

    def changed(self) -> dict[str, AllocationEntry]:
        """Entries whose amount differs from the deployed one."""
        return {k: e for k, e in self._entries.items() if e.diff != 0}

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {k: e.to_dict() for k, e in self._entries.items()}
