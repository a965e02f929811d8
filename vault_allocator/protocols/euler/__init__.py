"""Euler lending protocol yield model."""
from vault_allocator.protocols.euler.model import post_impact_returns

__all__ = ["post_impact_returns"]
