"""Tests for safety predicates."""
import pytest

from conftest import make_strategy, make_vault, returns


@pytest.fixture
def vault():
    return make_vault(
        {
            "0xa": make_strategy("0xa", 500),
            "0xb": make_strategy("0xb", 500),
            "0xidle": make_strategy("0xidle", 0),
        },
        idle="0xidle",
    )


def _allocation(new: dict, old: dict | None = None):
    from vault_allocator.models import Allocation

    return Allocation.from_amounts(old or {"0xa": 500, "0xb": 500, "0xidle": 0}, new)


def _predicates(vault, **kwargs):
    from vault_allocator.core.config import Constraints
    from vault_allocator.optimizer.constraints import SafetyPredicates

    return SafetyPredicates(vault, Constraints(**kwargs))


# =============================================================================
# Utilization
# =============================================================================

def test_is_over_utilized(vault):
    predicates = _predicates(vault, max_utilization=0.9)

    assert predicates.is_over_utilized({"0xa": returns(5, 0.95), "0xb": returns(5, 0.5)})
    assert not predicates.is_over_utilized({"0xa": returns(5, 0.9), "0xb": returns(5, 0.5)})


def test_utilization_check_disabled_by_zero_limit(vault):
    predicates = _predicates(vault, max_utilization=0)

    assert not predicates.is_over_utilized({"0xa": returns(5, 1.0)})
    assert not predicates.is_fully_over_utilized({"0xa": returns(5, 1.0)})


def test_disabled_soft_cap_excluded_from_utilization(vault):
    from vault_allocator.core.config import SoftCap

    predicates = _predicates(vault, max_utilization=0.9, soft_caps={"0xa": SoftCap(0, 0)})

    assert not predicates.is_over_utilized({"0xa": returns(5, 0.99), "0xb": returns(5, 0.5)})


def test_is_fully_over_utilized(vault):
    predicates = _predicates(vault, max_utilization=0.9)

    assert predicates.is_fully_over_utilized({"0xa": returns(5, 0.95), "0xb": returns(5, 0.91)})
    assert not predicates.is_fully_over_utilized({"0xa": returns(5, 0.95), "0xb": returns(5, 0.5)})


def test_utilization_excess_weighted_by_amount(vault):
    predicates = _predicates(vault, max_utilization=0.9)
    allocation = _allocation({"0xa": 400, "0xb": 600, "0xidle": 0})

    excess = predicates.utilization_excess(allocation, {"0xa": returns(5, 0.95), "0xb": returns(5, 0.5)})

    assert excess == pytest.approx(0.05 * 400)


# =============================================================================
# Soft caps
# =============================================================================

def test_soft_cap_breach(vault):
    from vault_allocator.core.config import SoftCap

    predicates = _predicates(vault, soft_caps={"0xa": SoftCap(100, 450), "0xb": SoftCap(600, 900)})
    allocation = _allocation({"0xa": 500, "0xb": 500, "0xidle": 0})

    assert predicates.soft_cap_breach(allocation) == 50 + 100
    assert predicates.is_outside_soft_cap(allocation)


def test_soft_cap_lookup_is_case_insensitive():
    from vault_allocator.core.config import Constraints, SoftCap

    constraints = Constraints(soft_caps={"0xabc": SoftCap(1, 2)})

    assert constraints.soft_cap("0xABC") == SoftCap(1, 2)
    assert constraints.soft_cap("0xdef") is None


def test_is_soft_cap_improved_requires_strict_decrease(vault):
    from vault_allocator.core.config import SoftCap

    predicates = _predicates(vault, soft_caps={"0xa": SoftCap(0, 450)})
    breached = _allocation({"0xa": 500, "0xb": 500, "0xidle": 0})

    assert predicates.is_soft_cap_improved(breached, _allocation({"0xa": 460, "0xb": 540, "0xidle": 0}))
    assert not predicates.is_soft_cap_improved(breached, breached)


def test_is_min_allocation():
    from vault_allocator.core.config import Constraints, SoftCap
    from vault_allocator.optimizer.constraints import is_min_allocation

    constraints = Constraints(soft_caps={"0xa": SoftCap(1000, 5000), "0xb": SoftCap(0, 5000)})
    at_band = _allocation({"0xa": 1100, "0xb": 10}, old={"0xa": 1100, "0xb": 10})
    above_band = _allocation({"0xa": 1101, "0xb": 10}, old={"0xa": 1101, "0xb": 10})

    assert is_min_allocation(constraints, "0xa", at_band)
    assert not is_min_allocation(constraints, "0xa", above_band)
    assert not is_min_allocation(constraints, "0xb", at_band)
    assert not is_min_allocation(Constraints(), "0xa", at_band)


# =============================================================================
# Dust and spread
# =============================================================================

def test_has_dust(vault):
    predicates = _predicates(vault, min_deposit=10)

    assert predicates.has_dust(_allocation({"0xa": 495, "0xb": 505, "0xidle": 0}))
    assert not predicates.has_dust(_allocation({"0xa": 490, "0xb": 510, "0xidle": 0}))
    assert not predicates.has_dust(_allocation({"0xa": 500, "0xb": 500, "0xidle": 0}))


def test_apy_spread_excludes_idle_and_empty(vault):
    from vault_allocator.optimizer.constraints import calculate_apy_spread
    from vault_allocator.core.config import Constraints

    details = {"0xa": returns(3.0), "0xb": returns(7.5), "0xidle": returns(0.0)}
    allocation = _allocation({"0xa": 400, "0xb": 500, "0xidle": 100})

    assert calculate_apy_spread(vault, Constraints(), allocation, details) == pytest.approx(4.5)

    only_b = _allocation({"0xa": 0, "0xb": 900, "0xidle": 100})
    assert calculate_apy_spread(vault, Constraints(), only_b, details) == 0.0


def test_apy_spread_excludes_forced_minimums(vault):
    from vault_allocator.core.config import Constraints, SoftCap
    from vault_allocator.optimizer.constraints import calculate_apy_spread

    constraints = Constraints(soft_caps={"0xa": SoftCap(400, 1000)})
    details = {"0xa": returns(1.0), "0xb": returns(7.5), "0xidle": returns(0.0)}

    spread = calculate_apy_spread(vault, constraints, _allocation({"0xa": 400, "0xb": 600, "0xidle": 0}), details)

    assert spread == 0.0


# =============================================================================
# Allowed moves
# =============================================================================

def test_allowed_rejects_becoming_over_utilized(vault):
    predicates = _predicates(vault, max_utilization=0.9)
    old = _allocation({"0xa": 500, "0xb": 500, "0xidle": 0})
    new = _allocation({"0xa": 400, "0xb": 600, "0xidle": 0})

    assert not predicates.is_allocation_allowed(
        old, {"0xa": returns(5, 0.5), "0xb": returns(5, 0.5)},
        new, {"0xa": returns(5, 0.5), "0xb": returns(5, 0.95)},
    )


def test_allowed_when_over_utilization_not_worse(vault):
    predicates = _predicates(vault, max_utilization=0.9)
    old = _allocation({"0xa": 500, "0xb": 500, "0xidle": 0})
    new = _allocation({"0xa": 300, "0xb": 700, "0xidle": 0})

    assert predicates.is_allocation_allowed(
        old, {"0xa": returns(5, 0.95), "0xb": returns(5, 0.5)},
        new, {"0xa": returns(5, 0.93), "0xb": returns(5, 0.6)},
    )
    assert not predicates.is_allocation_allowed(
        old, {"0xa": returns(5, 0.91), "0xb": returns(5, 0.5)},
        new, {"0xa": returns(5, 0.99), "0xb": returns(5, 0.6)},
    )


def test_allowed_requires_soft_cap_improvement(vault):
    from vault_allocator.core.config import SoftCap

    predicates = _predicates(vault, soft_caps={"0xa": SoftCap(0, 300)})
    details = {"0xa": returns(5), "0xb": returns(5)}
    breached = _allocation({"0xa": 500, "0xb": 500, "0xidle": 0})

    assert predicates.is_allocation_allowed(breached, details, _allocation({"0xa": 400, "0xb": 600, "0xidle": 0}), details)
    assert not predicates.is_allocation_allowed(breached, details, _allocation({"0xa": 600, "0xb": 400, "0xidle": 0}), details)


def test_allowed_rejects_new_soft_cap_breach(vault):
    from vault_allocator.core.config import SoftCap

    predicates = _predicates(vault, soft_caps={"0xb": SoftCap(0, 550)})
    details = {"0xa": returns(5), "0xb": returns(5)}
    old = _allocation({"0xa": 500, "0xb": 500, "0xidle": 0})

    assert not predicates.is_allocation_allowed(old, details, _allocation({"0xa": 400, "0xb": 600, "0xidle": 0}), details)


def test_allowed_rejects_dust(vault):
    predicates = _predicates(vault, min_deposit=10)
    details = {"0xa": returns(5), "0xb": returns(5)}
    old = _allocation({"0xa": 500, "0xb": 500, "0xidle": 0})

    assert not predicates.is_allocation_allowed(old, details, _allocation({"0xa": 497, "0xb": 503, "0xidle": 0}), details)
    assert predicates.is_allocation_allowed(old, details, _allocation({"0xa": 450, "0xb": 550, "0xidle": 0}), details)


# =============================================================================
# Ranking
# =============================================================================

def _rank(predicates, best, best_details, best_returns, candidate, candidate_details, candidate_returns):
    return predicates.is_better_allocation(
        best, best_details, best_returns,
        candidate, candidate_details, candidate_returns,
        best, best_details,
    )


def test_better_requires_higher_return_when_healthy(vault):
    predicates = _predicates(vault)
    best = _allocation({"0xa": 500, "0xb": 500, "0xidle": 0})
    candidate = _allocation({"0xa": 400, "0xb": 600, "0xidle": 0})
    details = {"0xa": returns(4), "0xb": returns(6)}

    assert _rank(predicates, best, details, 5.0, candidate, details, 5.2)
    assert not _rank(predicates, best, details, 5.0, candidate, details, 5.0)
    assert not _rank(predicates, best, details, 5.0, candidate, details, 4.9)


def test_better_prefers_reduced_over_utilization_over_return(vault):
    predicates = _predicates(vault, max_utilization=0.9)
    best = _allocation({"0xa": 500, "0xb": 500, "0xidle": 0})
    candidate = _allocation({"0xa": 300, "0xb": 700, "0xidle": 0})

    assert _rank(
        predicates,
        best, {"0xa": returns(8, 0.95), "0xb": returns(4, 0.5)}, 6.0,
        candidate, {"0xa": returns(8, 0.92), "0xb": returns(4, 0.6)}, 5.2,
    )


def test_better_rejects_unhealthy_candidate_with_equal_health(vault):
    from vault_allocator.core.config import SoftCap

    predicates = _predicates(vault, soft_caps={"0xa": SoftCap(0, 100)})
    best = _allocation({"0xa": 500, "0xb": 500, "0xidle": 0})
    details = {"0xa": returns(5), "0xb": returns(5)}

    # Same breach (400 above max) and a higher return is still not better
    assert not _rank(predicates, best, details, 5.0, best, details, 6.0)


def test_better_with_spread_limit(vault):
    predicates = _predicates(vault, max_strategy_apy_diff=2.0)
    best = _allocation({"0xa": 500, "0xb": 500, "0xidle": 0})
    candidate = _allocation({"0xa": 400, "0xb": 600, "0xidle": 0})
    narrow = {"0xa": returns(4), "0xb": returns(5)}
    wide = {"0xa": returns(2), "0xb": returns(7)}

    assert _rank(predicates, best, narrow, 4.5, candidate, narrow, 4.6)
    # Spread beyond the limit while the initial state was within it
    assert not _rank(predicates, best, narrow, 4.5, candidate, wide, 5.0)


def test_better_rejects_spread_equal_to_limit(vault):
    predicates = _predicates(vault, max_strategy_apy_diff=1.0)
    best = _allocation({"0xa": 500, "0xb": 500, "0xidle": 0})
    candidate = _allocation({"0xa": 400, "0xb": 600, "0xidle": 0})
    narrow = {"0xa": returns(4.5), "0xb": returns(5)}
    at_limit = {"0xa": returns(4), "0xb": returns(5)}

    assert not _rank(predicates, best, narrow, 4.5, candidate, at_limit, 4.6)


def test_better_narrowing_spread_when_initially_beyond_limit(vault):
    predicates = _predicates(vault, max_strategy_apy_diff=1.0)
    initial = _allocation({"0xa": 500, "0xb": 500, "0xidle": 0})
    candidate = _allocation({"0xa": 400, "0xb": 600, "0xidle": 0})
    wide = {"0xa": returns(2), "0xb": returns(7)}
    narrower = {"0xa": returns(3), "0xb": returns(6)}
    wider = {"0xa": returns(1), "0xb": returns(8)}

    assert predicates.is_better_allocation(
        initial, wide, 4.5, candidate, narrower, 4.8, initial, wide,
    )
    assert not predicates.is_better_allocation(
        initial, wide, 4.5, candidate, wider, 4.8, initial, wide,
    )
