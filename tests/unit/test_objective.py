"""Tests for allocation scoring."""
from unittest.mock import patch

import pytest

from conftest import linear_yield_model, make_strategy, make_vault


def test_score_weights_apy_by_new_amount():
    from vault_allocator.models import Allocation
    from vault_allocator.optimizer.objective import score

    vault = make_vault({"0xa": make_strategy("0xa", 100), "0xb": make_strategy("0xb", 300)})
    model = linear_yield_model({"0xa": (2.0, 0.0), "0xb": (6.0, 0.0)})

    total, details = score(vault, Allocation.from_vault(vault), model)

    assert total == pytest.approx((100 * 2.0 + 300 * 6.0) / 400)
    assert details["0xa"].combined_apy == 2.0
    assert details["0xb"].combined_apy == 6.0


def test_score_is_zero_when_nothing_allocated():
    from vault_allocator.models import Allocation
    from vault_allocator.optimizer.objective import score

    vault = make_vault({"0xa": make_strategy("0xa", 0), "0xb": make_strategy("0xb", 0)})
    model = linear_yield_model({"0xa": (2.0, 0.0), "0xb": (6.0, 0.0)})

    total, details = score(vault, Allocation.from_vault(vault), model)

    assert total == 0.0
    assert set(details) == {"0xa", "0xb"}


def test_score_uses_post_impact_state():
    from vault_allocator.models import Allocation, RewardCampaign
    from vault_allocator.optimizer.objective import score

    vault = make_vault(
        {
            "0x1": make_strategy(
                "0x1",
                450 * 10**6,
                cash=1050 * 10**6,
                total_borrows=9100 * 10**6,
                interest_fee=1000,
                reward_campaigns=[RewardCampaign(daily_reward=2.0, blacklisted_supply=5000 * 10**6)],
            ),
            "0x2": make_strategy("0x2", 500 * 10**6, cash=7000 * 10**6, total_borrows=3000 * 10**6),
        },
        asset_decimals=6,
    )
    allocation = Allocation.from_amounts(
        {"0x1": 450 * 10**6, "0x2": 500 * 10**6},
        {"0x1": 300 * 10**6, "0x2": 500 * 10**6},
    )

    with patch("vault_allocator.protocols.euler.irm.borrow_apy", return_value=10.0):
        total, details = score(vault, allocation)

    # 0x1: 8.19 interest + 14.6 rewards, 0x2: 3.0 interest
    assert details["0x1"].combined_apy == pytest.approx(22.79)
    assert details["0x2"].combined_apy == pytest.approx(3.0)
    assert total == pytest.approx(10.42125)


def test_score_strategies_are_independent():
    from vault_allocator.models import Allocation
    from vault_allocator.optimizer.objective import score

    vault = make_vault({
        "0xa": make_strategy("0xa", 500),
        "0xb": make_strategy("0xb", 500),
        "0xc": make_strategy("0xc", 500),
    })
    model = linear_yield_model({"0xa": (5.0, 0.001), "0xb": (5.0, 0.002), "0xc": (4.0, 0.0)})
    base = Allocation.from_vault(vault)

    _, before = score(vault, base, model)
    _, after = score(vault, base.transfer("0xa", "0xb", 100), model)

    assert after["0xc"] == before["0xc"]
    assert after["0xa"] != before["0xa"]
