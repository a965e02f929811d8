"""Tests for the models package and its value types."""
from datetime import datetime, timezone

import pytest

from conftest import make_strategy, make_vault, returns


def test_models_package_exports():
    import vault_allocator.models as models

    for name in models.__all__:
        assert hasattr(models, name)


def test_vault_rejects_unknown_queue_entry():
    with pytest.raises(ValueError, match="unknown strategies"):
        make_vault({"0xa": make_strategy("0xa", 100)}, queue=["0xa", "0xb"])


def test_vault_rejects_duplicate_queue_entry():
    with pytest.raises(ValueError, match="duplicate"):
        make_vault({"0xa": make_strategy("0xa", 100)}, queue=["0xa", "0xa"])


def test_vault_total_assets_and_discretionary_queue():
    vault = make_vault(
        {
            "0xa": make_strategy("0xa", 100),
            "0xb": make_strategy("0xb", 250),
            "0xidle": make_strategy("0xidle", 50),
        },
        idle="0xidle",
    )

    assert vault.total_assets == 400
    assert vault.is_idle("0xidle")
    assert not vault.is_idle("0xa")
    assert vault.discretionary_queue() == ("0xa", "0xb")


def test_allocation_from_vault_has_no_changes():
    from vault_allocator.models import Allocation

    vault = make_vault({"0xa": make_strategy("0xa", 100), "0xb": make_strategy("0xb", 200)})
    allocation = Allocation.from_vault(vault)

    assert allocation["0xa"].old_amount == allocation["0xa"].new_amount == 100
    assert allocation.changed() == {}
    assert allocation.total_old == allocation.total_new == 300


def test_allocation_transfer_returns_new_value():
    from vault_allocator.models import Allocation

    original = Allocation.from_amounts({"0xa": 100, "0xb": 200}, {"0xa": 100, "0xb": 200})
    moved = original.transfer("0xa", "0xb", 40)

    assert original["0xa"].new_amount == 100
    assert moved["0xa"].new_amount == 60
    assert moved["0xb"].new_amount == 240
    assert moved["0xa"].diff == -40
    assert moved["0xb"].diff == 40
    assert moved.total_new == original.total_new


def test_allocation_zero_transfer_is_identity():
    from vault_allocator.models import Allocation

    allocation = Allocation.from_amounts({"0xa": 100, "0xb": 200}, {"0xa": 100, "0xb": 200})

    assert allocation.transfer("0xa", "0xb", 0) is allocation


def test_allocation_equality_and_hash():
    from vault_allocator.models import Allocation

    first = Allocation.from_amounts({"0xa": 1, "0xb": 2}, {"0xa": 2, "0xb": 1})
    second = Allocation.from_amounts({"0xa": 1, "0xb": 2}, {"0xa": 2, "0xb": 1})

    assert first == second
    assert hash(first) == hash(second)
    assert first != first.transfer("0xa", "0xb", 1)


def test_allocation_is_read_only():
    from vault_allocator.models import Allocation, AllocationEntry

    allocation = Allocation.from_amounts({"0xa": 1}, {"0xa": 1})

    with pytest.raises(TypeError):
        allocation._entries["0xa"] = AllocationEntry(0, 0)


def test_strategy_returns_combined_apy():
    from vault_allocator.models import StrategyReturns

    r = StrategyReturns(interest_apy=3.5, rewards_apy=1.25, utilization=0.8)

    assert r.combined_apy == 4.75
    assert r.to_dict() == {"interest_apy": 3.5, "rewards_apy": 1.25, "utilization": 0.8}


def test_optimization_mode_spread_check():
    from vault_allocator.models import OptimizationMode

    assert not OptimizationMode.ANNEALING.requires_spread_check
    assert OptimizationMode.EQUALIZATION.requires_spread_check
    assert OptimizationMode.COMBINED.requires_spread_check


def _record(result: str, error=None):
    from vault_allocator.models import (
        Allocation,
        AllocationSnapshot,
        OptimizationMode,
        RunRecord,
        SpreadSummary,
    )

    current = Allocation.from_amounts({"0xa": 100, "0xb": 100}, {"0xa": 100, "0xb": 100})
    new = current.transfer("0xa", "0xb", 50)
    return RunRecord(
        timestamp=datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc),
        vault="USDC vault",
        mode=OptimizationMode.COMBINED,
        current=AllocationSnapshot(current, 4.0, {"0xa": returns(3.0), "0xb": returns(5.0)}),
        new=AllocationSnapshot(new, 4.5, {"0xa": returns(3.5), "0xb": returns(4.8)}),
        allocatable_amount=200,
        cash_amount=0,
        result=result,
        spread=SpreadSummary(current=2.0, final=1.3, tolerance=None),
        error=error,
        reasoning="ok",
    )


def test_run_record_to_dict():
    record = _record("simulation")
    data = record.to_dict()

    assert data["timestamp"] == "2026-01-05T12:00:00+00:00"
    assert data["mode"] == "combined"
    assert data["result"] == "simulation"
    assert data["error"] is None
    assert data["spread"] == {"current": 2.0, "final": 1.3, "tolerance": None}
    assert data["new"]["allocation"]["0xa"] == {"old_amount": 100, "new_amount": 50, "diff": -50}
    assert data["current"]["returns_total"] == 4.0
    assert data["allocation_amount"] == 200


def test_run_record_error_is_serialized():
    record = _record("error", error=RuntimeError("rpc down"))

    assert record.to_dict()["error"] == "RuntimeError: rpc down"


def test_run_record_is_transaction():
    assert _record("0xdeadbeef").is_transaction
    assert not _record("simulation").is_transaction
    assert not _record("abort").is_transaction
    assert not _record("error").is_transaction
