"""Tests for provider selection, cost arithmetic and chunking plans."""

from __future__ import annotations

from decimal import Decimal

import pytest

from provstore.core import defaults
from provstore.core.exceptions import BudgetInfeasible, MalformedInput, PayloadTooLarge
from provstore.optimizer import (
    DealParameters,
    StorageProvider,
    atto_to_fil,
    chunking_strategy,
    distribute_pieces,
    estimate_cost,
    fil_to_atto,
    format_fil,
    optimize,
    plan_cost,
    price_per_epoch,
    rank_providers,
    recommend_providers,
)

MIB = 1 << 20
DURATION = defaults.DEFAULT_DEAL_DURATION_EPOCHS


# ============================================================================
# Units and cost
# ============================================================================


class TestUnits:
    """FIL amounts are exact integers of attoFIL."""

    @pytest.mark.parametrize(
        "amount,atto",
        [("1", 10**18), ("0.1", 10**17), (Decimal("1.5"), 15 * 10**17), (2, 2 * 10**18), ("1e-18", 1)],
    )
    def test_fil_to_atto(self, amount, atto):
        assert fil_to_atto(amount) == atto

    def test_float_is_not_approximated(self):
        assert fil_to_atto(0.1) == 10**17

    @pytest.mark.parametrize("bad", ["-1", "abc", "1e-19", "NaN", "Infinity"])
    def test_rejected_amounts(self, bad):
        with pytest.raises(MalformedInput):
            fil_to_atto(bad)

    def test_atto_to_fil(self):
        assert atto_to_fil(15 * 10**17) == Decimal("1.5")
        assert format_fil(15 * 10**17) == "1.5 FIL"
        assert format_fil(1) == "0.000000000000000001 FIL"

    def test_price_rounds_up(self):
        p = StorageProvider("p", "sim://p", 3)
        # 3 attoFIL/GiB/epoch for 1 MiB is 3/1024 of an attoFIL
        assert price_per_epoch(p, MIB) == 1

    def test_price_per_epoch_scales_with_padded_size(self):
        p = StorageProvider("p", "sim://p", 1024)
        assert price_per_epoch(p, defaults.GIB) == 1024
        assert price_per_epoch(p, MIB) == 1

    def test_verified_not_offered(self):
        p = StorageProvider("p", "sim://p", 10)
        with pytest.raises(MalformedInput):
            price_per_epoch(p, MIB, verified=True)

    def test_estimate_cost(self):
        p = StorageProvider("p", "sim://p", 1024)
        # 10 MiB pads to 16 MiB
        assert estimate_cost(10 * MIB, 100, p) == 16 * 100


# ============================================================================
# Provider selection
# ============================================================================


class TestRanking:
    """Eligibility and ordering."""

    def test_cheapest_first(self, catalog):
        ranked = rank_providers(catalog, 16 * MIB)
        assert [r.provider.provider_id for r in ranked] == ["f01001", "f01002", "f01003", "f01004"]

    def test_verified_filters_providers(self, catalog):
        ranked = rank_providers(catalog, 16 * MIB, verified=True)
        assert "f01003" not in [r.provider.provider_id for r in ranked]

    def test_size_limits_and_inactive(self):
        small = StorageProvider("small", "sim://s", 1, max_piece_size=MIB)
        off = StorageProvider("off", "sim://o", 1, active=False)
        ok = StorageProvider("ok", "sim://k", 2)
        ranked = rank_providers([small, off, ok], 16 * MIB)
        assert [r.provider.provider_id for r in ranked] == ["ok"]

    def test_reliability_breaks_price_ties(self):
        a = StorageProvider("a", "sim://a", 5, reliability=0.5)
        b = StorageProvider("b", "sim://b", 5, reliability=0.9)
        assert rank_providers([a, b], MIB)[0].provider.provider_id == "b"


class TestOptimize:
    """Budget-constrained plans."""

    def test_feasible_plan(self, catalog):
        plan = optimize(10 * MIB, "1.0", 2, catalog, dataset_id="ds", piece_cid="baga")
        assert len(plan) == 2
        assert all(isinstance(p, DealParameters) for p in plan)
        assert [p.replica_index for p in plan] == [0, 1]
        assert all(p.replication_factor == 2 for p in plan)
        assert all(p.padded_size == 16 * MIB for p in plan)
        assert plan_cost(plan) <= fil_to_atto("1.0")

    def test_distinct_providers(self, catalog):
        plan = optimize(10 * MIB, "1.0", 3, catalog)
        assert len({p.provider for p in plan}) == 3

    def test_equal_price_prefers_new_region(self, catalog):
        plan = optimize(10 * MIB, "1.0", 2, catalog)
        assert [p.provider for p in plan] == ["f01001", "f01003"]

    def test_verified_prices_used(self, catalog):
        plan = optimize(10 * MIB, "1.0", 2, catalog, verified=True)
        assert [p.provider for p in plan] == ["f01001", "f01002"]
        assert all(p.verified for p in plan)
        assert plan[0].price_per_epoch == price_per_epoch(catalog[0], 16 * MIB, verified=True)

    def test_total_is_sum_of_replicas(self, catalog):
        plan = optimize(10 * MIB, "1.0", 2, catalog)
        assert plan_cost(plan) == sum(p.price_per_epoch * p.duration_epochs for p in plan)

    def test_budget_infeasible(self, catalog):
        with pytest.raises(BudgetInfeasible):
            optimize(10 * MIB, "0.000000000001", 2, catalog)

    def test_too_few_providers(self, catalog):
        with pytest.raises(BudgetInfeasible):
            optimize(10 * MIB, "1000", 5, catalog)

    def test_zero_budget(self, catalog):
        with pytest.raises(BudgetInfeasible):
            optimize(10 * MIB, 0, 1, catalog)

    def test_cheaper_duration_wins(self, catalog):
        plan = optimize(10 * MIB, "1.0", 1, catalog, durations=[DURATION, 2 * DURATION])
        assert plan[0].duration_epochs == DURATION

    def test_budget_limits_duration(self, catalog):
        per_epoch = price_per_epoch(catalog[0], 16 * MIB)
        budget = atto_to_fil(per_epoch * DURATION)
        plan = optimize(10 * MIB, budget, 1, catalog, durations=[DURATION, 3 * DURATION])
        assert plan[0].duration_epochs == DURATION

    def test_duration_below_minimum(self, catalog):
        with pytest.raises(MalformedInput):
            optimize(10 * MIB, "1.0", 1, catalog, durations=[100])

    def test_duration_above_maximum(self, catalog):
        with pytest.raises(MalformedInput):
            optimize(10 * MIB, "1000", 1, catalog, durations=[defaults.MAX_DEAL_DURATION_EPOCHS + 1])

    def test_equal_cost_prefers_longer_duration(self):
        free = [StorageProvider("p", "sim://p", 0)]
        plan = optimize(MIB, "0", 1, free, durations=[DURATION, 2 * DURATION])
        assert plan[0].duration_epochs == 2 * DURATION

    def test_free_providers_take_more_replicas(self):
        free = [StorageProvider(f"p{i}", f"sim://p{i}", 0, region=f"r{i}") for i in range(4)]
        plan = optimize(MIB, "0", 1, free, max_replicas=3)
        assert len(plan) == 3

    @pytest.mark.parametrize("size,replicas", [(0, 1), (MIB, 0)])
    def test_malformed(self, catalog, size, replicas):
        with pytest.raises(MalformedInput):
            optimize(size, "1.0", replicas, catalog)

    def test_payload_too_large(self, catalog):
        with pytest.raises(PayloadTooLarge):
            optimize(defaults.MAX_PIECE_SIZE, "1000", 1, catalog)

    def test_recommend(self, catalog):
        rows = recommend_providers(catalog, 10 * MIB, limit=2)
        assert [r["provider"] for r in rows] == ["f01001", "f01002"]
        assert rows[0]["estimated_cost"] == rows[0]["price_per_epoch"] * DURATION


# ============================================================================
# Chunking
# ============================================================================


class TestChunking:
    """Chunk sizes, tree shape and piece splits."""

    def test_small_payload_uses_defaults(self):
        plan = chunking_strategy(10 * MIB)
        assert plan.chunk_size == defaults.DEFAULT_CHUNK_SIZE
        assert plan.tree_arity == defaults.DEFAULT_FANOUT
        assert plan.chunk_count == 10
        assert plan.depth == 1
        assert plan.piece_count == 1
        assert not plan.needs_splitting

    def test_large_payload_searches_grid(self):
        plan = chunking_strategy(10 * defaults.GIB)
        assert plan.chunk_size * plan.chunk_count >= 10 * defaults.GIB
        assert plan.piece_count == 1

    @pytest.mark.parametrize(
        "size,piece_size,count",
        [
            (100 * defaults.GIB, 16 * defaults.GIB, 7),
            (defaults.TIB, 32 * defaults.GIB, 32),
            (2 * defaults.TIB, 64 * defaults.GIB, 32),
        ],
    )
    def test_piece_split(self, size, piece_size, count):
        plan = chunking_strategy(size)
        assert plan.piece_size == piece_size
        assert plan.piece_count == count
        assert plan.needs_splitting

    def test_rejects_non_positive(self):
        with pytest.raises(MalformedInput):
            chunking_strategy(0)

    def test_distribute_round_robin(self, catalog):
        plan = chunking_strategy(100 * defaults.GIB)
        assignment = distribute_pieces(plan, catalog[:3])
        assert assignment == {"f01001": [0, 3, 6], "f01002": [1, 4], "f01003": [2, 5]}

    def test_distribute_needs_providers(self):
        with pytest.raises(MalformedInput):
            distribute_pieces(chunking_strategy(MIB), [])
