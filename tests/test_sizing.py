from fractions import Fraction

import pytest

from blockfill.config import BLOCK_CAPACITY_BYTES, KB, MEMPOOL_MAX_CALLDATA_BYTES, TRIM_BYTES, Mode
from blockfill.errors import ConfigError
from blockfill.sizing import budget_bytes, calldata_kb_to_bytes, check_budget, plan_sizing


@pytest.mark.parametrize("fill_pct", [0, 1, 12.5, 33, 50, 80, 99, 100])
@pytest.mark.parametrize("chunk_size", [1, 1000, 128 * KB, 1734 * KB, 3 * 1024 * KB])
def test_bundle_plan_neither_undershoots_nor_overshoots(fill_pct, chunk_size):
    plan = plan_sizing(fill_pct, chunk_size, Mode.BUNDLE)
    target = Fraction(BLOCK_CAPACITY_BYTES) * Fraction(fill_pct) / 100

    assert plan.payload_size == chunk_size
    assert plan.num_transactions * chunk_size >= target
    assert plan.num_transactions * chunk_size < target + chunk_size


def test_eighty_percent_with_large_chunk_needs_one_transaction():
    plan = plan_sizing(80, 1734 * KB, Mode.BUNDLE)

    assert plan.target_bytes == 1_677_722  # ceil(0.8 * 2 MiB)
    assert plan.num_transactions == 1


def test_bundle_plan_for_128k_chunks():
    plan = plan_sizing(80, 128 * KB, Mode.BUNDLE)

    # 1677721.6 / 131072 = 12.8
    assert plan.num_transactions == 13


@pytest.mark.parametrize("fill_pct", [-1, -0.01, 100.5, 101, 1000])
def test_fill_pct_out_of_range_is_config_error(fill_pct):
    with pytest.raises(ConfigError):
        plan_sizing(fill_pct, 128 * KB, Mode.BUNDLE)


@pytest.mark.parametrize("chunk_size", [0, -1, -128 * KB])
@pytest.mark.parametrize("mode", [Mode.BUNDLE, Mode.MEMPOOL])
def test_non_positive_chunk_is_config_error(chunk_size, mode):
    with pytest.raises(ConfigError):
        plan_sizing(80, chunk_size, mode, tx_count=8)


def test_mempool_takes_count_from_config():
    plan = plan_sizing(80, 128 * KB, Mode.MEMPOOL, tx_count=128)

    assert plan.num_transactions == 128
    assert plan.payload_size == 128 * KB


def test_mempool_chunk_over_ceiling_is_config_error():
    with pytest.raises(ConfigError) as exc_info:
        plan_sizing(80, MEMPOOL_MAX_CALLDATA_BYTES + 1, Mode.MEMPOOL, tx_count=1)
    assert exc_info.value.stage == "sizing"


def test_mempool_ceiling_does_not_apply_to_bundles():
    plan = plan_sizing(80, MEMPOOL_MAX_CALLDATA_BYTES * 4, Mode.BUNDLE)
    assert plan.num_transactions == 4


def test_mempool_needs_a_transaction_count():
    with pytest.raises(ConfigError):
        plan_sizing(80, 1024, Mode.MEMPOOL, tx_count=0)


def test_zero_fill_plans_nothing():
    assert plan_sizing(0, 1024, Mode.BUNDLE).num_transactions == 0


def test_budget_accepts_any_ceil_plan_by_default():
    plan = plan_sizing(100, 1500 * KB, Mode.BUNDLE)

    assert plan.total_bytes > BLOCK_CAPACITY_BYTES
    check_budget(plan, 100)


def test_budget_rejects_overshoot_past_explicit_slack():
    plan = plan_sizing(80, 1000 * KB, Mode.BUNDLE)  # 2 x 1000 KiB vs 1638.4 KiB target

    with pytest.raises(ConfigError):
        check_budget(plan, 80, slack_bytes=100 * KB)
    check_budget(plan, 80, slack_bytes=400 * KB)


def test_kb_conversion_leaves_room_for_envelope():
    assert calldata_kb_to_bytes(128) == 128 * KB - TRIM_BYTES
    assert calldata_kb_to_bytes(128) <= MEMPOOL_MAX_CALLDATA_BYTES
    with pytest.raises(ConfigError):
        calldata_kb_to_bytes(0)


def test_budget_bytes_is_target_plus_slack():
    # 80% of 2 MiB is 1677721.6 bytes
    assert budget_bytes(1000, 80) == 1_678_721
    assert budget_bytes(1000, 80, slack_bytes=0) == 1_677_721
    with pytest.raises(ConfigError):
        budget_bytes(1000, 80, slack_bytes=-1)
