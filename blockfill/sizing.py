"""
Sizing calculator for blockfill.
Turns a fill percentage into a transaction count and per-transaction calldata size.
"""
import math
import typing as t
from dataclasses import dataclass
from fractions import Fraction

from .config import BLOCK_CAPACITY_BYTES, KB, MEMPOOL_MAX_CALLDATA_BYTES, TRIM_BYTES, Mode
from .errors import ConfigError


@dataclass(frozen=True)
class SizingPlan:
    num_transactions: int
    payload_size: int
    target_bytes: int

    @property
    def total_bytes(self) -> int:
        return self.num_transactions * self.payload_size


def calldata_kb_to_bytes(chunk_kb: int) -> int:
    """KiB chunk -> calldata bytes, leaving TRIM_BYTES for the rest of the envelope."""
    if chunk_kb <= 0:
        raise ConfigError(f"chunk size must be positive, got {chunk_kb} KiB", stage="sizing")
    return max(chunk_kb * KB - TRIM_BYTES, 1)


def target_bytes(capacity_bytes: int, fill_pct: t.Union[int, float]) -> Fraction:
    return Fraction(capacity_bytes) * Fraction(fill_pct) / 100


def plan_sizing(
    fill_pct: t.Union[int, float],
    chunk_size: int,
    mode: Mode,
    capacity_bytes: int = BLOCK_CAPACITY_BYTES,
    tx_count: t.Optional[int] = None,
    mempool_limit: int = MEMPOOL_MAX_CALLDATA_BYTES,
) -> SizingPlan:
    """
    Derive (num_transactions, payload_size) for a run.

    Bundle mode sizes by ceil(target_bytes / chunk_size). Mempool mode takes the
    count from `tx_count` and only checks the chunk against the propagation ceiling.
    Pure: no I/O, deterministic.
    """
    if not 0 <= fill_pct <= 100:
        raise ConfigError(f"fill_pct must be within [0, 100], got {fill_pct}", stage="sizing")
    if chunk_size <= 0:
        raise ConfigError(f"chunk_size must be positive, got {chunk_size}", stage="sizing")
    if capacity_bytes <= 0:
        raise ConfigError(f"capacity must be positive, got {capacity_bytes}", stage="sizing")

    target = target_bytes(capacity_bytes, fill_pct)

    if mode is Mode.MEMPOOL:
        if chunk_size > mempool_limit:
            raise ConfigError(
                f"chunk_size {chunk_size} exceeds the mempool propagation limit of {mempool_limit} bytes",
                stage="sizing",
            )
        if tx_count is None or tx_count < 1:
            raise ConfigError(f"mempool mode needs tx_count >= 1, got {tx_count}", stage="sizing")
        return SizingPlan(num_transactions=tx_count, payload_size=chunk_size, target_bytes=math.ceil(target))

    return SizingPlan(
        num_transactions=math.ceil(target / chunk_size),
        payload_size=chunk_size,
        target_bytes=math.ceil(target),
    )


def budget_bytes(
    payload_size: int,
    fill_pct: t.Union[int, float],
    capacity_bytes: int = BLOCK_CAPACITY_BYTES,
    slack_bytes: t.Optional[int] = None,
) -> int:
    """Most calldata a bundle may carry: the fill target plus slack (default one chunk)."""
    slack = payload_size if slack_bytes is None else slack_bytes
    if slack < 0:
        raise ConfigError(f"slack_bytes must not be negative, got {slack}", stage="sizing")
    return math.floor(target_bytes(capacity_bytes, fill_pct) + slack)


def check_budget(
    plan: SizingPlan,
    fill_pct: t.Union[int, float],
    capacity_bytes: int = BLOCK_CAPACITY_BYTES,
    slack_bytes: t.Optional[int] = None,
) -> None:
    """
    Reject a plan whose total calldata overshoots the fill target by more than the slack.
    The default slack is one chunk, which every ceil-sized plan satisfies.
    """
    limit = budget_bytes(plan.payload_size, fill_pct, capacity_bytes, slack_bytes)
    if plan.total_bytes > limit:
        raise ConfigError(
            f"bundle of {plan.num_transactions} x {plan.payload_size} bytes overshoots "
            f"{fill_pct}% of {capacity_bytes} bytes (limit {limit} bytes)",
            stage="sizing",
        )
