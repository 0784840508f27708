"""
Per-run output for blockfill: attempt CSV rows and the final summary.
"""
import csv
import logging
import threading
import typing as t
from datetime import datetime, timezone
from pathlib import Path

from .models import LandingResult

logger = logging.getLogger(__name__)

ATTEMPT_FIELDS = ["time", "block_no", "outcome", "success", "tip_wei", "fill_pct", "chunk_size", "detail"]
RECEIPT_FIELDS = [
    "tx_hash", "start_time", "end_time", "latency", "status",
    "block_number", "gas_used", "effective_gas_price",
]


class AttemptLogWriter:
    """
    Writes one CSV row per bundle attempt. The file is truncated at the start of a run.
    """

    def __init__(self, path: t.Union[str, Path], tip_wei: int, fill_pct: t.Union[int, float], chunk_size: int) -> None:
        self.path = Path(path)
        self.tip_wei = tip_wei
        self.fill_pct = fill_pct
        self.chunk_size = chunk_size
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", newline="") as f:
            csv.DictWriter(f, fieldnames=ATTEMPT_FIELDS).writeheader()

    def __call__(self, result: LandingResult) -> None:
        row = {
            "time": datetime.fromtimestamp(result.recorded_at, tz=timezone.utc).isoformat(),
            "block_no": result.target_block,
            "outcome": result.outcome.value,
            "success": result.outcome.value == "landed",
            "tip_wei": self.tip_wei,
            "fill_pct": self.fill_pct,
            "chunk_size": self.chunk_size,
            "detail": result.detail,
        }
        with self._lock:
            with open(self.path, "a", newline="") as f:
                csv.DictWriter(f, fieldnames=ATTEMPT_FIELDS).writerow(row)


def dump_csv(rows: t.List[t.Dict[str, t.Any]], path: t.Union[str, Path], fieldnames: t.List[str]) -> Path:
    """Write a list of dicts to CSV."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(rows)
    logger.info("[Data] %s saved (%d rows).", path.name, len(rows))
    return path
