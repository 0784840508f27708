"""Run records for blockfill: bundles, landing outcomes and submission outcomes."""

import threading
import time
import typing as t
from dataclasses import dataclass, field
from enum import Enum

from .builder import SignedTransaction


@dataclass
class Bundle:
    transactions: t.Tuple[SignedTransaction, ...]
    target_block: int
    submitted_at: t.Optional[float] = None

    @property
    def tx_hashes(self) -> t.List[str]:
        return [tx.tx_hash for tx in self.transactions]

    @property
    def raw_transactions(self) -> t.List[str]:
        return [tx.raw_hex for tx in self.transactions]

    @property
    def calldata_bytes(self) -> int:
        return sum(len(tx.calldata) for tx in self.transactions)

    @property
    def gas(self) -> int:
        return sum(tx.gas for tx in self.transactions)


@dataclass(frozen=True)
class BundleSignature:
    signer: str
    signature: str

    @property
    def header_value(self) -> str:
        return f"{self.signer}:{self.signature}"


class LandingOutcome(Enum):
    LANDED = "landed"
    MISSED = "missed"
    ERROR = "error"


@dataclass(frozen=True)
class LandingResult:
    target_block: int
    outcome: LandingOutcome
    detail: str = ""
    bundle_hash: t.Optional[str] = None
    tx_hashes: t.Tuple[str, ...] = ()
    recorded_at: float = field(default_factory=time.time)


class LandingLog:
    """Append-only log of landing results."""

    def __init__(self) -> None:
        self._entries: t.List[LandingResult] = []
        self._lock = threading.Lock()

    def append(self, result: LandingResult) -> None:
        with self._lock:
            self._entries.append(result)

    @property
    def entries(self) -> t.Tuple[LandingResult, ...]:
        with self._lock:
            return tuple(self._entries)

    def count(self, outcome: LandingOutcome) -> int:
        return sum(1 for entry in self.entries if entry.outcome is outcome)

    @property
    def landed_count(self) -> int:
        return self.count(LandingOutcome.LANDED)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class SubmissionOutcome:
    nonce: int
    tx_hash: t.Optional[str] = None
    error: t.Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.error is None
