"""
Mempool flooding for blockfill.
High-concurrency fire-and-forget broadcast of pre-signed transactions.
"""
import logging
import typing as t
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from tqdm import tqdm

from .builder import SignedTransaction
from .config import MAX_WORKERS
from .errors import RpcError
from .models import SubmissionOutcome
from .network import RpcClient

logger = logging.getLogger(__name__)


@dataclass
class MempoolReport:
    outcomes: t.List[SubmissionOutcome] = field(default_factory=list)
    mined: t.Optional[int] = None

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def accepted(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.accepted)

    @property
    def failed(self) -> int:
        return self.attempted - self.accepted

    @property
    def accepted_hashes(self) -> t.List[str]:
        return [outcome.tx_hash for outcome in self.outcomes if outcome.accepted and outcome.tx_hash]


class MempoolSubmitter:
    """
    Broadcasts a batch through eth_sendRawTransaction on a thread pool.

    Zero-retry principle: each transaction is sent once; failures are recorded,
    never retried, and never abort the batch.
    """

    def __init__(self, rpc: RpcClient, max_workers: int = MAX_WORKERS, progress: bool = True) -> None:
        self.rpc = rpc
        self.max_workers = max_workers
        self.progress = progress

    def _send(self, tx: SignedTransaction) -> SubmissionOutcome:
        try:
            tx_hash = self.rpc.send_raw_transaction(tx.raw_transaction)
        except RpcError as e:
            return SubmissionOutcome(nonce=tx.nonce, tx_hash=tx.tx_hash, error=str(e.cause or e))
        return SubmissionOutcome(nonce=tx.nonce, tx_hash=tx_hash)

    def submit(self, txs: t.Sequence[SignedTransaction]) -> MempoolReport:
        report = MempoolReport()
        if not txs:
            return report

        with tqdm(total=len(txs), unit="tx", desc="broadcast", disable=not self.progress) as pbar:
            with ThreadPoolExecutor(max_workers=max(1, min(len(txs), self.max_workers))) as executor:
                futures = [executor.submit(self._send, tx) for tx in txs]
                for future in as_completed(futures):
                    outcome = future.result()
                    if not outcome.accepted:
                        logger.warning("[Mempool] nonce %d rejected: %s", outcome.nonce, outcome.error)
                    report.outcomes.append(outcome)
                    pbar.update(1)

        report.outcomes.sort(key=lambda outcome: outcome.nonce)
        logger.info(
            "[Mempool] submitted %d transactions: %d accepted, %d failed",
            report.attempted, report.accepted, report.failed,
        )
        return report
