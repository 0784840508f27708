"""
Receipt monitoring for blockfill.
Background polling of broadcast transactions until they are mined.
"""
import logging
import threading
import time
import typing as t
from dataclasses import dataclass
from enum import Enum

from .errors import RpcError
from .network import RpcClient

logger = logging.getLogger(__name__)


class TxStatus(Enum):
    PENDING = "pending"
    MINED = "mined"
    FAILED = "failed"


@dataclass
class TransactionRecord:
    tx_hash: str
    start_time: float
    end_time: t.Optional[float] = None
    status: TxStatus = TxStatus.PENDING
    block_number: t.Optional[int] = None
    gas_used: t.Optional[int] = None
    effective_gas_price: t.Optional[int] = None


class ReceiptMonitor:
    """
    Tracks transaction hashes and polls their receipts in a background thread.

    Usage:
        monitor = ReceiptMonitor(rpc)
        monitor.track(["0xabc..."])
        monitor.start_polling()
        monitor.wait_until_complete(timeout=120)
        results = monitor.get_results()
    """

    def __init__(self, rpc: RpcClient) -> None:
        self.rpc = rpc
        self._pending: t.Dict[str, float] = {}
        self._completed: t.List[TransactionRecord] = []
        self._lock = threading.RLock()
        self._thread: t.Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def track(self, tx_hashes: t.Iterable[str], submission_time: t.Optional[float] = None) -> None:
        if submission_time is None:
            submission_time = time.time()
        with self._lock:
            for tx_hash in tx_hashes:
                self._pending[tx_hash] = submission_time

    def start_polling(self, interval: float = 1.0) -> None:
        """
        Start the background thread. It exits on stop_polling() or once nothing is pending.
        """
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._polling_loop, args=(interval,), daemon=True)
        self._thread.start()

    def stop_polling(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None

    def poll_once(self) -> int:
        """Check every pending hash once; returns how many were finalized."""
        with self._lock:
            pending_copy = dict(self._pending)

        finalized = 0
        for tx_hash, start_time in pending_copy.items():
            try:
                receipt = self.rpc.receipt_status(tx_hash)
            except RpcError as e:
                logger.debug("[Monitor] receipt lookup for %s failed: %s", tx_hash[:10], e)
                continue
            if receipt is None:
                continue
            status = TxStatus.MINED if receipt["status"] == 1 else TxStatus.FAILED
            record = TransactionRecord(
                tx_hash=tx_hash,
                start_time=start_time,
                end_time=time.time(),
                status=status,
                block_number=receipt["block_number"],
                gas_used=receipt["gas_used"],
                effective_gas_price=receipt["effective_gas_price"],
            )
            with self._lock:
                self._pending.pop(tx_hash, None)
                self._completed.append(record)
            finalized += 1
            logger.info("[Monitor] CONFIRMED %s in block %s", tx_hash[:10], record.block_number)
        return finalized

    def _polling_loop(self, interval: float) -> None:
        while not self._stop_event.is_set():
            with self._lock:
                if not self._pending:
                    break
            self.poll_once()
            self._stop_event.wait(interval)

    def wait_until_complete(self, timeout: float = 120.0, tick: float = 0.5) -> bool:
        """
        Block until nothing is pending or the timeout is reached.

        Returns:
            True if every tracked transaction was finalized, False on timeout.
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self._lock:
                if not self._pending:
                    return True
            time.sleep(tick)
        with self._lock:
            return not self._pending

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def mined_count(self) -> int:
        with self._lock:
            return sum(1 for r in self._completed if r.status is TxStatus.MINED)

    def get_results(self) -> t.List[t.Dict[str, t.Any]]:
        with self._lock:
            return [
                {
                    "tx_hash": r.tx_hash,
                    "start_time": r.start_time,
                    "end_time": r.end_time,
                    "latency": r.end_time - r.start_time if r.end_time else None,
                    "status": r.status.value,
                    "block_number": r.block_number,
                    "gas_used": r.gas_used,
                    "effective_gas_price": r.effective_gas_price,
                }
                for r in self._completed
            ]
