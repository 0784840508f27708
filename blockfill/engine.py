"""
Stress engine for blockfill.
Pre-flight validation, mode selection and the final run report.
"""
import logging
import threading
import time
import typing as t
from dataclasses import dataclass

from web3 import Web3

from .builder import GasPricing, TransactionBuilder
from .bundle import BundleReport, BundleSubmitter
from .config import Mode, RunConfig
from .identity import Identity, NonceCounter
from .landing import LandingTracker
from .mempool import MempoolReport, MempoolSubmitter
from .monitor import ReceiptMonitor
from .network import RpcClient, call_with_retry
from .relay import FlashbotsRelay, RelayClient
from .report import RECEIPT_FIELDS, AttemptLogWriter, dump_csv
from .sizing import SizingPlan, budget_bytes, plan_sizing

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    mode: Mode
    plan: SizingPlan
    mempool: t.Optional[MempoolReport] = None
    bundle: t.Optional[BundleReport] = None

    @property
    def succeeded(self) -> bool:
        if self.mode is Mode.MEMPOOL:
            return self.mempool is not None and self.mempool.attempted == self.plan.num_transactions
        return self.bundle is not None and self.bundle.succeeded

    @property
    def cancelled(self) -> bool:
        return self.bundle is not None and self.bundle.cancelled

    def summary(self) -> t.List[str]:
        lines = [f"mode: {self.mode.value}"]
        if self.mempool is not None:
            lines.append(
                f"transactions broadcast: {self.mempool.attempted}, "
                f"accepted: {self.mempool.accepted}, failed: {self.mempool.failed}"
            )
            if self.mempool.mined is not None:
                lines.append(f"transactions mined: {self.mempool.mined}")
        if self.bundle is not None:
            lines.append(
                f"blocks landed: {self.bundle.landed}/{self.bundle.blocks_requested} "
                f"(attempted: {self.bundle.attempted}, missed: {self.bundle.missed}, errors: {self.bundle.errors})"
            )
        return lines


class StressEngine:
    """
    Runs one stress test described by a RunConfig.

    Every ConfigError and SigningError is raised before the first network call.
    """

    def __init__(
        self,
        config: RunConfig,
        rpc: t.Optional[RpcClient] = None,
        relay: t.Optional[RelayClient] = None,
        clock: t.Callable[[], float] = time.monotonic,
        sleep: t.Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self._rpc = rpc
        self._relay = relay
        self._clock = clock
        self._sleep = sleep
        self.nonces = NonceCounter()

    def preflight(self) -> t.Tuple[SizingPlan, Identity, t.Optional[Identity]]:
        cfg = self.config
        cfg.validate()
        plan = plan_sizing(
            cfg.fill_pct,
            cfg.chunk_size,
            cfg.mode,
            capacity_bytes=cfg.capacity_bytes,
            tx_count=cfg.tx_count,
            mempool_limit=cfg.mempool_max_calldata,
        )
        tx_signer = Identity.from_key(cfg.tx_signer_key, label="tx-signer")
        bundle_signer = None
        if cfg.mode is Mode.BUNDLE:
            bundle_signer = Identity.from_key(cfg.bundle_signer_key or "", label="bundle-signer")
        return plan, tx_signer, bundle_signer

    def _retry(self, fn: t.Callable[..., t.Any], *args: t.Any, stage: str) -> t.Any:
        return call_with_retry(
            fn, *args,
            retries=self.config.rpc_retries,
            backoff_s=self.config.rpc_backoff_s,
            stage=stage,
            sleep=self._sleep,
        )

    def run(self, cancel: t.Optional[threading.Event] = None) -> RunReport:
        plan, tx_signer, bundle_signer = self.preflight()
        cfg = self.config
        rpc = self._rpc or RpcClient(cfg.rpc_url)

        chain_id = self._retry(rpc.chain_id, stage="chain-id")
        balance = self._retry(rpc.balance, tx_signer.address, stage="balance")
        start_nonce = self._retry(rpc.pending_nonce, tx_signer.address, stage="pending-nonce")
        self.nonces.seed(tx_signer.address, start_nonce)
        logger.info(
            "starting benchmark from %s (balance: %s ETH, nonce: %d, chain: %d)",
            tx_signer.address, Web3.from_wei(balance, "ether"), start_nonce, chain_id,
        )
        logger.info(
            "plan: %d txs x %d bytes (target %d bytes, fill %s%%)",
            plan.num_transactions, plan.payload_size, plan.target_bytes, cfg.fill_pct,
        )

        builder = TransactionBuilder(tx_signer, self.nonces, chain_id, recipient=cfg.recipient)
        if cfg.mode is Mode.MEMPOOL:
            return RunReport(mode=cfg.mode, plan=plan, mempool=self._run_mempool(rpc, builder, plan))
        return RunReport(
            mode=cfg.mode,
            plan=plan,
            bundle=self._run_bundles(rpc, builder, t.cast(Identity, bundle_signer), plan, cancel),
        )

    def _run_mempool(self, rpc: RpcClient, builder: TransactionBuilder, plan: SizingPlan) -> MempoolReport:
        cfg = self.config
        gas_price = cfg.gas_price or self._retry(rpc.gas_price, stage="gas-price")
        txs = builder.build_batch(
            plan.num_transactions,
            plan.payload_size,
            GasPricing.flat(gas_price),
            max_workers=cfg.max_workers,
        )
        logger.debug("generated %d transactions", len(txs))
        report = MempoolSubmitter(rpc, max_workers=cfg.max_workers).submit(txs)

        if cfg.wait_receipts and report.accepted_hashes:
            monitor = ReceiptMonitor(rpc)
            monitor.track(report.accepted_hashes)
            monitor.start_polling(interval=cfg.poll_interval_s)
            if not monitor.wait_until_complete(timeout=cfg.receipt_timeout_s):
                logger.warning("[Monitor] %d transactions still pending after %.0fs", monitor.pending_count, cfg.receipt_timeout_s)
            monitor.stop_polling()
            report.mined = monitor.mined_count
            if cfg.attempt_log:
                dump_csv(monitor.get_results(), cfg.attempt_log, RECEIPT_FIELDS)
        return report

    def _run_bundles(
        self,
        rpc: RpcClient,
        builder: TransactionBuilder,
        bundle_signer: Identity,
        plan: SizingPlan,
        cancel: t.Optional[threading.Event],
    ) -> BundleReport:
        cfg = self.config
        relay = self._relay or FlashbotsRelay(cfg.relay_url, rpc, bundle_signer)
        tracker = LandingTracker(
            rpc,
            relay,
            max_wait_s=cfg.max_wait_s,
            poll_interval_s=cfg.poll_interval_s,
            retries=cfg.rpc_retries,
            backoff_s=cfg.rpc_backoff_s,
            clock=self._clock,
            sleep=self._sleep,
        )
        on_result = None
        if cfg.attempt_log:
            on_result = AttemptLogWriter(cfg.attempt_log, cfg.tip_wei, cfg.fill_pct, cfg.chunk_size)
        submitter = BundleSubmitter(
            rpc,
            relay,
            builder,
            tracker,
            plan,
            blocks_requested=cfg.blocks_requested,
            tip_wei=cfg.tip_wei,
            target_lead=cfg.target_lead,
            max_workers=cfg.max_workers,
            simulate=cfg.simulate,
            on_result=on_result,
            budget_bytes=budget_bytes(plan.payload_size, cfg.fill_pct, cfg.capacity_bytes, cfg.slack_bytes),
        )
        logger.info("[Bundle] landing %d blocks via %s", cfg.blocks_requested, cfg.relay_url)
        return submitter.run(cancel)
