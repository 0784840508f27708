"""
Bundle submission engine for blockfill.
One bundle in flight per target block, retried on successive blocks until enough land.
"""
import logging
import threading
import time
import typing as t
from dataclasses import dataclass
from enum import Enum

from .builder import GasPricing, TransactionBuilder
from .errors import ConfigError, RejectionError, RpcError, StressError, TransportExhausted
from .landing import LandingTracker
from .models import Bundle, LandingLog, LandingOutcome, LandingResult
from .network import RpcClient, call_with_retry
from .relay import RelayClient
from .sizing import SizingPlan

logger = logging.getLogger(__name__)


class BundleState(Enum):
    BUILDING = "building"
    SUBMITTED = "submitted"
    LANDED = "landed"
    MISSED = "missed"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class BundleReport:
    blocks_requested: int
    log: LandingLog
    state: BundleState
    cancelled: bool = False

    @property
    def landed(self) -> int:
        return self.log.landed_count

    @property
    def attempted(self) -> int:
        return len(self.log)

    @property
    def missed(self) -> int:
        return self.log.count(LandingOutcome.MISSED)

    @property
    def errors(self) -> int:
        return self.log.count(LandingOutcome.ERROR)

    @property
    def succeeded(self) -> bool:
        return self.state is BundleState.DONE


class BundleSubmitter:
    """
    Drives BUILDING -> SUBMITTED -> {LANDED, MISSED} -> BUILDING until
    `blocks_requested` bundles have landed.

    Usage:
        submitter = BundleSubmitter(rpc, relay, builder, tracker, plan, ...)
        report = submitter.run(cancel_event)
    """

    def __init__(
        self,
        rpc: RpcClient,
        relay: RelayClient,
        builder: TransactionBuilder,
        tracker: LandingTracker,
        plan: SizingPlan,
        blocks_requested: int,
        tip_wei: int,
        target_lead: int = 1,
        max_workers: int = 32,
        simulate: bool = False,
        on_result: t.Optional[t.Callable[[LandingResult], None]] = None,
        budget_bytes: t.Optional[int] = None,
    ) -> None:
        self.rpc = rpc
        self.relay = relay
        self.builder = builder
        self.tracker = tracker
        self.plan = plan
        self.blocks_requested = blocks_requested
        self.tip_wei = tip_wei
        self.target_lead = target_lead
        self.max_workers = max_workers
        self.simulate = simulate
        self.on_result = on_result
        self.budget_bytes = budget_bytes
        self.log = LandingLog()
        self.state = BundleState.BUILDING
        self.last_target: t.Optional[int] = None
        self.attempts = 0

    def _transition(self, state: BundleState) -> None:
        logger.debug("[Bundle] %s -> %s", self.state.value, state.value)
        self.state = state

    def is_done(self) -> bool:
        return self.log.landed_count >= self.blocks_requested

    # ---------- Main loop ----------
    def run(self, cancel: t.Optional[threading.Event] = None) -> BundleReport:
        cancel = cancel or threading.Event()
        cancelled = False
        try:
            while not self.is_done():
                if cancel.is_set():
                    logger.warning("[Bundle] cancelled after %d attempts", len(self.log))
                    cancelled = True
                    break
                result = self.attempt()
                self._record(result)
        except StressError:
            self._transition(BundleState.ABORTED)
            raise

        self._transition(BundleState.ABORTED if cancelled else BundleState.DONE)
        logger.info(
            "[Bundle] finished: %d/%d landed over %d attempts",
            self.log.landed_count, self.blocks_requested, len(self.log),
        )
        return BundleReport(
            blocks_requested=self.blocks_requested,
            log=self.log,
            state=self.state,
            cancelled=cancelled,
        )

    def _record(self, result: LandingResult) -> None:
        self.log.append(result)
        if result.outcome is LandingOutcome.LANDED:
            self._transition(BundleState.LANDED)
            logger.info(
                "[Bundle] bundle #%d included in block %d! hash: %s",
                self.log.landed_count, result.target_block, result.bundle_hash,
            )
        else:
            self._transition(BundleState.MISSED)
            logger.info("[Bundle] did not land block %d (%s), retrying", result.target_block, result.detail)
        if self.on_result is not None:
            self.on_result(result)

    # ---------- One iteration ----------
    def attempt(self) -> LandingResult:
        """Build, sign, submit and resolve one bundle for the next target block."""
        self._transition(BundleState.BUILDING)
        head = self.tracker.chain_head()
        target_block = self.next_target(head)
        self.last_target = target_block
        bundle = self.build_bundle(target_block)
        self.attempts += 1

        if self.simulate:
            try:
                self.relay.simulate_bundle(bundle, head)
            except RejectionError as e:
                return self._unsubmitted(bundle, LandingOutcome.MISSED, str(e))
            except TransportExhausted:
                raise
            except RpcError as e:
                return self._unsubmitted(bundle, LandingOutcome.ERROR, str(e))

        bundle_hash: t.Optional[str] = None
        submit_error: t.Optional[RpcError] = None
        try:
            bundle_hash = self.relay.submit_bundle(bundle, target_block)
        except RejectionError as e:
            return self._unsubmitted(bundle, LandingOutcome.MISSED, str(e))
        except TransportExhausted:
            raise
        except RpcError as e:
            # the relay may still have taken it; resolve before moving on
            submit_error = e
        bundle.submitted_at = time.time()
        self._transition(BundleState.SUBMITTED)
        logger.debug("[Bundle] submitted %d txs for block %d", len(bundle.transactions), target_block)

        result = self.tracker.resolve(bundle, bundle_hash)
        if submit_error is not None and result.outcome is not LandingOutcome.LANDED:
            return LandingResult(
                target_block=target_block,
                outcome=LandingOutcome.ERROR,
                detail=f"submission failed: {submit_error}",
                tx_hashes=result.tx_hashes,
            )
        return result

    def next_target(self, head: int) -> int:
        """head + lead, and always past the previous attempt's block."""
        target_block = head + self.target_lead
        if self.last_target is not None and target_block <= self.last_target:
            target_block = self.last_target + 1
        return target_block

    def build_bundle(self, target_block: int) -> Bundle:
        """
        Fresh bundle for `target_block`: nonces re-anchored to the chain and the
        base fee re-read, so a retry is never byte-identical to a rejected bundle.
        """
        address = self.builder.identity.address
        chain_nonce = call_with_retry(
            self.rpc.pending_nonce,
            address,
            retries=self.tracker.retries,
            backoff_s=self.tracker.backoff_s,
            stage="pending-nonce",
            target_block=target_block,
            sleep=self.tracker.sleep,
        )
        released = self.builder.nonces.resync(address, chain_nonce)
        if released:
            logger.debug("[Bundle] released %d unused nonces, next nonce %d", released, chain_nonce)

        base_fee = call_with_retry(
            self.rpc.base_fee,
            retries=self.tracker.retries,
            backoff_s=self.tracker.backoff_s,
            stage="base-fee",
            target_block=target_block,
            sleep=self.tracker.sleep,
        )
        pricing = GasPricing.from_base_fee(base_fee, self.tip_wei)
        txs = self.builder.build_batch(
            self.plan.num_transactions,
            self.plan.payload_size,
            pricing,
            max_workers=self.max_workers,
            first_index=self.attempts * self.plan.num_transactions,
        )
        bundle = Bundle(transactions=tuple(txs), target_block=target_block)
        if self.budget_bytes is not None and bundle.calldata_bytes > self.budget_bytes:
            raise ConfigError(
                f"bundle carries {bundle.calldata_bytes} calldata bytes, budget is {self.budget_bytes}",
                stage="sizing",
                target_block=target_block,
            )
        logger.debug(
            "[Bundle] block %d: %d txs, %d calldata bytes, %d gas, max fee %d",
            target_block, len(txs), bundle.calldata_bytes, bundle.gas, pricing.max_fee_per_gas,
        )
        return bundle

    def _unsubmitted(self, bundle: Bundle, outcome: LandingOutcome, detail: str) -> LandingResult:
        return LandingResult(
            target_block=bundle.target_block,
            outcome=outcome,
            detail=detail,
            tx_hashes=tuple(bundle.tx_hashes),
        )
