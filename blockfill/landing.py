"""
Landing tracker for blockfill.
Bounded wait for the target block, then an inclusion lookup for the bundle.
"""
import logging
import time
import typing as t

from .models import Bundle, LandingOutcome, LandingResult
from .network import RpcClient, call_with_retry
from .relay import RelayClient

logger = logging.getLogger(__name__)


class LandingTracker:
    """
    Decides whether a submitted bundle landed in its target block.

    Transport errors are retried with backoff; exhausting the retries raises
    TransportExhausted, which is fatal to the run.
    """

    def __init__(
        self,
        rpc: RpcClient,
        relay: RelayClient,
        max_wait_s: float,
        poll_interval_s: float,
        retries: int,
        backoff_s: float,
        clock: t.Callable[[], float] = time.monotonic,
        sleep: t.Callable[[float], None] = time.sleep,
    ) -> None:
        self.rpc = rpc
        self.relay = relay
        self.max_wait_s = max_wait_s
        self.poll_interval_s = poll_interval_s
        self.retries = retries
        self.backoff_s = backoff_s
        self.clock = clock
        self.sleep = sleep

    def chain_head(self, target_block: t.Optional[int] = None) -> int:
        return call_with_retry(
            self.rpc.chain_head,
            retries=self.retries,
            backoff_s=self.backoff_s,
            stage="poll-head",
            target_block=target_block,
            sleep=self.sleep,
        )

    def wait_for_block(self, target_block: int) -> bool:
        """
        Poll the chain head until it reaches `target_block`.

        Returns:
            True once the head is at or past the target, False if max_wait_s ran out.
        """
        start = self.clock()
        while True:
            head = self.chain_head(target_block)
            if head >= target_block:
                return True
            if self.clock() - start >= self.max_wait_s:
                logger.info("[Landing] head stuck at %d, gave up waiting for block %d", head, target_block)
                return False
            self.sleep(self.poll_interval_s)

    def resolve(self, bundle: Bundle, bundle_hash: t.Optional[str] = None) -> LandingResult:
        target = bundle.target_block
        hashes = tuple(bundle.tx_hashes)
        if not self.wait_for_block(target):
            return LandingResult(
                target_block=target,
                outcome=LandingOutcome.MISSED,
                detail=f"block {target} not reached within {self.max_wait_s:.0f}s",
                bundle_hash=bundle_hash,
                tx_hashes=hashes,
            )

        included = call_with_retry(
            self.relay.check_inclusion,
            bundle,
            retries=self.retries,
            backoff_s=self.backoff_s,
            stage="check-inclusion",
            target_block=target,
            sleep=self.sleep,
        )
        if included:
            return LandingResult(
                target_block=target,
                outcome=LandingOutcome.LANDED,
                detail=f"{len(hashes)} txs included",
                bundle_hash=bundle_hash,
                tx_hashes=hashes,
            )
        return LandingResult(
            target_block=target,
            outcome=LandingOutcome.MISSED,
            detail="bundle not in target block",
            bundle_hash=bundle_hash,
            tx_hashes=hashes,
        )
