"""
Command-line entry point for blockfill.
"""
import argparse
import logging
import signal
import sys
import threading
import typing as t

from .config import (
    DEFAULT_BLOCKS,
    DEFAULT_CHUNK_KB,
    DEFAULT_FILL_PCT,
    DEFAULT_MEMPOOL_TXS,
    DEFAULT_RECIPIENT,
    DEFAULT_RELAY_URL,
    DEFAULT_TIP_WEI,
    MAX_WAIT_S,
    Mode,
    RunConfig,
)
from .engine import StressEngine
from .errors import ConfigError, SigningError, TransportExhausted
from .sizing import calldata_kb_to_bytes

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_SIGNING = 3
EXIT_TRANSPORT = 4
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blockfill",
        description="Stress-test block propagation with large-calldata transactions.",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--mode", choices=[m.value for m in Mode], default=None,
                      help="Submission path (default: bundle)")
    mode.add_argument("--mem-pool", action="store_true",
                      help="Shorthand for --mode mempool")
    parser.add_argument("--blocks", type=int, default=DEFAULT_BLOCKS,
                        help="Number of blocks to land bundles in")
    parser.add_argument("-f", "--fill-pct", type=float, default=DEFAULT_FILL_PCT,
                        help="Percent of the 2 MiB block payload to fill (0-100)")
    parser.add_argument("-c", "--chunk-size", type=int, default=DEFAULT_CHUNK_KB,
                        help="Calldata per transaction in KiB (mempool is limited to 128)")
    parser.add_argument("--mempool-txs", type=int, default=DEFAULT_MEMPOOL_TXS,
                        help="Transactions to broadcast in mempool mode")
    parser.add_argument("--gas-price", type=int, default=None,
                        help="Flat gas price in wei for mempool mode (default: node's eth_gasPrice)")
    parser.add_argument("--tip-wei", type=int, default=DEFAULT_TIP_WEI,
                        help="Priority fee in wei for bundle transactions")
    parser.add_argument("-r", "--rpc-url", default=None,
                        help="HTTP RPC endpoint (env: ETH_RPC_URL)")
    parser.add_argument("--relay-url", default=None,
                        help=f"Bundle relay endpoint (env: RELAY_URL, default: {DEFAULT_RELAY_URL})")
    parser.add_argument("-t", "--tx-signer", default=None,
                        help="Private key paying for the stress transactions (env: SIGNER)")
    parser.add_argument("-b", "--bundle-signer", default=None,
                        help="Private key used for relay reputation (env: BUNDLE)")
    parser.add_argument("--recipient", default=DEFAULT_RECIPIENT,
                        help="Recipient of the calldata transactions")
    parser.add_argument("--max-wait", type=float, default=MAX_WAIT_S,
                        help="Seconds to wait for each target block")
    parser.add_argument("--slack-bytes", type=int, default=None,
                        help="Allowed bundle overshoot past the fill target (default: one chunk)")
    parser.add_argument("--simulate", action="store_true",
                        help="Simulate each bundle on the relay before submitting it")
    parser.add_argument("--wait-receipts", action="store_true",
                        help="In mempool mode, wait for receipts of accepted transactions")
    parser.add_argument("--attempt-log", default=None,
                        help="CSV file for this run's bundle attempts or mempool receipts")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def config_from_args(args: argparse.Namespace) -> RunConfig:
    """Flags win over the environment and .env, which win over built-in defaults."""
    if args.mem_pool:
        mode = Mode.MEMPOOL
    else:
        mode = Mode(args.mode or Mode.BUNDLE.value)
    return RunConfig.from_env(
        mode,
        rpc_url=args.rpc_url,
        tx_signer_key=args.tx_signer,
        bundle_signer_key=args.bundle_signer,
        relay_url=args.relay_url,
        chunk_size=calldata_kb_to_bytes(args.chunk_size),
        fill_pct=args.fill_pct,
        blocks_requested=args.blocks,
        tx_count=args.mempool_txs,
        gas_price=args.gas_price,
        tip_wei=args.tip_wei,
        recipient=args.recipient,
        max_wait_s=args.max_wait,
        slack_bytes=args.slack_bytes,
        simulate=args.simulate,
        wait_receipts=args.wait_receipts,
        attempt_log=args.attempt_log,
    )


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    # keep transport chatter out of -v runs
    for noisy in ("urllib3", "web3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def main(argv: t.Optional[t.Sequence[str]] = None, engine_factory: t.Callable[..., StressEngine] = StressEngine) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    cancel = threading.Event()

    def _on_sigint(signum: int, frame: t.Any) -> None:
        logger.warning("interrupt received, finishing the current bundle then stopping")
        cancel.set()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    previous_handler = None
    if threading.current_thread() is threading.main_thread():
        previous_handler = signal.signal(signal.SIGINT, _on_sigint)

    try:
        config = config_from_args(args)
        report = engine_factory(config).run(cancel)
    except ConfigError as e:
        logger.error("configuration error: %s", e)
        return EXIT_CONFIG
    except SigningError as e:
        logger.error("signing error: %s", e)
        return EXIT_SIGNING
    except TransportExhausted as e:
        logger.error("giving up on RPC: %s", e)
        return EXIT_TRANSPORT
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)

    for line in report.summary():
        print(line)
    if report.cancelled:
        return EXIT_CANCELLED
    return EXIT_OK if report.succeeded else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
