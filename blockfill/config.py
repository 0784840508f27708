"""
Configuration module for blockfill.
Single source of truth for network constants & the per-run configuration.
"""
import os
import typing as t
from dataclasses import dataclass
from enum import Enum

from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError

# Constants
KB: int = 1024
BLOCK_CAPACITY_BYTES: int = 2 * 1024 * KB  # max propagatable calldata per block
MEMPOOL_MAX_CALLDATA_BYTES: int = 128 * KB  # geth txMaxSize
TRIM_BYTES: int = 300  # room for nonce/to/gas/signature in the serialized tx
DEFAULT_CHUNK_KB: int = 128
DEFAULT_FILL_PCT: int = 80
DEFAULT_BLOCKS: int = 1
DEFAULT_MEMPOOL_TXS: int = 64
DEFAULT_TIP_WEI: int = 5_000_000_000  # 5 Gwei
DEFAULT_RECIPIENT: str = "0xAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
DEFAULT_RELAY_URL: str = "https://relay-goerli.flashbots.net/"

# Bundle loop
TARGET_LEAD: int = 1  # relay accepts bundles for head + 1 onwards
MAX_WAIT_S: float = 60.0
POLL_INTERVAL_S: float = 1.0
RPC_RETRIES: int = 5
RPC_BACKOFF_S: float = 1.0

# HTTP
HTTP_POOL_SIZE: int = 100
HTTP_RETRIES: int = 3
HTTP_BACKOFF_FACTOR: float = 0.5
HTTP_TIMEOUT_S: int = 60
MAX_WORKERS: int = 32


class Mode(Enum):
    MEMPOOL = "mempool"
    BUNDLE = "bundle"


@dataclass(frozen=True)
class RunConfig:
    """
    Immutable configuration for one stress run.

    `chunk_size` is the exact calldata length of every payload transaction, in bytes.
    `gas_price` of None means "ask the node once" (mempool mode only).
    """

    mode: Mode
    rpc_url: str
    tx_signer_key: str
    chunk_size: int = DEFAULT_CHUNK_KB * KB - TRIM_BYTES
    fill_pct: t.Union[int, float] = DEFAULT_FILL_PCT
    blocks_requested: int = DEFAULT_BLOCKS
    tx_count: int = DEFAULT_MEMPOOL_TXS
    gas_price: t.Optional[int] = None
    tip_wei: int = DEFAULT_TIP_WEI
    bundle_signer_key: t.Optional[str] = None
    relay_url: str = DEFAULT_RELAY_URL
    recipient: str = DEFAULT_RECIPIENT
    capacity_bytes: int = BLOCK_CAPACITY_BYTES
    mempool_max_calldata: int = MEMPOOL_MAX_CALLDATA_BYTES
    target_lead: int = TARGET_LEAD
    max_wait_s: float = MAX_WAIT_S
    poll_interval_s: float = POLL_INTERVAL_S
    rpc_retries: int = RPC_RETRIES
    rpc_backoff_s: float = RPC_BACKOFF_S
    max_workers: int = MAX_WORKERS
    slack_bytes: t.Optional[int] = None  # None = one chunk
    wait_receipts: bool = False
    receipt_timeout_s: float = 120.0
    attempt_log: t.Optional[str] = None
    simulate: bool = False

    def validate(self) -> None:
        """
        Pre-flight checks. Raises ConfigError; never touches the network.
        """
        from .sizing import check_budget, plan_sizing

        if not isinstance(self.mode, Mode):
            raise ConfigError(f"Unknown mode: {self.mode!r}", stage="config")
        if not self.rpc_url.startswith(("http://", "https://")):
            raise ConfigError(f"URL does not start with http(s): {self.rpc_url}", stage="config")
        if not self.tx_signer_key:
            raise ConfigError("A tx signer key is required", stage="config")
        if self.gas_price is not None and self.gas_price <= 0:
            raise ConfigError(f"gas_price must be positive, got {self.gas_price}", stage="config")
        if self.tip_wei < 0:
            raise ConfigError(f"tip_wei must not be negative, got {self.tip_wei}", stage="config")
        if self.max_wait_s <= 0 or self.poll_interval_s <= 0:
            raise ConfigError("max_wait_s and poll_interval_s must be positive", stage="config")
        if self.rpc_retries < 1:
            raise ConfigError("rpc_retries must be at least 1", stage="config")

        plan = plan_sizing(
            self.fill_pct,
            self.chunk_size,
            self.mode,
            capacity_bytes=self.capacity_bytes,
            tx_count=self.tx_count,
            mempool_limit=self.mempool_max_calldata,
        )
        if self.mode is Mode.BUNDLE:
            if self.blocks_requested < 1:
                raise ConfigError(
                    f"blocks_requested must be at least 1, got {self.blocks_requested}",
                    stage="config",
                )
            if not self.bundle_signer_key:
                raise ConfigError("Bundle mode needs a bundle signer key", stage="config")
            if not self.relay_url.startswith(("http://", "https://")):
                raise ConfigError(f"URL does not start with http(s): {self.relay_url}", stage="config")
            if plan.num_transactions == 0:
                raise ConfigError("fill_pct leaves nothing to bundle", stage="sizing")
            check_budget(plan, self.fill_pct, self.capacity_bytes, self.slack_bytes)

    @classmethod
    def from_env(cls, mode: Mode, dotenv_path: t.Optional[str] = None, **overrides: t.Any) -> "RunConfig":
        """
        Build a config from ETH_RPC_URL / SIGNER / BUNDLE / RELAY_URL (or a .env file),
        with keyword overrides taking precedence.
        """
        load_dotenv(dotenv_path or find_dotenv(usecwd=True))
        values: t.Dict[str, t.Any] = {
            "rpc_url": os.getenv("ETH_RPC_URL", ""),
            "tx_signer_key": os.getenv("SIGNER", ""),
            "bundle_signer_key": os.getenv("BUNDLE") or None,
            "relay_url": os.getenv("RELAY_URL", DEFAULT_RELAY_URL),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(mode=mode, **values)
