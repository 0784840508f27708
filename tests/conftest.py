import threading
import typing as t

import pytest
from web3 import Web3

from blockfill.errors import RejectionError, RpcError
from blockfill.identity import Identity, NonceCounter
from blockfill.models import Bundle

# Test constants
TX_KEY = "0x" + "1" * 64
BUNDLE_KEY = "0x" + "2" * 64
RPC_URL = "http://localhost:8545"
CHAIN_ID = 1337


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: t.List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeRpc:
    """In-memory stand-in for RpcClient."""

    def __init__(self, head: int = 100, nonce: int = 7, base_fee: int = 10_000_000_000) -> None:
        self.head = head
        self.nonce = nonce
        self.base_fee_value = base_fee
        self.blocks: t.Dict[int, t.List[str]] = {}
        self.sent: t.List[bytes] = []
        self.reject_raw: t.Set[bytes] = set()
        self.head_failures = 0
        self.calls: t.List[str] = []
        self.receipts: t.Dict[str, t.Dict[str, t.Any]] = {}
        self._lock = threading.Lock()

    def _note(self, name: str) -> None:
        with self._lock:
            self.calls.append(name)

    def send_raw_transaction(self, raw: bytes) -> str:
        self._note("send_raw_transaction")
        with self._lock:
            self.sent.append(raw)
        if raw in self.reject_raw:
            raise RpcError("nonce too low", stage="send-raw-tx", cause=ValueError("nonce too low"))
        return Web3.to_hex(Web3.keccak(raw))

    def chain_head(self) -> int:
        self._note("chain_head")
        if self.head_failures > 0:
            self.head_failures -= 1
            raise RpcError("connection refused", stage="chain-head")
        return self.head

    def block_transactions(self, number: int) -> t.List[str]:
        self._note("block_transactions")
        if number > self.head:
            raise RpcError(f"block {number} not found", stage="get-block")
        return list(self.blocks.get(number, []))

    def base_fee(self) -> int:
        self._note("base_fee")
        return self.base_fee_value

    def gas_price(self) -> int:
        self._note("gas_price")
        return 2 * self.base_fee_value

    def chain_id(self) -> int:
        self._note("chain_id")
        return CHAIN_ID

    def pending_nonce(self, address: str) -> int:
        self._note("pending_nonce")
        return self.nonce

    def balance(self, address: str) -> int:
        self._note("balance")
        return 10 ** 18

    def receipt_status(self, tx_hash: str) -> t.Optional[t.Dict[str, t.Any]]:
        self._note("receipt_status")
        return self.receipts.get(tx_hash)


class FakeRelay:
    """
    Scripted relay. Each submission consumes one step:
      "land"   -> target block is mined with the bundle
      "miss"   -> target block is mined without it
      "reject" -> relay refuses the bundle
      "stall"  -> nothing happens, the chain does not advance
      "error"  -> transport failure on submission, block mined without it
    """

    def __init__(self, rpc: FakeRpc, script: t.Sequence[str]) -> None:
        self.rpc = rpc
        self.script = list(script)
        self.submissions: t.List[t.Tuple[Bundle, int]] = []
        self.simulations: t.List[t.Tuple[Bundle, int]] = []
        self.simulate_rejects = False

    def submit_bundle(self, bundle: Bundle, target_block: int) -> str:
        self.submissions.append((bundle, target_block))
        step = self.script.pop(0) if self.script else "land"
        if step == "reject":
            raise RejectionError("bundle rejected", stage="relay-post", target_block=target_block)
        if step == "land":
            self.rpc.blocks[target_block] = ["0xfeed"] + bundle.tx_hashes
            self.rpc.head = target_block
            self.rpc.nonce += len(bundle.transactions)
        elif step in ("miss", "error"):
            self.rpc.blocks[target_block] = ["0xfeed"]
            self.rpc.head = target_block
        if step == "error":
            raise RpcError("relay unreachable", stage="relay-post", target_block=target_block)
        return f"0xbundle{len(self.submissions)}"

    def simulate_bundle(self, bundle: Bundle, state_block: int) -> t.Dict[str, t.Any]:
        self.simulations.append((bundle, state_block))
        if self.simulate_rejects:
            raise RejectionError("simulation reverted", stage="relay-simulate", target_block=bundle.target_block)
        return {"results": []}

    def check_inclusion(self, bundle: Bundle) -> bool:
        included = set(self.rpc.block_transactions(bundle.target_block))
        return all(tx_hash in included for tx_hash in bundle.tx_hashes)


@pytest.fixture
def tx_identity() -> Identity:
    return Identity.from_key(TX_KEY, label="tx-signer")


@pytest.fixture
def bundle_identity() -> Identity:
    return Identity.from_key(BUNDLE_KEY, label="bundle-signer")


@pytest.fixture
def nonces() -> NonceCounter:
    return NonceCounter()


@pytest.fixture
def rpc() -> FakeRpc:
    return FakeRpc()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
