"""
Network access for blockfill.
Web3 connection over a pooled, retrying HTTP session & bounded-retry helper.
"""
import logging
import time
import typing as t

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.providers import HTTPProvider

from .config import HTTP_BACKOFF_FACTOR, HTTP_POOL_SIZE, HTTP_RETRIES, HTTP_TIMEOUT_S
from .errors import RpcError, TransportExhausted

logger = logging.getLogger(__name__)

T = t.TypeVar("T")

TRANSPORT_ERRORS = (requests.RequestException, Web3Exception, ValueError, TimeoutError, KeyError)


def create_session(pool_size: int = HTTP_POOL_SIZE) -> requests.Session:
    """
    Creates an HTTP session with connection pooling and retries on 5xx.
    Shared by every worker thread so bursts don't exhaust sockets.
    """
    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=pool_size,
        pool_maxsize=pool_size,
        max_retries=Retry(
            total=HTTP_RETRIES,
            backoff_factor=HTTP_BACKOFF_FACTOR,
            status_forcelist=[500, 502, 503, 504],
        ),
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def call_with_retry(
    fn: t.Callable[..., T],
    *args: t.Any,
    retries: int,
    backoff_s: float,
    stage: str,
    target_block: t.Optional[int] = None,
    sleep: t.Callable[[float], None] = time.sleep,
) -> T:
    """
    Call `fn`, retrying RpcError with linear backoff.
    Raises TransportExhausted once `retries` attempts have failed.
    """
    last_error: t.Optional[RpcError] = None
    for attempt in range(retries):
        try:
            return fn(*args)
        except RpcError as e:
            last_error = e
            if attempt < retries - 1:
                delay = (attempt + 1) * backoff_s
                logger.warning("[RPC] %s failed (%s), retry %d/%d in %.1fs", stage, e, attempt + 1, retries, delay)
                sleep(delay)
    raise TransportExhausted(
        f"{stage} failed after {retries} attempts",
        stage=stage,
        target_block=target_block,
        cause=last_error,
    ) from last_error


class RpcClient:
    """
    Thin JSON-RPC surface the engine consumes. Every failure surfaces as RpcError.
    """

    def __init__(
        self,
        url: str,
        session: t.Optional[requests.Session] = None,
        timeout: int = HTTP_TIMEOUT_S,
    ) -> None:
        self.url = url
        self.session = session or create_session()
        provider = HTTPProvider(url, session=self.session, request_kwargs={"timeout": timeout})
        self.web3 = Web3(provider)

    def _call(self, stage: str, fn: t.Callable[[], T]) -> T:
        try:
            return fn()
        except TRANSPORT_ERRORS as e:
            raise RpcError(f"RPC call failed on {self.url}", stage=stage, cause=e) from e

    def send_raw_transaction(self, raw: bytes) -> str:
        tx_hash = self._call("send-raw-tx", lambda: self.web3.eth.send_raw_transaction(raw))
        return Web3.to_hex(tx_hash)

    def chain_head(self) -> int:
        return int(self._call("chain-head", lambda: self.web3.eth.block_number))

    def block_transactions(self, number: int) -> t.List[str]:
        block = self._call(
            "get-block",
            lambda: self.web3.eth.get_block(number, full_transactions=False),
        )
        return [Web3.to_hex(tx) for tx in block["transactions"]]

    def base_fee(self) -> int:
        block = self._call("base-fee", lambda: self.web3.eth.get_block("latest"))
        base_fee = block.get("baseFeePerGas")
        if base_fee is None:
            logger.debug("[RPC] latest block has no baseFeePerGas, using eth_gasPrice")
            return self.gas_price()
        return int(base_fee)

    def gas_price(self) -> int:
        return int(self._call("gas-price", lambda: self.web3.eth.gas_price))

    def chain_id(self) -> int:
        return int(self._call("chain-id", lambda: self.web3.eth.chain_id))

    def pending_nonce(self, address: str) -> int:
        return int(self._call("nonce", lambda: self.web3.eth.get_transaction_count(address, "pending")))

    def balance(self, address: str) -> int:
        return int(self._call("balance", lambda: self.web3.eth.get_balance(address)))

    def receipt_status(self, tx_hash: str) -> t.Optional[t.Dict[str, t.Any]]:
        """Receipt fields of a mined tx, or None while it is still pending."""
        try:
            receipt = self.web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except TRANSPORT_ERRORS as e:
            raise RpcError("Receipt lookup failed", stage="receipt", cause=e) from e
        return {
            "block_number": receipt["blockNumber"],
            "status": receipt["status"],
            "gas_used": receipt["gasUsed"],
            "effective_gas_price": receipt.get("effectiveGasPrice"),
        }
