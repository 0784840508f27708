"""
Transaction builder for blockfill.
Deterministic calldata, local gas accounting and parallel signing.
"""
import hashlib
import logging
import typing as t
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from web3 import Web3

from .config import DEFAULT_RECIPIENT, MAX_WORKERS
from .identity import Identity, NonceCounter

logger = logging.getLogger(__name__)

TX_BASE_GAS: int = 21_000
GAS_PER_ZERO_BYTE: int = 4
GAS_PER_NONZERO_BYTE: int = 16
FLOOR_GAS_PER_TOKEN: int = 10  # EIP-7623
TOKENS_PER_NONZERO_BYTE: int = 4


@dataclass(frozen=True)
class GasPricing:
    """Legacy flat pricing or EIP-1559 base fee + tip."""

    gas_price: t.Optional[int] = None
    max_fee_per_gas: t.Optional[int] = None
    max_priority_fee_per_gas: t.Optional[int] = None

    @classmethod
    def flat(cls, gas_price: int) -> "GasPricing":
        return cls(gas_price=gas_price)

    @classmethod
    def from_base_fee(cls, base_fee: int, tip_wei: int) -> "GasPricing":
        # base fee can rise at most 12.5% per block
        next_base_fee = base_fee + -(-base_fee // 8)
        return cls(max_fee_per_gas=next_base_fee + tip_wei, max_priority_fee_per_gas=tip_wei)

    @property
    def is_dynamic(self) -> bool:
        return self.gas_price is None

    def to_tx_fields(self) -> t.Dict[str, int]:
        if self.is_dynamic:
            return {
                "maxFeePerGas": self.max_fee_per_gas,
                "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            }
        return {"gasPrice": self.gas_price}


@dataclass(frozen=True)
class SignedTransaction:
    nonce: int
    recipient: str
    value: int
    calldata: bytes
    gas: int
    pricing: GasPricing
    raw_transaction: bytes
    tx_hash: str

    @property
    def raw_hex(self) -> str:
        return Web3.to_hex(self.raw_transaction)


def make_calldata(index: int, size: int) -> bytes:
    """
    Filler payload of exactly `size` bytes, byte-stable for a given index.
    """
    if size <= 0:
        return b""
    block = hashlib.sha256(f"blockfill:{index}".encode("utf-8")).digest()
    repeats = -(-size // len(block))
    return (block * repeats)[:size]


def intrinsic_gas(calldata: bytes) -> int:
    """
    Gas limit for a plain call to an EOA: EIP-2028 calldata cost, raised to the
    EIP-7623 floor for data-heavy transactions.
    """
    zeros = calldata.count(0)
    nonzeros = len(calldata) - zeros
    standard = TX_BASE_GAS + GAS_PER_ZERO_BYTE * zeros + GAS_PER_NONZERO_BYTE * nonzeros
    tokens = zeros + TOKENS_PER_NONZERO_BYTE * nonzeros
    return max(standard, TX_BASE_GAS + FLOOR_GAS_PER_TOKEN * tokens)


class TransactionBuilder:
    """
    Builds and signs calldata-carrying transactions for one signer.

    Nonces come from the shared NonceCounter; signing is delegated to the Identity.
    """

    def __init__(
        self,
        identity: Identity,
        nonces: NonceCounter,
        chain_id: int,
        recipient: str = DEFAULT_RECIPIENT,
    ) -> None:
        self.identity = identity
        self.nonces = nonces
        self.chain_id = chain_id
        self.recipient = Web3.to_checksum_address(recipient)

    def build(
        self,
        index: int,
        chunk_size: int,
        pricing: GasPricing,
        nonce: t.Optional[int] = None,
    ) -> SignedTransaction:
        if nonce is None:
            nonce = self.nonces.next(self.identity.address)
        calldata = make_calldata(index, chunk_size)
        gas = intrinsic_gas(calldata)
        tx: t.Dict[str, t.Any] = {
            "chainId": self.chain_id,
            "nonce": nonce,
            "to": self.recipient,
            "value": 0,
            "data": calldata,
            "gas": gas,
        }
        tx.update(pricing.to_tx_fields())
        signed = self.identity.sign_transaction(tx)
        return SignedTransaction(
            nonce=nonce,
            recipient=self.recipient,
            value=0,
            calldata=calldata,
            gas=gas,
            pricing=pricing,
            raw_transaction=bytes(signed.raw_transaction),
            tx_hash=Web3.to_hex(signed.hash),
        )

    def build_batch(
        self,
        count: int,
        chunk_size: int,
        pricing: GasPricing,
        max_workers: int = MAX_WORKERS,
        first_index: int = 0,
    ) -> t.List[SignedTransaction]:
        """
        Build `count` transactions.

        - Nonces are reserved in one atomic step (nonce safety).
        - Signing runs on a thread pool.
        - Result is in nonce order.
        - Calldata for tx i uses filler index `first_index + i`.
        """
        if count == 0:
            return []
        nonces = self.nonces.reserve(self.identity.address, count)
        with ThreadPoolExecutor(max_workers=max(1, min(count, max_workers))) as executor:
            futures = [
                executor.submit(self.build, first_index + i, chunk_size, pricing, nonce)
                for i, nonce in enumerate(nonces)
            ]
            txs = [future.result() for future in futures]
        logger.debug(
            "[Builder] signed %d txs of %d bytes (nonces %d..%d)",
            count, chunk_size, nonces.start, nonces.stop - 1,
        )
        return txs
