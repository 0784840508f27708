"""
Identity management for blockfill.
Signing identities & the process-wide nonce counter.
"""
import threading
import typing as t
from collections import defaultdict

from eth_account import Account
from eth_account.datastructures import SignedTransaction
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .errors import SigningError


# Nonce Counter
class NonceCounter:
    """
    Monotonic nonce source per signer address (local counting only).

    All mutation happens under one lock, so concurrent builders never see the
    same nonce twice.
    """

    def __init__(self) -> None:
        self._nonces: t.Dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def _key(self, address: str) -> str:
        return address.lower()

    def seed(self, address: str, nonce: int) -> None:
        """Set the starting point, normally the chain's pending nonce."""
        with self._lock:
            self._nonces[self._key(address)] = nonce

    def next(self, address: str) -> int:
        """Return the current nonce for address, then increment it."""
        with self._lock:
            key = self._key(address)
            nonce = self._nonces[key]
            self._nonces[key] = nonce + 1
            return nonce

    def reserve(self, address: str, count: int) -> range:
        """Atomically hand out `count` consecutive nonces."""
        if count < 0:
            raise ValueError(f"count must not be negative, got {count}")
        with self._lock:
            key = self._key(address)
            start = self._nonces[key]
            self._nonces[key] = start + count
            return range(start, start + count)

    def peek(self, address: str) -> int:
        """Return current nonce without incrementing."""
        with self._lock:
            return self._nonces[self._key(address)]

    def resync(self, address: str, chain_nonce: int) -> int:
        """
        Re-anchor to the chain's pending nonce.

        Nonces handed out since the anchor that never reached the chain (a missed
        bundle) are released. Returns the number of nonces released.
        """
        with self._lock:
            key = self._key(address)
            released = max(self._nonces[key] - chain_nonce, 0)
            self._nonces[key] = chain_nonce
            return released


# Signing identity
class Identity:
    """
    A signing capability bound to one private key.
    """

    def __init__(self, account: LocalAccount, label: str = "signer") -> None:
        self.account = account
        self.label = label

    @property
    def address(self) -> str:
        return self.account.address

    @classmethod
    def from_key(cls, private_key: str, label: str = "signer") -> "Identity":
        key = private_key.strip()
        if not key.startswith("0x"):
            key = "0x" + key
        try:
            account = Account.from_key(key)
        except Exception as e:
            raise SigningError(f"Invalid private key for {label}", stage="load-key", cause=e) from e
        return cls(account, label)

    def sign_transaction(self, tx: t.Dict[str, t.Any]) -> SignedTransaction:
        try:
            return self.account.sign_transaction(tx)
        except Exception as e:
            raise SigningError(
                f"{self.label} failed to sign tx with nonce {tx.get('nonce')}",
                stage="sign-tx",
                cause=e,
            ) from e

    def sign_message(self, text: str) -> str:
        """
        Sign keccak(text) as an EIP-191 personal message; returns the 0x-prefixed signature.
        """
        digest = Web3.to_hex(Web3.keccak(text=text))
        try:
            signed = self.account.sign_message(encode_defunct(text=digest))
        except Exception as e:
            raise SigningError(f"{self.label} failed to sign message", stage="sign-message", cause=e) from e
        return Web3.to_hex(signed.signature)
