"""
Relay integration for blockfill.
Bundle submission to a Flashbots-style auction relay & inclusion lookups.
"""
import json
import logging
import typing as t

import requests

from .config import HTTP_TIMEOUT_S
from .errors import RejectionError, RpcError
from .identity import Identity
from .models import Bundle, BundleSignature
from .network import RpcClient, create_session

logger = logging.getLogger(__name__)


class RelayClient(t.Protocol):
    def submit_bundle(self, bundle: Bundle, target_block: int) -> str:
        ...

    def simulate_bundle(self, bundle: Bundle, state_block: int) -> t.Dict[str, t.Any]:
        ...

    def check_inclusion(self, bundle: Bundle) -> bool:
        ...


class FlashbotsRelay:
    """
    eth_sendBundle / eth_callBundle over HTTP with an X-Flashbots-Signature header.

    Every request body is signed by `signer`, the bundle-signer identity that
    builds relay reputation. It is a different key from the one paying for the
    transactions.

    Usage:
        relay = FlashbotsRelay(relay_url, rpc, bundle_signer)
        bundle_hash = relay.submit_bundle(bundle, bundle.target_block)
    """

    def __init__(
        self,
        relay_url: str,
        rpc: RpcClient,
        signer: Identity,
        session: t.Optional[requests.Session] = None,
        timeout: float = HTTP_TIMEOUT_S,
    ) -> None:
        self.relay_url = relay_url
        self.rpc = rpc
        self.signer = signer
        self.session = session or create_session(pool_size=4)
        self.timeout = timeout

    # ---------- Request bodies ----------
    def encode_bundle(self, bundle: Bundle) -> str:
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_sendBundle",
            "params": [{"txs": bundle.raw_transactions, "blockNumber": hex(bundle.target_block)}],
        }
        return json.dumps(payload)

    def encode_simulation(self, bundle: Bundle, state_block: int) -> str:
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_callBundle",
            "params": [
                {
                    "txs": bundle.raw_transactions,
                    "blockNumber": hex(bundle.target_block),
                    "stateBlockNumber": hex(state_block),
                }
            ],
        }
        return json.dumps(payload)

    # ---------- Calls ----------
    def sign(self, body: str) -> BundleSignature:
        return BundleSignature(signer=self.signer.address, signature=self.signer.sign_message(body))

    def _post(self, body: str, target_block: int) -> t.Any:
        signature = self.sign(body)
        headers = {
            "Content-Type": "application/json",
            "X-Flashbots-Signature": signature.header_value,
        }
        try:
            response = self.session.post(self.relay_url, data=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise RpcError("Relay unreachable", stage="relay-post", target_block=target_block, cause=e) from e

        try:
            reply = response.json()
        except ValueError:
            reply = None
        if not isinstance(reply, dict):
            if response.status_code >= 500:
                raise RpcError(
                    f"Relay returned HTTP {response.status_code}",
                    stage="relay-post",
                    target_block=target_block,
                )
            raise RejectionError(
                f"Relay returned HTTP {response.status_code}: {response.text[:200]}",
                stage="relay-post",
                target_block=target_block,
            )
        if "error" in reply:
            error = reply["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise RejectionError(f"Relay rejected bundle: {message}", stage="relay-post", target_block=target_block)
        if "result" not in reply:
            raise RpcError("Relay reply has no result", stage="relay-post", target_block=target_block)
        return reply["result"]

    def submit_bundle(self, bundle: Bundle, target_block: int) -> str:
        if target_block != bundle.target_block:
            raise ValueError(f"bundle targets {bundle.target_block}, not {target_block}")
        result = self._post(self.encode_bundle(bundle), target_block)
        bundle_hash = result.get("bundleHash", "") if isinstance(result, dict) else str(result or "")
        logger.debug("[Relay] accepted bundle for block %d: %s", target_block, bundle_hash)
        return bundle_hash

    def simulate_bundle(self, bundle: Bundle, state_block: int) -> t.Dict[str, t.Any]:
        result = self._post(self.encode_simulation(bundle, state_block), bundle.target_block)
        if not isinstance(result, dict):
            raise RpcError("Malformed simulation result", stage="relay-simulate", target_block=bundle.target_block)
        for tx_result in result.get("results", []):
            if tx_result.get("error") or tx_result.get("revert"):
                raise RejectionError(
                    f"Simulation failed for {tx_result.get('txHash')}: "
                    f"{tx_result.get('error') or tx_result.get('revert')}",
                    stage="relay-simulate",
                    target_block=bundle.target_block,
                )
        return result

    def check_inclusion(self, bundle: Bundle) -> bool:
        """All of the bundle's tx hashes appear in its target block."""
        included = {tx_hash.lower() for tx_hash in self.rpc.block_transactions(bundle.target_block)}
        return all(tx_hash.lower() in included for tx_hash in bundle.tx_hashes)
