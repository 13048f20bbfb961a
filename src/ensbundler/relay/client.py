"""Flashbots-style relay client.

Bundles are sent with `eth_sendBundle` over HTTP JSON-RPC. The relay
gives no synchronous inclusion guarantee: a successful response only
means the bundle was accepted for consideration. Inclusion is decided
afterwards by watching the ledger until the target block is mined and
checking whether every bundle transaction landed in exactly that block.

Each request is authenticated with an `X-Flashbots-Signature` header:
the relay-auth key's EIP-191 signature over the keccak hash (hex) of
the request body.
"""

from __future__ import annotations

import itertools
import json
import logging
import time
from typing import Any, Callable, Optional

import requests
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import TransactionNotFound

from ensbundler.models.relay import RelayResolution, RelayResponse

logger = logging.getLogger(__name__)

DEFAULT_RELAY_URL = "https://relay-goerli.flashbots.net"


class BundleHandle:
    """Handle on one submitted bundle; `wait()` resolves it.

    A handle created from a rejected submission carries the relay error
    and resolves immediately.
    """

    def __init__(
        self,
        w3: Web3,
        target_block: int,
        tx_hashes: list[bytes],
        sender: str,
        nonce: int,
        bundle_hash: Optional[str] = None,
        error: Optional[str] = None,
        poll_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._w3 = w3
        self.target_block = target_block
        self.tx_hashes = tx_hashes
        self.sender = sender
        self.nonce = nonce
        self.bundle_hash = bundle_hash
        self.error = error
        self._poll_interval = poll_interval
        self._sleep = sleep

    def wait(self) -> RelayResponse:
        """Block until the target block is mined, then report inclusion."""
        if self.error is not None:
            return RelayResponse(error=self.error, bundle_hash=self.bundle_hash)

        while self._w3.eth.block_number < self.target_block:
            self._sleep(self._poll_interval)

        if self._all_included():
            resolution = RelayResolution.BUNDLE_INCLUDED
        else:
            account_nonce = self._w3.eth.get_transaction_count(
                self.sender, self.target_block
            )
            if account_nonce > self.nonce and self._in_target_block():
                # Receipts can lag the head on load-balanced endpoints.
                resolution = RelayResolution.BUNDLE_INCLUDED
            elif account_nonce > self.nonce:
                resolution = RelayResolution.ACCOUNT_NONCE_TOO_HIGH
            else:
                resolution = RelayResolution.BLOCK_PASSED_WITHOUT_INCLUSION
        return RelayResponse(resolution=resolution, bundle_hash=self.bundle_hash)

    def _all_included(self) -> bool:
        for tx_hash in self.tx_hashes:
            try:
                receipt = self._w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return False
            if receipt["blockNumber"] != self.target_block:
                return False
        return True

    def _in_target_block(self) -> bool:
        block = self._w3.eth.get_block(self.target_block)
        mined = {bytes(tx_hash) for tx_hash in block["transactions"]}
        return all(bytes(tx_hash) in mined for tx_hash in self.tx_hashes)


class FlashbotsRelayClient:
    """Sends signed bundles to a private relay.

    Usage:
        with FlashbotsRelayClient(w3, auth_account, relay_url) as relay:
            handle = relay.send_bundle(raw_txs, tx_hashes, sender, nonce, target)
            response = handle.wait()
    """

    def __init__(
        self,
        w3: Web3,
        auth_signer: LocalAccount,
        relay_url: str = DEFAULT_RELAY_URL,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        poll_interval: float = 1.0,
    ) -> None:
        self._w3 = w3
        self._auth_signer = auth_signer
        self._relay_url = relay_url
        self._session = session or requests.Session()
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._ids = itertools.count(1)
        self._closed = False

    def __enter__(self) -> "FlashbotsRelayClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        """Release the HTTP session. Safe to call more than once."""
        if not self._closed:
            self._session.close()
            self._closed = True

    def signature_header(self, body: str) -> str:
        """Return the `address:signature` value for a request body."""
        body_hash = Web3.to_hex(Web3.keccak(text=body))
        message = encode_defunct(text=body_hash)
        signed = self._auth_signer.sign_message(message)
        return f"{self._auth_signer.address}:{Web3.to_hex(signed.signature)}"

    def send_bundle(
        self,
        raw_transactions: list[str],
        tx_hashes: list[bytes],
        sender: str,
        nonce: int,
        target_block: int,
    ) -> BundleHandle:
        """Submit a bundle for `target_block` and return its handle.

        Transport failures and relay-side rejections do not raise; they
        are carried on the handle as an error string.
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "eth_sendBundle",
            "params": [
                {"txs": raw_transactions, "blockNumber": hex(target_block)}
            ],
        }
        body = json.dumps(payload)
        headers = {
            "Content-Type": "application/json",
            "X-Flashbots-Signature": self.signature_header(body),
        }

        bundle_hash: Optional[str] = None
        error: Optional[str] = None
        try:
            resp = self._session.post(
                self._relay_url, data=body, headers=headers, timeout=self._timeout
            )
            reply = _parse_reply(resp)
        except requests.RequestException as exc:
            error = f"relay request failed: {exc}"
        else:
            if "error" in reply:
                error = _error_message(reply["error"])
            else:
                result = reply.get("result") or {}
                if isinstance(result, dict):
                    bundle_hash = result.get("bundleHash")

        if error is not None:
            logger.warning("Relay rejected bundle for block %d: %s", target_block, error)
        else:
            logger.debug("Relay accepted bundle %s for block %d", bundle_hash, target_block)

        return BundleHandle(
            self._w3,
            target_block=target_block,
            tx_hashes=tx_hashes,
            sender=sender,
            nonce=nonce,
            bundle_hash=bundle_hash,
            error=error,
            poll_interval=self._poll_interval,
        )


def _parse_reply(resp: requests.Response) -> dict[str, Any]:
    try:
        reply = resp.json()
    except ValueError:
        reply = None
    if isinstance(reply, dict):
        return reply
    if not resp.ok:
        return {"error": f"HTTP {resp.status_code}: {resp.text[:200]}"}
    return {"error": "malformed relay reply"}


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)
