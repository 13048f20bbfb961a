"""Relay submitter — submits bundles and hands back pending verdicts."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import requests
from web3.exceptions import Web3Exception

from ensbundler.engine.inclusion_tracker import InclusionTracker
from ensbundler.models.bundle import SignedBundle
from ensbundler.models.registration import InclusionVerdict
from ensbundler.models.relay import RelayResponse

logger = logging.getLogger(__name__)


class RelayHandle(Protocol):
    target_block: int

    def wait(self) -> RelayResponse: ...


class RelayClient(Protocol):
    def send_bundle(
        self,
        raw_transactions: list[str],
        tx_hashes: list[bytes],
        sender: str,
        nonce: int,
        target_block: int,
    ) -> RelayHandle: ...


class PendingSubmission:
    """A submitted bundle whose verdict is not yet known.

    `ready(head)` says whether the verdict can be collected without
    waiting on the ledger; `wait()` collects and caches it. A failed
    ledger lookup resolves nothing: `wait()` returns None and the next
    call asks again, since the bundle may have landed.
    """

    def __init__(
        self,
        handle: RelayHandle,
        target_block: int,
        tracker: InclusionTracker,
    ) -> None:
        self._handle = handle
        self.target_block = target_block
        self._tracker = tracker
        self._verdict: Optional[InclusionVerdict] = None

    def ready(self, head: int) -> bool:
        return self._verdict is not None or head >= self.target_block

    def wait(self) -> Optional[InclusionVerdict]:
        if self._verdict is None:
            try:
                response = self._handle.wait()
            except (requests.RequestException, Web3Exception) as exc:
                logger.warning(
                    "Verdict lookup for block %d failed, asking again next block: %s",
                    self.target_block, exc,
                )
                return None
            self._verdict = self._tracker.classify(response)
        return self._verdict


class RelaySubmitter:
    """Fire-and-forget submission of signed bundles to the relay."""

    def __init__(
        self,
        client: RelayClient,
        sender: str,
        tracker: InclusionTracker | None = None,
    ) -> None:
        self._client = client
        self._sender = sender
        self._tracker = tracker or InclusionTracker()

    def submit(self, bundle: SignedBundle, target_block: int) -> PendingSubmission:
        if bundle.target_block != target_block:
            raise ValueError(
                f"bundle built for block {bundle.target_block}, "
                f"submitted for {target_block}"
            )
        handle = self._client.send_bundle(
            bundle.raw_transactions(),
            [tx.tx_hash for tx in bundle.transactions],
            self._sender,
            min(tx.nonce for tx in bundle.transactions),
            target_block,
        )
        logger.debug("Submitted %s bundle for block %d", bundle.phase.value, target_block)
        return PendingSubmission(handle, target_block, self._tracker)
