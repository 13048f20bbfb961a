"""Block feed — turns ledger block callbacks into a single-consumer stream.

The ledger source fires a callback per new block on its own thread.
BlockFeed pushes those heights into a queue and `subscribe()` hands
them to one consumer, in height order. When the consumer falls behind,
queued heights are coalesced to the newest one: a bundle can only ever
target the block after the current head, so older heights are useless.

End of stream is signalled with a sentinel, never by hanging. A stall
(no block within `stall_timeout`) is logged and waited out.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, Iterator, Optional, Protocol

from web3 import Web3

logger = logging.getLogger(__name__)

_END = None


class FeedClosed(Exception):
    """Raised when the block stream ends before the consumer is done."""


class BlockSource(Protocol):
    """Ledger block notifications, as the controller needs them."""

    def on_new_block(
        self,
        callback: Callable[[int], None],
        on_closed: Callable[[Optional[BaseException]], None],
    ) -> None: ...

    def unsubscribe_all(self) -> None: ...


class Web3BlockSource:
    """Polls `eth.block_number` on a daemon thread.

    One callback per observed new head. Heights skipped between two
    polls are not replayed. Any polling exception stops the source and
    is reported through `on_closed`.
    """

    def __init__(self, w3: Web3, poll_interval: float = 2.0) -> None:
        self._w3 = w3
        self._poll_interval = poll_interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def on_new_block(
        self,
        callback: Callable[[int], None],
        on_closed: Callable[[Optional[BaseException]], None],
    ) -> None:
        if self._thread is not None:
            raise RuntimeError("block source already has a subscriber")
        self._thread = threading.Thread(
            target=self._poll,
            args=(callback, on_closed),
            name="block-poller",
            daemon=True,
        )
        self._thread.start()

    def unsubscribe_all(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._poll_interval * 2)

    def _poll(
        self,
        callback: Callable[[int], None],
        on_closed: Callable[[Optional[BaseException]], None],
    ) -> None:
        last: Optional[int] = None
        failure: Optional[BaseException] = None
        try:
            while not self._stop.is_set():
                head = self._w3.eth.block_number
                if last is None or head > last:
                    last = head
                    callback(head)
                self._stop.wait(self._poll_interval)
        except Exception as exc:  # connection drops end the stream
            failure = exc
            logger.error("Block polling stopped: %s", exc)
        on_closed(failure)


class BlockFeed:
    """Ordered, coalescing stream of block heights from a BlockSource.

    Usage:
        feed = BlockFeed(Web3BlockSource(w3))
        try:
            for block_number in feed.subscribe():
                ...
        finally:
            feed.unsubscribe()
    """

    def __init__(
        self,
        source: BlockSource,
        stall_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._stall_timeout = stall_timeout
        self._clock = clock
        self._queue: "queue.Queue[Optional[int]]" = queue.Queue()
        self._subscribed = False
        self._unsubscribed = False
        self._failure: Optional[BaseException] = None
        self._last: Optional[int] = None

    @property
    def closed(self) -> bool:
        return self._unsubscribed

    def subscribe(self) -> Iterator[int]:
        """Start the source and yield strictly increasing block heights.

        The iterator ends after `unsubscribe()`; it raises FeedClosed if
        the source terminates on its own.
        """
        if self._subscribed:
            raise RuntimeError("BlockFeed supports a single subscription")
        self._subscribed = True
        self._source.on_new_block(self._queue.put, self._on_source_closed)
        return self._stream()

    def unsubscribe(self) -> bool:
        """Stop the source. Returns True only on the call that closed it."""
        if self._unsubscribed:
            return False
        self._unsubscribed = True
        self._source.unsubscribe_all()
        self._queue.put(_END)
        return True

    def _on_source_closed(self, failure: Optional[BaseException]) -> None:
        self._failure = failure
        self._queue.put(_END)

    def _stream(self) -> Iterator[int]:
        waiting_since = self._clock()
        while True:
            try:
                item = self._queue.get(timeout=self._stall_timeout)
            except queue.Empty:
                stalled = self._clock() - waiting_since
                logger.warning(
                    "No new block for %.0fs (last seen: %s); still waiting",
                    stalled,
                    self._last,
                )
                continue

            if item is _END:
                if self._unsubscribed:
                    return
                raise FeedClosed(
                    f"block feed terminated after block {self._last}: "
                    f"{self._failure or 'source closed'}"
                )

            item = self._coalesce(item)
            waiting_since = self._clock()

            if self._last is not None and item <= self._last:
                logger.debug("Ignoring out-of-order block %d", item)
                continue
            if self._last is not None and item > self._last + 1:
                logger.info("Block gap: %d -> %d", self._last, item)
            self._last = item
            yield item

    def _coalesce(self, item: int) -> int:
        """Drain everything already queued and keep the newest height.

        A drained end-of-stream sentinel is put back so the stream
        terminates after this height.
        """
        skipped = 0
        while True:
            try:
                nxt = self._queue.get_nowait()
            except queue.Empty:
                break
            if nxt is _END:
                self._queue.put(_END)
                break
            if nxt > item:
                item = nxt
            skipped += 1
        if skipped:
            logger.debug("Coalesced %d queued block(s) into %d", skipped, item)
        return item
