"""Phase controller — the block-driven commit-reveal state machine.

Rules:
- One tick per block notification `b`; every bundle targets `b + 1`.
- Phase progression is one-way and moves at most one step per tick:
  IDLE → COMMIT_SUBMITTED → COMMIT_INCLUDED → AWAITING_COMMITMENT_AGE
  → REGISTER_SUBMITTED → REGISTERED.
- At most one attempt is in flight. No new bundle for the active phase
  is built while an attempt is outstanding; a verdict is collected only
  once the head has reached the attempt's target block. A verdict that
  cannot be looked up yet keeps the attempt in flight.
- INCLUDED is sticky: once the phase's defining transaction is in, no
  further bundle for that phase is submitted.
- NOT_INCLUDED and retryable ERROR verdicts clear the slot; the same
  tick resubmits for the next block. Retries are unbounded.
- The register bundle is never submitted before `min_commitment_age`
  seconds have passed since commit inclusion.
- Stale verdicts (for an attempt that is no longer in the slot) are
  ignored and never move the phase.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional, Protocol

import requests
from web3.exceptions import Web3Exception

from ensbundler.feed.block_feed import FeedClosed
from ensbundler.models.bundle import SignedBundle
from ensbundler.models.registration import (
    BundleAttempt,
    InclusionVerdict,
    Phase,
    Registration,
    VerdictKind,
)

logger = logging.getLogger(__name__)

# Relay error reasons that will not go away by resubmitting.
NON_RETRYABLE_MARKERS: tuple[str, ...] = (
    "insufficient funds",
    "nonce too low",
    "not available",
    "commitment too old",
)

DEFAULT_MAX_IDENTICAL_ERRORS = 5


class TransitionError(Exception):
    """Raised when a phase change would go backwards, skip, or repeat in a tick."""


class RegistrationHalted(Exception):
    """Raised when a verdict makes further retries pointless."""

    def __init__(self, message: str, phase: Phase, verdict: InclusionVerdict) -> None:
        super().__init__(message)
        self.phase = phase
        self.verdict = verdict


class Builder(Protocol):
    def build(
        self, phase: Phase, registration: Registration, target_block: int, nonce: int
    ) -> SignedBundle: ...


class Pending(Protocol):
    target_block: int

    def ready(self, head: int) -> bool: ...

    def wait(self) -> Optional[InclusionVerdict]: ...


class Submitter(Protocol):
    def submit(self, bundle: SignedBundle, target_block: int) -> Pending: ...


class Feed(Protocol):
    def subscribe(self) -> Iterator[int]: ...

    def unsubscribe(self) -> bool: ...


@dataclass(frozen=True)
class PhaseTransition:
    """One recorded phase change."""
    block_number: int
    from_phase: Phase
    to_phase: Phase
    at: float


@dataclass
class ControllerState:
    """Mutable state owned by a single PhaseController."""
    phase: Phase = Phase.IDLE
    in_flight: Optional[BundleAttempt] = None
    pending: Optional[Pending] = None
    included: bool = False
    commit_included_at: Optional[float] = None
    last_block: Optional[int] = None
    last_error: Optional[str] = None
    identical_errors: int = 0
    attempts: list[BundleAttempt] = field(default_factory=list)
    transitions: list[PhaseTransition] = field(default_factory=list)

    def attempts_for(self, phase: Phase) -> list[BundleAttempt]:
        return [a for a in self.attempts if a.phase == phase]


class PhaseController:
    """Drives one registration through the commit-reveal protocol.

    Usage:
        controller = PhaseController(registration, builder, submitter, nonce_source)
        state = controller.run(feed)   # returns once REGISTERED

    `on_block` can also be driven directly with a scripted sequence of
    heights; the controller never touches the network itself.
    """

    def __init__(
        self,
        registration: Registration,
        builder: Builder,
        submitter: Submitter,
        nonce_source: Callable[[], int],
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        max_identical_errors: int = DEFAULT_MAX_IDENTICAL_ERRORS,
    ) -> None:
        if max_identical_errors < 1:
            raise ValueError("max_identical_errors must be >= 1")
        self._registration = registration
        self._builder = builder
        self._submitter = submitter
        self._nonce_source = nonce_source
        self._clock = clock
        self._sleep = sleep
        self._max_identical_errors = max_identical_errors
        self._state = ControllerState()
        self._tick: Optional[int] = None

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def phase(self) -> Phase:
        return self._state.phase

    # ------------------------------------------------------------------
    # Driving loop
    # ------------------------------------------------------------------

    def run(self, feed: Feed) -> ControllerState:
        """Consume the feed until REGISTERED.

        The feed is unsubscribed on every exit path. Raises FeedClosed
        if the stream ends first, RegistrationHalted on a fatal verdict.
        """
        try:
            for block_number in feed.subscribe():
                self.on_block(block_number)
                if self._state.phase.is_terminal:
                    logger.info("Registered %s", self._registration.name)
                    break
        finally:
            feed.unsubscribe()

        if not self._state.phase.is_terminal:
            raise FeedClosed(
                f"block feed ended in phase {self._state.phase.value}"
            )
        return self._state

    def on_block(self, block_number: int) -> None:
        """Process one block notification."""
        state = self._state
        if state.phase.is_terminal:
            return
        if state.last_block is not None and block_number <= state.last_block:
            logger.debug("Ignoring block %d (already at %d)", block_number, state.last_block)
            return
        if state.last_block is not None and block_number > state.last_block + 1:
            logger.warning(
                "Block gap: %d → %d, %d block(s) never notified",
                state.last_block, block_number, block_number - state.last_block - 1,
            )
        state.last_block = block_number
        self._tick = block_number

        if state.pending is not None and state.pending.ready(block_number):
            attempt = state.in_flight
            verdict = state.pending.wait()
            # Unknown verdict: the attempt stays in flight.
            if attempt is not None and verdict is not None:
                self.on_verdict(attempt, verdict)

        self._step(block_number)

    def on_verdict(self, attempt: BundleAttempt, verdict: InclusionVerdict) -> None:
        """Apply a verdict for `attempt`. Stale verdicts are dropped."""
        state = self._state
        if attempt is not state.in_flight or attempt.phase != state.phase:
            logger.warning(
                "Ignoring stale verdict %s for block %d (%s)",
                verdict, attempt.target_block, attempt.phase.value,
            )
            return

        state.in_flight = None
        state.pending = None
        logger.info(
            "%s bundle for block %d: %s",
            attempt.phase.value, attempt.target_block, verdict,
        )

        if verdict.kind == VerdictKind.INCLUDED:
            state.included = True
            state.last_error = None
            state.identical_errors = 0
            return

        if verdict.kind == VerdictKind.ACCOUNT_NONCE_TOO_LOW:
            self._halt(
                "nonce consumed outside this bundle; refusing to resubmit",
                verdict,
            )

        if verdict.kind == VerdictKind.ERROR:
            reason = verdict.reason or ""
            if any(marker in reason.lower() for marker in NON_RETRYABLE_MARKERS):
                self._halt(f"non-retryable relay error: {reason}", verdict)
            if reason == state.last_error:
                state.identical_errors += 1
            else:
                state.last_error = reason
                state.identical_errors = 1
            if state.identical_errors >= self._max_identical_errors:
                self._halt(
                    f"relay rejected {state.identical_errors} attempts in a row "
                    f"with the same reason: {reason}",
                    verdict,
                )
            logger.warning("Relay error, retrying next block: %s", reason)
            return

        state.last_error = None
        state.identical_errors = 0

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _step(self, block_number: int) -> None:
        state = self._state
        phase = state.phase
        target = block_number + 1

        if state.included:
            state.included = False
            if phase == Phase.COMMIT_SUBMITTED:
                state.commit_included_at = self._clock()
            self._advance(phase.next())
            return

        if phase == Phase.IDLE:
            self._advance(Phase.COMMIT_SUBMITTED)
            self._submit(target)

        elif phase == Phase.COMMIT_INCLUDED:
            logger.info(
                "Commit included; waiting %ds before registering",
                self._registration.min_commitment_age,
            )
            self._advance(Phase.AWAITING_COMMITMENT_AGE)

        elif phase == Phase.AWAITING_COMMITMENT_AGE:
            remaining = self._commitment_age_remaining()
            if remaining > 0:
                logger.info("Commitment age not reached; sleeping %.1fs", remaining)
                self._sleep(remaining)
                return
            self._advance(Phase.REGISTER_SUBMITTED)
            self._submit(target)

        elif phase in (Phase.COMMIT_SUBMITTED, Phase.REGISTER_SUBMITTED):
            if state.in_flight is None:
                self._submit(target)

    def _commitment_age_remaining(self) -> float:
        included_at = self._state.commit_included_at
        if included_at is None:
            raise TransitionError("commit inclusion time was never recorded")
        ready_at = included_at + self._registration.min_commitment_age
        return ready_at - self._clock()

    def _submit(self, target_block: int) -> None:
        """Build and submit a bundle for the active phase.

        A failed nonce lookup skips this block; the next tick retries.
        """
        state = self._state
        if state.in_flight is not None:
            return
        try:
            nonce = self._nonce_source()
        except (requests.RequestException, Web3Exception) as exc:
            logger.warning("Nonce lookup failed, skipping block %d: %s", target_block, exc)
            return

        bundle = self._builder.build(state.phase, self._registration, target_block, nonce)
        pending = self._submitter.submit(bundle, target_block)
        attempt = BundleAttempt(
            target_block=target_block,
            phase=state.phase,
            submitted_at=self._clock(),
        )
        state.in_flight = attempt
        state.pending = pending
        state.attempts.append(attempt)
        logger.info(
            "Submitted %s bundle for block %d (attempt %d)",
            bundle.phase.value, target_block, len(state.attempts_for(state.phase)),
        )

    def _advance(self, target: Phase) -> None:
        state = self._state
        current = state.phase
        if current.is_terminal or target != current.next():
            raise TransitionError(f"Illegal transition: {current.value} → {target.value}")
        if state.transitions and state.transitions[-1].block_number == self._tick:
            raise TransitionError(
                f"Second transition in block {self._tick}: {current.value} → {target.value}"
            )

        state.phase = target
        state.transitions.append(
            PhaseTransition(
                block_number=self._tick if self._tick is not None else -1,
                from_phase=current,
                to_phase=target,
                at=self._clock(),
            )
        )
        logger.info("Phase %s → %s", current.value, target.value)

    def _halt(self, message: str, verdict: InclusionVerdict) -> None:
        logger.error("Halting in phase %s: %s", self._state.phase.value, message)
        raise RegistrationHalted(message, self._state.phase, verdict)
