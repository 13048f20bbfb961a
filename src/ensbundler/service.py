"""Registration service — preconditions, setup and the run of one registration.

This is the primary programmatic interface. It checks everything that
can be checked before the block loop starts (name validity,
availability), prices the registration, derives the commitment once,
and then hands a frozen Registration to the PhaseController.

Precondition failures raise PreconditionError before any bundle is
built. Network resources opened by `connect()` are released on every
exit path.
"""

from __future__ import annotations

import logging
import secrets
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Protocol

from ens.exceptions import InvalidName
from ens.utils import normalize_name
from eth_account import Account
from web3 import HTTPProvider, Web3

from ensbundler.config import DEFAULT_DURATION, RegistrarConfig
from ensbundler.engine.bundle_builder import BundleBuilder
from ensbundler.engine.phase_controller import (
    DEFAULT_MAX_IDENTICAL_ERRORS,
    Builder,
    ControllerState,
    Feed,
    PhaseController,
    Submitter,
)
from ensbundler.feed.block_feed import BlockFeed, Web3BlockSource
from ensbundler.models.registration import Registration
from ensbundler.registrar.controller import RegistrarProxy
from ensbundler.relay.client import FlashbotsRelayClient
from ensbundler.relay.submitter import RelaySubmitter

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 3
# Registration value is quoted price plus headroom; the registrar refunds the rest.
PRICE_HEADROOM_PERCENT = 110


class PreconditionError(Exception):
    """Raised when a registration cannot start (bad name, name taken)."""


class Registrar(Protocol):
    def available(self, name: str) -> bool: ...

    def rent_price(self, name: str, duration: int) -> int: ...

    def min_commitment_age(self) -> int: ...

    def make_commitment(
        self, name: str, owner: str, secret: bytes, resolver: str
    ) -> bytes: ...


@dataclass(frozen=True)
class Quote:
    """Availability and price of a name, without committing to anything."""
    name: str
    available: bool
    duration: int
    rent_price: int
    price: int
    min_commitment_age: int


def normalize_label(name: str) -> str:
    """Normalize a second-level label; `example.eth` becomes `example`.

    Raises PreconditionError for names that cannot be normalized, that
    contain further dots, or that are shorter than MIN_NAME_LENGTH.
    """
    try:
        label = normalize_name(name)
    except InvalidName as exc:
        raise PreconditionError(f"Invalid name {name!r}: {exc}") from exc
    if label.endswith(".eth"):
        label = label[: -len(".eth")]
    if "." in label:
        raise PreconditionError(f"{label!r} is not a single label")
    if len(label) < MIN_NAME_LENGTH:
        raise PreconditionError(
            f"Name should be at least {MIN_NAME_LENGTH} characters long: {label!r}"
        )
    return label


class RegistrationService:
    """Prepares and runs one commit-reveal registration.

    Usage:
        with connect(config) as service:
            registration = service.prepare("example")
            state = service.run(registration)
    """

    def __init__(
        self,
        registrar: Registrar,
        builder: Builder,
        submitter: Submitter,
        nonce_source: Callable[[], int],
        owner: str,
        resolver: str,
        feed_factory: Callable[[], Feed],
        secret_factory: Callable[[], bytes] = lambda: secrets.token_bytes(32),
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        max_identical_errors: int = DEFAULT_MAX_IDENTICAL_ERRORS,
    ) -> None:
        self._registrar = registrar
        self._builder = builder
        self._submitter = submitter
        self._nonce_source = nonce_source
        self._owner = owner
        self._resolver = resolver
        self._feed_factory = feed_factory
        self._secret_factory = secret_factory
        self._clock = clock
        self._sleep = sleep
        self._max_identical_errors = max_identical_errors
        self._controller: Optional[PhaseController] = None

    @property
    def controller(self) -> Optional[PhaseController]:
        """The controller of the last `run()`, if any."""
        return self._controller

    def quote(self, name: str, duration: int = DEFAULT_DURATION) -> Quote:
        label = normalize_label(name)
        if duration <= 0:
            raise PreconditionError("duration must be > 0")
        available = self._registrar.available(label)
        rent_price = self._registrar.rent_price(label, duration) if available else 0
        return Quote(
            name=label,
            available=available,
            duration=duration,
            rent_price=rent_price,
            price=rent_price * PRICE_HEADROOM_PERCENT // 100,
            min_commitment_age=self._registrar.min_commitment_age(),
        )

    def prepare(self, name: str, duration: int = DEFAULT_DURATION) -> Registration:
        """Check preconditions and build the immutable Registration."""
        quote = self.quote(name, duration)
        if not quote.available:
            raise PreconditionError(f"{quote.name} is not available")

        secret = self._secret_factory()
        commitment = self._registrar.make_commitment(
            quote.name, self._owner, secret, self._resolver
        )
        registration = Registration(
            name=quote.name,
            secret=secret,
            owner=self._owner,
            resolver=self._resolver,
            duration=duration,
            price=quote.price,
            min_commitment_age=quote.min_commitment_age,
            commitment=commitment,
        )
        logger.info(
            "Prepared %s: price=%d wei, min commitment age=%ds, commitment=0x%s",
            registration.name,
            registration.price,
            registration.min_commitment_age,
            registration.commitment.hex(),
        )
        return registration

    def run(self, registration: Registration) -> ControllerState:
        """Run the phase controller until the name is registered."""
        self._controller = PhaseController(
            registration,
            self._builder,
            self._submitter,
            self._nonce_source,
            clock=self._clock,
            sleep=self._sleep,
            max_identical_errors=self._max_identical_errors,
        )
        return self._controller.run(self._feed_factory())

    def register(self, name: str, duration: int = DEFAULT_DURATION) -> ControllerState:
        return self.run(self.prepare(name, duration))


@contextmanager
def connect(config: RegistrarConfig) -> Iterator[RegistrationService]:
    """Wire a RegistrationService to the configured ledger and relay.

    The relay session is closed when the block exits, however it exits.
    """
    w3 = Web3(HTTPProvider(config.rpc_url))
    account = Account.from_key(config.private_key)
    auth_account = Account.from_key(config.auth_key)
    registrar = RegistrarProxy(w3, config.controller_address)
    relay = FlashbotsRelayClient(
        w3, auth_account, config.relay_url, poll_interval=config.poll_interval
    )

    def nonce_source() -> int:
        return w3.eth.get_transaction_count(account.address)

    try:
        yield RegistrationService(
            registrar=registrar,
            builder=BundleBuilder(account, registrar, config.chain_id),
            submitter=RelaySubmitter(relay, account.address),
            nonce_source=nonce_source,
            owner=account.address,
            resolver=config.resolver_address,
            feed_factory=lambda: BlockFeed(Web3BlockSource(w3, config.poll_interval)),
        )
    finally:
        relay.close()
