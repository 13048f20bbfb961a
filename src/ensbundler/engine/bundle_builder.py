"""Bundle builder — turns the current phase into a signed single-tx bundle.

The builder is a pure function of (phase, registration, target block,
nonce) apart from the fixed fee schedule. It never mutates the
registration or the phase, and building twice with the same inputs
yields bit-identical transactions (EIP-1559 signatures are
deterministic for a fixed key and payload).
"""

from __future__ import annotations

from typing import Any, Protocol

from eth_account.signers.local import LocalAccount

from ensbundler.models.bundle import BundleTransaction, FeeSchedule, SignedBundle
from ensbundler.models.registration import Phase, Registration

# Phases whose defining transaction is the commit call.
COMMIT_PHASES = frozenset({Phase.IDLE, Phase.COMMIT_SUBMITTED})
# Phases whose defining transaction is the register call.
REGISTER_PHASES = frozenset({Phase.AWAITING_COMMITMENT_AGE, Phase.REGISTER_SUBMITTED})


class CallEncoder(Protocol):
    """The part of the registrar proxy the builder depends on."""

    @property
    def address(self) -> str: ...

    def encode_commit(self, commitment: bytes) -> str: ...

    def encode_register(
        self, name: str, owner: str, duration: int, secret: bytes, resolver: str
    ) -> str: ...


class BundleBuilder:
    """Builds commit or register bundles for a fixed signer and chain."""

    def __init__(
        self,
        signer: LocalAccount,
        encoder: CallEncoder,
        chain_id: int,
        fees: FeeSchedule | None = None,
    ) -> None:
        self._signer = signer
        self._encoder = encoder
        self._chain_id = chain_id
        self._fees = fees or FeeSchedule()

    def build(
        self,
        phase: Phase,
        registration: Registration,
        target_block: int,
        nonce: int,
    ) -> SignedBundle:
        """Build the bundle that carries the defining transaction of `phase`.

        Raises ValueError for phases that have no transaction to submit
        (COMMIT_INCLUDED, REGISTERED).
        """
        if target_block < 0:
            raise ValueError("target_block must be >= 0")
        if nonce < 0:
            raise ValueError("nonce must be >= 0")

        if phase in COMMIT_PHASES:
            data = self._encoder.encode_commit(registration.commitment)
            value = 0
            gas = self._fees.commit_gas_limit
        elif phase in REGISTER_PHASES:
            data = self._encoder.encode_register(
                registration.name,
                registration.owner,
                registration.duration,
                registration.secret,
                registration.resolver,
            )
            value = registration.price
            gas = self._fees.register_gas_limit
        else:
            raise ValueError(f"No bundle to build in phase {phase.value}")

        tx = self._sign(data=data, value=value, gas=gas, nonce=nonce)
        return SignedBundle(phase=phase, target_block=target_block, transactions=(tx,))

    def _sign(self, data: str, value: int, gas: int, nonce: int) -> BundleTransaction:
        to = self._encoder.address
        descriptor: dict[str, Any] = {
            "type": 2,
            "chainId": self._chain_id,
            "to": to,
            "data": data,
            "value": value,
            "nonce": nonce,
            "gas": gas,
            "maxFeePerGas": self._fees.max_fee_per_gas,
            "maxPriorityFeePerGas": self._fees.max_priority_fee_per_gas,
        }
        signed = self._signer.sign_transaction(descriptor)
        return BundleTransaction(
            to=to,
            data=data,
            value=value,
            nonce=nonce,
            gas=gas,
            raw_transaction=bytes(signed.raw_transaction),
            tx_hash=bytes(signed.hash),
        )
