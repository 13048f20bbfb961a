"""Tests for the bundle builder — proves bundles are phase-correct and idempotent."""

import pytest
from eth_account import Account
from web3 import Web3

from ensbundler.engine.bundle_builder import BundleBuilder
from ensbundler.models.bundle import FeeSchedule, GWEI
from ensbundler.models.registration import Phase, Registration

from fakes import CONTROLLER, FakeRegistrar


class TestCommitBundle:
    def test_commit_encodes_commitment(
        self, builder: BundleBuilder, registration: Registration
    ) -> None:
        bundle = builder.build(Phase.IDLE, registration, target_block=101, nonce=7)
        (tx,) = bundle.transactions
        assert tx.data == "0xf14fcbc8" + registration.commitment.hex()
        assert tx.value == 0
        assert tx.gas == 60_000
        assert tx.to == CONTROLLER
        assert bundle.target_block == 101

    def test_commit_submitted_phase_builds_commit(
        self, builder: BundleBuilder, registration: Registration
    ) -> None:
        idle = builder.build(Phase.IDLE, registration, 101, nonce=7)
        retry = builder.build(Phase.COMMIT_SUBMITTED, registration, 101, nonce=7)
        assert idle.transactions == retry.transactions

    def test_idempotent(self, builder: BundleBuilder, registration: Registration) -> None:
        first = builder.build(Phase.COMMIT_SUBMITTED, registration, 101, nonce=7)
        second = builder.build(Phase.COMMIT_SUBMITTED, registration, 101, nonce=7)
        assert first == second
        assert first.transactions[0].raw_transaction == second.transactions[0].raw_transaction

    def test_target_block_only_changes_bundle_target(
        self, builder: BundleBuilder, registration: Registration
    ) -> None:
        a = builder.build(Phase.COMMIT_SUBMITTED, registration, 101, nonce=7)
        b = builder.build(Phase.COMMIT_SUBMITTED, registration, 102, nonce=7)
        assert a.transactions == b.transactions
        assert (a.target_block, b.target_block) == (101, 102)


class TestRegisterBundle:
    def test_register_attaches_price(
        self, builder: BundleBuilder, registration: Registration, registrar: FakeRegistrar
    ) -> None:
        bundle = builder.build(Phase.REGISTER_SUBMITTED, registration, 200, nonce=8)
        (tx,) = bundle.transactions
        assert tx.value == registration.price
        assert tx.gas == 300_000
        assert tx.data == registrar.encode_register(
            registration.name,
            registration.owner,
            registration.duration,
            registration.secret,
            registration.resolver,
        )

    def test_awaiting_age_phase_builds_register(
        self, builder: BundleBuilder, registration: Registration
    ) -> None:
        awaiting = builder.build(Phase.AWAITING_COMMITMENT_AGE, registration, 200, nonce=8)
        submitted = builder.build(Phase.REGISTER_SUBMITTED, registration, 200, nonce=8)
        assert awaiting.transactions == submitted.transactions

    @pytest.mark.parametrize("phase", [Phase.COMMIT_INCLUDED, Phase.REGISTERED])
    def test_phases_without_transaction_rejected(
        self, builder: BundleBuilder, registration: Registration, phase: Phase
    ) -> None:
        with pytest.raises(ValueError, match="No bundle"):
            builder.build(phase, registration, 200, nonce=8)


class TestSigning:
    def test_signed_by_wallet(
        self, builder: BundleBuilder, registration: Registration, account
    ) -> None:
        bundle = builder.build(Phase.IDLE, registration, 101, nonce=7)
        tx = bundle.transactions[0]
        assert Account.recover_transaction(tx.raw_transaction) == account.address

    def test_hash_matches_raw(self, builder: BundleBuilder, registration: Registration) -> None:
        tx = builder.build(Phase.IDLE, registration, 101, nonce=7).transactions[0]
        assert bytes(Web3.keccak(tx.raw_transaction)) == tx.tx_hash

    def test_raw_transactions_hex(self, builder: BundleBuilder, registration: Registration) -> None:
        bundle = builder.build(Phase.IDLE, registration, 101, nonce=7)
        (raw,) = bundle.raw_transactions()
        assert raw.startswith("0x02")  # EIP-1559 envelope

    def test_nonce_changes_signature(
        self, builder: BundleBuilder, registration: Registration
    ) -> None:
        a = builder.build(Phase.IDLE, registration, 101, nonce=7).transactions[0]
        b = builder.build(Phase.IDLE, registration, 101, nonce=8).transactions[0]
        assert a.data == b.data
        assert a.raw_transaction != b.raw_transaction

    def test_negative_inputs_rejected(
        self, builder: BundleBuilder, registration: Registration
    ) -> None:
        with pytest.raises(ValueError):
            builder.build(Phase.IDLE, registration, -1, nonce=7)
        with pytest.raises(ValueError):
            builder.build(Phase.IDLE, registration, 101, nonce=-1)


class TestFeeSchedule:
    def test_defaults(self) -> None:
        fees = FeeSchedule()
        assert fees.max_fee_per_gas == 3 * GWEI
        assert fees.max_priority_fee_per_gas == 2 * GWEI

    def test_priority_above_max_rejected(self) -> None:
        with pytest.raises(ValueError):
            FeeSchedule(max_fee_per_gas=GWEI, max_priority_fee_per_gas=2 * GWEI)
