"""Shared fixtures: test account, fake registrar, fake clock, signed registration."""

from __future__ import annotations

import pytest
from eth_account import Account
from eth_account.signers.local import LocalAccount

from ensbundler.engine.bundle_builder import BundleBuilder
from ensbundler.models.registration import Registration

from fakes import RESOLVER, TEST_KEY, FakeClock, FakeRegistrar


@pytest.fixture
def account() -> LocalAccount:
    return Account.from_key(TEST_KEY)


@pytest.fixture
def registrar() -> FakeRegistrar:
    return FakeRegistrar(available_names={"example"})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def builder(account: LocalAccount, registrar: FakeRegistrar) -> BundleBuilder:
    return BundleBuilder(account, registrar, chain_id=5)


@pytest.fixture
def registration(account: LocalAccount, registrar: FakeRegistrar) -> Registration:
    secret = bytes(range(32))
    return Registration(
        name="example",
        secret=secret,
        owner=account.address,
        resolver=RESOLVER,
        duration=31_536_000,
        price=11 * 10**15,
        min_commitment_age=60,
        commitment=registrar.make_commitment("example", account.address, secret, RESOLVER),
    )
