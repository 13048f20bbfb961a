"""Bundle models — signed transactions grouped for one target block."""

from __future__ import annotations

from dataclasses import dataclass

from ensbundler.models.registration import Phase

GWEI = 10**9


@dataclass(frozen=True)
class FeeSchedule:
    """Fixed EIP-1559 fee parameters and per-call gas limits."""
    max_fee_per_gas: int = 3 * GWEI
    max_priority_fee_per_gas: int = 2 * GWEI
    commit_gas_limit: int = 60_000
    register_gas_limit: int = 300_000

    def __post_init__(self) -> None:
        if self.max_priority_fee_per_gas > self.max_fee_per_gas:
            raise ValueError("max_priority_fee_per_gas must not exceed max_fee_per_gas")


@dataclass(frozen=True)
class BundleTransaction:
    """A signed transaction plus the fields it was built from."""
    to: str
    data: str
    value: int
    nonce: int
    gas: int
    raw_transaction: bytes
    tx_hash: bytes


@dataclass(frozen=True)
class SignedBundle:
    """An ordered group of signed transactions addressed to one block."""
    phase: Phase
    target_block: int
    transactions: tuple[BundleTransaction, ...]

    def raw_transactions(self) -> list[str]:
        """Hex-encoded raw transactions, as the relay expects them."""
        return ["0x" + tx.raw_transaction.hex() for tx in self.transactions]
