"""ETH registrar controller proxy.

Wraps the subset of the ETHRegistrarController interface the
commit-reveal flow needs: read-only queries used before the block loop
starts, and calldata encoding for the two state-changing calls. This
module never signs or sends anything.
"""

from __future__ import annotations

from typing import Any

from web3 import Web3

REGISTRAR_CONTROLLER_ABI: list[dict[str, Any]] = [
    {
        "name": "available",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "name", "type": "string"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "rentPrice",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "name", "type": "string"},
            {"name": "duration", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "minCommitmentAge",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "makeCommitmentWithConfig",
        "type": "function",
        "stateMutability": "pure",
        "inputs": [
            {"name": "name", "type": "string"},
            {"name": "owner", "type": "address"},
            {"name": "secret", "type": "bytes32"},
            {"name": "resolver", "type": "address"},
            {"name": "addr", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
    {
        "name": "commit",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "commitment", "type": "bytes32"}],
        "outputs": [],
    },
    {
        "name": "registerWithConfig",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {"name": "name", "type": "string"},
            {"name": "owner", "type": "address"},
            {"name": "duration", "type": "uint256"},
            {"name": "secret", "type": "bytes32"},
            {"name": "resolver", "type": "address"},
            {"name": "addr", "type": "address"},
        ],
        "outputs": [],
    },
]


class RegistrarProxy:
    """Typed access to the registrar controller contract.

    Usage:
        proxy = RegistrarProxy(w3, controller_address)
        if proxy.available("example"):
            price = proxy.rent_price("example", 31_536_000)
            commitment = proxy.make_commitment("example", owner, secret, resolver)
            data = proxy.encode_commit(commitment)
    """

    def __init__(self, w3: Web3, address: str) -> None:
        self._address = Web3.to_checksum_address(address)
        self._contract = w3.eth.contract(
            address=self._address, abi=REGISTRAR_CONTROLLER_ABI
        )

    @property
    def address(self) -> str:
        return self._address

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def available(self, name: str) -> bool:
        return bool(self._contract.functions.available(name).call())

    def rent_price(self, name: str, duration: int) -> int:
        return int(self._contract.functions.rentPrice(name, duration).call())

    def min_commitment_age(self) -> int:
        """Seconds that must pass between commit inclusion and register."""
        return int(self._contract.functions.minCommitmentAge().call())

    def make_commitment(
        self, name: str, owner: str, secret: bytes, resolver: str
    ) -> bytes:
        """Derive the commitment for (name, owner, secret, resolver).

        The resolver's address record is set to the owner, so the owner
        is passed twice. The result is deterministic for fixed inputs.
        """
        owner = Web3.to_checksum_address(owner)
        resolver = Web3.to_checksum_address(resolver)
        commitment = self._contract.functions.makeCommitmentWithConfig(
            name, owner, secret, resolver, owner
        ).call()
        return bytes(commitment)

    # ------------------------------------------------------------------
    # Calldata encoding
    # ------------------------------------------------------------------

    def encode_commit(self, commitment: bytes) -> str:
        return self._contract.encode_abi("commit", args=[commitment])

    def encode_register(
        self,
        name: str,
        owner: str,
        duration: int,
        secret: bytes,
        resolver: str,
    ) -> str:
        owner = Web3.to_checksum_address(owner)
        resolver = Web3.to_checksum_address(resolver)
        return self._contract.encode_abi(
            "registerWithConfig",
            args=[name, owner, duration, secret, resolver, owner],
        )
