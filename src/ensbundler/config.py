"""Process configuration from the environment (and an optional .env file).

Required:
    ETH_RPC_URL   — ledger JSON-RPC endpoint
    PRIVATE_KEY   — hex key of the wallet that commits, registers and pays
Optional:
    RELAY_URL, RELAY_AUTH_KEY, CHAIN_ID, REGISTRAR_CONTROLLER_ADDRESS,
    PUBLIC_RESOLVER_ADDRESS, POLL_INTERVAL
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from ensbundler.relay.client import DEFAULT_RELAY_URL

DEFAULT_CHAIN_ID = 5  # Goerli
DEFAULT_REGISTRAR_CONTROLLER = "0x283Af0B28c62C092C9727F1Ee09c02CA627EB7F5"
DEFAULT_PUBLIC_RESOLVER = "0x4B1488B7a6B320d2D721406204aBc3eeAa9AD329"
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_DURATION = 31_536_000  # 1 year in seconds


class ConfigError(ValueError):
    """Raised when required settings are missing or malformed."""


@dataclass(frozen=True)
class RegistrarConfig:
    rpc_url: str
    private_key: str
    relay_url: str = DEFAULT_RELAY_URL
    relay_auth_key: Optional[str] = None
    chain_id: int = DEFAULT_CHAIN_ID
    controller_address: str = DEFAULT_REGISTRAR_CONTROLLER
    resolver_address: str = DEFAULT_PUBLIC_RESOLVER
    poll_interval: float = DEFAULT_POLL_INTERVAL

    def __repr__(self) -> str:
        return (
            f"RegistrarConfig(rpc_url={self.rpc_url!r}, relay_url={self.relay_url!r}, "
            f"chain_id={self.chain_id}, controller_address={self.controller_address!r})"
        )

    @property
    def auth_key(self) -> str:
        """Key used to sign relay requests. Defaults to the wallet key."""
        return self.relay_auth_key or self.private_key

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "RegistrarConfig":
        """Load settings from `environ` (default: os.environ).

        A .env file, when given and present, fills in variables that
        are not already set.
        """
        if environ is None:
            if env_file is not None:
                load_dotenv(env_file)
            else:
                load_dotenv()
            environ = os.environ

        rpc_url = environ.get("ETH_RPC_URL")
        private_key = environ.get("PRIVATE_KEY")
        missing = [
            key for key, value in (("ETH_RPC_URL", rpc_url), ("PRIVATE_KEY", private_key))
            if not value
        ]
        if missing:
            raise ConfigError(f"Missing required setting(s): {', '.join(missing)}")

        return cls(
            rpc_url=rpc_url,
            private_key=private_key,
            relay_url=environ.get("RELAY_URL") or DEFAULT_RELAY_URL,
            relay_auth_key=environ.get("RELAY_AUTH_KEY") or None,
            chain_id=_parse(environ, "CHAIN_ID", int, DEFAULT_CHAIN_ID),
            controller_address=(
                environ.get("REGISTRAR_CONTROLLER_ADDRESS") or DEFAULT_REGISTRAR_CONTROLLER
            ),
            resolver_address=environ.get("PUBLIC_RESOLVER_ADDRESS") or DEFAULT_PUBLIC_RESOLVER,
            poll_interval=_parse(environ, "POLL_INTERVAL", float, DEFAULT_POLL_INTERVAL),
        )


def _parse(environ: Mapping[str, str], key: str, kind: type, default: Any) -> Any:
    raw = environ.get(key)
    if not raw:
        return default
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be {kind.__name__}, got {raw!r}") from exc
