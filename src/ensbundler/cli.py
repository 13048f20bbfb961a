"""ens-bundler CLI — register an ENS name through a private bundle relay.

Usage:
    python -m ensbundler.cli check example
    python -m ensbundler.cli register example --duration 31536000
    python -m ensbundler.cli register example --env-file .env --verbose

Settings (RPC endpoint, keys, relay URL) come from the environment or
a .env file; see ensbundler.config.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable, ContextManager

import requests
from web3.exceptions import Web3Exception

from ensbundler.config import DEFAULT_DURATION, ConfigError, RegistrarConfig
from ensbundler.engine.phase_controller import RegistrationHalted
from ensbundler.feed.block_feed import FeedClosed
from ensbundler.service import PreconditionError, RegistrationService, connect

EXIT_OK = 0
EXIT_PRECONDITION = 1
EXIT_HALTED = 2

Connector = Callable[[RegistrarConfig], ContextManager[RegistrationService]]


def _load_config(args: argparse.Namespace) -> RegistrarConfig:
    return RegistrarConfig.from_env(env_file=args.env_file)


def cmd_check(args: argparse.Namespace, connector: Connector = connect) -> int:
    """Report availability and price without submitting anything."""
    try:
        config = _load_config(args)
        with connector(config) as service:
            quote = service.quote(args.name, args.duration)
    except (ConfigError, PreconditionError) as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return EXIT_PRECONDITION
    except (requests.RequestException, Web3Exception) as exc:
        print(f"Failed: ledger or relay unreachable: {exc}", file=sys.stderr)
        return EXIT_PRECONDITION

    print(json.dumps({
        "name": quote.name,
        "available": quote.available,
        "duration": quote.duration,
        "rent_price_wei": quote.rent_price,
        "price_with_headroom_wei": quote.price,
        "min_commitment_age_seconds": quote.min_commitment_age,
    }, indent=2))
    return EXIT_OK


def cmd_register(args: argparse.Namespace, connector: Connector = connect) -> int:
    try:
        config = _load_config(args)
        with connector(config) as service:
            registration = service.prepare(args.name, args.duration)
            state = service.run(registration)
    except (ConfigError, PreconditionError) as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return EXIT_PRECONDITION
    except (requests.RequestException, Web3Exception) as exc:
        print(f"Failed: ledger or relay unreachable: {exc}", file=sys.stderr)
        return EXIT_PRECONDITION
    except RegistrationHalted as exc:
        print(f"Halted in {exc.phase.value}: {exc}", file=sys.stderr)
        return EXIT_HALTED
    except FeedClosed as exc:
        print(f"Stopped: {exc}", file=sys.stderr)
        return EXIT_HALTED

    print(
        f"Registered {registration.name}.eth "
        f"after {len(state.attempts)} bundle submission(s)"
    )
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ens-bundler",
        description="Commit-reveal ENS registration through a private relay",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file (default: search upwards from cwd)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # check
    p_check = sub.add_parser("check", help="Show availability and price")
    p_check.add_argument("name", help="Name to check (with or without .eth)")
    p_check.add_argument(
        "--duration", type=int, default=DEFAULT_DURATION,
        help="Registration duration in seconds (default: 1 year)",
    )

    # register
    p_reg = sub.add_parser("register", help="Commit and register a name")
    p_reg.add_argument("name", help="Name to register (with or without .eth)")
    p_reg.add_argument(
        "--duration", type=int, default=DEFAULT_DURATION,
        help="Registration duration in seconds (default: 1 year)",
    )

    return parser


def main(argv: list[str] | None = None, connector: Connector = connect) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "check": cmd_check,
        "register": cmd_register,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return EXIT_PRECONDITION

    return handler(args, connector)


if __name__ == "__main__":
    sys.exit(main())
