"""Raw relay responses, before classification into verdicts."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class RelayResolution(enum.IntEnum):
    """Resolution codes reported once the target block has passed."""
    BUNDLE_INCLUDED = 0
    BLOCK_PASSED_WITHOUT_INCLUSION = 1
    ACCOUNT_NONCE_TOO_HIGH = 2


@dataclass(frozen=True)
class RelayResponse:
    """What the relay (or the ledger, after the fact) said about a bundle.

    Exactly one of `resolution` and `error` is set.
    """
    resolution: Optional[RelayResolution] = None
    error: Optional[str] = None
    bundle_hash: Optional[str] = None
