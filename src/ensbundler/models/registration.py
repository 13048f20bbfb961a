"""Registration data model.

A Registration is created once, before the block loop starts, and is
never mutated. The Phase enum is strictly ordered; the controller only
ever moves it forward by one step.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class Phase(str, enum.Enum):
    """Commit-reveal protocol phases, in protocol order."""
    IDLE = "idle"
    COMMIT_SUBMITTED = "commit_submitted"
    COMMIT_INCLUDED = "commit_included"
    AWAITING_COMMITMENT_AGE = "awaiting_commitment_age"
    REGISTER_SUBMITTED = "register_submitted"
    REGISTERED = "registered"  # Terminal

    @property
    def order(self) -> int:
        return _PHASE_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self is Phase.REGISTERED

    def next(self) -> "Phase":
        """Return the phase that follows this one. Terminal has no successor."""
        if self.is_terminal:
            raise ValueError(f"{self.value} is terminal")
        return _PHASE_ORDER[self.order + 1]


_PHASE_ORDER: tuple[Phase, ...] = (
    Phase.IDLE,
    Phase.COMMIT_SUBMITTED,
    Phase.COMMIT_INCLUDED,
    Phase.AWAITING_COMMITMENT_AGE,
    Phase.REGISTER_SUBMITTED,
    Phase.REGISTERED,
)


@dataclass(frozen=True)
class Registration:
    """Everything needed to commit and register one name.

    The commitment is computed once through the registrar and reused
    for every commit-bundle resubmission.
    """
    name: str
    secret: bytes
    owner: str
    resolver: str
    duration: int
    price: int
    min_commitment_age: int
    commitment: bytes

    def __post_init__(self) -> None:
        if len(self.secret) != 32:
            raise ValueError("secret must be exactly 32 bytes")
        if len(self.commitment) != 32:
            raise ValueError("commitment must be exactly 32 bytes")
        if self.duration <= 0:
            raise ValueError("duration must be > 0")
        if self.price < 0:
            raise ValueError("price must be >= 0")
        if self.min_commitment_age < 0:
            raise ValueError("min_commitment_age must be >= 0")


class VerdictKind(str, enum.Enum):
    """Classified outcome of one bundle submission."""
    INCLUDED = "included"
    NOT_INCLUDED = "not_included"
    ACCOUNT_NONCE_TOO_LOW = "account_nonce_too_low"
    ERROR = "error"


@dataclass(frozen=True)
class InclusionVerdict:
    """Verdict for a single bundle attempt. `reason` is set for ERROR."""
    kind: VerdictKind
    reason: Optional[str] = None

    @classmethod
    def included(cls) -> "InclusionVerdict":
        return cls(VerdictKind.INCLUDED)

    @classmethod
    def not_included(cls) -> "InclusionVerdict":
        return cls(VerdictKind.NOT_INCLUDED)

    @classmethod
    def nonce_too_low(cls) -> "InclusionVerdict":
        return cls(VerdictKind.ACCOUNT_NONCE_TOO_LOW)

    @classmethod
    def error(cls, reason: str) -> "InclusionVerdict":
        return cls(VerdictKind.ERROR, reason)

    @property
    def is_included(self) -> bool:
        return self.kind == VerdictKind.INCLUDED

    def __str__(self) -> str:
        if self.reason:
            return f"{self.kind.value} ({self.reason})"
        return self.kind.value


@dataclass(frozen=True)
class BundleAttempt:
    """One submission of a bundle for one target block."""
    target_block: int
    phase: Phase
    submitted_at: float
