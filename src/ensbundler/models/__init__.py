"""Data models — registration record, protocol phases, bundles and verdicts."""

from ensbundler.models.bundle import BundleTransaction, FeeSchedule, SignedBundle
from ensbundler.models.registration import (
    BundleAttempt,
    InclusionVerdict,
    Phase,
    Registration,
    VerdictKind,
)
from ensbundler.models.relay import RelayResolution, RelayResponse

__all__ = [
    "BundleAttempt",
    "BundleTransaction",
    "FeeSchedule",
    "InclusionVerdict",
    "Phase",
    "Registration",
    "RelayResolution",
    "RelayResponse",
    "SignedBundle",
    "VerdictKind",
]
