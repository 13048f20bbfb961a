"""Private relay access — bundle submission and inclusion tracking."""

from ensbundler.models.relay import RelayResolution, RelayResponse
from ensbundler.relay.client import BundleHandle, FlashbotsRelayClient
from ensbundler.relay.submitter import PendingSubmission, RelaySubmitter

__all__ = [
    "BundleHandle",
    "FlashbotsRelayClient",
    "PendingSubmission",
    "RelayResolution",
    "RelayResponse",
    "RelaySubmitter",
]
