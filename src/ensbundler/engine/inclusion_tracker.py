"""Inclusion tracker — maps raw relay responses to verdicts."""

from __future__ import annotations

from ensbundler.models.registration import InclusionVerdict
from ensbundler.models.relay import RelayResolution, RelayResponse


class InclusionTracker:
    """Pure classification of relay responses.

    An explicit error always wins. Only an explicit BUNDLE_INCLUDED
    counts as inclusion; anything else that is not an error (block
    passed, timeout, not selected) is NOT_INCLUDED.
    """

    def classify(self, response: RelayResponse) -> InclusionVerdict:
        if response.error is not None:
            return InclusionVerdict.error(response.error)
        if response.resolution == RelayResolution.BUNDLE_INCLUDED:
            return InclusionVerdict.included()
        if response.resolution == RelayResolution.ACCOUNT_NONCE_TOO_HIGH:
            return InclusionVerdict.nonce_too_low()
        return InclusionVerdict.not_included()
