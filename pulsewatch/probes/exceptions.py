"""Exception hierarchy for probe execution.

None of these ever leave the executor: each is converted into an
``Unhealthy`` observation carrying the exception's message and detail.
"""

from __future__ import annotations


class ProbeError(Exception):
    """Base exception for all probe failures."""

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ProbeTimeout(ProbeError):
    """The probe did not complete before its deadline."""


class ProbeNetworkFailure(ProbeError):
    """Connection or transport failure talking to the target."""


class ProbeComparisonMismatch(ProbeError):
    """The response did not match the expected status, text or JSON."""


class ProbeUnexpectedPayload(ProbeError):
    """The response body could not be read as the expected health payload."""
