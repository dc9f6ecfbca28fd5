"""
Exception hierarchy for JamCapture.

Every failure the capture engine reports derives from CaptureError so that
callers (CLI, web layer) can catch one type and surface ``str(exc)`` to the
user. None of these are fatal to the process.
"""

from typing import List, Optional


class CaptureError(Exception):
    """Base class for all capture engine failures."""


class ValidationError(CaptureError):
    """Request rejected before any state was touched (bad input)."""


class InvalidStateError(ValidationError):
    """Operation is not allowed in the current capture status."""


class SourceError(CaptureError):
    """A configured audio source is missing, duplicated or unconnectable."""


class SourceUnavailableError(SourceError):
    def __init__(self, port: str) -> None:
        super().__init__(f"port not found: {port}")
        self.port = port


class DuplicateSourceError(SourceError):
    """
    The same port name appears more than once in the routing graph.

    This means a second application is producing an identically named port;
    recording is blocked until the conflict goes away.
    """

    def __init__(self, port: str, matches: Optional[List[str]] = None) -> None:
        self.port = port
        self.matches = list(matches or [])
        count = len(self.matches)
        detail = f" ({count} matches)" if count else ""
        super().__init__(
            f"duplicate sources detected for '{port}'{detail} - "
            "please close conflicting applications"
        )


class PortConnectionError(SourceError):
    def __init__(self, source: str, dest: str, attempts: int) -> None:
        super().__init__(f"failed to connect {source} to {dest} after {attempts} attempts")
        self.source = source
        self.dest = dest
        self.attempts = attempts


class RoutingError(CaptureError):
    """The routing graph tool (pw-link) failed; message carries its output."""


class EncoderError(CaptureError):
    """Encoder subprocess could not be started or stopped."""


class OutputValidationError(EncoderError):
    """Recording finished but the output file is missing or undersized."""
