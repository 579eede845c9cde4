"""
Error taxonomy for the upstream relay.

Every error that may reach the caller carries a human readable message and the
HTTP status it maps to. MalformedEventError never leaves the relay.
"""
from fastapi import status


class RelayError(Exception):
    """Base class for errors raised while proxying a chat request."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Unexpected Server Error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigurationError(RelayError):
    """Upstream base address or API key is not configured."""

    default_message = "Missing Azure Configuration"


class InvalidCapabilityError(RelayError):
    """Requested capability is neither chat nor image."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid Type"


class UpstreamError(RelayError):
    """Upstream answered with a non-success status or could not be reached."""

    default_message = "Upstream request failed"

    def __init__(self, message: str = None, upstream_status: int = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class DataShapeError(RelayError):
    """A successful upstream response is missing an expected field."""

    default_message = "No image returned"


class MalformedEventError(ValueError):
    """A single event-stream line could not be parsed. Skipped by the relay."""

    def __init__(self, line: str, reason: str = ""):
        self.line = line
        self.reason = reason
        super().__init__(f"Malformed event line: {reason}" if reason else "Malformed event line")
