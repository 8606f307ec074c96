"""
Error taxonomy shared by the gateway and the client.

Every error carries a human-readable ``message``; the gateway reports it
as ``{"error": {"message": ...}}`` in both response modes.
"""
from typing import Optional


class RelayError(Exception):
    """Base class for errors that are reported to the caller."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(RelayError):
    """Malformed or out-of-range client input."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}" if field else message)


class UpstreamError(RelayError):
    """The provider rejected the request or failed mid-stream."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class TransportError(RelayError):
    """The network to the provider (or to the gateway) was lost."""


class BusyError(RelayError):
    """A submission arrived while another exchange is still pending."""

    def __init__(self, message: str = "An exchange is already in progress"):
        super().__init__(message)
