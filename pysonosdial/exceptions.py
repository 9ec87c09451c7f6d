"""Exceptions raised by pysonosdial."""

from typing import Optional


class SonosDialError(Exception):
    """Base class for all pysonosdial errors."""

    pass


class ConfigurationError(SonosDialError):
    """Raised when an operation needs a speaker host and none is configured."""

    pass


class TransportError(SonosDialError):
    """Raised when the speaker cannot be reached or answers with a non-2xx status.

    Args:
        message: Human readable description
        status: HTTP status code, or None when no response was received
        body: Raw response body, if any
    """

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.body = body


class ProtocolError(SonosDialError):
    """Raised when a response body cannot be parsed or lacks an expected element."""

    pass
