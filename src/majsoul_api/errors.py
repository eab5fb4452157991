"""Exception types raised across the API.

Codec errors describe bad or unknown wire data and are never retried.
Upstream errors describe a failed exchange with the game service and are
reported to HTTP callers as 502.
"""

from __future__ import annotations

from typing import Optional


class MajsoulApiError(Exception):
    """Base class for all errors raised by this package."""


# Codec errors

class CodecError(MajsoulApiError):
    """Base class for envelope and payload decoding failures."""


class UnknownTypeError(CodecError):
    """A type name is absent from the fetched schema."""

    def __init__(self, type_name: str, message: Optional[str] = None):
        self.type_name = type_name
        super().__init__(message or f"unknown schema type: {type_name!r}")


class UnknownMethodError(UnknownTypeError):
    """A service or method is absent from the fetched schema."""


class MalformedEnvelopeError(CodecError):
    """The outer wrapper could not be parsed."""


class InvalidTypeNameError(CodecError):
    """A type name is too short to carry its category prefix."""


class PayloadDecodeError(CodecError):
    """Payload bytes do not parse as the named type."""


class RecordDecodeError(MajsoulApiError):
    """A game record could not be resolved; ``cause`` is the innermost error."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


# Session errors

class SessionNotReadyError(MajsoulApiError):
    """A call was issued before the first successful login."""


class LoginError(MajsoulApiError):
    """The login handshake was rejected or failed."""


# Upstream errors

class UpstreamError(MajsoulApiError):
    """Base class for failures talking to the game service."""


class RemoteCallError(UpstreamError):
    """The service answered a call with a non-zero error code."""

    def __init__(self, method: str, code: int):
        self.method = method
        self.code = code
        super().__init__(f"{method} failed with error code {code}")


class TransportTimeout(UpstreamError):
    """A request did not receive a timely response."""


class TransportClosed(UpstreamError):
    """The connection is not open or was lost mid-request."""


class ConfigFetchError(MajsoulApiError):
    """Remote config discovery failed at startup."""
