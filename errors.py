"""Exceptions shared by the request decoders and the acceptor."""

from __future__ import annotations


class HTTPRequestParseError(ValueError):
    """Request decode error carrying the HTTP status to report."""

    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


class BindInUseError(OSError):
    """Raised when the listening port stays taken after the release attempt."""
