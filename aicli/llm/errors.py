"""Exceptions raised by the endpoint adapter."""

from __future__ import annotations


class LLMError(Exception):
    """Structured error from a model endpoint."""

    def __init__(self, message: str, code: str = ""):
        super().__init__(message)
        self.code = code


class TransportError(LLMError):
    """The request could not be completed.  Fatal to the current round."""

    def __init__(self, message: str, code: str = "transport", status_code: int | None = None):
        super().__init__(message, code=code)
        self.status_code = status_code


class ConnectionFailed(TransportError):
    def __init__(self, message: str):
        super().__init__(message, code="connection_failed")


class AuthenticationError(TransportError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, code="authentication", status_code=status_code)


class RateLimitError(TransportError):
    """HTTP 429.  The orchestrator may retry once after ``retry_after``."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message, code="rate_limited", status_code=429)
        self.retry_after = retry_after


class StreamTimeout(TransportError):
    def __init__(self, message: str):
        super().__init__(message, code="timeout")


class DecodeError(LLMError):
    """A stream chunk could not be decoded."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message, code="decode")
        self.raw = raw
