"""Signal resolution error taxonomy."""

from __future__ import annotations


class SignalError(Exception):
    """Base class for all resolution and proxy errors."""


class NetworkError(SignalError):
    """Raised on timeouts, refused connections and non-2xx upstream responses.

    ``status``/``body``/``content_type`` are populated when the upstream
    answered, so the stream proxy can relay the response verbatim.
    """

    def __init__(
        self,
        message: str,
        *,
        url: str = "",
        status: int | None = None,
        body: bytes = b"",
        content_type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status = status
        self.body = body
        self.content_type = content_type


class DecryptError(SignalError):
    """Raised when a cipher payload cannot be decoded or decrypted."""


class NotFoundError(SignalError):
    """Raised when no frame target or media URL can be extracted at a hop."""


class FilteredError(SignalError):
    """Raised when a candidate or media URL matched an exclusion rule."""


class ExhaustedError(SignalError):
    """Raised when the hop bound or candidate queue ran out without a success."""

    def __init__(self, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class StoreError(SignalError):
    """Raised when the persistence layer is unavailable."""
