"""Exceptions raised by the chat synchronization services."""

from __future__ import annotations


class ChatSyncError(RuntimeError):
    """Base exception raised for chat synchronization failures."""


class ChatDisabledError(ChatSyncError):
    """Raised when chat operations are attempted while the integration is disabled."""


class RateLimitedError(ChatSyncError):
    """Raised when the chat server asks us to slow down.

    ``retry_after`` carries the server-provided wait hint in seconds, when
    the response included one.
    """

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RemoteUnavailableError(ChatSyncError):
    """Raised on network failures, server errors, or an open circuit breaker."""


class AlreadyExistsError(ChatSyncError):
    """Raised when an account or room alias is already taken on the chat server."""


class RemoteRequestError(ChatSyncError):
    """Raised for any other unsuccessful chat server response."""

    def __init__(self, message: str, status_code: int, errcode: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.errcode = errcode


class CredentialIntegrityError(ChatSyncError):
    """Raised when an encrypted credential fails authentication.

    Indicates tampering or a wrong encryption key. Never retried and never
    replaced with a fallback value.
    """


class MissingCredentialError(ChatSyncError):
    """Raised when a room or remote identity has not been provisioned yet."""
