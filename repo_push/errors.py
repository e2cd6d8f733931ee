from __future__ import annotations

from typing import Any

EXPIRED_TOKEN_MESSAGE = (
    "Your GitHub token is invalid or has expired. Please log out and log back in."
)


class RepoPushError(Exception):
    """Base class for failures that map onto an HTTP status."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(RepoPushError):
    """No credential could be resolved for the caller."""

    status_code = 401


class OwnershipError(RepoPushError):
    """The caller does not own the repository it named."""

    status_code = 403


class WorkflowError(RepoPushError):
    """A multi-step operation failed at a step the caller should hear about."""


class GitHubError(RepoPushError):
    """The upstream API answered with a non-success status."""

    def __init__(self, message: str, status_code: int, body: Any = None) -> None:
        super().__init__(message, status_code)
        self.body = body

    @property
    def not_found(self) -> bool:
        return self.status_code == 404
