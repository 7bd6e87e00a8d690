"""Errors raised by the REST client."""

from __future__ import annotations


class ApiError(RuntimeError):
    """A remote call failed. Retrying later may succeed."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RemoteUnavailableError(ApiError):
    """The server could not be reached at all."""


class SessionGoneError(ApiError):
    """The server reported the session as not found or not ours to touch."""


class SessionExpiredError(ApiError):
    """The auth token expired; the user has to sign in again."""
