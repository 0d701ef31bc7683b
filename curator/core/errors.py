"""Domain-specific errors for curator core modules."""

from __future__ import annotations


class InvalidInputError(ValueError):
    """Raised when invalid data is supplied to core domain operations."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class CatalogError(Exception):
    """Base class for failures talking to the music catalog."""

    retryable: bool = False

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class CatalogRateLimitedError(CatalogError):
    """The catalog answered 429; ``retry_after_s`` is the requested wait, if any."""

    retryable = True

    def __init__(self, message: str, *, retry_after_s: float | None = None) -> None:
        super().__init__(message, status=429)
        self.retry_after_s = retry_after_s


class CatalogUnavailableError(CatalogError):
    """Server-side or transport failure; worth retrying after a short pause."""

    retryable = True


class CatalogRequestError(CatalogError):
    """A 4xx other than 429. Retrying the same request will not help."""


class CatalogCooldownError(CatalogError):
    """The catalog asked for a wait longer than a job may spend sleeping."""

    def __init__(self, message: str, *, retry_after_s: float) -> None:
        super().__init__(message, status=429)
        self.retry_after_s = retry_after_s


__all__ = [
    "CatalogCooldownError",
    "CatalogError",
    "CatalogRateLimitedError",
    "CatalogRequestError",
    "CatalogUnavailableError",
    "InvalidInputError",
]
