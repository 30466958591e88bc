"""Exceptions raised by the upload stores and lockers."""

from __future__ import annotations

from collections.abc import Iterable


class FileLockedError(Exception):
    """Raised when a lock for an upload is already held."""

    def __init__(self, message: str = "file currently locked") -> None:
        super().__init__(message)


class NotFoundError(Exception):
    """Raised when an upload does not exist."""

    def __init__(self, message: str = "upload not found") -> None:
        super().__init__(message)


class HTTPError(Exception):
    """An error that carries the HTTP status code to answer with."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class MultiError(Exception):
    """Several errors that occurred together, reported as one."""

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors = list(errors)
        lines = "".join(f"\t{err}\n" for err in self.errors)
        super().__init__(f"Multiple errors occurred:\n{lines}")