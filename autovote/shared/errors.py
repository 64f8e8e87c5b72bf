"""Exception types raised across autovote.

Validation failures are never raised; setters report them as return values.
"""


class AutovoteError(Exception):
    """Base class for autovote errors."""


class CorruptConfigError(AutovoteError, ValueError):
    """The persisted settings document could not be parsed."""


class ApiError(AutovoteError):
    """The remote challenge service returned an error or was unreachable."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
