"""
Domain Errors

Two kinds of failure leave the rental core:
- ValidationError: the caller asked for something the booking state forbids
- ConflictError: a concurrent writer won, or the state already moved on;
  retrying the whole operation may succeed
"""


class DomainError(Exception):
    """Base class for errors raised by domain rules."""

    retryable = False

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(DomainError):
    """Client fault: missing booking, wrong status, bad input."""


class ConflictError(DomainError):
    """Retryable: already processed, lost a race, retry budget exhausted."""

    retryable = True
