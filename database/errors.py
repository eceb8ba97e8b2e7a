"""
Storage error taxonomy.

Every error carries the name of the facade operation that failed so
callers can report it without parsing messages.
"""
from __future__ import annotations


class StoreError(Exception):
    """Base exception for all storage operations."""

    def __init__(self, message: str, operation: str = ""):
        self.operation = operation
        super().__init__(message)


class InitError(StoreError):
    """Backend could not be brought to the ready state."""


class InitTimeout(InitError):
    """Overall or per-call initialization deadline exceeded. Try again later."""

    def __init__(self, timeout_s: float, operation: str = "initialize"):
        self.timeout_s = timeout_s
        super().__init__(f"Database initialization timed out after {timeout_s:g}s", operation)


class BackendUnavailable(InitError):
    """Durable backend requested on a runtime that cannot provide it."""


class StatementFailure(StoreError):
    """A CRUD statement failed for a backend-specific reason."""


class TransactionAborted(StoreError):
    """A multi-statement write was rolled back; the data set is unchanged."""


class RestoreParseError(StoreError):
    """Backup snapshot could not be parsed or validated."""
