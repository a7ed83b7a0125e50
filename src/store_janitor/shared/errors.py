"""
Error taxonomy for janitor runs.

Connection-level failures abort the run. Item-level failures are recorded in
the run report and never abort a batch.
"""

from typing import Optional


class JanitorError(Exception):
    """Base class for all janitor errors."""


class StoreConnectionError(JanitorError):
    """A backing store is unreachable; nothing can proceed without it."""

    def __init__(self, store: str, message: str):
        self.store = store
        super().__init__(f"{store} unavailable: {message}")


class ItemOperationError(JanitorError):
    """A single delete/removal failed. Recorded, never fatal."""

    def __init__(self, item: str, reason: str, status_code: Optional[int] = None):
        self.item = item
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"{item}: {reason}")


class ConfigurationError(JanitorError, ValueError):
    """Invalid mode or argument combination, detected before any I/O."""
