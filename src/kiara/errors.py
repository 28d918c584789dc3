"""
Exception taxonomy for Kiara.

Every error raised by the package derives from KiaraError. Only
AllocationConflictError is handled inside the package (by the prefix
allocator's retry loop); everything else propagates to the caller.
"""

from __future__ import annotations

from typing import Any, Optional


class KiaraError(Exception):
    """Base class for all Kiara errors."""

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.details = details


class UnrecognizedSchemeError(KiaraError, ValueError):
    """A storage URL matched none of the known backend grammars."""

    def __init__(self, url: str):
        super().__init__(f"Unknown database URL form: {url}", url=url)
        self.url = url


class BackendUnavailableError(KiaraError):
    """The backing store could not be reached or read."""
    pass


class StoreNotFoundError(BackendUnavailableError):
    """No store exists at the given URL."""

    def __init__(self, url: str):
        super().__init__(f"No store exists at {url}", url=url)
        self.url = url


class TransactionError(KiaraError):
    """Transaction data was rejected by the store."""
    pass


class ConflictError(TransactionError):
    """A conditional commit failed because the store moved past its basis."""

    def __init__(self, expected_t: int, actual_t: int):
        super().__init__(
            f"Store advanced from t={expected_t} to t={actual_t}",
            expected_t=expected_t,
            actual_t=actual_t,
        )
        self.expected_t = expected_t
        self.actual_t = actual_t


class UniquenessError(TransactionError):
    """A unique attribute value is already held by another entity."""

    def __init__(self, attribute: str, value: Any, existing: Optional[int] = None):
        super().__init__(
            f"Unique value {value!r} for {attribute} already asserted on entity {existing}",
            attribute=attribute,
            value=value,
            existing=existing,
        )
        self.attribute = attribute
        self.value = value


class AllocationConflictError(KiaraError):
    """Internal to prefix allocation: a concurrent writer won the race."""
    pass


class InconsistentDirectoryError(KiaraError):
    """The system store records a graph whose store cannot be connected to."""

    def __init__(self, graph: str, database: str):
        super().__init__(
            f"System identified graph is missing: {graph} ({database})",
            graph=graph,
            database=database,
        )
        self.graph = graph
        self.database = database


class SchemaConflictError(KiaraError):
    """Inferred or installed attributes disagree with existing definitions."""
    pass


class ConfigValidationError(KiaraError):
    """Configuration validation error."""
    pass
