"""Error taxonomy for reconciliation and ingestion.

``NoMatch`` is deliberately absent: an unmatched candidate is a valid outcome
(see ``domain.reconciliation.contracts``), not an error.
"""

from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for engine errors."""


class InvalidIdentifierError(ReconciliationError, ValueError):
    """Raised when an EAN/UPC/GTIN fails format or check-digit validation."""

    def __init__(self, value: str, reason: str) -> None:
        super().__init__(f"Invalid identifier {value!r}: {reason}")
        self.value = value
        self.reason = reason


class RowNormalizationError(ReconciliationError, ValueError):
    """Raised when a source row cannot be turned into a candidate record."""


class TransientSourceError(ReconciliationError):
    """Network failure or timeout on a source or semantic collaborator."""


class ConstraintViolationError(ReconciliationError):
    """Concurrent write hit a uniqueness constraint that upsert could not absorb."""


class TenantMismatchError(ReconciliationError):
    """Raised when an operation would read or link across tenants."""


class JobStateError(ReconciliationError):
    """Raised for an invalid ingestion job state transition."""


class JobNotFoundError(ReconciliationError, LookupError):
    """Raised when a job id is unknown for the calling tenant."""


class SuggestionNotFoundError(ReconciliationError, LookupError):
    """Raised when a link suggestion id is unknown for the calling tenant."""


class LinkNotFoundError(ReconciliationError, LookupError):
    """Raised when a link edge id is unknown for the calling tenant."""
