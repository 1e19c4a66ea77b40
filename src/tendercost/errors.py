"""Error taxonomy shared by the cost engine and the redistribution coordinator."""
from __future__ import annotations


class TenderCostError(Exception):
    """Base class for every error raised by :mod:`tendercost`."""


class ValidationError(TenderCostError, ValueError):
    """Raised when a request is malformed; surfaced to the caller, never retried."""


class NotFoundError(TenderCostError, LookupError):
    """Raised when a referenced item, category, profile or redistribution is missing."""


class PreconditionError(TenderCostError, RuntimeError):
    """Raised when an operation is invoked without the state it depends on."""


class StoreError(TenderCostError):
    """Raised by a persistence boundary when a single read or write fails."""


__all__ = [
    "TenderCostError",
    "ValidationError",
    "NotFoundError",
    "PreconditionError",
    "StoreError",
]
