"""Commercial cost engine and cost redistribution for construction tenders."""

from .cascade import CostVariant
from .engine import BatchResult, ItemCost, compute_commercial_cost, compute_tender, recompute_and_persist
from .errors import NotFoundError, PreconditionError, StoreError, TenderCostError, ValidationError
from .models import LineItem, WorkLink
from .profile import MarkupProfile
from .redistribution import RedistributionCoordinator, TargetEntry, WithdrawalEntry
from .store import CostStore, InMemoryCostStore

__all__ = [
    "CostVariant",
    "BatchResult",
    "ItemCost",
    "compute_commercial_cost",
    "compute_tender",
    "recompute_and_persist",
    "TenderCostError",
    "ValidationError",
    "NotFoundError",
    "PreconditionError",
    "StoreError",
    "LineItem",
    "WorkLink",
    "MarkupProfile",
    "RedistributionCoordinator",
    "WithdrawalEntry",
    "TargetEntry",
    "CostStore",
    "InMemoryCostStore",
]
