"""
Operator-directed redistribution of works cost between cost categories.

The coordinator turns operator entries into a canonical withdrawal map and
target set, validates them, hands the allocation to the store and reads the
resulting per-item rows back for position-level reconciliation.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

from . import attribution
from .base_cost import base_cost
from .engine import group_by_position
from .errors import NotFoundError, ValidationError
from .models import HUNDRED, ZERO, LineItem, RedistributionDetail, RedistributionRequest, to_decimal
from .store import CostStore

logger = logging.getLogger(__name__)

CAP_REJECT = "reject"
CAP_CLAMP = "clamp"
CAP_POLICIES = (CAP_REJECT, CAP_CLAMP)

Expander = Callable[[str], Sequence[str]]


@dataclass(frozen=True)
class WithdrawalEntry:
    """Percent to withdraw from explicit detail categories, or from every leaf of ``category_id``."""

    percent: Decimal
    category_id: Optional[str] = None
    detail_category_ids: Sequence[str] = ()

    def __post_init__(self) -> None:
        try:
            percent = to_decimal(self.percent)
        except ValueError as exc:
            raise ValidationError(f"Withdrawal percent must be a number, got {self.percent!r}") from exc
        object.__setattr__(self, "percent", percent)
        object.__setattr__(self, "detail_category_ids", tuple(self.detail_category_ids or ()))


@dataclass(frozen=True)
class TargetEntry:
    category_id: Optional[str] = None
    detail_category_ids: Sequence[str] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "detail_category_ids", tuple(self.detail_category_ids or ()))


def _resolve_detail_ids(
    category_id: Optional[str], detail_ids: Sequence[str], expand: Optional[Expander]
) -> List[str]:
    if detail_ids:
        return list(detail_ids)
    if not category_id:
        raise ValidationError("Entry names neither a cost category nor detail categories")
    if expand is None:
        raise ValidationError(f"Cannot expand cost category {category_id} without a category lookup")
    expanded = list(expand(category_id))
    logger.debug("Expanded category %s into %d detail categories", category_id, len(expanded))
    return expanded


def build_withdrawal_map(
    entries: Iterable[WithdrawalEntry], expand: Optional[Expander] = None
) -> Dict[str, Decimal]:
    """Flatten withdrawal entries; a detail category named twice gets the summed percent."""

    withdrawals: Dict[str, Decimal] = OrderedDict()
    for entry in entries:
        for detail_id in _resolve_detail_ids(entry.category_id, entry.detail_category_ids, expand):
            withdrawals[detail_id] = withdrawals.get(detail_id, ZERO) + entry.percent
    return withdrawals


def build_target_set(entries: Iterable[TargetEntry], expand: Optional[Expander] = None) -> FrozenSet[str]:
    targets: set = set()
    for entry in entries:
        targets.update(_resolve_detail_ids(entry.category_id, entry.detail_category_ids, expand))
    return frozenset(targets)


def validate(
    withdrawals: Mapping[str, Decimal],
    targets: Iterable[str],
    cap_policy: str = CAP_REJECT,
) -> Dict[str, Decimal]:
    """Check a canonical request and return the withdrawal map to submit.

    Percentages above 100 for a single detail category are rejected, or clamped
    to 100 under the ``clamp`` policy.
    """

    if cap_policy not in CAP_POLICIES:
        raise ValidationError(f"Unknown withdrawal cap policy: {cap_policy}")
    if not withdrawals:
        raise ValidationError("Select at least one source category to withdraw from")
    if sum(withdrawals.values(), ZERO) <= 0:
        raise ValidationError("Total withdrawal percent must be greater than 0")
    non_positive = sorted(k for k, v in withdrawals.items() if v <= 0)
    if non_positive:
        raise ValidationError(f"Withdrawal percent must be positive for: {', '.join(non_positive)}")
    target_set = frozenset(targets)
    if not target_set:
        raise ValidationError("Select at least one target category")
    overlap = sorted(set(withdrawals) & target_set)
    if overlap:
        raise ValidationError(f"Target categories must not overlap source categories: {', '.join(overlap)}")

    checked: Dict[str, Decimal] = OrderedDict()
    for detail_id, percent in withdrawals.items():
        if percent > HUNDRED:
            if cap_policy == CAP_REJECT:
                raise ValidationError(
                    f"Withdrawal from {detail_id} sums to {percent}%, above the 100% limit"
                )
            logger.warning("Clamping withdrawal from %s from %s%% to 100%%", detail_id, percent)
            percent = HUNDRED
        checked[detail_id] = percent
    return checked


@dataclass(frozen=True)
class PositionReconciliation:
    position_id: Optional[str]
    original_works_cost: Decimal
    redistributed_works_cost: Decimal
    materials_cost: Decimal
    item_count: int

    @property
    def adjustment(self) -> Decimal:
        return self.redistributed_works_cost - self.original_works_cost

    @property
    def total(self) -> Decimal:
        return self.redistributed_works_cost + self.materials_cost


def conservation_gap(details: Iterable[RedistributionDetail]) -> Decimal:
    """Net change across all detail rows; zero when the redistribution conserves cost."""

    return sum((detail.adjustment_amount for detail in details), ZERO)


class RedistributionCoordinator:
    """Builds, validates and submits redistributions with one writer per tender."""

    def __init__(self, store: CostStore, cap_policy: str = CAP_REJECT) -> None:
        if cap_policy not in CAP_POLICIES:
            raise ValidationError(f"Unknown withdrawal cap policy: {cap_policy}")
        self.store = store
        self.cap_policy = cap_policy
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def tender_lock(self, tender_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._locks.setdefault(tender_id, threading.Lock())

    def build_withdrawal_map(self, entries: Iterable[WithdrawalEntry]) -> Dict[str, Decimal]:
        return build_withdrawal_map(entries, self.store.expand_category_to_detail_ids)

    def build_target_set(self, entries: Iterable[TargetEntry]) -> FrozenSet[str]:
        return build_target_set(entries, self.store.expand_category_to_detail_ids)

    def submit(
        self,
        tender_id: str,
        name: str,
        withdrawals: Mapping[str, Decimal],
        targets: Iterable[str],
        description: Optional[str] = None,
    ) -> RedistributionRequest:
        target_set = frozenset(targets)
        checked = validate(withdrawals, target_set, cap_policy=self.cap_policy)
        with self.tender_lock(tender_id):
            logger.info(
                "Submitting redistribution '%s' for tender %s: %d source, %d target categories",
                name,
                tender_id,
                len(checked),
                len(target_set),
            )
            request_id = self.store.submit_redistribution(
                tender_id, name, checked, target_set, description=description
            )
            return self.store.fetch_redistribution(request_id)

    def build_and_submit_redistribution(
        self,
        source_entries: Iterable[WithdrawalEntry],
        target_entries: Iterable[TargetEntry],
        tender_id: str,
        name: str,
        description: Optional[str] = None,
    ) -> RedistributionRequest:
        withdrawals = self.build_withdrawal_map(source_entries)
        targets = self.build_target_set(target_entries)
        return self.submit(tender_id, name, withdrawals, targets, description=description)

    def activate(self, request_id: str) -> RedistributionRequest:
        request = self.store.fetch_redistribution(request_id)
        with self.tender_lock(request.tender_id):
            self.store.activate_redistribution(request_id, request.tender_id)
            logger.info("Redistribution %s activated for tender %s", request_id, request.tender_id)
            return self.store.fetch_redistribution(request_id)

    def deactivate(self, request_id: str) -> RedistributionRequest:
        request = self.store.fetch_redistribution(request_id)
        with self.tender_lock(request.tender_id):
            self.store.deactivate_redistribution(request_id)
            logger.info("Redistribution %s deactivated", request_id)
            return self.store.fetch_redistribution(request_id)

    def delete(self, request_id: str) -> None:
        request = self.store.fetch_redistribution(request_id)
        with self.tender_lock(request.tender_id):
            self.store.delete_redistribution(request_id)
            logger.info("Redistribution %s deleted", request_id)

    def active_request(self, tender_id: str) -> Optional[RedistributionRequest]:
        return self.store.fetch_active_redistribution(tender_id)

    def reconcile(self, tender_id: str, request_id: Optional[str] = None) -> List[PositionReconciliation]:
        """Per-position works cost before and after the active (or given) redistribution."""

        if request_id is None:
            active = self.store.fetch_active_redistribution(tender_id)
            details: List[RedistributionDetail] = (
                self.store.fetch_redistribution_details(active.id) if active else []
            )
        else:
            request = self.store.fetch_redistribution(request_id)
            if request.tender_id != tender_id:
                raise NotFoundError(f"Redistribution {request_id} does not belong to tender {tender_id}")
            details = self.store.fetch_redistribution_details(request_id)
        return reconcile_positions(self.store.fetch_line_items(tender_id=tender_id), details)


def reconcile_positions(
    items: Sequence[LineItem], details: Iterable[RedistributionDetail]
) -> List[PositionReconciliation]:
    by_item = {detail.item_id: detail for detail in details}
    rows: List[PositionReconciliation] = []
    for position_id, position_items in group_by_position(items).items():
        original = redistributed = materials = ZERO
        for item in position_items:
            base = base_cost(item, position_items)
            split = attribution.split(item.item_kind, item.material_subtype, item.commercial_cost, base)
            original += split.works
            materials += split.materials
            detail = by_item.get(item.id)
            if detail is None:
                redistributed += split.works
            else:
                redistributed += attribution.works_portion(
                    item.item_kind, item.material_subtype, detail.redistributed_commercial_cost, base
                )
        rows.append(
            PositionReconciliation(
                position_id=position_id,
                original_works_cost=original,
                redistributed_works_cost=redistributed,
                materials_cost=materials,
                item_count=len(position_items),
            )
        )
    return rows


__all__ = [
    "CAP_REJECT",
    "CAP_CLAMP",
    "WithdrawalEntry",
    "TargetEntry",
    "PositionReconciliation",
    "RedistributionCoordinator",
    "build_withdrawal_map",
    "build_target_set",
    "validate",
    "reconcile_positions",
    "conservation_gap",
]
