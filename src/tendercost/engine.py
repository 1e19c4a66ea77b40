"""
Commercial cost computation for line items, positions and whole tenders.

The computation is pure; :func:`recompute_and_persist` is the one place that
talks to the persistence boundary, writing results in batches and continuing
past individual write failures.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence

from . import attribution, cascade
from .base_cost import resolve_base_cost
from .errors import PreconditionError, StoreError
from .models import LineItem
from .profile import MarkupProfile

if TYPE_CHECKING:
    from .store import CostStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 200


@dataclass(frozen=True)
class ItemCost:
    """Computed commercial cost of one line item and its bucket contributions."""

    item_id: str
    position_id: Optional[str]
    variant: cascade.CostVariant
    quantity: Decimal
    base_cost: Decimal
    commercial_cost: Decimal
    markup_coefficient: Optional[Decimal]
    works_contribution: Decimal
    materials_contribution: Decimal
    stages: Optional[cascade.Stages] = None


def compute_commercial_cost(
    item: LineItem,
    profile: Optional[MarkupProfile],
    siblings: Iterable[LineItem] = (),
) -> ItemCost:
    """Compute ``item``'s commercial cost; ``siblings`` resolve material work links."""

    if profile is None:
        raise PreconditionError(f"Markup profile is not loaded; cannot price item {item.id}")
    base = resolve_base_cost(item, siblings)
    result = cascade.calculate(cascade.classify_item(item), base.amount, profile)
    split = attribution.split(item.item_kind, item.material_subtype, result.commercial_cost, base.amount)
    return ItemCost(
        item_id=item.id,
        position_id=item.position_id,
        variant=result.variant,
        quantity=base.quantity,
        base_cost=base.amount,
        commercial_cost=result.commercial_cost,
        markup_coefficient=result.markup_coefficient,
        works_contribution=split.works,
        materials_contribution=split.materials,
        stages=result.stages,
    )


def group_by_position(items: Iterable[LineItem]) -> Dict[Optional[str], List[LineItem]]:
    grouped: Dict[Optional[str], List[LineItem]] = OrderedDict()
    for item in items:
        grouped.setdefault(item.position_id, []).append(item)
    return grouped


def compute_position(items: Sequence[LineItem], profile: Optional[MarkupProfile]) -> List[ItemCost]:
    """Price every item of one position; the position's items are each other's siblings."""

    return [compute_commercial_cost(item, profile, items) for item in items]


def compute_tender(
    items: Sequence[LineItem],
    profile: Optional[MarkupProfile],
    max_workers: Optional[int] = None,
) -> List[ItemCost]:
    """Price a whole tender, optionally fanning positions out over a thread pool.

    Results come back in the order of ``items``.
    """

    if profile is None:
        raise PreconditionError("Markup profile is not loaded; cannot price tender")
    groups = list(group_by_position(items).values())
    if max_workers and max_workers > 1 and len(groups) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            priced = list(pool.map(lambda group: compute_position(group, profile), groups))
    else:
        priced = [compute_position(group, profile) for group in groups]
    by_id = {cost.item_id: cost for group in priced for cost in group}
    return [by_id[item.id] for item in items]


@dataclass
class BatchResult:
    """Outcome of a best-effort batch write."""

    written: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    costs: List[ItemCost] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def warning(self) -> Optional[str]:
        if not self.failed:
            return None
        return f"Recalculation completed with errors: {self.failed_count} item(s) failed to save"


def recompute_and_persist(
    store: "CostStore",
    items: Sequence[LineItem],
    profile: Optional[MarkupProfile],
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_workers: Optional[int] = None,
) -> BatchResult:
    """Recompute commercial costs for ``items`` and write them to ``store``.

    Items whose base is not positive carry no markup and are skipped. A failed
    write is recorded against the item id and the remaining items continue.
    """

    costs = compute_tender(items, profile, max_workers=max_workers)
    result = BatchResult(costs=costs)
    batch_size = max(1, int(batch_size))
    total_batches = (len(costs) + batch_size - 1) // batch_size
    for index in range(total_batches):
        batch = costs[index * batch_size:(index + 1) * batch_size]
        logger.info("[recompute] batch %d/%d :: %d item(s)", index + 1, total_batches, len(batch))
        for cost in batch:
            if cost.base_cost <= 0 or cost.commercial_cost <= 0:
                logger.debug("        %s skipped (base=%s)", cost.item_id, cost.base_cost)
                result.skipped.append(cost.item_id)
                continue
            try:
                store.write_commercial_cost(cost.item_id, cost.commercial_cost, cost.markup_coefficient)
            except StoreError as exc:
                logger.warning("        %s failed to save: %s", cost.item_id, exc)
                result.failed[cost.item_id] = str(exc)
                continue
            result.written.append(cost.item_id)
    if result.warning:
        logger.warning(result.warning)
    logger.info(
        "[recompute] written=%d skipped=%d failed=%d",
        len(result.written),
        len(result.skipped),
        result.failed_count,
    )
    return result


def recompute_tender(
    store: "CostStore",
    tender_id: str,
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_workers: Optional[int] = None,
) -> BatchResult:
    profile = store.fetch_markup_profile(tender_id)
    if profile is None:
        raise PreconditionError(f"No active markup profile for tender {tender_id}")
    items = store.fetch_line_items(tender_id=tender_id)
    logger.info("Recomputing %d line item(s) for tender %s", len(items), tender_id)
    return recompute_and_persist(store, items, profile, batch_size=batch_size, max_workers=max_workers)


__all__ = [
    "ItemCost",
    "BatchResult",
    "DEFAULT_BATCH_SIZE",
    "compute_commercial_cost",
    "compute_position",
    "compute_tender",
    "group_by_position",
    "recompute_and_persist",
    "recompute_tender",
]
