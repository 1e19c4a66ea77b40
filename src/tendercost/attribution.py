"""
Attribute commercial cost to the "works" and "materials" reporting buckets.

Every item lands in the buckets through :func:`split` and position or tender
totals are only ever sums of those per-item contributions.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional, Protocol

from .models import ZERO, ItemKind, MaterialSubtype, to_decimal


@dataclass(frozen=True)
class Attribution:
    works: Decimal
    materials: Decimal

    @property
    def total(self) -> Decimal:
        return self.works + self.materials


def split(
    item_kind: ItemKind,
    material_subtype: Optional[MaterialSubtype],
    commercial_cost: object,
    base: object,
) -> Attribution:
    """Split ``commercial_cost`` so that ``works + materials == commercial_cost``."""

    commercial = to_decimal(commercial_cost)
    amount = to_decimal(base)
    kind = ItemKind(item_kind)
    if kind.is_work:
        return Attribution(works=commercial, materials=ZERO)
    if material_subtype is not None and MaterialSubtype(material_subtype) is MaterialSubtype.AUXILIARY:
        return Attribution(works=commercial, materials=ZERO)
    if amount <= 0 or commercial == 0:
        return Attribution(works=commercial, materials=ZERO)
    # main material: the base stays in materials, the markup moves to works
    return Attribution(works=commercial - amount, materials=amount)


def works_portion(
    item_kind: ItemKind,
    material_subtype: Optional[MaterialSubtype],
    commercial_cost: object,
    base: object,
) -> Decimal:
    return split(item_kind, material_subtype, commercial_cost, base).works


class _Contribution(Protocol):
    position_id: Optional[str]
    base_cost: Decimal
    commercial_cost: Decimal
    works_contribution: Decimal
    materials_contribution: Decimal


@dataclass
class AttributionTotals:
    works: Decimal = ZERO
    materials: Decimal = ZERO
    base: Decimal = ZERO
    item_count: int = 0

    @property
    def total(self) -> Decimal:
        return self.works + self.materials

    def add(self, row: _Contribution) -> None:
        self.works += row.works_contribution
        self.materials += row.materials_contribution
        self.base += row.base_cost
        self.item_count += 1


def aggregate(rows: Iterable[_Contribution]) -> AttributionTotals:
    totals = AttributionTotals()
    for row in rows:
        totals.add(row)
    return totals


def by_position(rows: Iterable[_Contribution]) -> Dict[Optional[str], AttributionTotals]:
    """Group per-item contributions by position, preserving first-seen order."""

    grouped: Dict[Optional[str], AttributionTotals] = OrderedDict()
    for row in rows:
        grouped.setdefault(row.position_id, AttributionTotals()).add(row)
    return grouped


__all__ = ["Attribution", "AttributionTotals", "split", "works_portion", "aggregate", "by_position"]
