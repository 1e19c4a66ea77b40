"""
Category-specific markup cascades.

Each item variant has its own pure pipeline ``(base, profile) -> stages``. The
stage records keep every intermediate value so shared sub-expressions
(``work16``, ``mbp_gsm``) are computed once and reused verbatim by the later
stages. A non-positive base short-circuits to a zero commercial cost without
evaluating any stage.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, Optional, Union

from .errors import PreconditionError
from .models import HUNDRED, ONE, ZERO, ItemKind, LineItem, MaterialSubtype, to_decimal
from .profile import MarkupProfile


class CostVariant(str, Enum):
    WORK = "work"
    SUBCONTRACT_WORK = "sub_work"
    MAIN_MATERIAL = "material/main"
    AUXILIARY_MATERIAL = "material/auxiliary"
    MAIN_SUBCONTRACT_MATERIAL = "sub_material/main"
    AUXILIARY_SUBCONTRACT_MATERIAL = "sub_material/auxiliary"

    @property
    def item_kind(self) -> ItemKind:
        return ItemKind(self.value.split("/", 1)[0])

    @property
    def material_subtype(self) -> Optional[MaterialSubtype]:
        if "/" not in self.value:
            return None
        return MaterialSubtype(self.value.split("/", 1)[1])


def classify(item_kind: ItemKind, material_subtype: Optional[MaterialSubtype] = None) -> CostVariant:
    kind = ItemKind(item_kind)
    if kind is ItemKind.WORK:
        return CostVariant.WORK
    if kind is ItemKind.SUBCONTRACT_WORK:
        return CostVariant.SUBCONTRACT_WORK
    auxiliary = material_subtype is not None and MaterialSubtype(material_subtype) is MaterialSubtype.AUXILIARY
    if kind is ItemKind.MATERIAL:
        return CostVariant.AUXILIARY_MATERIAL if auxiliary else CostVariant.MAIN_MATERIAL
    return CostVariant.AUXILIARY_SUBCONTRACT_MATERIAL if auxiliary else CostVariant.MAIN_SUBCONTRACT_MATERIAL


def classify_item(item: LineItem) -> CostVariant:
    return classify(item.item_kind, item.material_subtype)


def _factor(percent: Decimal) -> Decimal:
    return ONE + percent / HUNDRED


def _share(base: Decimal, percent: Decimal) -> Decimal:
    return base * percent / HUNDRED


@dataclass(frozen=True)
class WorkStages:
    mechanization: Decimal
    mbp_gsm: Decimal
    warranty: Decimal
    work16: Decimal
    growth: Decimal
    contingency: Decimal
    overhead_own: Decimal
    general_costs: Decimal
    profit: Decimal

    @property
    def commercial_cost(self) -> Decimal:
        return self.profit + self.warranty


@dataclass(frozen=True)
class SubcontractStages:
    growth: Decimal
    overhead: Decimal
    profit: Decimal

    @property
    def commercial_cost(self) -> Decimal:
        return self.profit


@dataclass(frozen=True)
class MaterialStages:
    growth: Decimal
    contingency: Decimal
    overhead_own: Decimal
    general_costs: Decimal
    profit: Decimal

    @property
    def commercial_cost(self) -> Decimal:
        return self.profit


Stages = Union[WorkStages, SubcontractStages, MaterialStages]


def work_cascade(base: Decimal, profile: MarkupProfile) -> WorkStages:
    mechanization = _share(base, profile.mechanization_service)
    mbp_gsm = _share(base, profile.mbp_gsm)
    warranty = _share(base, profile.warranty_period)
    work16 = (base + mechanization) * _factor(profile.works_16_markup)
    growth = (work16 + mbp_gsm) * _factor(profile.works_cost_growth)
    contingency = (work16 + mbp_gsm) * _factor(profile.contingency_costs)
    overhead_own = (growth + contingency - work16 - mbp_gsm) * _factor(profile.overhead_own_forces)
    general_costs = overhead_own * _factor(profile.general_costs_without_subcontract)
    profit = general_costs * _factor(profile.profit_own_forces)
    return WorkStages(
        mechanization=mechanization,
        mbp_gsm=mbp_gsm,
        warranty=warranty,
        work16=work16,
        growth=growth,
        contingency=contingency,
        overhead_own=overhead_own,
        general_costs=general_costs,
        profit=profit,
    )


def subcontract_work_cascade(base: Decimal, profile: MarkupProfile) -> SubcontractStages:
    growth = base * _factor(profile.subcontract_works_cost_growth)
    overhead = growth * _factor(profile.overhead_subcontract)
    profit = overhead * _factor(profile.profit_subcontract)
    return SubcontractStages(growth=growth, overhead=overhead, profit=profit)


def material_cascade(base: Decimal, profile: MarkupProfile) -> MaterialStages:
    growth = base * _factor(profile.materials_cost_growth)
    contingency = base * _factor(profile.contingency_costs)
    overhead_own = (growth + contingency - base) * _factor(profile.overhead_own_forces)
    general_costs = overhead_own * _factor(profile.general_costs_without_subcontract)
    profit = general_costs * _factor(profile.profit_own_forces)
    return MaterialStages(
        growth=growth,
        contingency=contingency,
        overhead_own=overhead_own,
        general_costs=general_costs,
        profit=profit,
    )


def subcontract_material_cascade(base: Decimal, profile: MarkupProfile) -> SubcontractStages:
    # Subcontract materials ride the subcontract works percentages.
    return subcontract_work_cascade(base, profile)


_PIPELINES: Dict[CostVariant, Callable[[Decimal, MarkupProfile], Stages]] = {
    CostVariant.WORK: work_cascade,
    CostVariant.SUBCONTRACT_WORK: subcontract_work_cascade,
    CostVariant.MAIN_MATERIAL: material_cascade,
    CostVariant.AUXILIARY_MATERIAL: material_cascade,
    CostVariant.MAIN_SUBCONTRACT_MATERIAL: subcontract_material_cascade,
    CostVariant.AUXILIARY_SUBCONTRACT_MATERIAL: subcontract_material_cascade,
}


@dataclass(frozen=True)
class CascadeResult:
    variant: CostVariant
    base: Decimal
    commercial_cost: Decimal
    stages: Optional[Stages] = None

    @property
    def markup(self) -> Decimal:
        return self.commercial_cost - self.base if self.stages is not None else ZERO

    @property
    def markup_coefficient(self) -> Optional[Decimal]:
        return markup_coefficient(self.commercial_cost, self.base)


def calculate(variant: CostVariant, base: object, profile: Optional[MarkupProfile]) -> CascadeResult:
    """Run the pipeline for ``variant`` over ``base``."""

    if profile is None:
        raise PreconditionError("Markup profile is not loaded; commercial cost cannot be calculated")
    variant = CostVariant(variant)
    amount = to_decimal(base)
    if amount <= 0:
        return CascadeResult(variant=variant, base=amount, commercial_cost=ZERO)
    stages = _PIPELINES[variant](amount, profile)
    return CascadeResult(variant=variant, base=amount, commercial_cost=stages.commercial_cost, stages=stages)


def commercial_cost(variant: CostVariant, base: object, profile: Optional[MarkupProfile]) -> Decimal:
    return calculate(variant, base, profile).commercial_cost


def markup_coefficient(commercial: Decimal, base: Decimal) -> Optional[Decimal]:
    if base <= 0:
        return None
    return commercial / base


__all__ = [
    "CostVariant",
    "classify",
    "classify_item",
    "WorkStages",
    "SubcontractStages",
    "MaterialStages",
    "CascadeResult",
    "work_cascade",
    "subcontract_work_cascade",
    "material_cascade",
    "subcontract_material_cascade",
    "calculate",
    "commercial_cost",
    "markup_coefficient",
]
