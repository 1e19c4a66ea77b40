from __future__ import annotations

from decimal import Decimal
from typing import Callable, Iterable, Optional, Set

import pytest

from tendercost.errors import StoreError
from tendercost.models import CostCategory, DetailCostCategory, ItemKind, LineItem, MaterialSubtype, WorkLink
from tendercost.profile import MarkupProfile
from tendercost.store import InMemoryCostStore

TENDER_ID = "T-1"


@pytest.fixture
def profile_factory() -> Callable[..., MarkupProfile]:
    """Profile with every percentage zeroed unless overridden."""

    def _create(**overrides: object) -> MarkupProfile:
        values = {
            "mechanization_service": 0,
            "mbp_gsm": 0,
            "warranty_period": 0,
            "works_16_markup": 0,
            "works_cost_growth": 0,
            "materials_cost_growth": 0,
            "subcontract_works_cost_growth": 0,
            "subcontract_materials_cost_growth": 0,
            "contingency_costs": 0,
            "overhead_own_forces": 0,
            "overhead_subcontract": 0,
            "general_costs_without_subcontract": 0,
            "profit_own_forces": 0,
            "profit_subcontract": 0,
        }
        values.update(overrides)
        return MarkupProfile(tender_id=TENDER_ID, **values)

    return _create


@pytest.fixture
def scenario_profile(profile_factory) -> MarkupProfile:
    return profile_factory(
        works_16_markup=60,
        works_cost_growth=5,
        materials_cost_growth=3,
        contingency_costs=2,
        overhead_own_forces=8,
        general_costs_without_subcontract=5,
        profit_own_forces=12,
        subcontract_works_cost_growth=10,
        overhead_subcontract=10,
        profit_subcontract=10,
    )


@pytest.fixture
def item_factory() -> Callable[..., LineItem]:
    counter = {"n": 0}

    def _create(kind: ItemKind = ItemKind.WORK, **fields: object) -> LineItem:
        counter["n"] += 1
        fields.setdefault("id", f"item-{counter['n']}")
        fields.setdefault("tender_id", TENDER_ID)
        fields.setdefault("position_id", "P-1")
        return LineItem(item_kind=kind, **fields)

    return _create


@pytest.fixture
def categories() -> list:
    return [
        CostCategory(
            id="CAT-A",
            name="Earthworks",
            details=(
                DetailCostCategory(id="D-A1", category_id="CAT-A", name="Excavation"),
                DetailCostCategory(id="D-A2", category_id="CAT-A", name="Backfill"),
            ),
        ),
        CostCategory(
            id="CAT-B",
            name="Finishing",
            details=(
                DetailCostCategory(id="D-B1", category_id="CAT-B", name="Plaster"),
                DetailCostCategory(id="D-B2", category_id="CAT-B", name="Paint"),
            ),
        ),
    ]


@pytest.fixture
def seeded_store(categories, scenario_profile) -> InMemoryCostStore:
    """Two positions with priced items spread over both categories."""

    items = [
        LineItem(id="w1", tender_id=TENDER_ID, position_id="P-1", item_kind=ItemKind.WORK,
                 category_detail_id="D-A1", quantity=10, unit_rate=100, commercial_cost=Decimal("2000")),
        LineItem(id="m1", tender_id=TENDER_ID, position_id="P-1", item_kind=ItemKind.MATERIAL,
                 category_detail_id="D-A2", quantity=5, unit_rate=40,
                 work_link=WorkLink(work_item_id="w1", consumption_coefficient=Decimal("0.5")),
                 commercial_cost=Decimal("300")),
        LineItem(id="w2", tender_id=TENDER_ID, position_id="P-2", item_kind=ItemKind.WORK,
                 category_detail_id="D-B1", quantity=4, unit_rate=250, commercial_cost=Decimal("1000")),
        LineItem(id="s2", tender_id=TENDER_ID, position_id="P-2", item_kind=ItemKind.SUBCONTRACT_WORK,
                 category_detail_id="D-B2", quantity=1, unit_rate=600, commercial_cost=Decimal("3000")),
        LineItem(id="a2", tender_id=TENDER_ID, position_id="P-2", item_kind=ItemKind.MATERIAL,
                 material_subtype=MaterialSubtype.AUXILIARY, category_detail_id="D-B2",
                 quantity=2, unit_rate=10, commercial_cost=Decimal("0")),
    ]
    return InMemoryCostStore(items=items, categories=categories, profiles=[scenario_profile])


class FailingWritesStore(InMemoryCostStore):
    """In-memory store that rejects writes for selected item ids."""

    def __init__(self, items: Iterable[LineItem] = (), fail_for: Iterable[str] = (), **kwargs: object) -> None:
        super().__init__(items=items, **kwargs)
        self.fail_for: Set[str] = set(fail_for)

    def write_commercial_cost(
        self, item_id: str, commercial_cost: Decimal, markup_coefficient: Optional[Decimal]
    ) -> None:
        if item_id in self.fail_for:
            raise StoreError(f"Write rejected for item {item_id}")
        super().write_commercial_cost(item_id, commercial_cost, markup_coefficient)


@pytest.fixture
def failing_store_factory() -> Callable[..., FailingWritesStore]:
    return FailingWritesStore
