from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(value: object | None, default: Decimal = ZERO) -> Decimal:
    """Coerce numbers and numeric strings to :class:`~decimal.Decimal`.

    Floats are routed through ``str`` so ``1.03`` becomes ``Decimal("1.03")``
    rather than its binary expansion. ``None`` and blank strings map to
    ``default``.
    """

    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, int):
        return Decimal(value)
    text = str(value).replace(",", "").replace(" ", "").strip()
    if not text:
        return default
    try:
        result = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"Not a numeric value: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a finite value: {value!r}")
    return result


def _optional_decimal(value: object | None) -> Optional[Decimal]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_decimal(value)


class ItemKind(str, Enum):
    WORK = "work"
    SUBCONTRACT_WORK = "sub_work"
    MATERIAL = "material"
    SUBCONTRACT_MATERIAL = "sub_material"

    @property
    def is_material(self) -> bool:
        return self in (ItemKind.MATERIAL, ItemKind.SUBCONTRACT_MATERIAL)

    @property
    def is_work(self) -> bool:
        return not self.is_material


class MaterialSubtype(str, Enum):
    MAIN = "main"
    AUXILIARY = "auxiliary"


class DeliveryMode(str, Enum):
    INCLUDED = "included"
    NOT_INCLUDED = "not_included"
    FIXED_AMOUNT = "amount"


@dataclass(frozen=True)
class WorkLink:
    """Link from a material line item to the work item that drives its quantity."""

    work_item_id: str
    work_kind: ItemKind = ItemKind.WORK
    consumption_coefficient: Optional[Decimal] = None
    conversion_coefficient: Optional[Decimal] = None

    @property
    def consumption(self) -> Decimal:
        # unset and zero coefficients both mean "no scaling"
        return self.consumption_coefficient or ONE

    @property
    def conversion(self) -> Decimal:
        return self.conversion_coefficient or ONE


@dataclass(frozen=True)
class LineItem:
    """One bill-of-quantities entry of a tender."""

    id: str
    tender_id: str
    item_kind: ItemKind
    quantity: Decimal = ZERO
    unit_rate: Decimal = ZERO
    position_id: Optional[str] = None
    category_detail_id: Optional[str] = None
    material_subtype: Optional[MaterialSubtype] = None
    currency_multiplier: Decimal = ONE
    delivery_mode: DeliveryMode = DeliveryMode.INCLUDED
    delivery_amount_per_unit: Decimal = ZERO
    work_link: Optional[WorkLink] = None
    commercial_cost: Decimal = ZERO
    markup_coefficient: Optional[Decimal] = None
    description: str = ""

    def __post_init__(self) -> None:
        kind = ItemKind(self.item_kind)
        object.__setattr__(self, "item_kind", kind)
        if kind.is_material:
            subtype = MaterialSubtype(self.material_subtype or MaterialSubtype.MAIN)
        else:
            subtype = None
        object.__setattr__(self, "material_subtype", subtype)
        object.__setattr__(self, "delivery_mode", DeliveryMode(self.delivery_mode or DeliveryMode.INCLUDED))
        for name in ("quantity", "unit_rate", "delivery_amount_per_unit", "commercial_cost"):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        object.__setattr__(self, "currency_multiplier", to_decimal(self.currency_multiplier, ONE))
        object.__setattr__(self, "markup_coefficient", _optional_decimal(self.markup_coefficient))

    @property
    def is_auxiliary(self) -> bool:
        return self.material_subtype is MaterialSubtype.AUXILIARY

    def with_commercial(self, commercial_cost: Decimal, markup_coefficient: Optional[Decimal]) -> "LineItem":
        return replace(self, commercial_cost=commercial_cost, markup_coefficient=markup_coefficient)

    @classmethod
    def from_dict(cls, raw: Mapping[str, object]) -> "LineItem":
        """Build an item from a row using either our field names or the store's column names."""

        kind = ItemKind(raw.get("item_kind") or raw.get("item_type"))
        subtype = raw.get("material_subtype") or raw.get("material_type")
        multiplier = raw.get("currency_multiplier")
        if multiplier is None:
            currency_type = str(raw.get("currency_type") or "RUB").upper()
            multiplier = raw.get("currency_rate") if currency_type != "RUB" else None

        link_raw = raw.get("work_link")
        work_link = None
        if isinstance(link_raw, Mapping):
            work_link = _work_link_from_dict(link_raw, raw)

        return cls(
            id=str(raw["id"]),
            tender_id=str(raw["tender_id"]),
            item_kind=kind,
            quantity=to_decimal(raw.get("quantity")),
            unit_rate=to_decimal(raw.get("unit_rate")),
            position_id=_optional_str(raw.get("position_id", raw.get("client_position_id"))),
            category_detail_id=_optional_str(
                raw.get("category_detail_id", raw.get("detail_cost_category_id"))
            ),
            material_subtype=MaterialSubtype(subtype) if subtype and kind.is_material else None,
            currency_multiplier=to_decimal(multiplier, ONE),
            delivery_mode=DeliveryMode(raw.get("delivery_mode") or raw.get("delivery_price_type") or "included"),
            delivery_amount_per_unit=to_decimal(
                raw.get("delivery_amount_per_unit", raw.get("delivery_amount"))
            ),
            work_link=work_link,
            commercial_cost=to_decimal(raw.get("commercial_cost")),
            markup_coefficient=_optional_decimal(
                raw.get("markup_coefficient", raw.get("commercial_markup_coefficient"))
            ),
            description=str(raw.get("description") or ""),
        )

    def to_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {
            "id": self.id,
            "tender_id": self.tender_id,
            "position_id": self.position_id,
            "category_detail_id": self.category_detail_id,
            "item_kind": self.item_kind.value,
            "material_subtype": self.material_subtype.value if self.material_subtype else None,
            "quantity": str(self.quantity),
            "unit_rate": str(self.unit_rate),
            "currency_multiplier": str(self.currency_multiplier),
            "delivery_mode": self.delivery_mode.value,
            "delivery_amount_per_unit": str(self.delivery_amount_per_unit),
            "commercial_cost": str(self.commercial_cost),
            "markup_coefficient": (
                str(self.markup_coefficient) if self.markup_coefficient is not None else None
            ),
            "description": self.description,
        }
        if self.work_link:
            data["work_link"] = {
                "work_item_id": self.work_link.work_item_id,
                "work_kind": self.work_link.work_kind.value,
                "consumption_coefficient": _str_or_none(self.work_link.consumption_coefficient),
                "conversion_coefficient": _str_or_none(self.work_link.conversion_coefficient),
            }
        return data


def _work_link_from_dict(link: Mapping[str, object], item: Mapping[str, object]) -> Optional[WorkLink]:
    if link.get("work_item_id"):
        work_id = str(link["work_item_id"])
        work_kind = ItemKind(link.get("work_kind") or ItemKind.WORK)
    elif link.get("work_boq_item_id"):
        work_id, work_kind = str(link["work_boq_item_id"]), ItemKind.WORK
    elif link.get("sub_work_boq_item_id"):
        work_id, work_kind = str(link["sub_work_boq_item_id"]), ItemKind.SUBCONTRACT_WORK
    else:
        return None
    # item-level coefficients take precedence over the link's defaults
    consumption = item.get("consumption_coefficient") or link.get("consumption_coefficient") or link.get(
        "material_quantity_per_work"
    )
    conversion = item.get("conversion_coefficient") or link.get("conversion_coefficient") or link.get(
        "usage_coefficient"
    )
    return WorkLink(
        work_item_id=work_id,
        work_kind=work_kind,
        consumption_coefficient=_optional_decimal(consumption),
        conversion_coefficient=_optional_decimal(conversion),
    )


def _optional_str(value: object | None) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _str_or_none(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


@dataclass(frozen=True)
class DetailCostCategory:
    """Leaf of the cost-category hierarchy; line items are tagged with one."""

    id: str
    category_id: str
    name: str = ""
    location: str = ""


@dataclass(frozen=True)
class CostCategory:
    id: str
    name: str = ""
    details: Tuple[DetailCostCategory, ...] = ()

    @property
    def detail_ids(self) -> Tuple[str, ...]:
        return tuple(detail.id for detail in self.details)


@dataclass(frozen=True)
class RedistributionRequest:
    """Operator-issued shift of works cost from source to target detail categories."""

    id: str
    tender_id: str
    name: str
    is_active: bool = False
    source_withdrawals: Mapping[str, Decimal] = field(default_factory=dict)
    target_category_ids: FrozenSet[str] = frozenset()
    description: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class RedistributionDetail:
    """Audit row: one affected line item of a redistribution."""

    id: str
    redistribution_id: str
    item_id: str
    original_commercial_cost: Decimal
    redistributed_commercial_cost: Decimal

    @property
    def adjustment_amount(self) -> Decimal:
        return self.redistributed_commercial_cost - self.original_commercial_cost


__all__ = [
    "ZERO",
    "ONE",
    "HUNDRED",
    "to_decimal",
    "ItemKind",
    "MaterialSubtype",
    "DeliveryMode",
    "WorkLink",
    "LineItem",
    "DetailCostCategory",
    "CostCategory",
    "RedistributionRequest",
    "RedistributionDetail",
]
