"""Per-tender markup profile: the percentages that drive every cascade."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields, replace
from decimal import Decimal
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml
from jsonschema import Draft7Validator

from .errors import ValidationError
from .models import to_decimal

LOGGER = logging.getLogger(__name__)

PERCENT_FIELDS = (
    "mechanization_service",
    "mbp_gsm",
    "warranty_period",
    "works_16_markup",
    "works_cost_growth",
    "materials_cost_growth",
    "subcontract_works_cost_growth",
    "subcontract_materials_cost_growth",
    "contingency_costs",
    "overhead_own_forces",
    "overhead_subcontract",
    "general_costs_without_subcontract",
    "profit_own_forces",
    "profit_subcontract",
)

DEFAULT_MARKUP_PERCENTAGES: Dict[str, Decimal] = {
    "works_16_markup": Decimal("60"),
    "mechanization_service": Decimal("0"),
    "mbp_gsm": Decimal("0"),
    "warranty_period": Decimal("0"),
    "works_cost_growth": Decimal("10"),
    "materials_cost_growth": Decimal("10"),
    "subcontract_works_cost_growth": Decimal("10"),
    "subcontract_materials_cost_growth": Decimal("10"),
    "contingency_costs": Decimal("3"),
    "overhead_own_forces": Decimal("10"),
    "overhead_subcontract": Decimal("10"),
    "general_costs_without_subcontract": Decimal("20"),
    "profit_own_forces": Decimal("10"),
    "profit_subcontract": Decimal("16"),
}

_NUMERIC = {"type": ["number", "string", "null"], "pattern": r"^\s*[0-9]+([.,][0-9]+)?\s*$"}

PROFILE_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": ["string", "null"]},
        "tender_id": {"type": ["string", "null"]},
        "is_active": {"type": "boolean"},
        "notes": {"type": ["string", "null"]},
        **{name: dict(_NUMERIC, minimum=0) for name in PERCENT_FIELDS},
    },
}


@dataclass(frozen=True)
class MarkupProfile:
    """One tender's active set of markup percentages.

    Every percentage is applied either as a ``(1 + p/100)`` multiplier or as a
    ``base * p/100`` addition by :mod:`tendercost.cascade`.
    """

    tender_id: Optional[str] = None
    mechanization_service: Decimal = DEFAULT_MARKUP_PERCENTAGES["mechanization_service"]
    mbp_gsm: Decimal = DEFAULT_MARKUP_PERCENTAGES["mbp_gsm"]
    warranty_period: Decimal = DEFAULT_MARKUP_PERCENTAGES["warranty_period"]
    works_16_markup: Decimal = DEFAULT_MARKUP_PERCENTAGES["works_16_markup"]
    works_cost_growth: Decimal = DEFAULT_MARKUP_PERCENTAGES["works_cost_growth"]
    materials_cost_growth: Decimal = DEFAULT_MARKUP_PERCENTAGES["materials_cost_growth"]
    subcontract_works_cost_growth: Decimal = DEFAULT_MARKUP_PERCENTAGES["subcontract_works_cost_growth"]
    subcontract_materials_cost_growth: Decimal = DEFAULT_MARKUP_PERCENTAGES["subcontract_materials_cost_growth"]
    contingency_costs: Decimal = DEFAULT_MARKUP_PERCENTAGES["contingency_costs"]
    overhead_own_forces: Decimal = DEFAULT_MARKUP_PERCENTAGES["overhead_own_forces"]
    overhead_subcontract: Decimal = DEFAULT_MARKUP_PERCENTAGES["overhead_subcontract"]
    general_costs_without_subcontract: Decimal = DEFAULT_MARKUP_PERCENTAGES["general_costs_without_subcontract"]
    profit_own_forces: Decimal = DEFAULT_MARKUP_PERCENTAGES["profit_own_forces"]
    profit_subcontract: Decimal = DEFAULT_MARKUP_PERCENTAGES["profit_subcontract"]
    id: Optional[str] = None
    is_active: bool = True
    notes: str = ""

    def __post_init__(self) -> None:
        for name in PERCENT_FIELDS:
            object.__setattr__(self, name, to_decimal(getattr(self, name)))

    @classmethod
    def default(cls, tender_id: Optional[str] = None) -> "MarkupProfile":
        return cls(tender_id=tender_id)

    @classmethod
    def load(cls, path: Path) -> "MarkupProfile":
        """Load a profile from a YAML or JSON file."""

        if not path.exists():
            raise FileNotFoundError(f"Markup profile not found: {path}")
        with path.open("r", encoding="utf-8") as f:
            if path.suffix.lower() in {".yaml", ".yml"}:
                raw = yaml.safe_load(f)
            else:
                raw = json.load(f)
        return cls.from_dict(raw or {})

    @classmethod
    def from_dict(cls, raw: Mapping[str, object]) -> "MarkupProfile":
        """Build a profile from a store row; missing percentages take the defaults."""

        errors = sorted(Draft7Validator(PROFILE_SCHEMA).iter_errors(dict(raw)), key=lambda e: list(e.path))
        if errors:
            messages = "; ".join(f"{'/'.join(map(str, e.path)) or '<root>'}: {e.message}" for e in errors)
            raise ValidationError(f"Invalid markup profile: {messages}")

        known = {f.name for f in fields(cls)}
        ignored = sorted(set(raw) - known - {"created_at", "updated_at"})
        if ignored:
            LOGGER.debug("Ignoring unknown markup profile keys: %s", ", ".join(ignored))

        values: Dict[str, object] = {}
        for name in PERCENT_FIELDS:
            value = raw.get(name)
            if isinstance(value, str):
                value = value.replace(",", ".")
            values[name] = to_decimal(value, DEFAULT_MARKUP_PERCENTAGES[name])
        return cls(
            tender_id=_text(raw.get("tender_id")),
            id=_text(raw.get("id")),
            is_active=bool(raw.get("is_active", True)),
            notes=str(raw.get("notes") or ""),
            **values,
        )

    def to_dict(self) -> Dict[str, object]:
        data: Dict[str, object] = {
            "id": self.id,
            "tender_id": self.tender_id,
            "is_active": self.is_active,
            "notes": self.notes,
        }
        for name in PERCENT_FIELDS:
            data[name] = str(getattr(self, name))
        return data

    def with_updates(self, **changes: object) -> "MarkupProfile":
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ValidationError(f"Unknown markup fields: {', '.join(sorted(unknown))}")
        for name, value in changes.items():
            if name in PERCENT_FIELDS and to_decimal(value) < 0:
                raise ValidationError(f"{name} must not be negative")
        return replace(self, **changes)

    def percentages(self) -> Dict[str, Decimal]:
        return {name: getattr(self, name) for name in PERCENT_FIELDS}


def _text(value: object | None) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


__all__ = ["MarkupProfile", "DEFAULT_MARKUP_PERCENTAGES", "PERCENT_FIELDS", "PROFILE_SCHEMA"]
