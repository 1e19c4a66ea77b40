"""Load and save a tender snapshot (JSON) into an :class:`InMemoryCostStore`."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Mapping

from jsonschema import Draft7Validator

from .errors import ValidationError
from .models import (
    CostCategory,
    DetailCostCategory,
    LineItem,
    RedistributionDetail,
    RedistributionRequest,
    to_decimal,
)
from .profile import MarkupProfile
from .store import InMemoryCostStore

LOGGER = logging.getLogger(__name__)

SNAPSHOT_SCHEMA = {
    "type": "object",
    "properties": {
        "categories": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id"],
                "properties": {"details": {"type": "array", "items": {"type": "object", "required": ["id"]}}},
            },
        },
        "profiles": {"type": "array", "items": {"type": "object", "required": ["tender_id"]}},
        "items": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "tender_id"],
                "anyOf": [{"required": ["item_kind"]}, {"required": ["item_type"]}],
            },
        },
        "redistributions": {
            "type": "array",
            "items": {"type": "object", "required": ["id", "tender_id", "name"]},
        },
    },
    "required": ["items"],
}


def _validate(raw: object) -> None:
    errors = sorted(Draft7Validator(SNAPSHOT_SCHEMA).iter_errors(raw), key=lambda e: list(e.path))
    if errors:
        first = errors[0]
        location = "/".join(map(str, first.path)) or "<root>"
        raise ValidationError(f"Invalid snapshot at {location}: {first.message}")


def _category(raw: Mapping[str, object]) -> CostCategory:
    details = tuple(
        DetailCostCategory(
            id=str(detail["id"]),
            category_id=str(raw["id"]),
            name=str(detail.get("name") or ""),
            location=str(detail.get("location") or ""),
        )
        for detail in raw.get("details") or []
    )
    return CostCategory(id=str(raw["id"]), name=str(raw.get("name") or ""), details=details)


def _redistribution(raw: Mapping[str, object]) -> tuple[RedistributionRequest, List[RedistributionDetail]]:
    request = RedistributionRequest(
        id=str(raw["id"]),
        tender_id=str(raw["tender_id"]),
        name=str(raw["name"]),
        is_active=bool(raw.get("is_active", False)),
        source_withdrawals={str(k): to_decimal(v) for k, v in (raw.get("source_withdrawals") or {}).items()},
        target_category_ids=frozenset(str(t) for t in raw.get("target_category_ids") or []),
        description=raw.get("description"),
        created_at=raw.get("created_at"),
        updated_at=raw.get("updated_at"),
    )
    details = [
        RedistributionDetail(
            id=str(detail.get("id") or f"{request.id}:{detail['item_id']}"),
            redistribution_id=request.id,
            item_id=str(detail["item_id"]),
            original_commercial_cost=to_decimal(detail.get("original_commercial_cost")),
            redistributed_commercial_cost=to_decimal(detail.get("redistributed_commercial_cost")),
        )
        for detail in raw.get("details") or []
    ]
    return request, details


def load_snapshot(path: Path) -> InMemoryCostStore:
    """Read ``path`` and return a store seeded with its contents."""

    with path.open("r", encoding="utf-8") as f:
        raw = json.load(f)
    _validate(raw)

    store = InMemoryCostStore(
        items=[LineItem.from_dict(row) for row in raw.get("items", [])],
        categories=[_category(row) for row in raw.get("categories", [])],
        profiles=[MarkupProfile.from_dict(row) for row in raw.get("profiles", [])],
    )
    for row in raw.get("redistributions", []):
        request, details = _redistribution(row)
        store.add_redistribution(request, details)
    LOGGER.info(
        "Loaded snapshot %s: %d item(s), %d categor(ies)",
        path,
        len(raw.get("items", [])),
        len(raw.get("categories", [])),
    )
    return store


def dump_snapshot(store: InMemoryCostStore) -> Dict[str, object]:
    categories = [
        {
            "id": category.id,
            "name": category.name,
            "details": [{"id": d.id, "name": d.name, "location": d.location} for d in category.details],
        }
        for category in store.fetch_cost_category_tree()
    ]
    items = store.fetch_line_items()
    tender_ids = sorted({item.tender_id for item in items})
    profiles = [
        profile.to_dict()
        for profile in (store.fetch_markup_profile(tender_id) for tender_id in tender_ids)
        if profile is not None
    ]
    redistributions = []
    for tender_id in tender_ids:
        for request in store.fetch_redistributions(tender_id):
            redistributions.append(
                {
                    "id": request.id,
                    "tender_id": request.tender_id,
                    "name": request.name,
                    "is_active": request.is_active,
                    "description": request.description,
                    "created_at": request.created_at,
                    "updated_at": request.updated_at,
                    "source_withdrawals": {k: str(v) for k, v in request.source_withdrawals.items()},
                    "target_category_ids": sorted(request.target_category_ids),
                    "details": [
                        {
                            "id": d.id,
                            "item_id": d.item_id,
                            "original_commercial_cost": str(d.original_commercial_cost),
                            "redistributed_commercial_cost": str(d.redistributed_commercial_cost),
                        }
                        for d in store.fetch_redistribution_details(request.id)
                    ],
                }
            )
    return {
        "categories": categories,
        "profiles": profiles,
        "items": [item.to_dict() for item in items],
        "redistributions": redistributions,
    }


def save_snapshot(store: InMemoryCostStore, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(dump_snapshot(store), f, indent=2, sort_keys=True)


__all__ = ["SNAPSHOT_SCHEMA", "load_snapshot", "dump_snapshot", "save_snapshot"]
