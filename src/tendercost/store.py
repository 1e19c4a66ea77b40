"""
Persistence boundary for line items, markup profiles, categories and redistributions.

:class:`CostStore` is the contract the engine and the coordinator rely on.
:class:`InMemoryCostStore` implements it in process, including the server-side
proportional reallocation that a relational deployment runs as a stored
procedure.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from . import attribution
from .base_cost import base_cost
from .engine import group_by_position
from .errors import NotFoundError, StoreError, ValidationError
from .models import (
    HUNDRED,
    ZERO,
    CostCategory,
    LineItem,
    RedistributionDetail,
    RedistributionRequest,
)
from .profile import MarkupProfile

logger = logging.getLogger(__name__)

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
NO_TARGET_WORKS_MESSAGE = "No target items found or total target works cost is zero"


class CostStore(Protocol):
    def fetch_line_items(
        self, tender_id: Optional[str] = None, position_id: Optional[str] = None
    ) -> List[LineItem]: ...

    def fetch_markup_profile(self, tender_id: str) -> Optional[MarkupProfile]: ...

    def fetch_cost_category_tree(self, tender_id: Optional[str] = None) -> List[CostCategory]: ...

    def write_commercial_cost(
        self, item_id: str, commercial_cost: Decimal, markup_coefficient: Optional[Decimal]
    ) -> None: ...

    def expand_category_to_detail_ids(self, category_id: str) -> List[str]: ...

    def submit_redistribution(
        self,
        tender_id: str,
        name: str,
        withdrawals: Mapping[str, Decimal],
        targets: FrozenSet[str],
        description: Optional[str] = None,
    ) -> str: ...

    def fetch_active_redistribution(self, tender_id: str) -> Optional[RedistributionRequest]: ...

    def fetch_redistribution(self, request_id: str) -> RedistributionRequest: ...

    def fetch_redistributions(self, tender_id: str) -> List[RedistributionRequest]: ...

    def fetch_redistribution_details(self, request_id: str) -> List[RedistributionDetail]: ...

    def activate_redistribution(self, request_id: str, tender_id: str) -> None: ...

    def deactivate_redistribution(self, request_id: str) -> None: ...

    def delete_redistribution(self, request_id: str) -> None: ...


def _now() -> str:
    return datetime.now().astimezone().strftime(ISO_FORMAT)


def item_works_portion(item: LineItem, siblings: Iterable[LineItem] = ()) -> Decimal:
    """Works portion of the item's stored commercial cost."""

    return attribution.works_portion(
        item.item_kind, item.material_subtype, item.commercial_cost, base_cost(item, siblings)
    )


class InMemoryCostStore:
    """Thread-safe, dictionary-backed :class:`CostStore`."""

    def __init__(
        self,
        items: Iterable[LineItem] = (),
        categories: Iterable[CostCategory] = (),
        profiles: Iterable[MarkupProfile] = (),
    ) -> None:
        self._lock = threading.RLock()
        self._items: Dict[str, LineItem] = OrderedDict()
        self._categories: Dict[str, CostCategory] = OrderedDict()
        self._profiles: Dict[str, List[MarkupProfile]] = {}
        self._requests: Dict[str, RedistributionRequest] = OrderedDict()
        self._details: Dict[str, List[RedistributionDetail]] = {}
        for item in items:
            self.add_item(item)
        for category in categories:
            self.add_category(category)
        for profile in profiles:
            self.save_markup_profile(profile)

    # -- seeding -----------------------------------------------------------

    def add_item(self, item: LineItem) -> None:
        with self._lock:
            self._items[item.id] = item

    def add_category(self, category: CostCategory) -> None:
        with self._lock:
            self._categories[category.id] = category

    def save_markup_profile(self, profile: MarkupProfile) -> MarkupProfile:
        """Store ``profile``; an active profile deactivates the tender's other profiles."""

        if not profile.tender_id:
            raise ValidationError("Markup profile must belong to a tender")
        with self._lock:
            if profile.id is None:
                profile = replace(profile, id=str(uuid.uuid4()))
            existing = [p for p in self._profiles.get(profile.tender_id, []) if p.id != profile.id]
            if profile.is_active:
                existing = [replace(p, is_active=False) for p in existing]
            self._profiles[profile.tender_id] = existing + [profile]
            return profile

    def create_default_markup_profile(self, tender_id: str) -> MarkupProfile:
        logger.info("Creating default markup profile for tender %s", tender_id)
        return self.save_markup_profile(MarkupProfile.default(tender_id))

    def add_redistribution(
        self, request: RedistributionRequest, details: Sequence[RedistributionDetail] = ()
    ) -> None:
        with self._lock:
            self._requests[request.id] = request
            self._details[request.id] = list(details)

    # -- reads -------------------------------------------------------------

    def fetch_line_items(
        self, tender_id: Optional[str] = None, position_id: Optional[str] = None
    ) -> List[LineItem]:
        with self._lock:
            items = list(self._items.values())
        if tender_id is not None:
            items = [item for item in items if item.tender_id == tender_id]
        if position_id is not None:
            items = [item for item in items if item.position_id == position_id]
        return items

    def fetch_line_item(self, item_id: str) -> LineItem:
        with self._lock:
            try:
                return self._items[item_id]
            except KeyError:
                raise NotFoundError(f"Line item {item_id} not found") from None

    def fetch_markup_profile(self, tender_id: str) -> Optional[MarkupProfile]:
        with self._lock:
            for profile in self._profiles.get(tender_id, []):
                if profile.is_active:
                    return profile
        return None

    def fetch_cost_category_tree(self, tender_id: Optional[str] = None) -> List[CostCategory]:
        with self._lock:
            return list(self._categories.values())

    def expand_category_to_detail_ids(self, category_id: str) -> List[str]:
        with self._lock:
            category = self._categories.get(category_id)
        if category is None:
            raise NotFoundError(f"Cost category {category_id} not found")
        return list(category.detail_ids)

    def fetch_active_redistribution(self, tender_id: str) -> Optional[RedistributionRequest]:
        with self._lock:
            for request in self._requests.values():
                if request.tender_id == tender_id and request.is_active:
                    return request
        return None

    def fetch_redistribution(self, request_id: str) -> RedistributionRequest:
        with self._lock:
            return self._require_request(request_id)

    def fetch_redistributions(self, tender_id: str) -> List[RedistributionRequest]:
        with self._lock:
            return [r for r in self._requests.values() if r.tender_id == tender_id]

    def fetch_redistribution_details(self, request_id: str) -> List[RedistributionDetail]:
        with self._lock:
            self._require_request(request_id)
            return list(self._details.get(request_id, []))

    # -- writes ------------------------------------------------------------

    def write_commercial_cost(
        self, item_id: str, commercial_cost: Decimal, markup_coefficient: Optional[Decimal]
    ) -> None:
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                raise StoreError(f"Line item {item_id} not found")
            self._items[item_id] = item.with_commercial(commercial_cost, markup_coefficient)

    def submit_redistribution(
        self,
        tender_id: str,
        name: str,
        withdrawals: Mapping[str, Decimal],
        targets: FrozenSet[str],
        description: Optional[str] = None,
    ) -> str:
        """Create an active redistribution and its per-item detail rows.

        Each source item gives up ``percent`` of its works portion; the pooled
        amount is spread over target items in proportion to their works
        portions. Runs as one locked section, so either the request, its details
        and the sibling deactivation are all recorded or nothing is.
        """

        overlap = set(withdrawals) & set(targets)
        if overlap:
            raise ValidationError(f"Categories cannot be both source and target: {', '.join(sorted(overlap))}")
        with self._lock:
            items = self.fetch_line_items(tender_id=tender_id)
            siblings = group_by_position(items)
            sources = [i for i in items if i.category_detail_id in withdrawals and i.commercial_cost > 0]
            receivers = [i for i in items if i.category_detail_id in targets and i.commercial_cost > 0]

            withdrawn: List[Tuple[LineItem, Decimal]] = []
            for item in sources:
                works = item_works_portion(item, siblings.get(item.position_id, ()))
                withdrawn.append((item, works * withdrawals[item.category_detail_id] / HUNDRED))
            total_withdrawn = sum((amount for _, amount in withdrawn), ZERO)

            target_works = [(i, item_works_portion(i, siblings.get(i.position_id, ()))) for i in receivers]
            target_total = sum((works for _, works in target_works), ZERO)
            if not target_works or target_total <= 0:
                raise ValidationError(NO_TARGET_WORKS_MESSAGE)

            request_id = str(uuid.uuid4())
            details: List[RedistributionDetail] = []
            for item, amount in withdrawn:
                details.append(self._detail(request_id, item, item.commercial_cost - amount))
            allocated_so_far = ZERO
            for index, (item, works) in enumerate(target_works):
                if index == len(target_works) - 1:
                    share = total_withdrawn - allocated_so_far
                else:
                    share = total_withdrawn * works / target_total
                allocated_so_far += share
                details.append(self._detail(request_id, item, item.commercial_cost + share))

            stamp = _now()
            self._deactivate_tender(tender_id)
            self._requests[request_id] = RedistributionRequest(
                id=request_id,
                tender_id=tender_id,
                name=name,
                is_active=True,
                source_withdrawals=dict(withdrawals),
                target_category_ids=frozenset(targets),
                description=description,
                created_at=stamp,
                updated_at=stamp,
            )
            self._details[request_id] = details
        logger.info(
            "Redistribution %s created: %d source item(s), %d target item(s), withdrawn=%s",
            request_id,
            len(withdrawn),
            len(target_works),
            total_withdrawn,
        )
        return request_id

    def activate_redistribution(self, request_id: str, tender_id: str) -> None:
        with self._lock:
            request = self._require_request(request_id)
            if request.tender_id != tender_id:
                raise NotFoundError(f"Redistribution {request_id} does not belong to tender {tender_id}")
            self._deactivate_tender(tender_id)
            self._requests[request_id] = replace(request, is_active=True, updated_at=_now())

    def deactivate_redistribution(self, request_id: str) -> None:
        with self._lock:
            request = self._require_request(request_id)
            self._requests[request_id] = replace(request, is_active=False, updated_at=_now())

    def delete_redistribution(self, request_id: str) -> None:
        with self._lock:
            self._require_request(request_id)
            del self._requests[request_id]
            self._details.pop(request_id, None)

    # -- helpers -----------------------------------------------------------

    def _require_request(self, request_id: str) -> RedistributionRequest:
        try:
            return self._requests[request_id]
        except KeyError:
            raise NotFoundError(f"Redistribution {request_id} not found") from None

    def _deactivate_tender(self, tender_id: str) -> None:
        for key, request in list(self._requests.items()):
            if request.tender_id == tender_id and request.is_active:
                self._requests[key] = replace(request, is_active=False, updated_at=_now())

    @staticmethod
    def _detail(request_id: str, item: LineItem, redistributed: Decimal) -> RedistributionDetail:
        return RedistributionDetail(
            id=str(uuid.uuid4()),
            redistribution_id=request_id,
            item_id=item.id,
            original_commercial_cost=item.commercial_cost,
            redistributed_commercial_cost=redistributed,
        )


__all__ = ["CostStore", "InMemoryCostStore", "item_works_portion", "NO_TARGET_WORKS_MESSAGE", "ISO_FORMAT"]
