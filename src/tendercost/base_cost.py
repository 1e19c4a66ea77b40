"""
Resolve the pre-markup monetary base of a line item.

Linked materials take their quantity from the work item they are attached to;
material kinds may carry a per-unit delivery surcharge. There is exactly one
delivery rule: ``FIXED_AMOUNT`` and ``NOT_INCLUDED`` both add
``delivery_amount_per_unit * quantity`` when the per-unit amount is positive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from .models import ZERO, DeliveryMode, LineItem

logger = logging.getLogger(__name__)

_SURCHARGED_MODES = frozenset({DeliveryMode.FIXED_AMOUNT, DeliveryMode.NOT_INCLUDED})


@dataclass(frozen=True)
class BaseCost:
    quantity: Decimal
    goods: Decimal
    delivery: Decimal

    @property
    def amount(self) -> Decimal:
        return self.goods + self.delivery


def find_linked_work(item: LineItem, siblings: Iterable[LineItem]) -> Optional[LineItem]:
    """Return the work item ``item`` is linked to, matching both id and kind."""

    link = item.work_link
    if link is None:
        return None
    for candidate in siblings:
        if candidate.id == link.work_item_id and candidate.item_kind is link.work_kind:
            return candidate
    return None


def resolve_quantity(item: LineItem, siblings: Iterable[LineItem] = ()) -> Decimal:
    if not item.item_kind.is_material or item.work_link is None:
        return item.quantity
    work = find_linked_work(item, siblings)
    if work is None:
        logger.debug(
            "Linked work %s not found for material %s; using own quantity %s",
            item.work_link.work_item_id,
            item.id,
            item.quantity,
        )
        return item.quantity
    return work.quantity * item.work_link.consumption * item.work_link.conversion


def resolve_base_cost(item: LineItem, siblings: Iterable[LineItem] = ()) -> BaseCost:
    quantity = resolve_quantity(item, siblings)
    goods = quantity * item.unit_rate * item.currency_multiplier
    delivery = ZERO
    if (
        item.item_kind.is_material
        and item.delivery_mode in _SURCHARGED_MODES
        and item.delivery_amount_per_unit > 0
    ):
        delivery = item.delivery_amount_per_unit * quantity
    return BaseCost(quantity=quantity, goods=goods, delivery=delivery)


def base_cost(item: LineItem, siblings: Iterable[LineItem] = ()) -> Decimal:
    return resolve_base_cost(item, siblings).amount


__all__ = ["BaseCost", "find_linked_work", "resolve_quantity", "resolve_base_cost", "base_cost"]
