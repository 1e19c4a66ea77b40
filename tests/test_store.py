from __future__ import annotations

from decimal import Decimal

import pytest

from tendercost.errors import NotFoundError, StoreError, ValidationError
from tendercost.profile import MarkupProfile
from tendercost.store import NO_TARGET_WORKS_MESSAGE, InMemoryCostStore, item_works_portion


def _by_item(store, request_id):
    return {detail.item_id: detail for detail in store.fetch_redistribution_details(request_id)}


def test_fetch_filters_by_tender_and_position(seeded_store):
    assert [i.id for i in seeded_store.fetch_line_items(tender_id="T-1", position_id="P-2")] == ["w2", "s2", "a2"]
    assert seeded_store.fetch_line_items(tender_id="other") == []
    with pytest.raises(NotFoundError):
        seeded_store.fetch_line_item("nope")


def test_expand_category(seeded_store):
    assert seeded_store.expand_category_to_detail_ids("CAT-B") == ["D-B1", "D-B2"]
    with pytest.raises(NotFoundError):
        seeded_store.expand_category_to_detail_ids("CAT-Z")


def test_saving_active_profile_deactivates_others():
    store = InMemoryCostStore()
    first = store.create_default_markup_profile("T-9")
    second = store.save_markup_profile(MarkupProfile(tender_id="T-9", profit_own_forces=20))
    active = store.fetch_markup_profile("T-9")
    assert active.id == second.id
    assert active.id != first.id
    assert active.profit_own_forces == Decimal("20")
    with pytest.raises(ValidationError):
        store.save_markup_profile(MarkupProfile())


def test_write_commercial_cost_for_unknown_item_fails(seeded_store):
    with pytest.raises(StoreError):
        seeded_store.write_commercial_cost("missing", Decimal("1"), None)


def test_works_portion_uses_position_siblings(seeded_store):
    position = seeded_store.fetch_line_items(position_id="P-1")
    material = seeded_store.fetch_line_item("m1")
    # base 10 * 0.5 * 40 = 200 stays in materials
    assert item_works_portion(material, position) == Decimal("100")


def test_submit_allocates_proportionally_to_target_works(seeded_store):
    request_id = seeded_store.submit_redistribution("T-1", "shift", {"D-A1": Decimal("10")}, frozenset({"D-B1", "D-B2"}))
    details = _by_item(seeded_store, request_id)

    assert set(details) == {"w1", "w2", "s2"}
    assert details["w1"].redistributed_commercial_cost == Decimal("1800")
    assert details["w2"].adjustment_amount == Decimal("50")
    assert details["s2"].adjustment_amount == Decimal("150")
    assert sum(d.adjustment_amount for d in details.values()) == 0

    request = seeded_store.fetch_redistribution(request_id)
    assert request.is_active
    assert request.created_at == request.updated_at


def test_material_sources_only_give_up_their_works_portion(seeded_store):
    request_id = seeded_store.submit_redistribution(
        "T-1", "shift", {"D-A1": Decimal("10"), "D-A2": Decimal("10")}, frozenset({"D-B1", "D-B2"})
    )
    details = _by_item(seeded_store, request_id)
    assert details["m1"].redistributed_commercial_cost == Decimal("290")
    assert details["w2"].adjustment_amount == Decimal("52.5")
    assert details["s2"].adjustment_amount == Decimal("157.5")


def test_zero_cost_items_are_not_targets(seeded_store):
    # a2 sits in D-B2 with a zero commercial cost
    request_id = seeded_store.submit_redistribution("T-1", "shift", {"D-A1": Decimal("10")}, frozenset({"D-B2"}))
    assert set(_by_item(seeded_store, request_id)) == {"w1", "s2"}


def test_remainder_lands_on_last_target(item_factory):
    items = [
        item_factory(category_detail_id="SRC", quantity=1, unit_rate=1, commercial_cost="100"),
        item_factory(category_detail_id="DST", quantity=1, unit_rate=1, commercial_cost="1"),
        item_factory(category_detail_id="DST", quantity=1, unit_rate=1, commercial_cost="1"),
        item_factory(category_detail_id="DST", quantity=1, unit_rate=1, commercial_cost="1"),
    ]
    store = InMemoryCostStore(items=items)
    request_id = store.submit_redistribution("T-1", "thirds", {"SRC": Decimal("10")}, frozenset({"DST"}))
    details = store.fetch_redistribution_details(request_id)
    assert sum((d.adjustment_amount for d in details), Decimal("0")) == 0


def test_no_target_works_is_rejected(seeded_store):
    with pytest.raises(ValidationError, match=NO_TARGET_WORKS_MESSAGE):
        seeded_store.submit_redistribution("T-1", "shift", {"D-A1": Decimal("10")}, frozenset({"D-UNKNOWN"}))
    assert seeded_store.fetch_redistributions("T-1") == []


def test_overlap_is_rejected_by_the_store(seeded_store):
    with pytest.raises(ValidationError):
        seeded_store.submit_redistribution("T-1", "shift", {"D-A1": Decimal("10")}, frozenset({"D-A1"}))


def test_only_one_active_request_per_tender(seeded_store):
    first = seeded_store.submit_redistribution("T-1", "one", {"D-A1": Decimal("10")}, frozenset({"D-B1"}))
    second = seeded_store.submit_redistribution("T-1", "two", {"D-A1": Decimal("20")}, frozenset({"D-B1"}))
    assert not seeded_store.fetch_redistribution(first).is_active
    assert seeded_store.fetch_active_redistribution("T-1").id == second

    seeded_store.activate_redistribution(first, "T-1")
    assert seeded_store.fetch_active_redistribution("T-1").id == first
    assert [r.id for r in seeded_store.fetch_redistributions("T-1") if r.is_active] == [first]

    with pytest.raises(NotFoundError):
        seeded_store.activate_redistribution(first, "T-2")

    seeded_store.deactivate_redistribution(first)
    assert seeded_store.fetch_active_redistribution("T-1") is None


def test_delete_removes_details(seeded_store):
    request_id = seeded_store.submit_redistribution("T-1", "one", {"D-A1": Decimal("10")}, frozenset({"D-B1"}))
    seeded_store.delete_redistribution(request_id)
    with pytest.raises(NotFoundError):
        seeded_store.fetch_redistribution_details(request_id)
    with pytest.raises(NotFoundError):
        seeded_store.delete_redistribution(request_id)
