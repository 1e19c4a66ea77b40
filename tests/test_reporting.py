from __future__ import annotations

import math

import pytest

from tendercost.engine import compute_tender
from tendercost.redistribution import RedistributionCoordinator
from tendercost.reporting import (
    POSITION_COLUMNS,
    RECONCILIATION_COLUMNS,
    item_frame,
    make_summary_text,
    position_summary_frame,
    reconciliation_frame,
    write_frame,
)


def _costs(store):
    return compute_tender(store.fetch_line_items(tender_id="T-1"), store.fetch_markup_profile("T-1"))


def test_position_summary_columns_and_totals(seeded_store):
    costs = _costs(seeded_store)
    frame = position_summary_frame(costs)

    assert list(frame.columns) == POSITION_COLUMNS
    assert frame["POSITION_ID"].tolist() == ["P-1", "P-2"]
    assert frame["ITEM_COUNT"].tolist() == [2, 3]
    assert (frame["WORKS_COST"] + frame["MATERIALS_COST"]).tolist() == pytest.approx(frame["COMMERCIAL_COST"].tolist())
    assert frame["COMMERCIAL_COST"].sum() == pytest.approx(item_frame(costs)["COMMERCIAL_COST"].sum())


def test_item_frame_marks_missing_coefficients(item_factory, scenario_profile):
    costs = compute_tender([item_factory(quantity=0, unit_rate=10)], scenario_profile)
    frame = item_frame(costs)
    assert math.isnan(frame.loc[0, "MARKUP_COEFFICIENT"])
    assert frame.loc[0, "VARIANT"] == "work"


def test_reconciliation_frame(seeded_store):
    coordinator = RedistributionCoordinator(seeded_store)
    coordinator.submit("T-1", "shift", {"D-A1": 10}, {"D-B1"})
    frame = reconciliation_frame(coordinator.reconcile("T-1"))
    assert list(frame.columns) == RECONCILIATION_COLUMNS
    assert frame["ADJUSTMENT"].sum() == pytest.approx(0.0, abs=1e-6)
    assert frame.loc[0, "ADJUSTMENT"] == pytest.approx(-200.0)


def test_summary_text_lists_totals_and_drivers(seeded_store):
    text = make_summary_text(_costs(seeded_store))
    assert text.startswith("Tender commercial total:")
    assert "across 5 item(s)" in text
    assert "Top cost drivers:" in text
    assert "w2" in text


def test_write_frame_creates_directory(seeded_store, tmp_path):
    frame = position_summary_frame(_costs(seeded_store))
    path = write_frame(frame, tmp_path / "nested" / "out", "positions.csv")
    assert path.exists()
    assert path.read_text(encoding="utf-8").splitlines()[0] == ",".join(POSITION_COLUMNS)
