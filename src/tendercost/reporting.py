from __future__ import annotations

from pathlib import Path
from typing import Iterable, Sequence

import pandas as pd

from .attribution import by_position
from .engine import ItemCost
from .redistribution import PositionReconciliation

POSITION_COLUMNS = [
    "POSITION_ID",
    "ITEM_COUNT",
    "BASE_COST",
    "WORKS_COST",
    "MATERIALS_COST",
    "COMMERCIAL_COST",
]

RECONCILIATION_COLUMNS = [
    "POSITION_ID",
    "ORIGINAL_WORKS_COST",
    "ADJUSTMENT",
    "REDISTRIBUTED_WORKS_COST",
    "MATERIALS_COST",
    "TOTAL",
]


def item_frame(costs: Iterable[ItemCost]) -> pd.DataFrame:
    rows = [
        {
            "ITEM_ID": cost.item_id,
            "POSITION_ID": cost.position_id,
            "VARIANT": cost.variant.value,
            "QUANTITY": float(cost.quantity),
            "BASE_COST": float(cost.base_cost),
            "COMMERCIAL_COST": float(cost.commercial_cost),
            "MARKUP_COEFFICIENT": (
                float(cost.markup_coefficient) if cost.markup_coefficient is not None else float("nan")
            ),
            "WORKS_COST": float(cost.works_contribution),
            "MATERIALS_COST": float(cost.materials_contribution),
        }
        for cost in costs
    ]
    return pd.DataFrame(rows, columns=[
        "ITEM_ID",
        "POSITION_ID",
        "VARIANT",
        "QUANTITY",
        "BASE_COST",
        "COMMERCIAL_COST",
        "MARKUP_COEFFICIENT",
        "WORKS_COST",
        "MATERIALS_COST",
    ])


def position_summary_frame(costs: Iterable[ItemCost]) -> pd.DataFrame:
    """One row per position, built from summed per-item contributions."""

    rows = [
        {
            "POSITION_ID": position_id,
            "ITEM_COUNT": totals.item_count,
            "BASE_COST": float(totals.base),
            "WORKS_COST": float(totals.works),
            "MATERIALS_COST": float(totals.materials),
            "COMMERCIAL_COST": float(totals.total),
        }
        for position_id, totals in by_position(costs).items()
    ]
    return pd.DataFrame(rows, columns=POSITION_COLUMNS)


def reconciliation_frame(rows: Sequence[PositionReconciliation]) -> pd.DataFrame:
    data = [
        {
            "POSITION_ID": row.position_id,
            "ORIGINAL_WORKS_COST": float(row.original_works_cost),
            "ADJUSTMENT": float(row.adjustment),
            "REDISTRIBUTED_WORKS_COST": float(row.redistributed_works_cost),
            "MATERIALS_COST": float(row.materials_cost),
            "TOTAL": float(row.total),
        }
        for row in rows
    ]
    return pd.DataFrame(data, columns=RECONCILIATION_COLUMNS)


def make_summary_text(costs: Sequence[ItemCost]) -> str:
    items_df = item_frame(costs)
    works = float(items_df["WORKS_COST"].sum())
    materials = float(items_df["MATERIALS_COST"].sum())
    top = items_df.sort_values("COMMERCIAL_COST", ascending=False).head(5)[
        ["ITEM_ID", "VARIANT", "BASE_COST", "COMMERCIAL_COST", "MARKUP_COEFFICIENT"]
    ]
    return (
        f"Tender commercial total: {works + materials:,.2f} "
        f"(works {works:,.2f}, materials {materials:,.2f}) across {len(items_df)} item(s).\n"
        f"Top cost drivers:\n{top.to_string(index=False)}\n"
    )


def write_frame(frame: pd.DataFrame, output_dir: Path, name: str) -> Path:
    """Write ``frame`` to ``output_dir/name`` as CSV and return the path."""

    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / name
    frame.to_csv(path, index=False)
    return path
