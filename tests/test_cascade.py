from __future__ import annotations

from decimal import Decimal

import pytest

from tendercost import cascade
from tendercost.cascade import CostVariant, calculate, classify
from tendercost.errors import PreconditionError
from tendercost.models import ItemKind, MaterialSubtype
from tendercost.profile import PERCENT_FIELDS


def test_work_scenario(scenario_profile):
    result = calculate(CostVariant.WORK, 10000, scenario_profile)
    stages = result.stages
    assert stages.work16 == Decimal("16000")
    assert stages.growth == Decimal("16800")
    assert stages.contingency == Decimal("16320")
    assert stages.overhead_own == Decimal("18489.6")
    assert stages.general_costs == Decimal("19414.08")
    assert stages.profit == Decimal("21743.7696")
    assert result.commercial_cost == Decimal("21743.7696")


def test_main_material_scenario(scenario_profile):
    result = calculate(CostVariant.MAIN_MATERIAL, 1000, scenario_profile)
    stages = result.stages
    assert stages.growth == Decimal("1030")
    assert stages.contingency == Decimal("1020")
    assert stages.overhead_own == Decimal("1134")
    assert stages.general_costs == Decimal("1190.7")
    assert result.commercial_cost == Decimal("1333.584")
    assert result.markup_coefficient == Decimal("1.333584")


def test_auxiliary_material_uses_material_pipeline(scenario_profile):
    assert cascade.commercial_cost(CostVariant.AUXILIARY_MATERIAL, 1000, scenario_profile) == Decimal("1333.584")


def test_subcontract_work_and_material(scenario_profile):
    assert cascade.commercial_cost(CostVariant.SUBCONTRACT_WORK, 1000, scenario_profile) == Decimal("1331")
    assert cascade.commercial_cost(CostVariant.MAIN_SUBCONTRACT_MATERIAL, 1000, scenario_profile) == Decimal("1331")


def test_subcontract_material_ignores_its_own_growth_percent(scenario_profile):
    changed = scenario_profile.with_updates(subcontract_materials_cost_growth=50)
    assert cascade.commercial_cost(CostVariant.MAIN_SUBCONTRACT_MATERIAL, 1000, changed) == Decimal("1331")


def test_warranty_is_added_after_profit(profile_factory):
    profile = profile_factory(warranty_period=10)
    result = calculate(CostVariant.WORK, 10000, profile)
    assert result.stages.warranty == Decimal("1000")
    assert result.commercial_cost == Decimal("11000")


def test_mechanization_and_mbp_gsm_feed_later_stages(profile_factory):
    profile = profile_factory(mechanization_service=10, mbp_gsm=10)
    stages = calculate(CostVariant.WORK, 1000, profile).stages
    assert stages.mechanization == Decimal("100")
    assert stages.mbp_gsm == Decimal("100")
    assert stages.work16 == Decimal("1100")
    assert stages.growth == Decimal("1200")
    assert stages.overhead_own == Decimal("1200")


def test_zero_profile_leaves_base_unchanged(profile_factory):
    profile = profile_factory()
    for variant in CostVariant:
        assert cascade.commercial_cost(variant, 1234, profile) == Decimal("1234")


@pytest.mark.parametrize("base", [0, -5, "0"])
def test_non_positive_base_short_circuits(scenario_profile, base):
    for variant in CostVariant:
        result = calculate(variant, base, scenario_profile)
        assert result.commercial_cost == Decimal("0")
        assert result.stages is None
        assert result.markup_coefficient is None


def test_missing_profile_is_a_precondition_error():
    with pytest.raises(PreconditionError):
        calculate(CostVariant.WORK, 1000, None)


@pytest.mark.parametrize("field", PERCENT_FIELDS)
def test_commercial_cost_is_monotonic_in_every_percent(scenario_profile, field):
    raised = scenario_profile.with_updates(**{field: getattr(scenario_profile, field) + 5})
    for variant in CostVariant:
        before = cascade.commercial_cost(variant, 1000, scenario_profile)
        after = cascade.commercial_cost(variant, 1000, raised)
        assert after >= before, (variant, field)


def test_classify_covers_every_kind():
    assert classify(ItemKind.WORK) is CostVariant.WORK
    assert classify(ItemKind.SUBCONTRACT_WORK) is CostVariant.SUBCONTRACT_WORK
    assert classify(ItemKind.MATERIAL) is CostVariant.MAIN_MATERIAL
    assert classify(ItemKind.MATERIAL, MaterialSubtype.AUXILIARY) is CostVariant.AUXILIARY_MATERIAL
    assert classify(ItemKind.SUBCONTRACT_MATERIAL, "auxiliary") is CostVariant.AUXILIARY_SUBCONTRACT_MATERIAL
    assert CostVariant.AUXILIARY_SUBCONTRACT_MATERIAL.item_kind is ItemKind.SUBCONTRACT_MATERIAL
    assert CostVariant.SUBCONTRACT_WORK.material_subtype is None
