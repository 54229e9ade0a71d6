# tests/test_rule_set.py
"""
Tests for compensation plan loading and validation.

Run:
    pytest tests/test_rule_set.py -v
"""
import copy
import json
from decimal import Decimal

import pytest

from mlm_system.config.ranks import DEFAULT_PLAN
from mlm_system.config.rule_set import (
    load_rule_set,
    load_rule_set_file,
    get_rule_set,
    reset_rule_set_cache,
    rule_set_to_dict,
)
from mlm_system.errors import InvalidRuleSet


@pytest.fixture
def plan(raw_plan):
    """Test plan with overrides."""

    def _plan(**overrides):
        raw = copy.deepcopy(raw_plan)
        raw.update(overrides)
        return raw

    return _plan


# =============================================================================
# TEST CLASS: Valid plans
# =============================================================================

class TestValidPlan:

    def test_default_plan_loads(self):
        ruleSet = load_rule_set(DEFAULT_PLAN)

        assert ruleSet.retailRate == Decimal("0.25")
        assert ruleSet.matrixRates[0] == Decimal("0.10")
        assert ruleSet.commissionDepth == 9
        assert ruleSet.baseRank.id == "distributor"
        assert [rank.id for rank in ruleSet.ranks][-1] == "presidential"
        assert ruleSet.maxPayoutRate <= Decimal("1")

    def test_numbers_become_decimals(self, plan):
        ruleSet = load_rule_set(plan(retailRate=0.25, matrixRates=[0.1, "0.05"]))

        assert ruleSet.retailRate == Decimal("0.25")
        assert ruleSet.matrixRates == (Decimal("0.1"), Decimal("0.05"))

    def test_ranks_sorted_by_level(self, plan):
        raw = plan()
        raw["ranks"] = list(reversed(raw["ranks"]))

        ruleSet = load_rule_set(raw)

        assert [rank.id for rank in ruleSet.ranks] == ["distributor", "bronze", "silver"]

    def test_matrix_rate_outside_table_is_zero(self, plan):
        ruleSet = load_rule_set(plan())

        assert ruleSet.matrixRate(1) == Decimal("0.10")
        assert ruleSet.matrixRate(3) == Decimal("0")
        assert ruleSet.matrixRate(0) == Decimal("0")

    def test_unknown_rank_resolves_to_base(self, plan):
        ruleSet = load_rule_set(plan())

        assert ruleSet.getRank("no-such-rank").id == "distributor"
        assert ruleSet.unlockedDepth(None) == 2

    def test_ranks_between(self, plan):
        ruleSet = load_rule_set(plan())

        assert [r.id for r in ruleSet.ranksBetween("distributor", "silver")] == ["bronze", "silver"]
        assert ruleSet.ranksBetween("silver", "silver") == []
        assert ruleSet.compareRanks("bronze", "silver") == -1

    def test_to_dict_roundtrip(self, plan):
        ruleSet = load_rule_set(plan())

        assert load_rule_set(rule_set_to_dict(ruleSet)) == ruleSet


# =============================================================================
# TEST CLASS: Invalid plans
# =============================================================================

class TestInvalidPlan:

    @pytest.mark.parametrize("field,value", [
        ("retailRate", "1.5"),
        ("retailRate", "-0.01"),
        ("retailRate", "abc"),
        ("retailRate", True),
        ("retailRate", "NaN"),
        ("matchingRate", 2),
    ])
    def test_rate_out_of_range(self, plan, field, value):
        with pytest.raises(InvalidRuleSet) as exc:
            load_rule_set(plan(**{field: value}))

        assert any(field in error for error in exc.value.errors)

    def test_matrix_rate_out_of_range_names_level(self, plan):
        with pytest.raises(InvalidRuleSet) as exc:
            load_rule_set(plan(matrixRates=["0.10", "1.20"]))

        assert any("level 2" in error for error in exc.value.errors)

    @pytest.mark.parametrize("width", [1, 11, "x"])
    def test_matrix_width_limits(self, plan, width):
        with pytest.raises(InvalidRuleSet):
            load_rule_set(plan(matrixWidth=width))

    def test_more_rates_than_depth(self, plan):
        with pytest.raises(InvalidRuleSet) as exc:
            load_rule_set(plan(matrixDepth=1))

        assert any("matrixDepth" in error for error in exc.value.errors)

    def test_unlocked_depth_beyond_matrix(self, plan):
        raw = plan()
        raw["ranks"][1]["unlockedDepth"] = 4

        with pytest.raises(InvalidRuleSet):
            load_rule_set(raw)

    def test_duplicate_rank_ids(self, plan):
        raw = plan()
        raw["ranks"][2]["id"] = "bronze"

        with pytest.raises(InvalidRuleSet) as exc:
            load_rule_set(raw)

        assert any("duplicate" in error for error in exc.value.errors)

    def test_payout_over_hundred_percent(self, plan):
        with pytest.raises(InvalidRuleSet) as exc:
            load_rule_set(plan(retailRate="0.80", matrixRates=["0.10", "0.10"]))

        assert "exceeds 100%" in str(exc.value)

    def test_matching_generations_exceed_matched_value(self, plan):
        with pytest.raises(InvalidRuleSet) as exc:
            load_rule_set(plan(retailRate="0", matrixRates=["0.50"], matchingDepth=3))

        assert any("matchingDepth" in error for error in exc.value.errors)

    def test_matching_generations_within_matched_value(self, plan):
        ruleSet = load_rule_set(plan(matrixRates=["0.25", "0.25"], matchingDepth=2))

        assert ruleSet.matchingDepth == 2

    def test_all_errors_collected(self, plan):
        with pytest.raises(InvalidRuleSet) as exc:
            load_rule_set(plan(retailRate="2", matchingRate="-1", matrixWidth=50))

        assert len(exc.value.errors) >= 3

    def test_not_a_mapping(self):
        with pytest.raises(InvalidRuleSet):
            load_rule_set(["not", "a", "plan"])


# =============================================================================
# TEST CLASS: Plan file and cache
# =============================================================================

class TestPlanLoading:

    def test_load_from_file(self, plan, tmp_path):
        path = tmp_path / "plan.json"
        path.write_text(json.dumps(plan()), encoding="utf-8")

        ruleSet = load_rule_set_file(str(path))

        assert ruleSet.version == "test-1"

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(InvalidRuleSet):
            load_rule_set_file(str(path))

        with pytest.raises(InvalidRuleSet):
            load_rule_set_file(str(tmp_path / "missing.json"))

    def test_get_rule_set_uses_configured_path(self, plan, tmp_path, config_values):
        path = tmp_path / "plan.json"
        path.write_text(json.dumps(plan()), encoding="utf-8")
        config_values.set(config_values.COMPENSATION_PLAN_PATH, str(path))

        reset_rule_set_cache()
        try:
            assert get_rule_set().version == "test-1"
            assert get_rule_set() is get_rule_set()
        finally:
            reset_rule_set_cache()

    def test_get_rule_set_default(self, config_values):
        reset_rule_set_cache()
        try:
            assert get_rule_set().version == DEFAULT_PLAN["version"]
        finally:
            reset_rule_set_cache()
