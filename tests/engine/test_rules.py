from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import given, strategies as st

from edgeline.engine.rules import (
    Pick,
    Rule,
    Ruleset,
    RulesetError,
    RulesetRegistry,
    UnknownCategoryError,
    UnknownRulesetVersionError,
    default_registry,
    pick_line,
)


def test_shared_boundary_prefers_upper_range(goals_ruleset: Ruleset) -> None:
    assert pick_line(goals_ruleset, "goals", 2.0) == Pick("over", 1.5)
    assert pick_line(goals_ruleset, "goals", 2.7) == Pick("over", 2.5)
    assert pick_line(goals_ruleset, "goals", 1.0) == Pick("over", 0.5)


def test_scenario_range_maps_to_over_one_and_a_half() -> None:
    ruleset = Ruleset.from_mapping(
        {
            "version": "scenario",
            "combination": "average",
            "categories": {
                "goals": [
                    {"range": [1.5, 2.3], "pick": {"side": "over", "line": 0.5}},
                    {"range": [2.3, 3.2], "pick": {"side": "over", "line": 1.5}},
                ]
            },
        }
    )
    assert ruleset.pick("goals", 2.35) == Pick(side="over", line=1.5)


def test_values_below_ranges_and_null_zones_return_none(goals_ruleset: Ruleset, registry: RulesetRegistry) -> None:
    assert pick_line(goals_ruleset, "goals", 0.4) is None
    sheet = registry.get("v1.0-sheet")
    assert sheet.pick("fouls", 12.0) is None
    assert sheet.pick("cards", 1.9) is None


def test_gte_uses_largest_finite_upper_bound(goals_ruleset: Ruleset, sum_ruleset: Ruleset) -> None:
    assert goals_ruleset.gte_threshold("goals") == pytest.approx(4.0)
    assert pick_line(goals_ruleset, "goals", 3.99) == Pick("over", 2.5)
    assert pick_line(goals_ruleset, "goals", 4.0) == Pick("over", 3.5)
    assert pick_line(goals_ruleset, "goals", 25.0) == Pick("over", 3.5)
    assert sum_ruleset.pick("fouls", 44.0) == Pick("over", 24.5)


def test_rule_containment_needs_both_bounds() -> None:
    pick = Pick("over", 2.5)
    assert Rule(2.0, 3.0, pick).contains(2.0)
    assert Rule(2.0, 3.0, pick).contains(3.0)
    assert not Rule(2.0, 3.0, pick).contains(3.01)
    assert not Rule(None, None, pick).contains(2.5)
    assert not Rule(2.0, None, pick).contains(2.5)


def test_unknown_category_is_an_error(goals_ruleset: Ruleset) -> None:
    with pytest.raises(UnknownCategoryError):
        pick_line(goals_ruleset, "throw_ins", 3.0)


def test_nan_value_rejected(goals_ruleset: Ruleset) -> None:
    with pytest.raises(ValueError):
        pick_line(goals_ruleset, "goals", float("nan"))


def test_bundled_versions_carry_their_combination(registry: RulesetRegistry) -> None:
    assert registry.versions() == ["v1.0-sheet", "v2_combined_matrix_v1"]
    sheet = registry.get("v1.0-sheet")
    combined = registry.get("v2_combined_matrix_v1")
    assert sheet.combine(1.2, 1.6) == pytest.approx(1.4)
    assert combined.combine(1.2, 1.6) == pytest.approx(2.8)
    # identical team averages, different recommendations per version
    assert sheet.pick_combined("goals", 1.2, 1.6) == Pick("over", 0.5)
    assert combined.pick_combined("goals", 1.2, 1.6) == Pick("over", 2.5)


def test_sheet_corners_upper_bucket(registry: RulesetRegistry) -> None:
    sheet = registry.get("v1.0-sheet")
    assert sheet.pick("corners", 9.0) == Pick("over", 9.5)
    assert sheet.pick("corners", 12.0) == Pick("over", 12.5)


def test_weighted_combination() -> None:
    ruleset = Ruleset.from_mapping(
        {
            "version": "weighted",
            "combination": {"method": "weighted", "home_weight": 0.75},
            "categories": {"goals": [{"range": [0, 10], "pick": {"side": "under", "line": 4.5}}]},
        }
    )
    assert ruleset.combine(2.0, 1.0) == pytest.approx(1.75)
    assert ruleset.pick("goals", 3.0) == Pick("under", 4.5)


def test_unknown_version_lists_known_versions(registry: RulesetRegistry) -> None:
    with pytest.raises(UnknownRulesetVersionError, match="v1.0-sheet"):
        registry.get("v0-missing")


@pytest.mark.parametrize(
    "payload",
    [
        {"categories": {"goals": [{"range": [0, 1], "pick": None}]}},
        {"version": "x", "combination": "median", "categories": {"goals": [{"range": [0, 1], "pick": None}]}},
        {"version": "x", "categories": {"goals": [{"range": [2, 1], "pick": None}]}},
        {"version": "x", "categories": {"goals": [{"range": "gte", "pick": None}]}},
        {"version": "x", "categories": {"goals": [{"range": [0, 1], "pick": {"side": "push", "line": 1}}]}},
    ],
)
def test_malformed_rulesets_rejected(payload: dict) -> None:
    with pytest.raises(RulesetError):
        Ruleset.from_mapping(payload)


def test_registry_from_directory_and_merge(tmp_path: Path) -> None:
    (tmp_path / "custom.yaml").write_text(
        """
version: custom-v1
combination: average
categories:
  corners:
    - {range: [0, 9], pick: null}
    - {range: gte, pick: {side: over, line: 8.5}}
""",
        encoding="utf-8",
    )
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")
    extra = RulesetRegistry.from_directory(tmp_path)
    assert extra.versions() == ["custom-v1"]
    merged = default_registry().merged(extra)
    assert "custom-v1" in merged
    assert "v1.0-sheet" in merged
    assert merged.get("custom-v1").pick("corners", 9.0) == Pick("over", 8.5)


def test_duplicate_versions_rejected(goals_ruleset: Ruleset) -> None:
    with pytest.raises(RulesetError):
        RulesetRegistry([goals_ruleset, goals_ruleset])


@given(value=st.floats(min_value=0.0, max_value=60.0, allow_nan=False, allow_infinity=False))
def test_pick_is_deterministic(value: float) -> None:
    ruleset = default_registry().get("v2_combined_matrix_v1")
    for category in ruleset.categories:
        assert pick_line(ruleset, category, value) == pick_line(ruleset, category, value)


@given(value=st.floats(min_value=0.0, max_value=100.0, allow_nan=False, allow_infinity=False))
def test_values_above_every_range_fall_into_gte(value: float) -> None:
    ruleset = default_registry().get("v1.0-sheet")
    for category in ruleset.categories:
        threshold = ruleset.gte_threshold(category)
        gte_pick = next(rule.pick for rule in ruleset.rules_for(category) if rule.is_gte)
        if value >= threshold:
            assert pick_line(ruleset, category, value) == gte_pick
