from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import List

import pytest

from edgeline.engine.guards import OddsGuard
from edgeline.engine.logging import AUDIT_LOGGER_NAME
from edgeline.engine.models import Fixture, MarketModelBuilder, TeamStats
from edgeline.engine.rules import Ruleset
from edgeline.engine.selections import (
    Selection,
    SelectionBuilder,
    SelectionStore,
    heuristic_probability,
)
from edgeline.engine.weights import PerformanceWeights


def _build(builder: SelectionBuilder, fixture: Fixture, **kwargs) -> List[Selection]:
    return builder.build(
        fixture.fixture_id,
        fixture.home,
        fixture.away,
        fixture.odds_payload,
        **kwargs,
    )


@pytest.mark.parametrize(
    ("combined", "side", "line", "expected"),
    [(3.2, "over", 2.5, 0.64), (3.2, "under", 2.5, 0.36), (50.0, "over", 2.5, 0.95), (0.0, "over", 2.5, 0.05)],
)
def test_heuristic_probability(combined: float, side: str, line: float, expected: float) -> None:
    assert heuristic_probability(combined, side, line) == pytest.approx(expected)


def test_builder_prices_rule_picks(fixture_set: List[Fixture], sum_ruleset: Ruleset) -> None:
    fixture = fixture_set[0]
    selections = _build(SelectionBuilder(sum_ruleset), fixture, league_id=39, kickoff="2024-08-17T14:00:00Z")
    by_market = {selection.market: selection for selection in selections}
    assert set(by_market) == {"goals", "cards"}

    goals = by_market["goals"]
    assert (goals.side, goals.line, goals.odds) == ("over", 2.5, pytest.approx(1.70))
    assert goals.model_prob == pytest.approx(0.64)
    assert goals.edge_pct == pytest.approx((0.64 * 1.70 - 1.0) * 100.0)
    assert goals.sample_size == 5
    assert goals.rules_version == "v2_combined_matrix_v1"
    assert goals.kickoff == "2024-08-17T14:00:00Z"
    assert goals.league_id == 39
    assert goals.combined_snapshot["corners"] == pytest.approx(10.4)
    assert goals.leg_id == "101-goals-over-2.5"

    goals.combined_snapshot["goals"] = 99.0
    assert by_market["cards"].combined_snapshot["goals"] == pytest.approx(3.2)


def test_builder_prefers_model_probabilities(
    fixture_set: List[Fixture], sum_ruleset: Ruleset, strong_home: TeamStats, strong_away: TeamStats
) -> None:
    models = MarketModelBuilder().build(strong_home, strong_away)
    goals_model = next(model for model in models if model.market == "goals" and model.line == 2.5)
    selections = _build(SelectionBuilder(sum_ruleset), fixture_set[0], models=models)
    goals = next(selection for selection in selections if selection.market == "goals")
    assert goals.model_prob == pytest.approx(goals_model.model_prob_over)


def test_builder_skips_fixtures_without_history_or_odds(fixture_set: List[Fixture], sum_ruleset: Ruleset) -> None:
    builder = SelectionBuilder(sum_ruleset)
    fixture = fixture_set[0]
    assert builder.build(1, TeamStats(), fixture.away, fixture.odds_payload) == []
    assert builder.build(1, fixture.home, fixture.away, None) == []


def test_guard_drops_suspicious_prices(
    fixture_set: List[Fixture], sum_ruleset: Ruleset, caplog: pytest.LogCaptureFixture
) -> None:
    builder = SelectionBuilder(sum_ruleset, guard=OddsGuard(odds_min=1.6, odds_max=5.0))
    with caplog.at_level(logging.WARNING, logger="edgeline.engine.selections"):
        selections = _build(builder, fixture_set[0])
    assert [selection.market for selection in selections] == ["goals"]
    assert "out of band" in caplog.text


def test_weights_avoid_and_scale(fixture_set: List[Fixture], sum_ruleset: Ruleset) -> None:
    weights = PerformanceWeights.from_rows(
        [
            {"market": "goals", "side": "over", "line": 2.5, "sample_size": 20, "bayes_win_rate": 0.30, "weight": 0.7},
            {
                "market": "cards",
                "side": "over",
                "line": 3.5,
                "league_id": 39,
                "sample_size": 12,
                "bayes_win_rate": 0.61,
                "weight": 1.2,
            },
        ]
    )
    selections = _build(SelectionBuilder(sum_ruleset, weights=weights), fixture_set[0], league_id=39)
    assert [(selection.market, selection.weight) for selection in selections] == [("cards", 1.2)]


def test_store_upsert_is_idempotent_and_version_keyed(
    tmp_path: Path,
    fixture_set: List[Fixture],
    sum_ruleset: Ruleset,
    caplog: pytest.LogCaptureFixture,
) -> None:
    store = SelectionStore(tmp_path / "nested" / "selections.sqlite3")
    builder = SelectionBuilder(sum_ruleset)
    selections = [item for fixture in fixture_set for item in _build(builder, fixture)]
    assert len(selections) == 10

    with caplog.at_level(logging.INFO, logger=AUDIT_LOGGER_NAME):
        assert store.upsert(selections) == 10
    audit = [record for record in caplog.records if record.name == AUDIT_LOGGER_NAME]
    assert len(audit) == 10
    assert audit[0].getMessage() == "selection.upserted"
    assert audit[0].rules_version == "v2_combined_matrix_v1"

    repriced = [dataclasses.replace(item, odds=item.odds + 0.1) for item in selections]
    store.upsert(repriced)
    loaded = store.load("v2_combined_matrix_v1")
    assert len(loaded) == 10
    first = store.load("v2_combined_matrix_v1", fixture_id=101, market="goals")
    assert len(first) == 1
    assert first[0].odds == pytest.approx(1.80)
    assert first[0].combined_snapshot["goals"] == pytest.approx(3.2)

    # same keys under another version are stored side by side
    sheet_rows = [dataclasses.replace(item, rules_version="v1.0-sheet", odds=2.5) for item in selections[:4]]
    store.upsert(sheet_rows)
    assert store.versions() == ["v1.0-sheet", "v2_combined_matrix_v1"]
    assert len(store.load("v2_combined_matrix_v1")) == 10
    assert {row.odds for row in store.load("v1.0-sheet")} == {2.5}

    removed = store.purge_other_versions("v2_combined_matrix_v1")
    assert removed == 4
    assert store.versions() == ["v2_combined_matrix_v1"]


def test_store_ignores_empty_batches(tmp_path: Path) -> None:
    store = SelectionStore(tmp_path / "selections.sqlite3")
    assert store.upsert([]) == 0
    assert store.load("anything") == []
    assert store.purge_other_versions("anything") == 0
