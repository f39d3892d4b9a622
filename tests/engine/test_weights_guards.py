from __future__ import annotations

import logging

import pytest

from edgeline.engine.configuration import GuardsConfig, WeightsConfig
from edgeline.engine.guards import GuardRule, OddsGuard
from edgeline.engine.odds import OddsQuote
from edgeline.engine.weights import NEUTRAL_WEIGHT, PerformanceWeights

ROWS = [
    {"market": "goals", "side": "over", "line": 2.5, "sample_size": 40, "bayes_win_rate": 0.62, "weight": 1.15},
    {"market": "goals", "side": "over", "line": 2.5, "league_id": 39, "sample_size": 14, "bayes_win_rate": 0.40, "weight": 0.75},
    {"market": "goals", "side": "over", "line": 2.5, "league_id": 140, "sample_size": 4, "bayes_win_rate": 0.90, "weight": 1.5},
    {"market": "corners", "side": "over", "line": 9.5, "league_id": 39, "sample_size": 25, "bayes_win_rate": 0.55, "weight": 1.05},
    {"market": "cards", "side": "over", "line": 3.5, "sample_size": 9, "bayes_win_rate": 0.70, "weight": 1.3},
]


@pytest.fixture()
def weights() -> PerformanceWeights:
    return PerformanceWeights.from_rows(ROWS)


def test_league_row_wins_over_global(weights: PerformanceWeights) -> None:
    assert weights.weight("goals", "over", 2.5, league_id=39) == pytest.approx(0.75)
    assert weights.should_avoid("goals", "over", 2.5, league_id=39)
    assert not weights.is_preferred("goals", "over", 2.5, league_id=39)


def test_thin_league_sample_falls_back_to_global(weights: PerformanceWeights) -> None:
    assert weights.weight("goals", "over", 2.5, league_id=140) == pytest.approx(1.15)
    assert weights.is_preferred("goals", "over", 2.5, league_id=140)
    assert weights.weight("goals", "over", 2.5) == pytest.approx(1.15)


def test_untrusted_or_unknown_rows_are_neutral(weights: PerformanceWeights) -> None:
    assert weights.weight("cards", "over", 3.5) == NEUTRAL_WEIGHT
    assert weights.record("cards", "over", 3.5) is None
    assert not weights.should_avoid("offsides", "over", 2.5)
    assert weights.weight("goals", "under", 2.5, league_id=39) == NEUTRAL_WEIGHT


def test_line_keys_are_rounded(weights: PerformanceWeights) -> None:
    assert weights.weight("corners", "over", 9.5000001, league_id=39) == pytest.approx(1.05)


def test_league_weight_averages_trusted_rows(weights: PerformanceWeights) -> None:
    assert weights.league_weight(39) == pytest.approx((0.75 + 1.05) / 2)
    assert weights.league_weight(140) == pytest.approx(0.9)
    relaxed = PerformanceWeights.from_rows(ROWS, WeightsConfig(min_sample_size=0, default_league_weight=1.0))
    assert relaxed.league_weight(140) == pytest.approx(1.5)
    assert relaxed.league_weight(999) == pytest.approx(1.0)
    assert len(relaxed) == 5


def test_default_guard_band_and_caps() -> None:
    guard = OddsGuard.from_config(GuardsConfig())
    assert guard.check("goals", "over", 2.5, 1.85) is None
    assert "below minimum" in guard.check("goals", "over", 0.5, 1.08)
    assert "above maximum" in guard.check("goals", "over", 4.5, 6.5)
    reason = guard.check("goals", "over", 1.5, 4.2)
    assert reason is not None and "suspicious odds" in reason and "3.8" in reason
    assert guard.check("goals", "under", 1.5, 4.2) is None
    assert guard.check("corners", "over", 10.5, 4.9) is None


def test_guard_cap_is_inclusive_and_line_specific() -> None:
    guard = OddsGuard(rules=[GuardRule("cards", 2.5, 4.5)])
    assert guard.check("cards", "over", 2.5, 4.5) is not None
    assert guard.check("cards", "over", 2.5, 4.49) is None
    assert guard.check("cards", "over", 3.5, 4.6) is None


def test_guard_filter_logs_dropped_quotes(caplog: pytest.LogCaptureFixture) -> None:
    guard = OddsGuard(odds_min=1.25, odds_max=5.0)
    quotes = [
        OddsQuote("BookA", "goals", "over", 2.5, 1.9),
        OddsQuote("BookA", "goals", "over", 0.5, 1.05),
        OddsQuote("BookA", "corners", "over", 12.5, 7.0),
    ]
    with caplog.at_level(logging.WARNING, logger="edgeline.engine.guards"):
        kept = guard.filter(quotes)
    assert kept == quotes[:1]
    assert caplog.text.count("dropped") == 2


def test_guard_rejects_inverted_band() -> None:
    with pytest.raises(ValueError):
        OddsGuard(odds_min=3.0, odds_max=2.0)
