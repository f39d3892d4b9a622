from __future__ import annotations

import datetime as dt

import polars as pl
import pytest

from edgeline.engine.configuration import ModelsConfig
from edgeline.engine.team_form import apply_league_priors, compute_team_form, league_priors


def _results() -> pl.DataFrame:
    start = dt.date(2024, 8, 1)
    rows = []
    # team 1 plays seven finished matches; goals equal the match index
    for index in range(7):
        rows.append(
            {
                "team_id": 1,
                "fixture_id": 1000 + index,
                "date": start + dt.timedelta(days=7 * index),
                "status": "FT",
                "goals": index,
                "cards": 2,
                "corners": 5,
                "fouls": 10,
                "offsides": 1,
            }
        )
    rows.extend(
        [
            {"team_id": 2, "fixture_id": 2000, "date": start, "status": "FT", "goals": 1, "cards": 3, "corners": 4, "fouls": 12, "offsides": 2},
            {"team_id": 2, "fixture_id": 2001, "date": start + dt.timedelta(days=7), "status": "AET", "goals": 3, "cards": None, "corners": 6, "fouls": 14, "offsides": 2},
            {"team_id": 2, "fixture_id": 2002, "date": start + dt.timedelta(days=14), "status": "NS", "goals": 9, "cards": 9, "corners": 9, "fouls": 9, "offsides": 9},
            # statistics missing entirely for this match
            {"team_id": 2, "fixture_id": 2003, "date": start + dt.timedelta(days=21), "status": "FT", "goals": 2, "cards": 0, "corners": 0, "fouls": 0, "offsides": 0},
        ]
    )
    return pl.DataFrame(rows)


def test_form_uses_last_five_finished_matches() -> None:
    form = compute_team_form(_results())
    team_one = form[1]
    assert team_one.sample_size == 5
    assert team_one.goals == pytest.approx((2 + 3 + 4 + 5 + 6) / 5)
    assert team_one.corners == pytest.approx(5.0)

    team_two = form[2]
    assert team_two.sample_size == 2
    assert team_two.goals == pytest.approx(2.0)
    assert team_two.cards == pytest.approx(1.5)


def test_shorter_window() -> None:
    form = compute_team_form(_results(), window=2)
    assert form[1].sample_size == 2
    assert form[1].goals == pytest.approx(5.5)
    with pytest.raises(ValueError):
        compute_team_form(_results(), window=6)


def test_missing_columns_and_empty_frames() -> None:
    with pytest.raises(ValueError, match="corners"):
        compute_team_form(_results().drop("corners"))
    unfinished = _results().with_columns(pl.lit("NS").alias("status"))
    assert compute_team_form(unfinished) == {}
    assert league_priors(unfinished) == {}


def test_league_priors_feed_model_config() -> None:
    priors = league_priors(_results())
    # 7 matches for team 1 and 2 usable matches for team 2
    assert priors["goals"] == pytest.approx((sum(range(7)) + 1 + 3) / 9)
    config = apply_league_priors(ModelsConfig(), {"goals": 1.9, "throw_ins": 20.0})
    assert config.markets["goals"].league_prior == pytest.approx(1.9)
    assert config.markets["cards"].league_prior == pytest.approx(2.1)
    assert "throw_ins" not in config.markets
    assert ModelsConfig().markets["goals"].league_prior == pytest.approx(1.4)
