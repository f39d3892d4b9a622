"""Rolling team form and league priors from finished match results.

Input frames hold one row per team per match with the columns ``team_id``,
``fixture_id``, ``date`` and the per-team counts ``goals``, ``cards``,
``corners``, ``fouls`` and ``offsides``.  An optional ``status`` column is
filtered down to finished matches.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, Mapping

import polars as pl

from .configuration import ModelsConfig
from .models import MAX_WINDOW, STAT_FIELDS, TeamStats

logger = logging.getLogger(__name__)

FINISHED_STATUSES = ("FT", "AET", "PEN")
_NON_GOAL_FIELDS = [field for field in STAT_FIELDS if field != "goals"]


def read_results(path: str | Path) -> pl.DataFrame:
    """Load a finished-results table from a CSV or Parquet file."""

    source = Path(path)
    suffix = source.suffix.lower()
    if suffix == ".csv":
        return pl.read_csv(source, try_parse_dates=True)
    if suffix == ".parquet":
        return pl.read_parquet(source)
    raise ValueError(f"Unsupported results format: {source.suffix}")


def _prepare(
    results: pl.DataFrame,
    finished_statuses: Iterable[str] = FINISHED_STATUSES,
) -> pl.DataFrame:
    missing = {"team_id", "date", *STAT_FIELDS} - set(results.columns)
    if missing:
        raise ValueError(f"results frame is missing columns: {sorted(missing)}")
    frame = results
    if "status" in frame.columns:
        frame = frame.filter(pl.col("status").cast(pl.Utf8).is_in(list(finished_statuses)))
    frame = frame.with_columns(
        [pl.col(field).cast(pl.Float64).fill_null(0.0) for field in STAT_FIELDS]
    )
    # rows where every non-goal count is zero had no statistics recorded
    before = frame.height
    frame = frame.filter(pl.sum_horizontal(_NON_GOAL_FIELDS) > 0)
    if frame.height < before:
        logger.debug("Dropped %d team matches without statistics", before - frame.height)
    return frame


def compute_team_form(
    results: pl.DataFrame,
    *,
    window: int = MAX_WINDOW,
    finished_statuses: Iterable[str] = FINISHED_STATUSES,
) -> Dict[int, TeamStats]:
    """Average each team's last ``window`` finished matches."""

    if not 0 < window <= MAX_WINDOW:
        raise ValueError(f"window must be within [1, {MAX_WINDOW}]")
    frame = _prepare(results, finished_statuses)
    if frame.is_empty():
        return {}
    recent = (
        frame.sort("date", descending=True)
        .group_by("team_id", maintain_order=True)
        .head(window)
    )
    summary = recent.group_by("team_id").agg(
        [pl.col(field).mean().alias(field) for field in STAT_FIELDS]
        + [pl.len().alias("sample_size")]
    )
    form: Dict[int, TeamStats] = {}
    for row in summary.iter_rows(named=True):
        form[int(row["team_id"])] = TeamStats(
            goals=float(row["goals"]),
            cards=float(row["cards"]),
            corners=float(row["corners"]),
            fouls=float(row["fouls"]),
            offsides=float(row["offsides"]),
            sample_size=int(row["sample_size"]),
        )
    logger.info("Computed form for %d teams", len(form))
    return form


def league_priors(
    results: pl.DataFrame,
    *,
    finished_statuses: Iterable[str] = FINISHED_STATUSES,
) -> Dict[str, float]:
    """Per-team per-match mean of every statistic."""

    frame = _prepare(results, finished_statuses)
    if frame.is_empty():
        return {}
    means = frame.select([pl.col(field).mean() for field in STAT_FIELDS]).row(0, named=True)
    return {field: float(value) for field, value in means.items() if value is not None}


def apply_league_priors(config: ModelsConfig, priors: Mapping[str, float]) -> ModelsConfig:
    """Return a copy of ``config`` whose market priors come from ``priors``."""

    markets = {
        name: market.model_copy(update={"league_prior": priors[name]}) if name in priors else market
        for name, market in config.markets.items()
    }
    return config.model_copy(update={"markets": markets})


__all__ = [
    "FINISHED_STATUSES",
    "apply_league_priors",
    "compute_team_form",
    "league_priors",
    "read_results",
]
