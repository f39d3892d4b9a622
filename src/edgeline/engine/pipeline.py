"""Concurrent per-fixture analysis over external statistics and odds sources."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Dict, List, Mapping, Protocol, Sequence

import polars as pl

from .analytics import EdgeDetector, EdgeResult
from .models import MAX_WINDOW, Fixture, MarketModelBuilder, ModelOutput, TeamStats
from .selections import Selection, SelectionBuilder
from .team_form import compute_team_form, league_priors

logger = logging.getLogger(__name__)


class StatsSource(Protocol):
    async def team_stats(self, team_id: int) -> TeamStats | None: ...


class OddsSource(Protocol):
    async def fixture_odds(self, fixture_id: int) -> Any | None: ...


@dataclasses.dataclass(frozen=True, slots=True)
class FixtureRef:
    fixture_id: int
    home_team_id: int
    away_team_id: int
    league_id: int | None = None
    kickoff: str | None = None
    home_team: str = "Home"
    away_team: str = "Away"


@dataclasses.dataclass(slots=True)
class FixtureAnalysis:
    fixture_id: int
    models: List[ModelOutput] = dataclasses.field(default_factory=list)
    edges: List[EdgeResult] = dataclasses.field(default_factory=list)
    selections: List[Selection] = dataclasses.field(default_factory=list)
    skipped_reason: str | None = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "fixture_id": self.fixture_id,
            "models": [model.as_dict() for model in self.models],
            "edges": [edge.as_dict() for edge in self.edges],
            "selections": [selection.as_dict() for selection in self.selections],
            "skipped_reason": self.skipped_reason,
        }


class StaticStatsSource:
    """In-memory statistics source used by the CLI and tests."""

    def __init__(self, stats: Mapping[int, TeamStats]) -> None:
        self._stats = dict(stats)

    async def team_stats(self, team_id: int) -> TeamStats | None:
        return self._stats.get(team_id)


class ResultsStatsSource(StaticStatsSource):
    """Statistics source backed by rolling form over finished results.

    Teams without usable results fall back to ``fallback`` when given.  The
    league-wide means of the same frame are exposed as ``priors``.
    """

    def __init__(
        self,
        results: pl.DataFrame,
        *,
        window: int = MAX_WINDOW,
        fallback: Mapping[int, TeamStats] | None = None,
    ) -> None:
        stats = dict(fallback or {})
        stats.update(compute_team_form(results, window=window))
        super().__init__(stats)
        self.priors = league_priors(results)


class StaticOddsSource:
    """In-memory odds source used by the CLI and tests."""

    def __init__(self, payloads: Mapping[int, Any]) -> None:
        self._payloads = dict(payloads)

    async def fixture_odds(self, fixture_id: int) -> Any | None:
        return self._payloads.get(fixture_id)


class FixtureAnalyzer:
    """Fetch inputs for many fixtures concurrently, then run the pure engine."""

    def __init__(
        self,
        stats_source: StatsSource,
        odds_source: OddsSource,
        *,
        model_builder: MarketModelBuilder | None = None,
        edge_detector: EdgeDetector | None = None,
        selection_builder: SelectionBuilder | None = None,
        max_concurrency: int = 8,
    ) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be positive")
        self.stats_source = stats_source
        self.odds_source = odds_source
        self.model_builder = model_builder or MarketModelBuilder()
        self.edge_detector = edge_detector or EdgeDetector()
        self.selection_builder = selection_builder
        self.max_concurrency = max_concurrency

    def compute(self, fixture: Fixture) -> FixtureAnalysis:
        analysis = FixtureAnalysis(fixture_id=fixture.fixture_id)
        analysis.models = self.model_builder.build(fixture.home, fixture.away)
        if fixture.odds_payload is None:
            analysis.skipped_reason = "missing_odds"
            return analysis
        analysis.edges = self.edge_detector.detect(analysis.models, fixture.odds_payload)
        if self.selection_builder is not None:
            analysis.selections = self.selection_builder.build(
                fixture.fixture_id,
                fixture.home,
                fixture.away,
                fixture.odds_payload,
                league_id=fixture.league_id,
                kickoff=fixture.kickoff,
                models=analysis.models,
            )
        return analysis

    async def analyze(self, ref: FixtureRef, semaphore: asyncio.Semaphore | None = None) -> FixtureAnalysis:
        semaphore = semaphore or asyncio.Semaphore(self.max_concurrency)
        async with semaphore:
            try:
                home, away, payload = await asyncio.gather(
                    self.stats_source.team_stats(ref.home_team_id),
                    self.stats_source.team_stats(ref.away_team_id),
                    self.odds_source.fixture_odds(ref.fixture_id),
                )
            except Exception as err:
                logger.error("Input fetch failed for fixture %s: %s", ref.fixture_id, err)
                return FixtureAnalysis(ref.fixture_id, skipped_reason=f"source_error: {err}")
        if home is None or away is None:
            logger.debug("Fixture %s skipped: missing team statistics", ref.fixture_id)
            return FixtureAnalysis(ref.fixture_id, skipped_reason="missing_stats")
        fixture = Fixture(
            fixture_id=ref.fixture_id,
            home=home,
            away=away,
            odds_payload=payload,
            league_id=ref.league_id,
            kickoff=ref.kickoff,
            home_team=ref.home_team,
            away_team=ref.away_team,
        )
        return self.compute(fixture)

    async def analyze_many(self, refs: Sequence[FixtureRef]) -> List[FixtureAnalysis]:
        """Analyse ``refs`` concurrently; results keep the input order."""

        if not refs:
            return []
        semaphore = asyncio.Semaphore(self.max_concurrency)
        results = await asyncio.gather(*(self.analyze(ref, semaphore) for ref in refs))
        skipped = sum(1 for item in results if item.skipped_reason)
        logger.info("Analysed %d fixtures (%d skipped or partial)", len(results), skipped)
        return list(results)


__all__ = [
    "FixtureAnalysis",
    "FixtureAnalyzer",
    "FixtureRef",
    "OddsSource",
    "ResultsStatsSource",
    "StaticOddsSource",
    "StaticStatsSource",
    "StatsSource",
]
