"""Historical performance weights for market lines.

Weights are loaded once by the caller and passed explicitly into the code that
consults them, so concurrent requests never share a mutable cache.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, Iterable, Mapping

from .configuration import WeightsConfig

logger = logging.getLogger(__name__)

NEUTRAL_WEIGHT = 1.0


@dataclasses.dataclass(frozen=True, slots=True)
class PerformanceWeight:
    market: str
    side: str
    line: float
    league_id: int | None
    sample_size: int
    bayes_win_rate: float
    weight: float
    raw_win_rate: float = 0.0
    roi_pct: float = 0.0

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "PerformanceWeight":
        league = row.get("league_id")
        return cls(
            market=str(row["market"]),
            side=str(row["side"]),
            line=float(row["line"]),
            league_id=int(league) if league is not None else None,
            sample_size=int(row.get("sample_size") or 0),
            bayes_win_rate=float(row.get("bayes_win_rate") or 0.0),
            weight=float(row.get("weight", NEUTRAL_WEIGHT)),
            raw_win_rate=float(row.get("raw_win_rate") or 0.0),
            roi_pct=float(row.get("roi_pct") or 0.0),
        )


def _key(market: str, side: str, line: float) -> tuple[str, str, float]:
    return market, side, round(float(line), 2)


class PerformanceWeights:
    """Request-scoped lookup with league, then global, then neutral fallback."""

    def __init__(
        self,
        rows: Iterable[PerformanceWeight] = (),
        config: WeightsConfig | None = None,
    ) -> None:
        self.config = config or WeightsConfig()
        self._global: Dict[tuple[str, str, float], PerformanceWeight] = {}
        self._league: Dict[tuple[str, str, float, int], PerformanceWeight] = {}
        for row in rows:
            key = _key(row.market, row.side, row.line)
            if row.league_id is None:
                self._global[key] = row
            else:
                self._league[(*key, row.league_id)] = row
        logger.debug(
            "Loaded %d global and %d league-specific performance weights",
            len(self._global),
            len(self._league),
        )

    @classmethod
    def from_rows(
        cls,
        rows: Iterable[Mapping[str, Any]],
        config: WeightsConfig | None = None,
    ) -> "PerformanceWeights":
        return cls((PerformanceWeight.from_mapping(row) for row in rows), config)

    def __len__(self) -> int:
        return len(self._global) + len(self._league)

    def record(
        self,
        market: str,
        side: str,
        line: float,
        league_id: int | None = None,
    ) -> PerformanceWeight | None:
        minimum = self.config.min_sample_size
        key = _key(market, side, line)
        if league_id is not None:
            league_row = self._league.get((*key, league_id))
            if league_row is not None and league_row.sample_size >= minimum:
                return league_row
        global_row = self._global.get(key)
        if global_row is not None and global_row.sample_size >= minimum:
            return global_row
        return None

    def weight(self, market: str, side: str, line: float, league_id: int | None = None) -> float:
        row = self.record(market, side, line, league_id)
        return row.weight if row is not None else NEUTRAL_WEIGHT

    def is_preferred(self, market: str, side: str, line: float, league_id: int | None = None) -> bool:
        row = self.record(market, side, line, league_id)
        return row is not None and row.bayes_win_rate >= self.config.preferred_threshold

    def should_avoid(self, market: str, side: str, line: float, league_id: int | None = None) -> bool:
        row = self.record(market, side, line, league_id)
        if row is None:
            return False
        return (
            row.bayes_win_rate < self.config.avoid_threshold
            or row.weight < self.config.low_weight_threshold
        )

    def league_weight(self, league_id: int) -> float:
        """Average weight over every trusted row for ``league_id``."""

        weights = [
            row.weight
            for (_, _, _, league), row in self._league.items()
            if league == league_id and row.sample_size >= self.config.min_sample_size
        ]
        if not weights:
            return self.config.default_league_weight
        return sum(weights) / len(weights)


__all__ = ["NEUTRAL_WEIGHT", "PerformanceWeight", "PerformanceWeights"]
