"""Team statistics, shrinkage and per-market probability models."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, Iterable, List, Literal, Mapping

from .configuration import MarketModelConfig, ModelsConfig
from .distributions import neg_binomial_over_under, poisson_over_under

logger = logging.getLogger(__name__)

STAT_FIELDS = ("goals", "cards", "corners", "fouls", "offsides")
MAX_WINDOW = 5

Confidence = Literal["high", "med", "low"]


@dataclasses.dataclass(frozen=True, slots=True)
class TeamStats:
    """Rolling per-team means over at most the last five finished matches."""

    goals: float = 0.0
    cards: float = 0.0
    corners: float = 0.0
    fouls: float = 0.0
    offsides: float = 0.0
    sample_size: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.sample_size <= MAX_WINDOW:
            raise ValueError(
                f"sample_size must be within [0, {MAX_WINDOW}], got {self.sample_size}"
            )

    def rate(self, market: str) -> float:
        if market not in STAT_FIELDS:
            raise KeyError(market)
        return float(getattr(self, market))

    def as_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "TeamStats":
        values = {name: float(payload.get(name) or 0.0) for name in STAT_FIELDS}
        return cls(sample_size=int(payload.get("sample_size") or 0), **values)


@dataclasses.dataclass(slots=True)
class Fixture:
    """A scheduled match with both teams' form and its raw odds payload."""

    fixture_id: int
    home: TeamStats
    away: TeamStats
    odds_payload: Any = None
    league_id: int | None = None
    kickoff: str | None = None
    home_team: str = "Home"
    away_team: str = "Away"

    @property
    def has_history(self) -> bool:
        return self.home.sample_size > 0 and self.away.sample_size > 0

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Fixture":
        league = payload.get("league_id")
        return cls(
            fixture_id=int(payload["fixture_id"]),
            home=TeamStats.from_mapping(payload.get("home") or {}),
            away=TeamStats.from_mapping(payload.get("away") or {}),
            odds_payload=payload.get("odds"),
            league_id=int(league) if league is not None else None,
            kickoff=payload.get("kickoff"),
            home_team=str(payload.get("home_team") or "Home"),
            away_team=str(payload.get("away_team") or "Away"),
        )


def shrink_rate(team_rate: float, sample_size: int, league_prior: float, tau: float) -> float:
    """Blend ``team_rate`` with ``league_prior`` weighted by ``n / (n + tau)``."""

    if tau <= 0:
        raise ValueError(f"tau must be positive, got {tau}")
    if sample_size < 0:
        raise ValueError(f"sample_size must be non-negative, got {sample_size}")
    if sample_size == 0:
        return league_prior
    weight = sample_size / (sample_size + tau)
    return team_rate * weight + league_prior * (1.0 - weight)


def confidence_for(home_sample: int, away_sample: int) -> Confidence:
    if home_sample >= 5 and away_sample >= 5:
        return "high"
    if home_sample >= 3 and away_sample >= 3:
        return "med"
    return "low"


@dataclasses.dataclass(slots=True)
class ModelOutput:
    market: str
    line: float
    model_prob_over: float
    model_prob_under: float
    model_confidence: Confidence
    rationale: str

    def probability(self, side: str) -> float:
        return self.model_prob_over if side == "over" else self.model_prob_under

    def as_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


class MarketModelBuilder:
    """Turn a home/away :class:`TeamStats` pair into :class:`ModelOutput` rows."""

    def __init__(self, config: ModelsConfig | None = None) -> None:
        self.config = config or ModelsConfig()
        if self.config.shrinkage_tau <= 0:
            raise ValueError("shrinkage_tau must be positive")

    def expected_total(self, market: str, home: TeamStats, away: TeamStats) -> tuple[float, str]:
        """Return the combined rate for ``market`` and a description of its derivation."""

        market_cfg = self._market_config(market)
        tau = self.config.shrinkage_tau
        prior = market_cfg.league_prior
        home_rate = shrink_rate(home.rate(market), home.sample_size, prior, tau)
        away_rate = shrink_rate(away.rate(market), away.sample_size, prior, tau)
        home_note = f"home {home_rate:.2f} (n={home.sample_size})"
        if market_cfg.home_advantage:
            home_rate *= self.config.home_advantage
            home_note += f" x{self.config.home_advantage:g}"
        if market_cfg.combination == "average":
            total = (home_rate + away_rate) / 2.0
            op = "avg"
        else:
            total = home_rate + away_rate
            op = "sum"
        rationale = (
            f"{market}: {home_note}, away {away_rate:.2f} (n={away.sample_size}), "
            f"prior {prior:g}, tau {tau:g} -> {op} {total:.2f}"
        )
        return total, rationale

    def build_market(self, market: str, home: TeamStats, away: TeamStats) -> List[ModelOutput]:
        market_cfg = self._market_config(market)
        total, rationale = self.expected_total(market, home, away)
        confidence = confidence_for(home.sample_size, away.sample_size)
        outputs: List[ModelOutput] = []
        for line in market_cfg.lines:
            if market_cfg.distribution == "neg_binomial":
                dispersion = market_cfg.dispersion or 0.0
                over, under = neg_binomial_over_under(total, dispersion, line)
                detail = f"{rationale}; negbin r={dispersion:g}"
            else:
                over, under = poisson_over_under(total, line)
                detail = f"{rationale}; poisson"
            outputs.append(
                ModelOutput(
                    market=market,
                    line=float(line),
                    model_prob_over=over,
                    model_prob_under=under,
                    model_confidence=confidence,
                    rationale=detail,
                )
            )
        return outputs

    def build(
        self,
        home: TeamStats,
        away: TeamStats,
        markets: Iterable[str] | None = None,
    ) -> List[ModelOutput]:
        selected = list(markets) if markets is not None else list(self.config.markets)
        outputs: List[ModelOutput] = []
        for market in selected:
            outputs.extend(self.build_market(market, home, away))
        logger.debug("Built %d models across %d markets", len(outputs), len(selected))
        return outputs

    def _market_config(self, market: str) -> MarketModelConfig:
        try:
            return self.config.markets[market]
        except KeyError:
            raise KeyError(f"no model configured for market '{market}'") from None


__all__ = [
    "Confidence",
    "Fixture",
    "MAX_WINDOW",
    "MarketModelBuilder",
    "ModelOutput",
    "STAT_FIELDS",
    "TeamStats",
    "confidence_for",
    "shrink_rate",
]
