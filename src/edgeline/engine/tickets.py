"""Multi-leg ticket assembly.

Two strategies are offered.  :class:`TicketSelector` runs a bounded
randomised greedy search for a leg subset whose odds product lands inside a
target band, keeping at most one leg per fixture and market.
:func:`shuffle_ticket` draws a fixed number of legs by weighted shuffle, one
per fixture, favouring larger edges and longer prices.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import random
from typing import Any, Dict, Iterable, List, Literal, Mapping, Sequence

from .configuration import RiskProfileConfig
from .models import STAT_FIELDS, Fixture
from .odds import best_quote, nearest_quote, parse_bookmaker_payload
from .rules import Ruleset
from .selections import Selection

logger = logging.getLogger(__name__)

SearchStatus = Literal["ok", "fallback", "insufficient_candidates", "exhausted"]

EDGE_WEIGHT = 0.65
ODDS_WEIGHT = 0.25
JITTER_WEIGHT = 0.10


@dataclasses.dataclass(frozen=True, slots=True)
class RiskProfile:
    name: str
    min_odds: float
    max_odds: float
    preferred_odds: float

    @classmethod
    def from_config(cls, name: str, config: RiskProfileConfig) -> "RiskProfile":
        return cls(
            name=name,
            min_odds=config.min_odds,
            max_odds=config.max_odds,
            preferred_odds=config.preferred_odds,
        )

    def accepts(self, odds: float, max_factor: float = 1.5) -> bool:
        return self.min_odds <= odds <= self.max_odds * max_factor


@dataclasses.dataclass(slots=True)
class TicketLeg:
    fixture_id: int
    market: str
    side: str
    line: float
    odds: float
    bookmaker: str
    edge_pct: float = 0.0
    model_prob: float | None = None
    combined_value: float | None = None

    @property
    def selection(self) -> str:
        return f"{self.side.capitalize()} {self.line:g}"

    @property
    def leg_id(self) -> str:
        return f"{self.fixture_id}-{self.market}-{self.side}-{self.line:g}"

    def as_dict(self) -> Dict[str, Any]:
        payload = dataclasses.asdict(self)
        payload["selection"] = self.selection
        payload["leg_id"] = self.leg_id
        return payload

    @classmethod
    def from_selection(cls, selection: Selection) -> "TicketLeg":
        return cls(
            fixture_id=selection.fixture_id,
            market=selection.market,
            side=selection.side,
            line=selection.line,
            odds=selection.odds,
            bookmaker=selection.bookmaker,
            edge_pct=selection.edge_pct,
            model_prob=selection.model_prob,
            combined_value=selection.combined_value,
        )

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "TicketLeg":
        model_prob = payload.get("model_prob")
        combined = payload.get("combined_value")
        return cls(
            fixture_id=int(payload["fixture_id"]),
            market=str(payload["market"]),
            side=str(payload.get("side", "over")),
            line=float(payload["line"]),
            odds=float(payload["odds"]),
            bookmaker=str(payload.get("bookmaker", "")),
            edge_pct=float(payload.get("edge_pct") or 0.0),
            model_prob=float(model_prob) if model_prob is not None else None,
            combined_value=float(combined) if combined is not None else None,
        )


def ticket_hash(legs: Iterable[TicketLeg]) -> str:
    """Order-independent identity of a set of legs."""

    return "|".join(sorted(leg.leg_id for leg in legs))


@dataclasses.dataclass(slots=True)
class Ticket:
    legs: List[TicketLeg]
    total_odds: float
    attempts: int = 0

    @property
    def ticket_hash(self) -> str:
        return ticket_hash(self.legs)

    @property
    def estimated_win_prob(self) -> float:
        probability = 1.0
        for leg in self.legs:
            probability *= leg.model_prob if leg.model_prob is not None else 1.0 / leg.odds
        return probability

    def as_dict(self) -> Dict[str, Any]:
        return {
            "legs": [leg.as_dict() for leg in self.legs],
            "total_odds": self.total_odds,
            "attempts": self.attempts,
            "ticket_hash": self.ticket_hash,
            "estimated_win_prob": self.estimated_win_prob,
        }


@dataclasses.dataclass(slots=True)
class TicketSearchResult:
    status: SearchStatus
    ticket: Ticket | None
    attempts: int
    pool_size: int

    @property
    def found(self) -> bool:
        return self.ticket is not None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "ticket": self.ticket.as_dict() if self.ticket else None,
            "attempts": self.attempts,
            "pool_size": self.pool_size,
        }


class TicketSelector:
    """Randomised greedy search with first-fit, then best-fit, semantics.

    The first attempt walks candidates ordered by distance from the preferred
    odds; each later attempt walks a fresh shuffle drawn from ``rng``.  An
    attempt accepts a candidate while the running product stays at or below
    ``target_max * overshoot_tolerance``.
    """

    def __init__(
        self,
        max_attempts: int = 50,
        overshoot_tolerance: float = 1.15,
        rng: random.Random | None = None,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        if overshoot_tolerance < 1.0:
            raise ValueError("overshoot_tolerance must be at least 1.0")
        self.max_attempts = max_attempts
        self.overshoot_tolerance = overshoot_tolerance
        self.rng = rng or random.Random()

    def search(
        self,
        candidates: Sequence[TicketLeg],
        target_min: float,
        target_max: float,
        min_legs: int = 3,
        max_legs: int = 8,
        preferred_odds: float | None = None,
    ) -> TicketSearchResult:
        if target_min <= 0 or target_max < target_min:
            raise ValueError(f"invalid target band [{target_min}, {target_max}]")
        if min_legs <= 0 or max_legs < min_legs:
            raise ValueError(f"invalid leg bounds [{min_legs}, {max_legs}]")

        pool = list(candidates)
        distinct = {(leg.fixture_id, leg.market) for leg in pool}
        if len(distinct) < min_legs:
            logger.info(
                "Ticket search skipped: %d distinct fixture markets, need %d",
                len(distinct),
                min_legs,
            )
            return TicketSearchResult("insufficient_candidates", None, 0, len(pool))

        if preferred_odds is not None:
            pool.sort(key=lambda leg: abs(leg.odds - preferred_odds))
        ceiling = target_max * self.overshoot_tolerance
        midpoint = (target_min + target_max) / 2.0
        best: Ticket | None = None
        best_distance = math.inf

        for attempt in range(self.max_attempts):
            order = list(pool)
            if attempt > 0:
                self.rng.shuffle(order)
            legs: List[TicketLeg] = []
            used: set[tuple[int, str]] = set()
            product = 1.0
            for candidate in order:
                if len(legs) >= max_legs:
                    break
                key = (candidate.fixture_id, candidate.market)
                if key in used:
                    continue
                new_product = product * candidate.odds
                if new_product > ceiling:
                    continue
                legs.append(candidate)
                used.add(key)
                product = new_product
                if target_min <= product <= target_max and len(legs) >= min_legs:
                    ticket = Ticket(legs, round(product, 2), attempts=attempt + 1)
                    logger.info(
                        "Ticket found on attempt %d: %d legs @ %.2f",
                        attempt + 1,
                        len(legs),
                        product,
                    )
                    return TicketSearchResult("ok", ticket, attempt + 1, len(pool))
            if len(legs) >= min_legs:
                distance = abs(product - midpoint)
                if distance < best_distance:
                    best_distance = distance
                    best = Ticket(legs, round(product, 2), attempts=self.max_attempts)

        if best is not None:
            logger.info(
                "No ticket inside [%.2f, %.2f]; closest has %d legs @ %.2f",
                target_min,
                target_max,
                len(best.legs),
                best.total_odds,
            )
            return TicketSearchResult("fallback", best, self.max_attempts, len(pool))
        logger.info("Ticket search exhausted after %d attempts", self.max_attempts)
        return TicketSearchResult("exhausted", None, self.max_attempts, len(pool))


def select_ticket(
    candidates: Sequence[TicketLeg],
    target_min: float,
    target_max: float,
    min_legs: int = 3,
    max_legs: int = 8,
    preferred_odds: float | None = None,
    *,
    rng: random.Random | None = None,
    max_attempts: int = 50,
) -> Ticket | None:
    """Return the best ticket the search finds, or ``None``."""

    selector = TicketSelector(max_attempts=max_attempts, rng=rng)
    result = selector.search(candidates, target_min, target_max, min_legs, max_legs, preferred_odds)
    return result.ticket


def build_candidate_pool(
    fixtures: Iterable[Fixture],
    ruleset: Ruleset,
    risk: RiskProfile,
    *,
    markets: Sequence[str] | None = None,
    nearest_window: float = 0.5,
    max_odds_factor: float = 1.5,
    line_tolerance: float = 0.01,
) -> List[TicketLeg]:
    """Turn rule-matrix picks into priced legs acceptable for ``risk``."""

    wanted = [market for market in (markets or STAT_FIELDS) if market in ruleset.categories]
    pool: List[TicketLeg] = []
    for fixture in fixtures:
        if not fixture.has_history:
            logger.debug("Fixture %s has no team history, skipping", fixture.fixture_id)
            continue
        quotes = parse_bookmaker_payload(fixture.odds_payload)
        if not quotes:
            logger.debug("Fixture %s has no odds, skipping", fixture.fixture_id)
            continue
        for market in wanted:
            combined = ruleset.combine(fixture.home.rate(market), fixture.away.rate(market))
            pick = ruleset.pick(market, combined)
            if pick is None:
                continue
            quote = best_quote(quotes, market, pick.side, pick.line, tolerance=line_tolerance)
            if quote is None:
                quote = nearest_quote(quotes, market, pick.side, pick.line, window=nearest_window)
            if quote is None or not risk.accepts(quote.odds, max_odds_factor):
                continue
            pool.append(
                TicketLeg(
                    fixture_id=fixture.fixture_id,
                    market=market,
                    side=quote.side,
                    line=quote.line,
                    odds=quote.odds,
                    bookmaker=quote.bookmaker,
                    combined_value=combined,
                )
            )
    logger.info("Candidate pool holds %d legs for risk profile %s", len(pool), risk.name)
    return pool


@dataclasses.dataclass(slots=True)
class ShuffleResult:
    status: Literal["ok", "insufficient_candidates"]
    legs: List[TicketLeg]
    pool_size: int
    seed: int | None = None
    is_different: bool = True

    @property
    def total_odds(self) -> float:
        return math.prod(leg.odds for leg in self.legs)

    @property
    def ticket_hash(self) -> str:
        return ticket_hash(self.legs)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "legs": [leg.as_dict() for leg in self.legs],
            "total_odds": self.total_odds,
            "ticket_hash": self.ticket_hash,
            "is_different": self.is_different,
            "pool_size": self.pool_size,
            "seed": self.seed,
        }


def _locked_fixture(leg_id: str) -> int:
    head = leg_id.split("-", 1)[0]
    try:
        return int(head)
    except ValueError:
        raise ValueError(f"malformed leg id '{leg_id}'") from None


def _weighted_shuffle(items: Sequence[TicketLeg], weights: Sequence[float], rng: random.Random) -> List[TicketLeg]:
    remaining = list(zip(items, weights))
    ordered: List[TicketLeg] = []
    while remaining:
        total = sum(weight for _, weight in remaining)
        r = rng.random() * total
        cumulative = 0.0
        index = len(remaining) - 1
        for i, (_, weight) in enumerate(remaining):
            cumulative += weight
            if r <= cumulative:
                index = i
                break
        ordered.append(remaining.pop(index)[0])
    return ordered


def shuffle_ticket(
    candidates: Sequence[TicketLeg],
    target_legs: int,
    *,
    locked: Sequence[str] = (),
    seed: int | None = None,
    rng: random.Random | None = None,
    previous_hash: str | None = None,
) -> ShuffleResult:
    """Draw ``target_legs`` legs, one per fixture, keeping any locked legs.

    Locked ids (``fixture-market-side-line``) reserve their fixtures; a locked
    leg that is also present in ``candidates`` is carried into the result.
    """

    if target_legs <= 0:
        raise ValueError("target_legs must be positive")
    if len(locked) > target_legs:
        raise ValueError("more locked legs than target legs")
    if rng is None:
        if seed is None:
            seed = random.randrange(2**32)
        rng = random.Random(seed)

    locked_ids = set(locked)
    locked_fixtures = {_locked_fixture(leg_id) for leg_id in locked}
    kept = [leg for leg in candidates if leg.leg_id in locked_ids]
    unlocked = [leg for leg in candidates if leg.fixture_id not in locked_fixtures]
    needed = target_legs - len(locked_ids)

    if len(unlocked) < needed:
        return ShuffleResult("insufficient_candidates", [], len(unlocked), seed)

    weights = [
        EDGE_WEIGHT * max(0.0, leg.edge_pct)
        + ODDS_WEIGHT * (leg.odds / 10.0)
        + JITTER_WEIGHT * rng.random()
        for leg in unlocked
    ]
    chosen: List[TicketLeg] = []
    taken = set(locked_fixtures)
    for leg in _weighted_shuffle(unlocked, weights, rng):
        if len(chosen) >= needed:
            break
        if leg.fixture_id in taken:
            continue
        chosen.append(leg)
        taken.add(leg.fixture_id)

    if len(chosen) < needed:
        logger.info("Shuffle found %d unique fixtures, needed %d", len(chosen), needed)
        return ShuffleResult("insufficient_candidates", [], len(unlocked), seed)

    legs = kept + chosen
    result = ShuffleResult("ok", legs, len(unlocked), seed)
    result.is_different = previous_hash is None or result.ticket_hash != previous_hash
    logger.info("Shuffled %d legs @ %.2f", len(legs), result.total_odds)
    return result


def resolve_risk_profile(profiles: Mapping[str, RiskProfileConfig], name: str) -> RiskProfile:
    try:
        return RiskProfile.from_config(name, profiles[name])
    except KeyError:
        known = ", ".join(sorted(profiles)) or "none"
        raise ValueError(f"unknown risk profile '{name}' (known: {known})") from None


__all__ = [
    "RiskProfile",
    "SearchStatus",
    "ShuffleResult",
    "Ticket",
    "TicketLeg",
    "TicketSearchResult",
    "TicketSelector",
    "build_candidate_pool",
    "resolve_risk_profile",
    "select_ticket",
    "shuffle_ticket",
    "ticket_hash",
]
