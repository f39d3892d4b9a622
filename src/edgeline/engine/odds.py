"""Bookmaker payload parsing and two-way overround removal.

Payloads arrive as ``bookmaker -> market -> value`` trees, optionally wrapped
in a ``response`` list.  Markets may be listed under ``markets`` or ``bets``
and each value carries a free-text ``value`` label such as ``"Over 2.5"`` and a
decimal ``odd``.  Entries that cannot be parsed are skipped one at a time.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import re
from typing import Any, Dict, Iterable, Iterator, List, Literal, Mapping, Sequence

logger = logging.getLogger(__name__)

Side = Literal["over", "under"]

_TOTAL_WORD = re.compile(r"\btotal\b")
_PARENS = re.compile(r"[()]")
_COMMA_DECIMAL = re.compile(r"(\d),(\d)")
_WHITESPACE = re.compile(r"\s+")
_SHORT_OVER = re.compile(r"\bo\b")
_SHORT_UNDER = re.compile(r"\bu\b")
_VALUE_PATTERN = re.compile(r"\b(over|under|o|u)\s*(\d+(?:\.\d+)?)")
_SIDE_ALIASES = {"o": "over", "u": "under", "over": "over", "under": "under"}
# Half-time, team-only and Asian lines are not full-match totals.
_PARTIAL_SCOPE = re.compile(r"\bhalf|\b(?:1st|2nd)\b|\b[12]h\b|\bhome\b|\baway\b|\bteam\b|\basian\b")

# Provider bet ids for full-match totals.
FULL_MATCH_BET_IDS: Mapping[int, str] = {5: "goals", 45: "corners", 80: "cards"}

# Checked in order; the first matching fragment decides the market.
_MARKET_PATTERNS: Sequence[tuple[str, str]] = (
    ("booking", "cards"),
    ("card", "cards"),
    ("corner", "corners"),
    ("foul", "fouls"),
    ("offside", "offsides"),
    ("goal", "goals"),
)


def normalize_odds_value(raw: str) -> str:
    """Canonicalise a bookmaker label, e.g. ``"Total Over (2,5)"`` to ``"over 2.5"``."""

    if not raw:
        return ""
    text = raw.lower().strip()
    text = _TOTAL_WORD.sub("", text)
    text = _PARENS.sub("", text)
    text = _COMMA_DECIMAL.sub(r"\1.\2", text)
    text = _WHITESPACE.sub(" ", text).strip()
    text = _SHORT_OVER.sub("over", text)
    text = _SHORT_UNDER.sub("under", text)
    return text


def parse_value(raw: Any) -> tuple[Side, float] | None:
    """Return ``(side, line)`` for an over/under label or ``None``."""

    if not isinstance(raw, str):
        return None
    text = normalize_odds_value(raw)
    if _PARTIAL_SCOPE.search(text):
        return None
    match = _VALUE_PATTERN.search(text)
    if match is None:
        return None
    line = float(match.group(2))
    if not math.isfinite(line):
        return None
    return _SIDE_ALIASES[match.group(1)], line  # type: ignore[return-value]


def normalize_market_name(name: Any) -> str | None:
    """Map a full-match totals market name to its category.

    Half-time, team-only and Asian variants map to ``None``.
    """

    if not isinstance(name, str):
        return None
    lowered = name.lower()
    if _PARTIAL_SCOPE.search(lowered):
        return None
    for fragment, market in _MARKET_PATTERNS:
        if fragment in lowered:
            return market
    return None


def resolve_market(market: Mapping[str, Any]) -> str | None:
    """Category for a market entry, preferring the provider bet id over its name."""

    bet_id = market.get("id")
    if isinstance(bet_id, int) and not isinstance(bet_id, bool):
        return FULL_MATCH_BET_IDS.get(bet_id)
    if isinstance(bet_id, str) and bet_id.strip().isdigit():
        return FULL_MATCH_BET_IDS.get(int(bet_id))
    return normalize_market_name(market.get("name"))


def parse_odds(raw: Any) -> float | None:
    """Decimal odds as a float, or ``None`` when missing or not above 1.0."""

    if isinstance(raw, bool) or raw is None:
        return None
    try:
        value = float(str(raw).replace(",", ".")) if isinstance(raw, str) else float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 1.0:
        return None
    return value


def line_key(line: float, precision: int = 2) -> str:
    return f"{line:.{precision}f}"


@dataclasses.dataclass(slots=True)
class OddsQuote:
    bookmaker: str
    market: str
    side: Side
    line: float
    odds: float

    @property
    def label(self) -> str:
        return f"{self.side.capitalize()} {self.line:g}"


@dataclasses.dataclass(slots=True)
class LinePair:
    bookmaker: str
    market: str
    line: float
    over_odds: float
    under_odds: float


@dataclasses.dataclass(frozen=True, slots=True)
class DevigResult:
    raw_over_prob: float
    raw_under_prob: float
    book_over_prob: float
    book_under_prob: float

    @property
    def overround(self) -> float:
        return self.raw_over_prob + self.raw_under_prob

    @property
    def normalized_sum(self) -> float:
        return self.book_over_prob + self.book_under_prob


def remove_overround(over_odds: float, under_odds: float) -> DevigResult:
    """Proportionally scale both implied probabilities so they sum to one."""

    if over_odds <= 1.0 or under_odds <= 1.0:
        raise ValueError(
            f"decimal odds must exceed 1.0, got over={over_odds} under={under_odds}"
        )
    raw_over = 1.0 / over_odds
    raw_under = 1.0 / under_odds
    total = raw_over + raw_under
    return DevigResult(
        raw_over_prob=raw_over,
        raw_under_prob=raw_under,
        book_over_prob=raw_over / total,
        book_under_prob=raw_under / total,
    )


def _unwrap(payload: Any) -> Mapping[str, Any]:
    if isinstance(payload, Mapping) and isinstance(payload.get("response"), list):
        response = payload["response"]
        return response[0] if response and isinstance(response[0], Mapping) else {}
    return payload if isinstance(payload, Mapping) else {}


def _iter_markets(payload: Any) -> Iterator[tuple[str, str, Sequence[Any]]]:
    for bookmaker in _unwrap(payload).get("bookmakers") or []:
        if not isinstance(bookmaker, Mapping):
            continue
        book_name = str(bookmaker.get("name") or bookmaker.get("id") or "unknown")
        markets = bookmaker.get("markets") or bookmaker.get("bets") or []
        for market in markets:
            if not isinstance(market, Mapping):
                continue
            market_name = resolve_market(market)
            if market_name is None:
                continue
            values = market.get("values") or []
            if isinstance(values, Sequence):
                yield book_name, market_name, values


def parse_bookmaker_payload(payload: Any) -> List[OddsQuote]:
    """Flatten a raw payload into over/under quotes, skipping malformed entries."""

    quotes: List[OddsQuote] = []
    skipped = 0
    for book_name, market_name, values in _iter_markets(payload):
        for entry in values:
            if not isinstance(entry, Mapping):
                skipped += 1
                continue
            parsed = parse_value(entry.get("value"))
            odds = parse_odds(entry.get("odd"))
            if parsed is None or odds is None:
                skipped += 1
                continue
            side, line = parsed
            quotes.append(OddsQuote(book_name, market_name, side, line, odds))
    if skipped:
        logger.debug("Skipped %d malformed odds entries", skipped)
    return quotes


def extract_line_pairs(payload: Any, *, precision: int = 2) -> List[LinePair]:
    """Group quotes into complete over/under pairs per bookmaker, market and line."""

    grouped: Dict[tuple[str, str, str], Dict[str, float]] = {}
    for quote in parse_bookmaker_payload(payload):
        key = (quote.bookmaker, quote.market, line_key(quote.line, precision))
        grouped.setdefault(key, {})[quote.side] = quote.odds
    pairs: List[LinePair] = []
    for (book_name, market_name, key), sides in grouped.items():
        if "over" not in sides or "under" not in sides:
            continue
        pairs.append(
            LinePair(
                bookmaker=book_name,
                market=market_name,
                line=float(key),
                over_odds=sides["over"],
                under_odds=sides["under"],
            )
        )
    return pairs


def best_quote(
    quotes: Iterable[OddsQuote],
    market: str,
    side: str,
    line: float,
    *,
    tolerance: float = 0.01,
) -> OddsQuote | None:
    """Highest price for ``market``/``side`` at ``line`` across bookmakers."""

    best: OddsQuote | None = None
    for quote in quotes:
        if quote.market != market or quote.side != side:
            continue
        if abs(quote.line - line) > tolerance:
            continue
        if best is None or quote.odds > best.odds:
            best = quote
    return best


def nearest_quote(
    quotes: Iterable[OddsQuote],
    market: str,
    side: str,
    line: float,
    *,
    window: float = 0.5,
) -> OddsQuote | None:
    """Closest line within ``window``; ties go to the better price."""

    best: OddsQuote | None = None
    best_distance = math.inf
    for quote in quotes:
        if quote.market != market or quote.side != side:
            continue
        distance = abs(quote.line - line)
        if distance > window:
            continue
        if distance < best_distance or (
            distance == best_distance and best is not None and quote.odds > best.odds
        ):
            best = quote
            best_distance = distance
    return best


__all__ = [
    "FULL_MATCH_BET_IDS",
    "DevigResult",
    "LinePair",
    "OddsQuote",
    "best_quote",
    "extract_line_pairs",
    "line_key",
    "nearest_quote",
    "normalize_market_name",
    "normalize_odds_value",
    "parse_bookmaker_payload",
    "parse_odds",
    "parse_value",
    "remove_overround",
    "resolve_market",
]
