"""Rejection of implausible bookmaker prices."""

from __future__ import annotations

import dataclasses
import logging
from typing import Iterable, List, Protocol, Sequence, TypeVar

from .configuration import GuardRuleConfig, GuardsConfig

logger = logging.getLogger(__name__)


class _Priced(Protocol):
    market: str
    side: str
    line: float
    odds: float


PricedT = TypeVar("PricedT", bound=_Priced)


@dataclasses.dataclass(frozen=True, slots=True)
class GuardRule:
    market: str
    line: float
    max_odds: float
    side: str = "over"
    description: str = ""

    def matches(self, market: str, side: str, line: float, tolerance: float) -> bool:
        return self.market == market and self.side == side and abs(self.line - line) < tolerance


class OddsGuard:
    """Apply the global odds band and per-line caps to candidate prices."""

    def __init__(
        self,
        odds_min: float = 1.25,
        odds_max: float = 5.0,
        rules: Sequence[GuardRule] = (),
        tolerance: float = 0.01,
    ) -> None:
        if odds_max <= odds_min:
            raise ValueError("odds_max must exceed odds_min")
        self.odds_min = odds_min
        self.odds_max = odds_max
        self.rules = tuple(rules)
        self.tolerance = tolerance

    @classmethod
    def from_config(cls, config: GuardsConfig) -> "OddsGuard":
        return cls(
            odds_min=config.odds_min,
            odds_max=config.odds_max,
            rules=[_rule_from_config(rule) for rule in config.rules],
        )

    def check(self, market: str, side: str, line: float, odds: float) -> str | None:
        """Return a reason when the price looks wrong, otherwise ``None``."""

        label = f"{market} {side.capitalize()} {line:g} @ {odds:.2f}"
        if odds < self.odds_min:
            return f"out of band: {label} below minimum {self.odds_min:g}"
        if odds > self.odds_max:
            return f"out of band: {label} above maximum {self.odds_max:g}"
        for rule in self.rules:
            if rule.matches(market, side, line, self.tolerance) and odds >= rule.max_odds:
                reason = f"suspicious odds: {label} reaches cap {rule.max_odds:g}"
                if rule.description:
                    reason += f" ({rule.description})"
                return reason
        return None

    def filter(self, items: Iterable[PricedT]) -> List[PricedT]:
        kept: List[PricedT] = []
        for item in items:
            reason = self.check(item.market, item.side, item.line, item.odds)
            if reason:
                logger.warning("%s - dropped", reason)
                continue
            kept.append(item)
        return kept


def _rule_from_config(rule: GuardRuleConfig) -> GuardRule:
    return GuardRule(
        market=rule.market,
        line=rule.line,
        max_odds=rule.max_odds,
        side=rule.side,
        description=rule.description,
    )


__all__ = ["GuardRule", "OddsGuard"]
