"""Rule-based selections and their version-keyed persistence."""

from __future__ import annotations

import dataclasses
import datetime as dt
import json
import logging
import os
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from .guards import OddsGuard
from .logging import audit_logger
from .models import STAT_FIELDS, ModelOutput, TeamStats
from .odds import OddsQuote, best_quote, parse_bookmaker_payload
from .rules import Ruleset
from .weights import NEUTRAL_WEIGHT, PerformanceWeights

logger = logging.getLogger(__name__)

MODEL_PROB_FLOOR = 0.05
MODEL_PROB_CEILING = 0.95


@dataclasses.dataclass(slots=True)
class Selection:
    fixture_id: int
    market: str
    side: str
    line: float
    bookmaker: str
    odds: float
    model_prob: float
    edge_pct: float
    sample_size: int
    combined_value: float
    rules_version: str
    league_id: int | None = None
    kickoff: str | None = None
    is_live: bool = False
    weight: float = NEUTRAL_WEIGHT
    combined_snapshot: Mapping[str, float] = dataclasses.field(default_factory=dict)
    computed_at: str = dataclasses.field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc).isoformat()
    )

    @property
    def leg_id(self) -> str:
        return f"{self.fixture_id}-{self.market}-{self.side}-{self.line:g}"

    def as_dict(self) -> Dict[str, Any]:
        payload = dataclasses.asdict(self)
        payload["combined_snapshot"] = dict(self.combined_snapshot)
        return payload


def heuristic_probability(combined_value: float, side: str, line: float) -> float:
    """Ratio of the combined value to twice the line, clamped to [0.05, 0.95]."""

    if line <= 0:
        over = MODEL_PROB_CEILING
    else:
        over = min(MODEL_PROB_CEILING, max(MODEL_PROB_FLOOR, combined_value / (line * 2)))
    return over if side == "over" else 1.0 - over


class SelectionBuilder:
    """Apply a ruleset to a fixture and price each pick against the books."""

    def __init__(
        self,
        ruleset: Ruleset,
        *,
        guard: OddsGuard | None = None,
        weights: PerformanceWeights | None = None,
        line_tolerance: float = 0.01,
    ) -> None:
        self.ruleset = ruleset
        self.guard = guard
        self.weights = weights
        self.line_tolerance = line_tolerance

    def build(
        self,
        fixture_id: int,
        home: TeamStats,
        away: TeamStats,
        odds_payload: Any,
        *,
        league_id: int | None = None,
        kickoff: str | None = None,
        models: Sequence[ModelOutput] = (),
    ) -> List[Selection]:
        if home.sample_size == 0 or away.sample_size == 0:
            logger.debug("Fixture %s skipped: no finished matches for one side", fixture_id)
            return []
        quotes = parse_bookmaker_payload(odds_payload)
        if not quotes:
            logger.debug("Fixture %s skipped: no parsable odds", fixture_id)
            return []

        markets = [market for market in STAT_FIELDS if market in self.ruleset.categories]
        snapshot = {
            market: self.ruleset.combine(home.rate(market), away.rate(market))
            for market in markets
        }
        sample_size = min(home.sample_size, away.sample_size)
        selections: List[Selection] = []
        for market in markets:
            selection = self._price_market(
                fixture_id,
                market,
                snapshot[market],
                quotes,
                models,
                league_id=league_id,
            )
            if selection is None:
                continue
            selection.sample_size = sample_size
            selection.kickoff = kickoff
            selection.combined_snapshot = dict(snapshot)
            selections.append(selection)
        logger.info(
            "Fixture %s produced %d selections under %s",
            fixture_id,
            len(selections),
            self.ruleset.version,
        )
        return selections

    def _price_market(
        self,
        fixture_id: int,
        market: str,
        combined: float,
        quotes: Sequence[OddsQuote],
        models: Sequence[ModelOutput],
        *,
        league_id: int | None,
    ) -> Selection | None:
        pick = self.ruleset.pick(market, combined)
        if pick is None:
            return None
        weight = NEUTRAL_WEIGHT
        if self.weights is not None:
            if self.weights.should_avoid(market, pick.side, pick.line, league_id):
                logger.debug("Fixture %s %s %s avoided by weights", fixture_id, market, pick.label())
                return None
            weight = self.weights.weight(market, pick.side, pick.line, league_id)
        quote = best_quote(quotes, market, pick.side, pick.line, tolerance=self.line_tolerance)
        if quote is None:
            return None
        if self.guard is not None:
            reason = self.guard.check(market, pick.side, pick.line, quote.odds)
            if reason:
                logger.warning("Fixture %s: %s - dropped", fixture_id, reason)
                return None

        model_prob = None
        for model in models:
            if model.market == market and abs(model.line - pick.line) <= self.line_tolerance:
                model_prob = model.probability(pick.side)
                break
        if model_prob is None:
            model_prob = heuristic_probability(combined, pick.side, pick.line)
        implied = 1.0 / quote.odds
        return Selection(
            fixture_id=fixture_id,
            league_id=league_id,
            market=market,
            side=pick.side,
            line=pick.line,
            bookmaker=quote.bookmaker,
            odds=quote.odds,
            model_prob=model_prob,
            edge_pct=(model_prob - implied) / implied * 100.0,
            sample_size=0,
            combined_value=combined,
            rules_version=self.ruleset.version,
            weight=weight,
        )


_COLUMNS = (
    "fixture_id",
    "league_id",
    "market",
    "side",
    "line",
    "bookmaker",
    "is_live",
    "odds",
    "model_prob",
    "edge_pct",
    "sample_size",
    "combined_value",
    "weight",
    "combined_snapshot",
    "kickoff",
    "rules_version",
    "computed_at",
)


class SelectionStore:
    """SQLite upsert store keyed by fixture, line, bookmaker and ruleset version."""

    def __init__(self, storage_path: str | os.PathLike[str] = "selections.sqlite3") -> None:
        self.storage_path = Path(storage_path)
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._audit = audit_logger()
        self._init_db()

    def _init_db(self) -> None:
        with sqlite3.connect(self.storage_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS selections (
                    row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    fixture_id INTEGER NOT NULL,
                    league_id INTEGER,
                    market TEXT NOT NULL,
                    side TEXT NOT NULL,
                    line REAL NOT NULL,
                    bookmaker TEXT NOT NULL,
                    is_live INTEGER NOT NULL,
                    odds REAL NOT NULL,
                    model_prob REAL NOT NULL,
                    edge_pct REAL NOT NULL,
                    sample_size INTEGER NOT NULL,
                    combined_value REAL NOT NULL,
                    weight REAL NOT NULL,
                    combined_snapshot TEXT,
                    kickoff TEXT,
                    rules_version TEXT NOT NULL,
                    computed_at TEXT NOT NULL,
                    UNIQUE (
                        fixture_id,
                        market,
                        side,
                        line,
                        bookmaker,
                        is_live,
                        rules_version
                    )
                )
                """
            )
            conn.commit()

    def upsert(self, selections: Iterable[Selection]) -> int:
        rows = [
            (
                item.fixture_id,
                item.league_id,
                item.market,
                item.side,
                item.line,
                item.bookmaker,
                int(item.is_live),
                item.odds,
                item.model_prob,
                item.edge_pct,
                item.sample_size,
                item.combined_value,
                item.weight,
                json.dumps(dict(item.combined_snapshot), sort_keys=True),
                item.kickoff,
                item.rules_version,
                item.computed_at,
            )
            for item in selections
        ]
        if not rows:
            return 0
        placeholders = ", ".join("?" for _ in _COLUMNS)
        with sqlite3.connect(self.storage_path) as conn:
            conn.executemany(
                f"""
                INSERT INTO selections({", ".join(_COLUMNS)}) VALUES({placeholders})
                ON CONFLICT(
                    fixture_id,
                    market,
                    side,
                    line,
                    bookmaker,
                    is_live,
                    rules_version
                ) DO UPDATE SET
                    league_id=excluded.league_id,
                    odds=excluded.odds,
                    model_prob=excluded.model_prob,
                    edge_pct=excluded.edge_pct,
                    sample_size=excluded.sample_size,
                    combined_value=excluded.combined_value,
                    weight=excluded.weight,
                    combined_snapshot=excluded.combined_snapshot,
                    kickoff=excluded.kickoff,
                    computed_at=excluded.computed_at
                """,
                rows,
            )
            conn.commit()
        for row in rows:
            self._audit.info(
                "selection.upserted",
                extra={
                    "fixture_id": row[0],
                    "market": row[2],
                    "side": row[3],
                    "line": row[4],
                    "bookmaker": row[5],
                    "rules_version": row[15],
                },
            )
        logger.info("Upserted %d selections", len(rows))
        return len(rows)

    def load(
        self,
        rules_version: str,
        *,
        fixture_id: int | None = None,
        market: str | None = None,
    ) -> List[Selection]:
        """Load selections generated by ``rules_version`` only."""

        query = f"SELECT {', '.join(_COLUMNS)} FROM selections WHERE rules_version = ?"
        params: list[Any] = [rules_version]
        if fixture_id is not None:
            query += " AND fixture_id = ?"
            params.append(fixture_id)
        if market is not None:
            query += " AND market = ?"
            params.append(market)
        query += " ORDER BY fixture_id, market, side, line, bookmaker"
        with sqlite3.connect(self.storage_path) as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [
            Selection(
                fixture_id=int(row[0]),
                league_id=int(row[1]) if row[1] is not None else None,
                market=row[2],
                side=row[3],
                line=float(row[4]),
                bookmaker=row[5],
                is_live=bool(row[6]),
                odds=float(row[7]),
                model_prob=float(row[8]),
                edge_pct=float(row[9]),
                sample_size=int(row[10]),
                combined_value=float(row[11]),
                weight=float(row[12]),
                combined_snapshot=json.loads(row[13] or "{}"),
                kickoff=row[14],
                rules_version=row[15],
                computed_at=row[16],
            )
            for row in rows
        ]

    def versions(self) -> List[str]:
        with sqlite3.connect(self.storage_path) as conn:
            rows = conn.execute(
                "SELECT DISTINCT rules_version FROM selections ORDER BY rules_version"
            ).fetchall()
        return [row[0] for row in rows]

    def purge_other_versions(self, rules_version: str) -> int:
        """Delete rows produced by any ruleset other than ``rules_version``."""

        with sqlite3.connect(self.storage_path) as conn:
            cursor = conn.execute(
                "DELETE FROM selections WHERE rules_version != ?", (rules_version,)
            )
            conn.commit()
            removed = cursor.rowcount
        if removed:
            self._audit.info(
                "selection.purged",
                extra={"rules_version": rules_version, "removed": removed},
            )
        return removed


__all__ = [
    "Selection",
    "SelectionBuilder",
    "SelectionStore",
    "heuristic_probability",
]
