from __future__ import annotations

import os
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, Tuple

import pytest

from edgeline.engine.configuration import EngineConfig
from edgeline.engine.models import Fixture, TeamStats
from edgeline.engine.rules import Ruleset, RulesetRegistry, default_registry

PayloadFactory = Callable[..., Dict[str, Any]]


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("EDGELINE"):
            monkeypatch.delenv(key, raising=False)


def _payload(
    books: Mapping[str, Mapping[str, Sequence[Tuple[str, Any]]]],
    *,
    market_key: str = "markets",
    wrap: bool = False,
) -> Dict[str, Any]:
    bookmakers: List[Dict[str, Any]] = []
    for book_name, markets in books.items():
        bookmakers.append(
            {
                "name": book_name,
                market_key: [
                    {
                        "name": market_name,
                        "values": [{"value": label, "odd": odd} for label, odd in values],
                    }
                    for market_name, values in markets.items()
                ],
            }
        )
    payload: Dict[str, Any] = {"bookmakers": bookmakers}
    if wrap:
        return {"response": [payload]}
    return payload


@pytest.fixture()
def make_payload() -> PayloadFactory:
    return _payload


@pytest.fixture()
def engine_config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture()
def registry() -> RulesetRegistry:
    return default_registry()


@pytest.fixture()
def sum_ruleset(registry: RulesetRegistry) -> Ruleset:
    return registry.get("v2_combined_matrix_v1")


@pytest.fixture()
def goals_ruleset() -> Ruleset:
    return Ruleset.from_mapping(
        {
            "version": "goals-adjacent",
            "combination": "sum",
            "categories": {
                "goals": [
                    {"range": [1.0, 2.0], "pick": {"side": "over", "line": 0.5}},
                    {"range": [2.0, 2.7], "pick": {"side": "over", "line": 1.5}},
                    {"range": [2.7, 4.0], "pick": {"side": "over", "line": 2.5}},
                    {"range": "gte", "pick": {"side": "over", "line": 3.5}},
                ]
            },
        }
    )


@pytest.fixture()
def strong_home() -> TeamStats:
    return TeamStats(goals=1.8, cards=2.4, corners=5.6, fouls=11.0, offsides=2.0, sample_size=5)


@pytest.fixture()
def strong_away() -> TeamStats:
    return TeamStats(goals=1.4, cards=2.2, corners=4.8, fouls=11.5, offsides=1.6, sample_size=5)


def fixtures_with_odds(
    payload_factory: PayloadFactory,
    fixture_ids: Iterable[int],
    home: TeamStats,
    away: TeamStats,
) -> List[Fixture]:
    fixtures = []
    for index, fixture_id in enumerate(fixture_ids):
        bump = 0.02 * index
        payload = payload_factory(
            {
                "BookA": {
                    "Goals Over/Under": [
                        ("Over 2.5", 1.70 + bump),
                        ("Under 2.5", 2.10),
                        ("Over 3.5", 2.60 + bump),
                        ("Under 3.5", 1.45),
                    ],
                    "Corners Over/Under": [
                        ("Over 9.5", 1.80 + bump),
                        ("Under 9.5", 1.95),
                    ],
                    "Cards Over/Under": [
                        ("Over 3.5", 1.55 + bump),
                        ("Under 3.5", 2.30),
                    ],
                }
            },
            market_key="bets",
        )
        fixtures.append(Fixture(fixture_id=fixture_id, home=home, away=away, odds_payload=payload))
    return fixtures


@pytest.fixture()
def fixture_set(make_payload: PayloadFactory, strong_home: TeamStats, strong_away: TeamStats) -> List[Fixture]:
    return fixtures_with_odds(make_payload, range(101, 106), strong_home, strong_away)
