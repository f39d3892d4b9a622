"""Command line interface for the edgeline engine."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import random
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Protocol, Sequence, TypeVar

from pydantic import ValidationError

from ..config import get_settings
from .configuration import (
    ConfigurationError,
    EngineConfig,
    create_edge_detector,
    create_model_builder,
    create_selection_builder,
    create_ticket_selector,
    load_engine_config,
    load_rulesets,
    validate_engine_config,
)
from .logging import configure_logging
from .models import Fixture, TeamStats
from .pipeline import (
    FixtureAnalyzer,
    FixtureRef,
    ResultsStatsSource,
    StaticOddsSource,
    StaticStatsSource,
    StatsSource,
)
from .rules import RulesetRegistry
from .selections import SelectionStore
from .team_form import apply_league_priors, read_results
from .tickets import (
    TicketLeg,
    build_candidate_pool,
    resolve_risk_profile,
    shuffle_ticket,
)


@dataclasses.dataclass(slots=True)
class CommandContext:
    """Runtime objects shared across command handlers."""

    config: EngineConfig
    registry: RulesetRegistry
    storage_path: Path

    def store(self) -> SelectionStore:
        return SelectionStore(self.storage_path)


class CommandHandler(Protocol):
    async def __call__(self, context: CommandContext, args: argparse.Namespace) -> None:
        """Execute a command against the loaded engine context."""


HandlerT = TypeVar("HandlerT", bound=CommandHandler)


@dataclasses.dataclass(slots=True)
class Subcommand:
    """Container describing a CLI sub-command."""

    name: str
    help: str
    configure: Callable[[argparse.ArgumentParser], None]
    handler: CommandHandler

    def add_to_parser(
        self,
        subparsers,
        parent: argparse.ArgumentParser,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser(self.name, parents=[parent], help=self.help)
        self.configure(parser)
        parser.set_defaults(handler=self.handler, command=self.name)
        return parser


class SubcommandApp:
    """Registry that wires handlers into an :class:`argparse` parser."""

    def __init__(self, description: str | None = None) -> None:
        self._commands: list[Subcommand] = []
        self._description = description

    def command(
        self,
        name: str,
        *,
        help: str,
        configure: Callable[[argparse.ArgumentParser], None],
    ) -> Callable[[HandlerT], HandlerT]:
        """Register ``handler`` as a sub-command with configuration callback."""

        def _decorator(handler: HandlerT) -> HandlerT:
            self._commands.append(
                Subcommand(name=name, help=help, configure=configure, handler=handler)
            )
            return handler

        return _decorator

    @property
    def commands(self) -> Sequence[Subcommand]:
        return tuple(self._commands)

    def build_parser(self) -> argparse.ArgumentParser:
        parent = argparse.ArgumentParser(add_help=False)
        parent.add_argument("--config", dest="config_file")
        parent.add_argument("--environment", dest="config_environment")
        parent.add_argument("--storage")
        parent.add_argument("--log-level")

        parser = argparse.ArgumentParser(description=self._description)
        subparsers = parser.add_subparsers(dest="command", required=True)
        for command in self._commands:
            command.add_to_parser(subparsers, parent)
        return parser


APP = SubcommandApp(description=__doc__)


def _read_json(source: str) -> Any:
    if source == "-":
        return json.load(sys.stdin)
    with Path(source).open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _fixture_inputs(document: Mapping[str, Any]) -> tuple[List[FixtureRef], Dict[int, TeamStats], Dict[int, Any]]:
    """Split a fixtures document into refs, team statistics and odds payloads."""

    refs = [
        FixtureRef(
            fixture_id=int(item["fixture_id"]),
            home_team_id=int(item["home_team_id"]),
            away_team_id=int(item["away_team_id"]),
            league_id=int(item["league_id"]) if item.get("league_id") is not None else None,
            kickoff=item.get("kickoff"),
            home_team=str(item.get("home_team") or "Home"),
            away_team=str(item.get("away_team") or "Away"),
        )
        for item in document.get("fixtures", [])
    ]
    stats = {
        int(team_id): TeamStats.from_mapping(values)
        for team_id, values in (document.get("team_stats") or {}).items()
    }
    odds = {int(fixture_id): payload for fixture_id, payload in (document.get("odds") or {}).items()}
    return refs, stats, odds


def _configure_validate_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--warnings-as-errors", action="store_true", default=False)


@APP.command(
    "validate-config",
    help="Validate engine configuration",
    configure=_configure_validate_parser,
)
async def _cmd_validate_config(context: CommandContext, args: argparse.Namespace) -> None:
    warnings = validate_engine_config(context.config)
    print(f"Configuration '{context.config.environment}' is valid.")
    if warnings:
        print("Warnings:")
        for message in warnings:
            print(f"- {message}")
        if args.warnings_as_errors:
            raise SystemExit(2)


def _configure_rulesets_parser(parser: argparse.ArgumentParser) -> None:
    del parser


@APP.command("rulesets", help="List available rule matrices", configure=_configure_rulesets_parser)
async def _cmd_rulesets(context: CommandContext, args: argparse.Namespace) -> None:
    del args
    default = context.config.rules.default_version
    _print_json(
        [
            {
                "version": ruleset.version,
                "combination": ruleset.combination.method,
                "categories": sorted(ruleset.categories),
                "default": ruleset.version == default,
                "description": ruleset.description,
            }
            for ruleset in context.registry
        ]
    )


def _configure_pick_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--category", required=True)
    parser.add_argument("--version", dest="rules_version")
    value = parser.add_mutually_exclusive_group(required=True)
    value.add_argument("--value", type=float, help="Pre-combined value")
    value.add_argument("--teams", type=float, nargs=2, metavar=("HOME", "AWAY"))


@APP.command("pick", help="Map a combined value to a recommended line", configure=_configure_pick_parser)
async def _cmd_pick(context: CommandContext, args: argparse.Namespace) -> None:
    ruleset = context.registry.get(args.rules_version or context.config.rules.default_version)
    if args.teams is not None:
        combined = ruleset.combine(*args.teams)
    else:
        combined = args.value
    pick = ruleset.pick(args.category, combined)
    _print_json(
        {
            "version": ruleset.version,
            "category": args.category,
            "combined_value": combined,
            "pick": pick.as_dict() if pick else None,
        }
    )


def _configure_analyze_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--input", required=True, help="Fixtures JSON document or '-'")
    parser.add_argument("--version", dest="rules_version")
    parser.add_argument("--persist", action="store_true", default=False)
    parser.add_argument("--concurrency", type=int)
    parser.add_argument(
        "--results",
        help="Finished results (CSV or Parquet) used for team form and league priors",
    )


@APP.command("analyze", help="Model fixtures, rank edges and build selections", configure=_configure_analyze_parser)
async def _cmd_analyze(context: CommandContext, args: argparse.Namespace) -> None:
    refs, stats, odds = _fixture_inputs(_read_json(args.input))
    config = context.config
    stats_source: StatsSource = StaticStatsSource(stats)
    if args.results:
        source = ResultsStatsSource(read_results(args.results), fallback=stats)
        config = config.model_copy(
            update={"models": apply_league_priors(config.models, source.priors)}
        )
        stats_source = source
    analyzer = FixtureAnalyzer(
        stats_source,
        StaticOddsSource(odds),
        model_builder=create_model_builder(config),
        edge_detector=create_edge_detector(config),
        selection_builder=create_selection_builder(
            config, context.registry, version=args.rules_version
        ),
        max_concurrency=args.concurrency or config.pipeline.max_concurrency,
    )
    results = await analyzer.analyze_many(refs)
    if args.persist:
        store = context.store()
        stored = store.upsert(selection for result in results for selection in result.selections)
        print(f"Stored {stored} selections in {context.storage_path}", file=sys.stderr)
    _print_json([result.as_dict() for result in results])


def _configure_ticket_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--input", required=True, help="Fixtures JSON document or '-'")
    parser.add_argument("--target-min", type=float, required=True)
    parser.add_argument("--target-max", type=float, required=True)
    parser.add_argument("--risk")
    parser.add_argument("--min-legs", type=int)
    parser.add_argument("--max-legs", type=int)
    parser.add_argument("--market", action="append", dest="markets")
    parser.add_argument("--version", dest="rules_version")
    parser.add_argument("--seed", type=int)


@APP.command("ticket", help="Assemble a ticket inside a target odds band", configure=_configure_ticket_parser)
async def _cmd_ticket(context: CommandContext, args: argparse.Namespace) -> None:
    refs, stats, odds = _fixture_inputs(_read_json(args.input))
    tickets_cfg = context.config.tickets
    ruleset = context.registry.get(args.rules_version or context.config.rules.default_version)
    risk = resolve_risk_profile(tickets_cfg.risk_profiles, args.risk or tickets_cfg.default_risk)
    fixtures = [
        Fixture(
            fixture_id=ref.fixture_id,
            home=stats[ref.home_team_id],
            away=stats[ref.away_team_id],
            odds_payload=odds.get(ref.fixture_id),
            league_id=ref.league_id,
            kickoff=ref.kickoff,
        )
        for ref in refs
        if ref.home_team_id in stats and ref.away_team_id in stats
    ]
    pool = build_candidate_pool(
        fixtures,
        ruleset,
        risk,
        markets=args.markets,
        nearest_window=tickets_cfg.nearest_line_window,
        max_odds_factor=tickets_cfg.pool_max_odds_factor,
        line_tolerance=context.config.edges.line_tolerance,
    )
    selector = create_ticket_selector(context.config, rng=random.Random(args.seed))
    result = selector.search(
        pool,
        args.target_min,
        args.target_max,
        args.min_legs or tickets_cfg.min_legs,
        args.max_legs or tickets_cfg.max_legs,
        risk.preferred_odds,
    )
    _print_json(result.as_dict())
    if result.ticket is None:
        raise SystemExit(1)


def _configure_shuffle_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--legs", type=int, required=True, dest="target_legs")
    parser.add_argument("--input", help="JSON list of legs; defaults to stored selections")
    parser.add_argument("--lock", action="append", default=[], dest="locked")
    parser.add_argument("--version", dest="rules_version")
    parser.add_argument("--market", action="append", dest="markets")
    parser.add_argument("--seed", type=int)
    parser.add_argument("--previous-hash")


@APP.command("shuffle", help="Draw a random one-leg-per-fixture ticket", configure=_configure_shuffle_parser)
async def _cmd_shuffle(context: CommandContext, args: argparse.Namespace) -> None:
    if args.input:
        candidates = [TicketLeg.from_mapping(item) for item in _read_json(args.input)]
    else:
        version = args.rules_version or context.config.rules.default_version
        candidates = [TicketLeg.from_selection(item) for item in context.store().load(version)]
    if args.markets:
        candidates = [leg for leg in candidates if leg.market in args.markets]
    result = shuffle_ticket(
        candidates,
        args.target_legs,
        locked=args.locked,
        seed=args.seed,
        previous_hash=args.previous_hash,
    )
    _print_json(result.as_dict())
    if result.status != "ok":
        raise SystemExit(1)


def _build_parser() -> argparse.ArgumentParser:
    return APP.build_parser()


async def _dispatch(args: argparse.Namespace) -> None:
    settings = get_settings()
    config_file = args.config_file
    if config_file is None and settings.config_path.exists():
        config_file = str(settings.config_path)
    try:
        config = load_engine_config(
            base_path=config_file,
            environment=args.config_environment or settings.environment,
        )
    except (ConfigurationError, ValidationError, FileNotFoundError) as exc:
        raise SystemExit(str(exc)) from exc
    if args.command != "validate-config":
        try:
            warnings = validate_engine_config(config)
        except ConfigurationError as exc:
            raise SystemExit(str(exc)) from exc
        for message in warnings:
            print(f"[config-warning] {message}", file=sys.stderr)
    try:
        registry = load_rulesets(config, base_path=config_file)
    except ConfigurationError as exc:
        raise SystemExit(str(exc)) from exc
    storage = args.storage or config.storage.selection_store_path or settings.store_path
    context = CommandContext(config=config, registry=registry, storage_path=Path(storage))
    handler: CommandHandler = args.handler
    try:
        await handler(context, args)
    except ConfigurationError as exc:
        print("Configuration invalid:")
        for line in str(exc).splitlines():
            text = line if line.startswith("-") else f"- {line}"
            print(text)
        raise SystemExit(1) from exc
    except ValueError as exc:
        raise SystemExit(f"error: {exc}") from exc


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging((args.log_level or get_settings().log_level).upper())
    asyncio.run(_dispatch(args))


__all__ = ["main"]


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
