"""Statistical edge engine for football over/under markets.

Team form feeds shrunk Poisson and Negative-Binomial models, bookmaker
prices are devigged per line, and positive edges are ranked.  Versioned rule
matrices turn combined team averages into recommended lines which can be
priced, persisted and combined into multi-leg tickets.
"""

from .analytics import EdgeDetector, EdgeResult
from .configuration import (
    ConfigurationError,
    EngineConfig,
    load_engine_config,
    validate_engine_config,
)
from .distributions import (
    neg_binomial_cdf,
    neg_binomial_pmf,
    poisson_cdf,
    poisson_pmf,
)
from .guards import GuardRule, OddsGuard
from .models import (
    Fixture,
    MarketModelBuilder,
    ModelOutput,
    TeamStats,
    confidence_for,
    shrink_rate,
)
from .odds import (
    OddsQuote,
    extract_line_pairs,
    normalize_market_name,
    normalize_odds_value,
    parse_bookmaker_payload,
    remove_overround,
    resolve_market,
)
from .pipeline import FixtureAnalysis, FixtureAnalyzer, FixtureRef, ResultsStatsSource
from .rules import (
    Pick,
    Ruleset,
    RulesetError,
    RulesetRegistry,
    UnknownCategoryError,
    UnknownRulesetVersionError,
    default_registry,
    pick_line,
)
from .selections import Selection, SelectionBuilder, SelectionStore
from .tickets import (
    RiskProfile,
    Ticket,
    TicketLeg,
    TicketSearchResult,
    TicketSelector,
    build_candidate_pool,
    select_ticket,
    shuffle_ticket,
)
from .team_form import (
    apply_league_priors,
    compute_team_form,
    league_priors,
    read_results,
)
from .weights import PerformanceWeights

__all__ = [
    "ConfigurationError",
    "EdgeDetector",
    "EdgeResult",
    "EngineConfig",
    "Fixture",
    "FixtureAnalysis",
    "FixtureAnalyzer",
    "FixtureRef",
    "GuardRule",
    "MarketModelBuilder",
    "ModelOutput",
    "OddsGuard",
    "OddsQuote",
    "PerformanceWeights",
    "Pick",
    "ResultsStatsSource",
    "RiskProfile",
    "Ruleset",
    "RulesetError",
    "RulesetRegistry",
    "Selection",
    "SelectionBuilder",
    "SelectionStore",
    "TeamStats",
    "Ticket",
    "TicketLeg",
    "TicketSearchResult",
    "TicketSelector",
    "UnknownCategoryError",
    "UnknownRulesetVersionError",
    "apply_league_priors",
    "build_candidate_pool",
    "compute_team_form",
    "confidence_for",
    "default_registry",
    "extract_line_pairs",
    "league_priors",
    "load_engine_config",
    "neg_binomial_cdf",
    "neg_binomial_pmf",
    "normalize_market_name",
    "normalize_odds_value",
    "parse_bookmaker_payload",
    "pick_line",
    "poisson_cdf",
    "poisson_pmf",
    "read_results",
    "remove_overround",
    "resolve_market",
    "select_ticket",
    "shrink_rate",
    "shuffle_ticket",
    "validate_engine_config",
]
