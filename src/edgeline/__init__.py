"""
edgeline: statistical edge and ticket engine for football over/under markets.

This package turns rolling team statistics into probability models, removes
the bookmaker margin from over/under prices, ranks value edges, maps combined
averages to recommended lines through versioned rule matrices, and assembles
multi-leg tickets that land inside a target odds band.
"""

from importlib.metadata import PackageNotFoundError, version

try:  # pragma: no cover - exercised in packaging workflows
    __version__ = version("edgeline")
except PackageNotFoundError:  # pragma: no cover - local editable installs
    __version__ = "0.0.0"

_EXPORTS = {
    # Rule matrices
    "Ruleset": ".engine.rules",
    "RulesetRegistry": ".engine.rules",
    "pick_line": ".engine.rules",
    "default_registry": ".engine.rules",
    # Probability models
    "poisson_pmf": ".engine.distributions",
    "poisson_cdf": ".engine.distributions",
    "neg_binomial_pmf": ".engine.distributions",
    "neg_binomial_cdf": ".engine.distributions",
    "TeamStats": ".engine.models",
    "MarketModelBuilder": ".engine.models",
    "shrink_rate": ".engine.models",
    "compute_team_form": ".engine.team_form",
    # Odds and edges
    "EdgeDetector": ".engine.analytics",
    "EdgeResult": ".engine.analytics",
    "parse_bookmaker_payload": ".engine.odds",
    "remove_overround": ".engine.odds",
    # Tickets
    "TicketSelector": ".engine.tickets",
    "select_ticket": ".engine.tickets",
    "shuffle_ticket": ".engine.tickets",
    # Configuration
    "load_engine_config": ".engine.configuration",
    "get_settings": ".config",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> object:  # pragma: no cover - thin lazy importer
    from importlib import import_module

    target_module = _EXPORTS.get(name)
    if not target_module:
        raise AttributeError(f"module {__name__} has no attribute {name}")
    module = import_module(target_module, __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr
