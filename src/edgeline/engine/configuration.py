from __future__ import annotations

import json
import os
import random
import re
from pathlib import Path
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Iterable,
    Literal,
    Mapping,
    MutableMapping,
    Sequence,
)

import yaml
from pydantic import BaseModel, Field

ENVIRONMENT_VARIABLE = "EDGELINE_ENV"
EXTRA_CONFIG_VARIABLE = "EDGELINE_CONFIG"
ENV_OVERRIDE_PREFIX = "EDGELINE__"
DEFAULT_CONFIG_PATH = Path("config/engine.yaml")

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from .analytics import EdgeDetector
    from .guards import OddsGuard
    from .models import MarketModelBuilder
    from .rules import RulesetRegistry
    from .selections import SelectionBuilder
    from .tickets import TicketSelector
    from .weights import PerformanceWeights


class MarketModelConfig(BaseModel):
    """Distribution settings for one over/under market."""

    distribution: Literal["poisson", "neg_binomial"] = "poisson"
    league_prior: float
    lines: list[float] = Field(default_factory=list)
    dispersion: float | None = None
    combination: Literal["sum", "average"] = "sum"
    home_advantage: bool = False


def _default_market_models() -> Dict[str, MarketModelConfig]:
    return {
        "goals": MarketModelConfig(
            distribution="poisson",
            league_prior=1.4,
            lines=[0.5, 1.5, 2.5, 3.5, 4.5],
            combination="sum",
            home_advantage=True,
        ),
        "cards": MarketModelConfig(
            distribution="neg_binomial",
            league_prior=2.1,
            lines=[2.5, 3.5, 4.5, 5.5],
            dispersion=3.0,
            combination="sum",
        ),
        "corners": MarketModelConfig(
            distribution="neg_binomial",
            league_prior=5.0,
            lines=[8.5, 9.5, 10.5, 11.5],
            dispersion=4.0,
            combination="sum",
        ),
    }


class ModelsConfig(BaseModel):
    """Shrinkage constants and per-market distribution settings."""

    shrinkage_tau: float = 10.0
    home_advantage: float = 1.06
    markets: Dict[str, MarketModelConfig] = Field(default_factory=_default_market_models)


class EdgesConfig(BaseModel):
    """Controls for matching models to book lines and ranking edges."""

    top_n: int = 20
    line_tolerance: float = 0.01
    line_precision: int = 2


class RulesConfig(BaseModel):
    """Which rule matrix is active and where extra matrices live."""

    default_version: str = "v2_combined_matrix_v1"
    extra_directory: str | None = None


class GuardRuleConfig(BaseModel):
    """Upper price cap for a specific market line."""

    market: str
    line: float
    max_odds: float
    side: Literal["over", "under"] = "over"
    description: str = ""


def _default_guard_rules() -> list[GuardRuleConfig]:
    rules = [
        GuardRuleConfig(market="goals", line=1.5, max_odds=3.8, description="Goals O1.5 rarely exceeds 3.8"),
        GuardRuleConfig(market="goals", line=2.5, max_odds=5.0, description="Goals O2.5 rarely exceeds 5.0"),
        GuardRuleConfig(market="cards", line=2.5, max_odds=4.5, description="Cards O2.5 rarely exceeds 4.5"),
    ]
    for line in (8.5, 9.5, 10.5, 11.5, 12.5):
        rules.append(
            GuardRuleConfig(
                market="corners",
                line=line,
                max_odds=6.0,
                description=f"Corners O{line} rarely exceeds 6.0",
            )
        )
    return rules


class GuardsConfig(BaseModel):
    """Global odds band and per-line caps for suspicious prices."""

    odds_min: float = 1.25
    odds_max: float = 5.0
    rules: list[GuardRuleConfig] = Field(default_factory=_default_guard_rules)


class RiskProfileConfig(BaseModel):
    """Acceptable per-leg odds and the anchor used to order candidates."""

    min_odds: float
    max_odds: float
    preferred_odds: float


def _default_risk_profiles() -> Dict[str, RiskProfileConfig]:
    return {
        "safe": RiskProfileConfig(min_odds=1.25, max_odds=1.6, preferred_odds=1.4),
        "standard": RiskProfileConfig(min_odds=1.4, max_odds=2.2, preferred_odds=1.75),
        "risky": RiskProfileConfig(min_odds=1.8, max_odds=3.5, preferred_odds=2.4),
    }


class TicketsConfig(BaseModel):
    """Search bounds for the ticket selector."""

    max_attempts: int = 50
    overshoot_tolerance: float = 1.15
    min_legs: int = 3
    max_legs: int = 8
    nearest_line_window: float = 0.5
    pool_max_odds_factor: float = 1.5
    default_risk: str = "standard"
    risk_profiles: Dict[str, RiskProfileConfig] = Field(default_factory=_default_risk_profiles)


class WeightsConfig(BaseModel):
    """Thresholds applied to historical performance weights."""

    min_sample_size: int = 10
    preferred_threshold: float = 0.58
    avoid_threshold: float = 0.42
    low_weight_threshold: float = 0.80
    default_league_weight: float = 0.9


class PipelineConfig(BaseModel):
    """Concurrency limits for per-fixture analysis."""

    max_concurrency: int = 8


class StorageConfig(BaseModel):
    """Location of the version-keyed selection store."""

    selection_store_path: str | None = None


class EngineConfig(BaseModel):
    """Aggregate configuration for the edge engine."""

    environment: str = "default"
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    edges: EdgesConfig = Field(default_factory=EdgesConfig)
    rules: RulesConfig = Field(default_factory=RulesConfig)
    guards: GuardsConfig = Field(default_factory=GuardsConfig)
    tickets: TicketsConfig = Field(default_factory=TicketsConfig)
    weights: WeightsConfig = Field(default_factory=WeightsConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


class ConfigurationError(ValueError):
    """Raised when engine configuration validation fails."""


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise TypeError(f"Configuration at {path} must be a mapping")
    return dict(data)


def _merge_layers(base: Dict[str, Any], layer: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in layer.items():
        if (
            key in merged
            and isinstance(merged[key], Mapping)
            and isinstance(value, Mapping)
        ):
            merged[key] = _merge_layers(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _resolve_env_tokens(value: Any) -> Any:
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda match: os.getenv(match.group(1), ""), value)
    if isinstance(value, Mapping):
        return {k: _resolve_env_tokens(v) for k, v in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_resolve_env_tokens(item) for item in value]
    return value


def _coerce_env_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        lowered = raw.lower()
        if lowered in {"true", "false"}:
            return lowered == "true"
        return raw


def _set_nested(mapping: MutableMapping[str, Any], path: Iterable[str], value: Any) -> None:
    segments = list(path)
    if not segments:
        return
    head, *tail = segments
    key = head.lower().replace("-", "_")
    if not tail:
        mapping[key] = value
        return
    child = mapping.get(key)
    if not isinstance(child, MutableMapping):
        child = {}
    else:
        child = dict(child)
    mapping[key] = child
    _set_nested(child, tail, value)


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    updated = dict(data)
    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_OVERRIDE_PREFIX):
            continue
        suffix = key[len(ENV_OVERRIDE_PREFIX) :]
        if not suffix:
            continue
        path = [segment for segment in suffix.split("__") if segment]
        if not path:
            continue
        _set_nested(updated, path, _coerce_env_value(raw_value))
    return updated


def load_engine_config(
    *,
    base_path: str | os.PathLike[str] | None = None,
    environment: str | None = None,
    extra_paths: Sequence[str | os.PathLike[str]] | None = None,
) -> EngineConfig:
    """Load layered configuration for the edge engine.

    The loader merges ``config/engine.yaml`` with optional environment-specific
    overrides (``config/engine.<env>.yaml``), additional override files, and
    environment variable overrides that use ``EDGELINE__`` prefixes.  When no
    ``base_path`` is given and the default file is absent the built-in
    defaults are used as the base layer.
    """

    config_path = Path(base_path or DEFAULT_CONFIG_PATH)
    if base_path is None and not config_path.exists():
        data: Dict[str, Any] = {}
    else:
        data = _load_yaml(config_path)

    env_name = environment or os.getenv(ENVIRONMENT_VARIABLE) or data.get("environment")
    if isinstance(env_name, str):
        env_path = config_path.with_name(f"{config_path.stem}.{env_name}{config_path.suffix}")
        if env_path.exists():
            data = _merge_layers(data, _load_yaml(env_path))
        data["environment"] = env_name

    merged = dict(data)
    override_sources: list[Path] = []
    if extra_paths:
        override_sources.extend(Path(path) for path in extra_paths)
    env_overrides = os.getenv(EXTRA_CONFIG_VARIABLE)
    if env_overrides:
        override_sources.extend(Path(token) for token in env_overrides.split(os.pathsep) if token)

    for override in override_sources:
        if override.exists():
            merged = _merge_layers(merged, _load_yaml(override))

    merged = _apply_env_overrides(merged)
    merged = _resolve_env_tokens(merged)

    return EngineConfig.model_validate(merged)


def validate_engine_config(config: EngineConfig) -> list[str]:
    """Validate an :class:`EngineConfig` instance.

    Args:
        config: Parsed configuration object to validate.

    Returns:
        A list of warning messages. The function raises
        :class:`ConfigurationError` if any fatal issues are detected.
    """

    errors: list[str] = []
    warnings: list[str] = []

    models = config.models
    if models.shrinkage_tau <= 0:
        errors.append("models.shrinkage_tau must be greater than zero")
    if models.home_advantage < 1.0:
        errors.append("models.home_advantage must be at least 1.0")
    if not models.markets:
        warnings.append("models.markets is empty; no probability models will be produced")
    for market, market_cfg in models.markets.items():
        if market_cfg.league_prior < 0:
            errors.append(f"models.markets.{market}.league_prior must be non-negative")
        if market_cfg.distribution == "neg_binomial":
            if market_cfg.dispersion is None or market_cfg.dispersion <= 0:
                errors.append(
                    f"models.markets.{market}.dispersion must be greater than zero for neg_binomial"
                )
        if not market_cfg.lines:
            warnings.append(f"models.markets.{market} defines no lines")
        elif any(line < 0 for line in market_cfg.lines):
            errors.append(f"models.markets.{market}.lines must be non-negative")

    edges = config.edges
    if edges.top_n <= 0:
        errors.append("edges.top_n must be greater than zero")
    if edges.line_tolerance < 0:
        errors.append("edges.line_tolerance must be non-negative")
    elif edges.line_tolerance >= 0.5:
        warnings.append(
            "edges.line_tolerance is at least half a goal; adjacent lines may be matched to the same model"
        )
    if edges.line_precision < 0:
        errors.append("edges.line_precision must be non-negative")

    if not config.rules.default_version.strip():
        errors.append("rules.default_version cannot be empty")

    guards = config.guards
    if guards.odds_min <= 1.0:
        errors.append("guards.odds_min must exceed 1.0")
    if guards.odds_max <= guards.odds_min:
        errors.append("guards.odds_max must exceed guards.odds_min")
    for index, rule in enumerate(guards.rules):
        if rule.max_odds <= 1.0:
            errors.append(f"guards.rules[{index}].max_odds must exceed 1.0")

    tickets = config.tickets
    if tickets.max_attempts <= 0:
        errors.append("tickets.max_attempts must be greater than zero")
    if tickets.overshoot_tolerance < 1.0:
        errors.append("tickets.overshoot_tolerance must be at least 1.0")
    if tickets.min_legs <= 0:
        errors.append("tickets.min_legs must be greater than zero")
    if tickets.max_legs < tickets.min_legs:
        errors.append("tickets.max_legs must be at least tickets.min_legs")
    if tickets.nearest_line_window < 0:
        errors.append("tickets.nearest_line_window must be non-negative")
    if tickets.default_risk not in tickets.risk_profiles:
        errors.append(f"tickets.default_risk '{tickets.default_risk}' is not a defined risk profile")
    for name, profile in tickets.risk_profiles.items():
        if profile.min_odds <= 1.0:
            errors.append(f"tickets.risk_profiles.{name}.min_odds must exceed 1.0")
        if profile.max_odds < profile.min_odds:
            errors.append(f"tickets.risk_profiles.{name}.max_odds must be at least min_odds")
        if not profile.min_odds <= profile.preferred_odds <= profile.max_odds:
            warnings.append(
                f"tickets.risk_profiles.{name}.preferred_odds lies outside its odds range"
            )

    weights = config.weights
    if weights.min_sample_size < 0:
        errors.append("weights.min_sample_size must be non-negative")
    if not 0 <= weights.avoid_threshold <= weights.preferred_threshold <= 1:
        errors.append("weights thresholds must satisfy 0 <= avoid <= preferred <= 1")

    if config.pipeline.max_concurrency <= 0:
        errors.append("pipeline.max_concurrency must be greater than zero")

    if errors:
        bullet_list = "\n".join(f"- {message}" for message in errors)
        raise ConfigurationError(f"Configuration validation failed:\n{bullet_list}")

    return warnings


def load_rulesets(
    config: EngineConfig,
    *,
    base_path: str | os.PathLike[str] | None = None,
) -> "RulesetRegistry":
    """Build a ruleset registry from the bundled matrices plus any extras."""

    from .rules import RulesetRegistry

    registry = RulesetRegistry.bundled()
    extra = config.rules.extra_directory
    if extra:
        candidate = Path(extra)
        if not candidate.is_absolute() and base_path is not None:
            base_root = Path(base_path)
            if base_root.is_file():
                base_root = base_root.parent
            candidate = base_root / candidate
        registry = registry.merged(RulesetRegistry.from_directory(candidate))
    if config.rules.default_version not in registry:
        raise ConfigurationError(
            f"rules.default_version '{config.rules.default_version}' is not a known ruleset"
        )
    return registry


def create_model_builder(config: EngineConfig) -> "MarketModelBuilder":
    """Construct a :class:`MarketModelBuilder` from configuration."""

    from .models import MarketModelBuilder

    return MarketModelBuilder(config.models)


def create_edge_detector(config: EngineConfig) -> "EdgeDetector":
    """Construct an :class:`EdgeDetector` with configuration defaults."""

    from .analytics import EdgeDetector

    edges = config.edges
    return EdgeDetector(
        top_n=edges.top_n,
        line_tolerance=edges.line_tolerance,
        line_precision=edges.line_precision,
    )


def create_odds_guard(config: EngineConfig) -> "OddsGuard":
    """Construct the suspicious-odds guard."""

    from .guards import OddsGuard

    return OddsGuard.from_config(config.guards)


def create_ticket_selector(
    config: EngineConfig,
    *,
    rng: random.Random | None = None,
) -> "TicketSelector":
    """Construct a :class:`TicketSelector` honouring the configured bounds."""

    from .tickets import TicketSelector

    tickets = config.tickets
    return TicketSelector(
        max_attempts=tickets.max_attempts,
        overshoot_tolerance=tickets.overshoot_tolerance,
        rng=rng,
    )


def create_selection_builder(
    config: EngineConfig,
    registry: "RulesetRegistry",
    *,
    version: str | None = None,
    weights: "PerformanceWeights" | None = None,
) -> "SelectionBuilder":
    """Construct a rule-based :class:`SelectionBuilder`."""

    from .selections import SelectionBuilder

    ruleset = registry.get(version or config.rules.default_version)
    return SelectionBuilder(
        ruleset,
        guard=create_odds_guard(config),
        weights=weights,
        line_tolerance=config.edges.line_tolerance,
    )


__all__ = [
    "ConfigurationError",
    "EdgesConfig",
    "EngineConfig",
    "GuardRuleConfig",
    "GuardsConfig",
    "MarketModelConfig",
    "ModelsConfig",
    "PipelineConfig",
    "RiskProfileConfig",
    "RulesConfig",
    "StorageConfig",
    "TicketsConfig",
    "WeightsConfig",
    "create_edge_detector",
    "create_model_builder",
    "create_odds_guard",
    "create_selection_builder",
    "create_ticket_selector",
    "load_engine_config",
    "load_rulesets",
    "validate_engine_config",
]
