"""Versioned rule matrices mapping combined team averages to lines.

A ruleset is a per-category ordered list of ``{range, pick}`` entries plus the
formula used to combine the two teams' averages.  Both travel under a single
version tag so that a stored recommendation can always be reproduced against
the matrix that generated it.
"""

from __future__ import annotations

import dataclasses
import functools
import logging
import math
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Literal, Mapping, Sequence

import yaml

logger = logging.getLogger(__name__)

Side = Literal["over", "under"]
CombinationMethod = Literal["sum", "average", "weighted"]

GTE = "gte"
_COMBINATION_METHODS = ("sum", "average", "weighted")
_RULESET_PACKAGE = "edgeline.engine.rulesets"


class RulesetError(ValueError):
    """Raised when a ruleset resource is malformed."""


class UnknownRulesetVersionError(RulesetError):
    """Raised when a caller asks for a version that is not registered."""


class UnknownCategoryError(RulesetError):
    """Raised when a category is not defined by the active ruleset."""


@dataclasses.dataclass(frozen=True, slots=True)
class Pick:
    side: Side
    line: float

    def label(self) -> str:
        return f"{self.side.capitalize()} {self.line:g}"

    def as_dict(self) -> Dict[str, Any]:
        return {"side": self.side, "line": self.line}


@dataclasses.dataclass(frozen=True, slots=True)
class Rule:
    """One matrix row; ``upper is None`` marks the ``gte`` sentinel."""

    lower: float | None
    upper: float | None
    pick: Pick | None

    @property
    def is_gte(self) -> bool:
        return self.lower is None and self.upper is None

    def contains(self, value: float) -> bool:
        if self.lower is None or self.upper is None:
            return False
        return self.lower <= value <= self.upper


@dataclasses.dataclass(frozen=True, slots=True)
class Combination:
    method: CombinationMethod = "sum"
    home_weight: float = 0.5

    def apply(self, home: float, away: float) -> float:
        if self.method == "sum":
            return home + away
        if self.method == "average":
            return (home + away) / 2.0
        return home * self.home_weight + away * (1.0 - self.home_weight)


@dataclasses.dataclass(frozen=True, slots=True)
class Ruleset:
    version: str
    combination: Combination
    categories: Mapping[str, tuple[Rule, ...]]
    description: str = ""

    def rules_for(self, category: str) -> tuple[Rule, ...]:
        try:
            return self.categories[category]
        except KeyError:
            raise UnknownCategoryError(
                f"category '{category}' is not defined by ruleset '{self.version}'"
            ) from None

    def gte_threshold(self, category: str) -> float:
        """Largest finite upper bound in ``category``; the ``gte`` cut-off."""

        return max(
            rule.upper for rule in self.rules_for(category) if rule.upper is not None
        )

    def combine(self, home: float, away: float) -> float:
        return self.combination.apply(home, away)

    def pick(self, category: str, value: float) -> Pick | None:
        return pick_line(self, category, value)

    def pick_combined(self, category: str, home: float, away: float) -> Pick | None:
        return pick_line(self, category, self.combine(home, away))

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "Ruleset":
        version = payload.get("version")
        if not isinstance(version, str) or not version.strip():
            raise RulesetError("ruleset is missing a version tag")
        combination = _parse_combination(version, payload.get("combination", "sum"))
        raw_categories = payload.get("categories")
        if not isinstance(raw_categories, Mapping) or not raw_categories:
            raise RulesetError(f"ruleset '{version}' defines no categories")
        categories: Dict[str, tuple[Rule, ...]] = {}
        for name, entries in raw_categories.items():
            if not isinstance(entries, Sequence) or isinstance(entries, (str, bytes)):
                raise RulesetError(f"ruleset '{version}' category '{name}' must be a list")
            rules = tuple(_parse_rule(version, str(name), entry) for entry in entries)
            if not any(rule.upper is not None for rule in rules):
                raise RulesetError(
                    f"ruleset '{version}' category '{name}' needs at least one closed range"
                )
            categories[str(name)] = rules
        return cls(
            version=version,
            combination=combination,
            categories=categories,
            description=str(payload.get("description", "")),
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Ruleset":
        with Path(path).open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, Mapping):
            raise RulesetError(f"ruleset at {path} must be a mapping")
        return cls.from_mapping(data)


def _parse_combination(version: str, raw: Any) -> Combination:
    if isinstance(raw, str):
        raw = {"method": raw}
    if not isinstance(raw, Mapping):
        raise RulesetError(f"ruleset '{version}' has an invalid combination block")
    method = raw.get("method", "sum")
    if method not in _COMBINATION_METHODS:
        raise RulesetError(f"ruleset '{version}' uses unknown combination '{method}'")
    home_weight = float(raw.get("home_weight", 0.5))
    if not 0.0 <= home_weight <= 1.0:
        raise RulesetError(f"ruleset '{version}' home_weight must be within [0, 1]")
    return Combination(method=method, home_weight=home_weight)


def _parse_rule(version: str, category: str, entry: Any) -> Rule:
    where = f"ruleset '{version}' category '{category}'"
    if not isinstance(entry, Mapping) or "range" not in entry:
        raise RulesetError(f"{where} has an entry without a range")
    raw_range = entry["range"]
    raw_pick = entry.get("pick")
    pick: Pick | None = None
    if raw_pick is not None:
        side = str(raw_pick.get("side", "")).lower()
        if side not in ("over", "under"):
            raise RulesetError(f"{where} has a pick with side '{side}'")
        try:
            line = float(raw_pick["line"])
        except (KeyError, TypeError, ValueError):
            raise RulesetError(f"{where} has a pick without a numeric line") from None
        pick = Pick(side=side, line=line)  # type: ignore[arg-type]
    if raw_range == GTE:
        return Rule(lower=None, upper=None, pick=pick)
    if not isinstance(raw_range, Sequence) or len(raw_range) != 2:
        raise RulesetError(f"{where} has range {raw_range!r}; expected [lo, hi] or 'gte'")
    lower, upper = float(raw_range[0]), float(raw_range[1])
    if lower > upper:
        raise RulesetError(f"{where} has inverted range [{lower}, {upper}]")
    return Rule(lower=lower, upper=upper, pick=pick)


def pick_line(ruleset: Ruleset, category: str, value: float) -> Pick | None:
    """Return the pick for ``value`` or ``None`` when no line is eligible.

    Entries are scanned from the end so that, where adjacent ranges share a
    boundary, the later (upper) entry wins.
    """

    if math.isnan(value):
        raise ValueError("combined value cannot be NaN")
    rules = ruleset.rules_for(category)
    threshold: float | None = None
    for rule in reversed(rules):
        if rule.is_gte:
            if threshold is None:
                threshold = ruleset.gte_threshold(category)
            if value >= threshold:
                return rule.pick
        elif rule.contains(value):
            return rule.pick
    return None


class RulesetRegistry:
    """Immutable lookup of rulesets by version tag."""

    def __init__(self, rulesets: Iterable[Ruleset] = ()) -> None:
        self._rulesets: Dict[str, Ruleset] = {}
        for ruleset in rulesets:
            if ruleset.version in self._rulesets:
                raise RulesetError(f"duplicate ruleset version '{ruleset.version}'")
            self._rulesets[ruleset.version] = ruleset

    def __contains__(self, version: object) -> bool:
        return version in self._rulesets

    def __iter__(self) -> Iterator[Ruleset]:
        return iter(self._rulesets.values())

    def __len__(self) -> int:
        return len(self._rulesets)

    def versions(self) -> list[str]:
        return sorted(self._rulesets)

    def get(self, version: str) -> Ruleset:
        try:
            return self._rulesets[version]
        except KeyError:
            known = ", ".join(self.versions()) or "none"
            raise UnknownRulesetVersionError(
                f"unknown ruleset version '{version}' (known: {known})"
            ) from None

    def merged(self, other: "RulesetRegistry") -> "RulesetRegistry":
        """Return a registry holding both sets; ``other`` wins on conflicts."""

        combined = dict(self._rulesets)
        for ruleset in other:
            if ruleset.version in combined:
                logger.info("Ruleset %s overridden by external definition", ruleset.version)
            combined[ruleset.version] = ruleset
        return RulesetRegistry(combined.values())

    @classmethod
    def from_directory(cls, directory: str | Path) -> "RulesetRegistry":
        root = Path(directory)
        if not root.is_dir():
            raise RulesetError(f"ruleset directory {root} does not exist")
        rulesets = [
            Ruleset.from_yaml(path)
            for path in sorted(root.iterdir())
            if path.suffix in (".yaml", ".yml")
        ]
        logger.debug("Loaded %d rulesets from %s", len(rulesets), root)
        return cls(rulesets)

    @classmethod
    def bundled(cls) -> "RulesetRegistry":
        """Load the rule matrices shipped with the package."""

        rulesets = []
        for entry in sorted(resources.files(_RULESET_PACKAGE).iterdir(), key=lambda item: item.name):
            if not entry.name.endswith((".yaml", ".yml")):
                continue
            data = yaml.safe_load(entry.read_text(encoding="utf-8")) or {}
            rulesets.append(Ruleset.from_mapping(data))
        return cls(rulesets)


@functools.lru_cache(maxsize=1)
def default_registry() -> RulesetRegistry:
    return RulesetRegistry.bundled()


__all__ = [
    "Combination",
    "GTE",
    "Pick",
    "Rule",
    "Ruleset",
    "RulesetError",
    "RulesetRegistry",
    "UnknownCategoryError",
    "UnknownRulesetVersionError",
    "default_registry",
    "pick_line",
]
