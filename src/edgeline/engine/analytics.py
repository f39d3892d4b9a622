"""Edge detection against overround-free bookmaker probabilities."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, Iterable, List, Sequence

from .models import ModelOutput
from .odds import LinePair, extract_line_pairs, remove_overround

logger = logging.getLogger(__name__)


@dataclasses.dataclass(slots=True)
class EdgeResult:
    market: str
    line: float
    side: str
    model_prob: float
    book_prob: float
    edge: float
    odds: float
    bookmaker: str
    confidence: str
    rationale: str
    raw_over_prob: float
    raw_under_prob: float
    normalized_sum: float

    def as_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


class EdgeDetector:
    """Compare model probabilities with devigged prices and rank positive edges."""

    def __init__(
        self,
        top_n: int = 20,
        line_tolerance: float = 0.01,
        line_precision: int = 2,
    ) -> None:
        if top_n <= 0:
            raise ValueError("top_n must be positive")
        self.top_n = top_n
        self.line_tolerance = line_tolerance
        self.line_precision = line_precision

    def match_model(self, models: Iterable[ModelOutput], market: str, line: float) -> ModelOutput | None:
        for model in models:
            if model.market == market and abs(model.line - line) <= self.line_tolerance:
                return model
        return None

    def evaluate_pair(self, model: ModelOutput, pair: LinePair) -> List[EdgeResult]:
        """Devig one bookmaker line and return the sides with a positive edge."""

        devig = remove_overround(pair.over_odds, pair.under_odds)
        edge_over = model.model_prob_over - devig.book_over_prob
        edge_under = model.model_prob_under - devig.book_under_prob
        logger.debug(
            "bookmaker=%s market=%s line=%s raw=(%.4f, %.4f) sum_raw=%.4f book=(%.4f, %.4f) edge=(%.4f, %.4f)",
            pair.bookmaker,
            pair.market,
            pair.line,
            devig.raw_over_prob,
            devig.raw_under_prob,
            devig.overround,
            devig.book_over_prob,
            devig.book_under_prob,
            edge_over,
            edge_under,
        )
        results: List[EdgeResult] = []
        sides = (
            ("over", model.model_prob_over, devig.book_over_prob, edge_over, pair.over_odds),
            ("under", model.model_prob_under, devig.book_under_prob, edge_under, pair.under_odds),
        )
        for side, model_prob, book_prob, edge, odds in sides:
            if edge <= 0:
                continue
            results.append(
                EdgeResult(
                    market=pair.market,
                    line=pair.line,
                    side=side,
                    model_prob=model_prob,
                    book_prob=book_prob,
                    edge=edge,
                    odds=odds,
                    bookmaker=pair.bookmaker,
                    confidence=model.model_confidence,
                    rationale=model.rationale,
                    raw_over_prob=devig.raw_over_prob,
                    raw_under_prob=devig.raw_under_prob,
                    normalized_sum=devig.normalized_sum,
                )
            )
        return results

    def detect_pairs(self, models: Sequence[ModelOutput], pairs: Iterable[LinePair]) -> List[EdgeResult]:
        edges: List[EdgeResult] = []
        unmatched = 0
        for pair in pairs:
            model = self.match_model(models, pair.market, pair.line)
            if model is None:
                unmatched += 1
                continue
            edges.extend(self.evaluate_pair(model, pair))
        edges.sort(key=lambda item: abs(item.edge), reverse=True)
        if unmatched:
            logger.debug("%d bookmaker lines had no matching model", unmatched)
        return edges[: self.top_n]

    def detect(self, models: Sequence[ModelOutput], payload: Any) -> List[EdgeResult]:
        """Rank positive edges for ``models`` against a raw bookmaker payload."""

        pairs = extract_line_pairs(payload, precision=self.line_precision)
        edges = self.detect_pairs(models, pairs)
        logger.info("Found %d positive edges across %d line pairs", len(edges), len(pairs))
        return edges


__all__ = ["EdgeDetector", "EdgeResult"]
