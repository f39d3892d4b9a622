"""Count distributions used to price over/under lines."""

from __future__ import annotations

import math
from typing import Callable

CdfFn = Callable[[int], float]


def _check_k(k: int) -> None:
    if k < 0:
        raise ValueError(f"k must be non-negative, got {k}")


def poisson_pmf(rate: float, k: int) -> float:
    """Return ``P(X = k)`` for a Poisson variable with mean ``rate``.

    A non-positive ``rate`` is treated as a point mass at zero.
    """

    _check_k(k)
    if rate <= 0:
        return 1.0 if k == 0 else 0.0
    log_p = -rate + k * math.log(rate) - math.lgamma(k + 1)
    return math.exp(log_p)


def poisson_cdf(rate: float, k: int) -> float:
    _check_k(k)
    total = 0.0
    for i in range(k + 1):
        total += poisson_pmf(rate, i)
    return min(1.0, total)


def neg_binomial_pmf(mean: float, dispersion: float, k: int) -> float:
    """Return ``P(X = k)`` for a Negative-Binomial with ``mean`` and size ``dispersion``.

    Parameterised with ``p = r / (r + mean)`` so the variance is
    ``mean + mean**2 / r``.  A non-positive ``mean`` is a point mass at zero.
    """

    _check_k(k)
    if dispersion <= 0:
        raise ValueError(f"dispersion must be positive, got {dispersion}")
    if mean <= 0:
        return 1.0 if k == 0 else 0.0
    p = dispersion / (dispersion + mean)
    log_coeff = math.lgamma(dispersion + k) - math.lgamma(k + 1) - math.lgamma(dispersion)
    log_p = log_coeff + dispersion * math.log(p) + k * math.log1p(-p)
    return min(1.0, math.exp(log_p))


def neg_binomial_cdf(mean: float, dispersion: float, k: int) -> float:
    _check_k(k)
    total = 0.0
    for i in range(k + 1):
        total += neg_binomial_pmf(mean, dispersion, i)
    return min(1.0, total)


def under_probability(cdf: CdfFn, line: float) -> float:
    """``P(X <= floor(line))`` for a non-negative line."""

    if line < 0:
        return 0.0
    return max(0.0, min(1.0, cdf(math.floor(line))))


def over_probability(cdf: CdfFn, line: float) -> float:
    """``1 - CDF(floor(line))``, the probability the total clears ``line``."""

    return 1.0 - under_probability(cdf, line)


def poisson_over_under(rate: float, line: float) -> tuple[float, float]:
    under = under_probability(lambda k: poisson_cdf(rate, k), line)
    return 1.0 - under, under


def neg_binomial_over_under(mean: float, dispersion: float, line: float) -> tuple[float, float]:
    under = under_probability(lambda k: neg_binomial_cdf(mean, dispersion, k), line)
    return 1.0 - under, under


__all__ = [
    "neg_binomial_cdf",
    "neg_binomial_over_under",
    "neg_binomial_pmf",
    "over_probability",
    "poisson_cdf",
    "poisson_over_under",
    "poisson_pmf",
    "under_probability",
]
