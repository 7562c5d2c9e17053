"""
Core types for the peak-gene association engine.

Enums select the regression family, the numerical backend, the escalation
policy and the per-pair outcome. Frozen dataclasses carry a single fit's
estimates (FitResult) and one output row per candidate pair (ResultRow).
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from enum import Enum

from scipy import stats

__all__ = [
    'RegressionFamily',
    'FitterBackend',
    'EscalationPolicy',
    'PairStatus',
    'FitResult',
    'ResultRow',
    'RESULT_COLUMNS',
]


# =============================================================================
# Enums
# =============================================================================


class RegressionFamily(Enum):
    """
    Count-data GLM families (log link).

    Attributes:
        POISSON: Variance equals the mean, dispersion fixed at 1
        NEGBIN: NB2 variance mu + alpha * mu^2 with alpha estimated
    """

    POISSON = "poisson"
    NEGBIN = "negbin"


class FitterBackend(Enum):
    """
    Numerical backends for fitting a family.

    Attributes:
        IRLS: statsmodels GLM / discrete-model solvers (general purpose)
        FAST: explicit design matrix + weighted normal equations
    """

    IRLS = "irls"
    FAST = "fast"


class EscalationPolicy(Enum):
    """
    How the bootstrap resample count grows after the base round.

    Attributes:
        SEQUENTIAL: Chained 100 -> 500 -> 2500 -> 25000 -> 50000 while the
            empirical p-value keeps crossing the next threshold
        BANDED: One refinement round whose size (500, 2500, 5000, 10000)
            is chosen from the band the base-round p-value falls into
    """

    SEQUENTIAL = "sequential"
    BANDED = "banded"


class PairStatus(Enum):
    """Outcome of testing one (gene, peak) pair."""

    TESTED = "tested"
    SPARSE = "sparse"
    FIT_FAILED = "fit_failed"
    MISSING_FEATURE = "missing_feature"


# =============================================================================
# Dataclasses
# =============================================================================


@dataclass(frozen=True)
class FitResult:
    """
    Estimates for the term of interest from one regression fit.

    Attributes:
        coef: Coefficient of the accessibility term (log scale)
        variance: Its estimated sampling variance
        n_iter: Solver iterations used
        dispersion: NB2 alpha for negative binomial fits, None for Poisson
    """

    coef: float
    variance: float
    n_iter: int = 0
    dispersion: float | None = None

    @property
    def se(self) -> float:
        return math.sqrt(self.variance) if self.variance >= 0 else float("nan")

    @property
    def z(self) -> float:
        se = self.se
        if not se > 0:
            return float("nan")
        return self.coef / se

    @property
    def p_value(self) -> float:
        """Two-sided Wald p-value under the normal reference distribution."""
        z = self.z
        if math.isnan(z):
            return float("nan")
        return float(2.0 * stats.norm.sf(abs(z)))


RESULT_COLUMNS = [
    "gene",
    "peak",
    "beta",
    "se",
    "z",
    "p",
    "p_initial",
    "boot_basic_p",
    "resamples",
    "status",
]


@dataclass(frozen=True)
class ResultRow:
    """
    One output row per candidate pair.

    Statistics are NaN and ``resamples`` is None whenever the pair was not
    computed; ``status`` says why.

    Attributes:
        gene, peak: The pair identifiers
        beta, se, z, p: Analytic fit of the accessibility term
        p_initial: Empirical p-value from the base bootstrap round
        boot_basic_p: Empirical p-value from the last round executed
        resamples: Resample count of the last round executed
        status: PairStatus of the pair
    """

    gene: str
    peak: str
    beta: float = float("nan")
    se: float = float("nan")
    z: float = float("nan")
    p: float = float("nan")
    p_initial: float = float("nan")
    boot_basic_p: float = float("nan")
    resamples: int | None = None
    status: PairStatus = PairStatus.TESTED

    @classmethod
    def not_computed(cls, gene: str, peak: str, status: PairStatus) -> ResultRow:
        """Row with every statistic set to the not-computed marker."""
        if status is PairStatus.TESTED:
            raise ValueError("not_computed rows need a non-TESTED status")
        return cls(gene=gene, peak=peak, status=status)

    @property
    def is_computed(self) -> bool:
        return self.status is PairStatus.TESTED

    def to_dict(self) -> dict:
        out = asdict(self)
        out["status"] = self.status.value
        return out
