"""
Shared base class for the regression fitter backends.

Both backends fit the same log-link count GLM and report the same thing:
the coefficient and variance of one design column (the accessibility
term). This module holds what they share: the input checks that turn a
singular or non-finite design into ``FitError`` before any solver runs,
and the ``statistic`` shortcut the bootstrap calls on every replicate.
Subclasses only implement ``_fit``.
"""

from __future__ import annotations

import abc

import numpy as np
from numpy.typing import NDArray

from scentlink.core.errors import FitError
from scentlink.stats.association_types import FitResult, FitterBackend, RegressionFamily


class RegressionFitter(abc.ABC):
    """
    Fits ``y ~ X`` under a count family and extracts one term.

    Subclasses implement:
        * ``backend`` property (FitterBackend)
        * ``requires_intercept`` property (bool -- whether X must carry the
          constant column, or the backend adds its own)
        * ``_fit`` (return a FitResult for column ``term``)
    """

    max_iter: int = 100
    tol: float = 1e-10

    def __init__(self, family: RegressionFamily | str = RegressionFamily.POISSON) -> None:
        self.family = RegressionFamily(family)

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @property
    @abc.abstractmethod
    def backend(self) -> FitterBackend:  # pragma: no cover
        ...

    @property
    @abc.abstractmethod
    def requires_intercept(self) -> bool:  # pragma: no cover
        ...

    @abc.abstractmethod
    def _fit(self, y: NDArray[np.float64], X: NDArray[np.float64], term: int) -> FitResult:
        """Fit a validated design and return estimates for column ``term``."""
        ...

    # ------------------------------------------------------------------
    # Shared entry points
    # ------------------------------------------------------------------

    def fit(self, y: NDArray[np.float64], X: NDArray[np.float64], term: int = 0) -> FitResult:
        """
        Fit the model and return the estimates for column ``term`` of X.

        Raises:
            FitError: Non-finite input, rank-deficient design, solver
                non-convergence or non-finite estimates
        """
        y = np.asarray(y, dtype=np.float64)
        X = np.asarray(X, dtype=np.float64)
        self._check_design(y, X, term)

        result = self._fit(y, X, term)

        if not (np.isfinite(result.coef) and np.isfinite(result.variance)):
            raise FitError(f"{self.describe()}: non-finite estimate for term {term}")
        if result.variance <= 0:
            raise FitError(f"{self.describe()}: non-positive variance for term {term}")
        return result

    def statistic(
        self, y: NDArray[np.float64], X: NDArray[np.float64], term: int = 0
    ) -> tuple[float, float]:
        """(coefficient, variance) of ``term``; the quantity bootstrapped."""
        result = self.fit(y, X, term)
        return result.coef, result.variance

    def describe(self) -> str:
        return f"{self.family.value}/{self.backend.value}"

    def _check_design(self, y: NDArray[np.float64], X: NDArray[np.float64], term: int) -> None:
        if X.ndim != 2 or y.ndim != 1 or X.shape[0] != y.shape[0]:
            raise FitError(f"shape mismatch: y {y.shape}, X {X.shape}")
        if not 0 <= term < X.shape[1]:
            raise FitError(f"term index {term} outside design with {X.shape[1]} columns")
        if not (np.all(np.isfinite(y)) and np.all(np.isfinite(X))):
            raise FitError("non-finite values in response or design")
        if np.any(y < 0):
            raise FitError("negative counts in response")
        if not np.any(y > 0):
            raise FitError("all-zero response")

        n_params = X.shape[1] + (0 if self.requires_intercept else 1)
        if X.shape[0] <= n_params:
            raise FitError(f"{X.shape[0]} observations for {n_params} parameters")
        design = X if self.requires_intercept else np.column_stack([X, np.ones(X.shape[0])])
        rank = np.linalg.matrix_rank(design)
        if rank < design.shape[1]:
            raise FitError(f"singular design: rank {rank} < {design.shape[1]} columns")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(family={self.family.value!r})"
