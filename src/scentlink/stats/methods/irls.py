"""
General-purpose backend: statsmodels solvers for both count families.

Poisson is fitted with ``sm.GLM`` by iteratively reweighted least squares.
Negative binomial uses ``sm.NegativeBinomial`` (NB2 log-likelihood), which
estimates the dispersion jointly with the coefficients, the same model as
``MASS::glm.nb``.

The backend appends its own constant column, so designs passed to it must
not already contain one.
"""

from __future__ import annotations

import warnings

import numpy as np
import statsmodels.api as sm
from numpy.typing import NDArray
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning,
    HessianInversionWarning,
    PerfectSeparationError,
)

from scentlink.core.errors import FitError
from scentlink.stats.association_types import FitResult, FitterBackend, RegressionFamily

from ._base_fitter import RegressionFitter

_SOLVER_ERRORS = (np.linalg.LinAlgError, ValueError, OverflowError, PerfectSeparationError)


class StatsmodelsFitter(RegressionFitter):
    """
    Count GLM fitted with statsmodels.

    Attributes:
        family: RegressionFamily.POISSON or RegressionFamily.NEGBIN
        max_iter: IRLS iteration cap (Poisson)
        nb_max_iter: Optimizer iteration cap (negative binomial)
        tol: Convergence tolerance on the coefficient vector (Poisson)

    Example:
        >>> fitter = StatsmodelsFitter("poisson")
        >>> result = fitter.fit(ws.y, ws.X, term=ws.term_index)
        >>> result.coef, result.se, result.p_value
    """

    nb_max_iter: int = 500

    @property
    def backend(self) -> FitterBackend:
        return FitterBackend.IRLS

    @property
    def requires_intercept(self) -> bool:
        return False

    def _fit(self, y: NDArray[np.float64], X: NDArray[np.float64], term: int) -> FitResult:
        exog = sm.add_constant(X, prepend=False, has_constant="add")
        if self.family is RegressionFamily.POISSON:
            return self._fit_poisson(y, exog, term)
        return self._fit_negbin(y, exog, term)

    def _fit_poisson(self, y, exog, term: int) -> FitResult:
        model = sm.GLM(y, exog, family=sm.families.Poisson())
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", ConvergenceWarning)
                warnings.simplefilter("ignore", RuntimeWarning)
                result = model.fit(
                    maxiter=self.max_iter, tol=self.tol, tol_criterion="params"
                )
        except _SOLVER_ERRORS as e:
            raise FitError(f"poisson/irls failed: {type(e).__name__}: {e}") from e

        if not result.converged:
            raise FitError(f"poisson/irls did not converge in {self.max_iter} iterations")

        cov = np.asarray(result.cov_params())
        return FitResult(
            coef=float(result.params[term]),
            variance=float(cov[term, term]),
            n_iter=int(result.fit_history.get("iteration", 0)),
        )

    def _fit_negbin(self, y, exog, term: int) -> FitResult:
        model = sm.NegativeBinomial(y, exog, loglike_method="nb2")
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", ConvergenceWarning)
                warnings.simplefilter("ignore", HessianInversionWarning)
                warnings.simplefilter("ignore", RuntimeWarning)
                result = model.fit(method="bfgs", maxiter=self.nb_max_iter, disp=0)
        except _SOLVER_ERRORS as e:
            raise FitError(f"negbin/irls failed: {type(e).__name__}: {e}") from e

        if not result.mle_retvals.get("converged", False):
            raise FitError(f"negbin/irls did not converge in {self.nb_max_iter} iterations")

        params = np.asarray(result.params)
        cov = np.asarray(result.cov_params())
        return FitResult(
            coef=float(params[term]),
            variance=float(cov[term, term]),
            n_iter=int(result.mle_retvals.get("iterations", 0)),
            dispersion=float(params[-1]),
        )


__all__ = ["StatsmodelsFitter"]
