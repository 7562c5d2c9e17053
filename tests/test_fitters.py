"""Tests for the regression fitter backends."""

import numpy as np
import pytest

from scentlink.core.errors import FitError
from scentlink.stats.association_types import FitResult, FitterBackend, RegressionFamily
from scentlink.stats.methods import StatsmodelsFitter, WeightedNormalFitter, get_fitter

from conftest import negbin_design, poisson_design


def _both_backends(y, X_with_intercept, family="poisson"):
    """Fit with both backends; the statsmodels one gets X without intercept."""
    irls = StatsmodelsFitter(family).fit(y, X_with_intercept[:, :-1], term=0)
    fast = WeightedNormalFitter(family).fit(y, X_with_intercept, term=0)
    return irls, fast


class TestGetFitter:

    def test_combinations(self):
        assert isinstance(get_fitter("poisson", "irls"), StatsmodelsFitter)
        assert isinstance(get_fitter("negbin", "fast"), WeightedNormalFitter)
        fitter = get_fitter(RegressionFamily.NEGBIN, FitterBackend.IRLS)
        assert fitter.family is RegressionFamily.NEGBIN
        assert fitter.describe() == "negbin/irls"

    def test_unknown_names(self):
        with pytest.raises(ValueError):
            get_fitter("gamma", "irls")
        with pytest.raises(ValueError):
            get_fitter("poisson", "gpu")

    def test_intercept_requirements(self):
        assert not StatsmodelsFitter().requires_intercept
        assert WeightedNormalFitter().requires_intercept


class TestPoisson:

    def test_recovers_effect(self):
        y, X = poisson_design(n=2000, beta=(0.5, 1.0), seed=3)
        result = WeightedNormalFitter("poisson").fit(y, X, term=0)
        assert abs(result.coef - 0.5) < 0.1
        assert result.dispersion is None
        assert result.se > 0
        assert result.p_value < 1e-6

    def test_backend_equivalence(self):
        """General solver and fast path agree to 1e-6 on coef and variance."""
        y, X = poisson_design(n=300, seed=0)
        irls, fast = _both_backends(y, X)
        np.testing.assert_allclose(fast.coef, irls.coef, rtol=1e-6)
        np.testing.assert_allclose(fast.variance, irls.variance, rtol=1e-6)

    @pytest.mark.parametrize("seed", [1, 2, 5])
    def test_backend_equivalence_across_draws(self, seed):
        y, X = poisson_design(n=200, beta=(0.0, 0.5), seed=seed)
        irls, fast = _both_backends(y, X)
        np.testing.assert_allclose(fast.coef, irls.coef, rtol=1e-6, atol=1e-8)
        np.testing.assert_allclose(fast.variance, irls.variance, rtol=1e-6)

    def test_statistic_matches_fit(self):
        y, X = poisson_design(seed=4)
        fitter = WeightedNormalFitter("poisson")
        coef, var = fitter.statistic(y, X, term=0)
        result = fitter.fit(y, X, term=0)
        assert (coef, var) == (result.coef, result.variance)

    def test_wald_quantities(self):
        result = FitResult(coef=0.5, variance=0.04)
        assert result.se == pytest.approx(0.2)
        assert result.z == pytest.approx(2.5)
        assert result.p_value == pytest.approx(0.0124193, rel=1e-4)


class TestNegativeBinomial:

    def test_irls_estimates_dispersion(self):
        y, X = negbin_design(n=1500, alpha=0.5, seed=2)
        result = StatsmodelsFitter("negbin").fit(y, X[:, :-1], term=0)
        assert result.dispersion == pytest.approx(0.5, abs=0.15)
        assert abs(result.coef - 0.6) < 0.15

    def test_fast_estimates_dispersion(self):
        y, X = negbin_design(n=1500, alpha=0.5, seed=2)
        result = WeightedNormalFitter("negbin").fit(y, X, term=0)
        assert result.dispersion == pytest.approx(0.5, abs=0.15)
        assert abs(result.coef - 0.6) < 0.15

    def test_backends_agree(self):
        """Both maximize the same NB2 likelihood."""
        y, X = negbin_design(n=400, alpha=0.5, seed=1)
        irls, fast = _both_backends(y, X, family="negbin")
        np.testing.assert_allclose(fast.coef, irls.coef, rtol=1e-3)
        np.testing.assert_allclose(fast.dispersion, irls.dispersion, rtol=1e-2)
        np.testing.assert_allclose(fast.variance, irls.variance, rtol=1e-4)

    @pytest.mark.parametrize("seed", [3, 5, 9])
    def test_backend_variances_agree(self, seed):
        y, X = negbin_design(n=400, alpha=0.5, seed=seed)
        irls, fast = _both_backends(y, X, family="negbin")
        np.testing.assert_allclose(fast.variance, irls.variance, rtol=1e-4)

    def test_wider_than_poisson_under_overdispersion(self):
        y, X = negbin_design(n=600, alpha=1.0, seed=7)
        nb = WeightedNormalFitter("negbin").fit(y, X, term=0)
        pois = WeightedNormalFitter("poisson").fit(y, X, term=0)
        assert nb.se > pois.se


class TestFitFailures:

    @pytest.mark.parametrize("fitter_cls", [StatsmodelsFitter, WeightedNormalFitter])
    def test_constant_accessibility_is_singular(self, fitter_cls):
        """atac == 1 everywhere is collinear with the intercept."""
        rng = np.random.default_rng(0)
        y = rng.poisson(2.0, size=50).astype(float)
        atac = np.ones(50)
        X = atac[:, None] if not fitter_cls().requires_intercept else np.column_stack([atac, np.ones(50)])
        with pytest.raises(FitError, match="singular"):
            fitter_cls("poisson").fit(y, X, term=0)

    def test_duplicate_columns_singular(self):
        y, X = poisson_design(seed=0, intercept=False)
        X = np.column_stack([X[:, 0], X[:, 0]])
        with pytest.raises(FitError, match="singular"):
            StatsmodelsFitter("poisson").fit(y, X, term=0)

    def test_all_zero_response(self):
        X = np.column_stack([np.r_[np.zeros(10), np.ones(10)], np.ones(20)])
        with pytest.raises(FitError, match="all-zero"):
            WeightedNormalFitter("poisson").fit(np.zeros(20), X, term=0)

    def test_non_finite_input(self):
        y, X = poisson_design(seed=0)
        y[3] = np.nan
        with pytest.raises(FitError, match="non-finite"):
            WeightedNormalFitter("poisson").fit(y, X, term=0)

    def test_too_few_observations(self):
        y = np.array([1.0, 2.0])
        X = np.array([[0.0, 1.0], [1.0, 1.0]])
        with pytest.raises(FitError, match="observations"):
            WeightedNormalFitter("poisson").fit(y, X, term=0)

    def test_term_out_of_range(self):
        y, X = poisson_design(seed=0)
        with pytest.raises(FitError, match="term index"):
            WeightedNormalFitter("poisson").fit(y, X, term=7)

    def test_iteration_cap(self):
        y, X = poisson_design(seed=0)
        fitter = WeightedNormalFitter("poisson")
        fitter.max_iter = 1
        with pytest.raises(FitError, match="did not converge"):
            fitter.fit(y, X, term=0)
