"""Tests for empirical bootstrap p-values."""

import numpy as np
import pytest

from scentlink.stats.empirical import basic_p, interp_pval


class TestInterpPval:

    def test_one_sided_distribution_floors_at_two_over_b(self):
        assert interp_pval([1.0, 2.0, 3.0]) == pytest.approx(2 / 3)
        assert interp_pval(-np.arange(1, 101)) == pytest.approx(0.02)

    def test_smaller_tail_doubled(self):
        assert interp_pval([-1.0, 1.0, 2.0, 3.0]) == pytest.approx(0.5)
        assert interp_pval([3.0, -1.0, 2.0, 1.0]) == pytest.approx(0.5)

    def test_symmetric_distribution(self):
        assert interp_pval([-2.0, -1.0, 1.0, 2.0]) == pytest.approx(1.0)

    def test_non_finite_replicates_dropped(self):
        assert interp_pval([np.nan, -1.0, 1.0, 2.0, np.inf, 3.0]) == pytest.approx(0.5)

    def test_no_finite_replicates(self):
        with pytest.raises(ValueError):
            interp_pval([])
        with pytest.raises(ValueError):
            interp_pval([np.nan, np.nan])

    def test_never_zero_and_at_most_one(self):
        rng = np.random.default_rng(0)
        for shift in (-5.0, -0.5, 0.0, 0.5, 5.0):
            p = interp_pval(rng.normal(shift, 1.0, size=200))
            assert 0.0 < p <= 1.0
            assert p >= 2 / 200

    def test_centered_distribution_is_not_significant(self):
        rng = np.random.default_rng(1)
        assert interp_pval(rng.normal(0.0, 1.0, size=5000)) > 0.8


class TestBasicP:

    def test_reflection_through_observed(self):
        # q = 2*obs - boot = [1.5, 1.0, 0.5, -0.5]
        assert basic_p(1.0, [0.5, 1.0, 1.5, 2.5]) == pytest.approx(0.5)

    def test_null_value_shifts_reference(self):
        assert basic_p(1.0, [0.5, 1.0, 1.5, 2.5], null=1.0) == pytest.approx(1.0)

    def test_strong_effect_hits_floor(self):
        rng = np.random.default_rng(2)
        boot = rng.normal(2.0, 0.1, size=500)
        assert basic_p(2.0, boot) == pytest.approx(2 / 500)

    def test_sign_symmetry(self):
        rng = np.random.default_rng(3)
        boot = rng.normal(0.3, 0.2, size=400)
        assert basic_p(0.3, boot) == pytest.approx(basic_p(-0.3, -boot))
