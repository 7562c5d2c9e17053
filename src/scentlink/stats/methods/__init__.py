"""
Regression fitter backends for the peak-gene association test.

Both backends conform to the ``RegressionFitter`` interface defined in
``_base_fitter``:

* :class:`StatsmodelsFitter` -- statsmodels GLM / NegativeBinomial solvers
* :class:`WeightedNormalFitter` -- explicit IRLS on the weighted normal equations

Use :func:`get_fitter` to build one from configuration values.
"""

from __future__ import annotations

from scentlink.stats.association_types import FitterBackend, RegressionFamily

from ._base_fitter import RegressionFitter
from .fast import WeightedNormalFitter
from .irls import StatsmodelsFitter

_BACKENDS = {
    FitterBackend.IRLS: StatsmodelsFitter,
    FitterBackend.FAST: WeightedNormalFitter,
}


def get_fitter(
    family: RegressionFamily | str = RegressionFamily.POISSON,
    backend: FitterBackend | str = FitterBackend.IRLS,
) -> RegressionFitter:
    """
    Build the fitter for a family/backend combination.

    Raises:
        ValueError: Unknown family or backend name
    """
    return _BACKENDS[FitterBackend(backend)](RegressionFamily(family))


__all__ = [
    "RegressionFitter",
    "StatsmodelsFitter",
    "WeightedNormalFitter",
    "get_fitter",
]
