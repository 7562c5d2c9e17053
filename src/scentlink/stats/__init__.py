"""
Peak-gene association engine.

Exports core functions for:
- Working-set assembly and sparsity screening
- Count GLM fitting (Poisson / negative binomial, two backends)
- Bootstrap resampling with empirical p-values and adaptive escalation
- Running the test over a candidate pair list
"""

from .association_types import (
    RESULT_COLUMNS,
    EscalationPolicy,
    FitResult,
    FitterBackend,
    PairStatus,
    RegressionFamily,
    ResultRow,
)
from .working_set import (
    WorkingSet,
    assemble_working_set,
    nonzero_fractions,
    passes_sparsity_screen,
)
from .methods import RegressionFitter, StatsmodelsFitter, WeightedNormalFitter, get_fitter
from .empirical import basic_p, interp_pval
from .bootstrap import BootstrapRound, bootstrap_statistic
from .escalation import AdaptiveBootstrapResult, make_controller, run_adaptive_bootstrap
from .association import AssociationConfig, iter_association, run_association

__all__ = [
    "RESULT_COLUMNS",
    "EscalationPolicy",
    "FitResult",
    "FitterBackend",
    "PairStatus",
    "RegressionFamily",
    "ResultRow",
    "WorkingSet",
    "assemble_working_set",
    "nonzero_fractions",
    "passes_sparsity_screen",
    "RegressionFitter",
    "StatsmodelsFitter",
    "WeightedNormalFitter",
    "get_fitter",
    "basic_p",
    "interp_pval",
    "BootstrapRound",
    "bootstrap_statistic",
    "AdaptiveBootstrapResult",
    "make_controller",
    "run_adaptive_bootstrap",
    "AssociationConfig",
    "iter_association",
    "run_association",
]
