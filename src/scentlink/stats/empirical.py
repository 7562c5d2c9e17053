"""
Two-sided empirical p-values from bootstrap replicates.

The bootstrap distribution of the coefficient is centered on the observed
estimate. Reflecting it through the observed value, ``q = 2*obs - boot``,
gives the basic-bootstrap distribution, which under the null is centered on
zero. The p-value is twice the smaller tail mass on either side of zero.

Resolution is limited by the number of replicates B: when zero lies outside
the replicate range the estimate is floored at ``2/B`` rather than
extrapolated, so a p-value from this module is never exactly 0.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike

__all__ = ['interp_pval', 'basic_p']


def interp_pval(q: ArrayLike) -> float:
    """
    Two-sided p-value for zero under the replicate distribution ``q``.

    Non-finite entries (failed replicates) are dropped and B is the number
    of finite entries.

    Returns:
        A value in (0, 1].

    Raises:
        ValueError: If ``q`` has no finite entries
    """
    q = np.asarray(q, dtype=np.float64).ravel()
    q = np.sort(q[np.isfinite(q)])
    n = q.size
    if n == 0:
        raise ValueError("interp_pval needs at least one finite replicate")

    zero = int(np.searchsorted(q, 0.0, side="left"))
    if zero == 0 or zero == n:
        return 2.0 / n
    return 2.0 * min(zero / n, (n - zero) / n)


def basic_p(obs: float, boot: ArrayLike, null: float = 0.0) -> float:
    """Basic-bootstrap p-value of ``obs`` against ``null``."""
    boot = np.asarray(boot, dtype=np.float64)
    return interp_pval(2.0 * obs - boot - null)
