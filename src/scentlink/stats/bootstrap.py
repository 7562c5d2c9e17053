"""
Case-resampling bootstrap of the accessibility coefficient.

Each replicate draws n cells with replacement from the working set (whole
rows, so outcome, accessibility and covariates stay together), refits the
model and keeps (coefficient, variance) of the accessibility term. The
observed statistic is fitted once on the full data with the same fitter.

Reproducibility:
    Replicates are generated in fixed-size chunks. Every chunk gets its own
    generator spawned from ``np.random.SeedSequence(seed)``, so the replicate
    set depends only on (seed, n_resamples, chunk_size). Running the chunks
    on 1 or 16 joblib workers yields identical output.

Warning convention:
    warnings.warn() -- user-facing (convergence, deprecated, sample size)
    logger.warning() -- operator-facing (fallback, retry, missing data)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from joblib import Parallel, delayed
from numpy.typing import NDArray

from scentlink.core.errors import FitError
from scentlink.stats.association_types import FitResult
from scentlink.stats.empirical import basic_p
from scentlink.stats.methods import RegressionFitter

__all__ = ['BootstrapRound', 'bootstrap_statistic', 'as_seed_sequence']

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 250


def as_seed_sequence(seed: int | np.random.SeedSequence | None) -> np.random.SeedSequence:
    """Wrap an integer (or None) seed; pass a SeedSequence through."""
    if isinstance(seed, np.random.SeedSequence):
        return seed
    return np.random.SeedSequence(seed)


@dataclass(frozen=True, eq=False)
class BootstrapRound:
    """
    Result of one bootstrap round.

    Attributes:
        n_resamples: Replicates drawn (B)
        observed: Fit on the full, un-resampled data
        replicates: (B, 2) array of (coefficient, variance); NaN rows are
            replicates whose refit failed
        n_failed: Number of failed replicates
    """

    n_resamples: int
    observed: FitResult
    replicates: NDArray[np.float64]
    n_failed: int = 0

    @property
    def coefficients(self) -> NDArray[np.float64]:
        return self.replicates[:, 0]

    @property
    def variances(self) -> NDArray[np.float64]:
        return self.replicates[:, 1]

    @property
    def n_valid(self) -> int:
        return self.n_resamples - self.n_failed

    @property
    def empirical_p(self) -> float:
        """Basic-bootstrap p-value of the observed coefficient against zero."""
        return basic_p(self.observed.coef, self.coefficients)


def _run_chunk(
    y: NDArray[np.float64],
    X: NDArray[np.float64],
    fitter: RegressionFitter,
    term: int,
    seed_seq: np.random.SeedSequence,
    size: int,
) -> tuple[NDArray[np.float64], int, str | None]:
    rng = np.random.default_rng(seed_seq)
    n = y.shape[0]
    out = np.full((size, 2), np.nan)
    n_failed = 0
    first_error = None

    for i in range(size):
        idx = rng.integers(0, n, size=n)
        try:
            out[i] = fitter.statistic(y[idx], X[idx], term)
        except FitError as e:
            n_failed += 1
            if first_error is None:
                first_error = str(e)

    return out, n_failed, first_error


def bootstrap_statistic(
    y: NDArray[np.float64],
    X: NDArray[np.float64],
    fitter: RegressionFitter,
    n_resamples: int,
    seed: int | np.random.SeedSequence | None = None,
    n_jobs: int = 1,
    term: int = 0,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> BootstrapRound:
    """
    Draw ``n_resamples`` case resamples and refit the statistic on each.

    Args:
        y: Response vector (n,)
        X: Design matrix (n, p) in the layout ``fitter`` expects
        fitter: Regression fitter shared by the observed fit and replicates
        n_resamples: Number of replicates B
        seed: Integer seed or SeedSequence. A SeedSequence is consumed by
            spawning, so pass a fresh one per round.
        n_jobs: joblib workers for the chunks
        term: Column of X holding the accessibility term
        chunk_size: Replicates per chunk (part of the reproducibility key)

    Returns:
        BootstrapRound

    Raises:
        FitError: If the observed fit fails or every replicate fails
        ValueError: If n_resamples or chunk_size is not positive
    """
    if n_resamples < 1:
        raise ValueError(f"n_resamples must be positive, got {n_resamples}")
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    y = np.asarray(y, dtype=np.float64)
    X = np.asarray(X, dtype=np.float64)

    observed = fitter.fit(y, X, term)

    sizes = [chunk_size] * (n_resamples // chunk_size)
    if n_resamples % chunk_size:
        sizes.append(n_resamples % chunk_size)
    children = as_seed_sequence(seed).spawn(len(sizes))

    if n_jobs == 1:
        chunks = [
            _run_chunk(y, X, fitter, term, ss, size)
            for ss, size in zip(children, sizes)
        ]
    else:
        chunks = Parallel(n_jobs=n_jobs)(
            delayed(_run_chunk)(y, X, fitter, term, ss, size)
            for ss, size in zip(children, sizes)
        )

    replicates = np.vstack([c[0] for c in chunks])
    n_failed = sum(c[1] for c in chunks)

    if n_failed:
        first_error = next(c[2] for c in chunks if c[2] is not None)
        logger.warning(
            f"{n_failed}/{n_resamples} bootstrap replicates failed "
            f"({fitter.describe()}); first: {first_error}"
        )
    if n_failed == n_resamples:
        raise FitError(f"all {n_resamples} bootstrap replicates failed")

    return BootstrapRound(
        n_resamples=n_resamples,
        observed=observed,
        replicates=replicates,
        n_failed=n_failed,
    )
