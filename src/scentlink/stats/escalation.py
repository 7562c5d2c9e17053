"""
Adaptive resample-count schedule for the bootstrap.

Most pairs are clearly null and 100 replicates settle them. Only pairs whose
empirical p-value is small need more replicates, because the p-value cannot
go below 2/B. Two policies decide how many:

SEQUENTIAL (default):
    100 -> 500 -> 2500 -> 25000 -> 50000. Each step is taken only if the
    previous round's p-value is below its threshold (0.1, 0.05, 0.01,
    0.001 respectively). Stops at the first round that crosses nothing.

BANDED:
    At most one refinement. The base-round p-value picks the size from
    half-open bands:

        [0.05, 0.1)   ->   500
        [0.01, 0.05)  ->  2500
        [0.001, 0.01) ->  5000
        [0, 0.001)    -> 10000

    With a 100-replicate base round the p-value floor is 0.02, so the two
    lower bands are only reachable with a larger ``base_resamples``.

Every round is a fresh, full bootstrap with its own spawned seed. Earlier
replicates are never reused. The reported p-value is from the last round.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray

from scentlink.stats.association_types import EscalationPolicy, FitResult
from scentlink.stats.bootstrap import DEFAULT_CHUNK_SIZE, as_seed_sequence, bootstrap_statistic
from scentlink.stats.methods import RegressionFitter

__all__ = [
    'SequentialEscalation',
    'BandedEscalation',
    'make_controller',
    'AdaptiveBootstrapResult',
    'run_adaptive_bootstrap',
    'BASE_RESAMPLES',
]

logger = logging.getLogger(__name__)

BASE_RESAMPLES = 100


class SequentialEscalation:
    """Chained escalation; one step per round while thresholds are crossed."""

    STEPS = ((0.1, 500), (0.05, 2500), (0.01, 25000), (0.001, 50000))

    def __init__(self, base_resamples: int = BASE_RESAMPLES):
        self.current = base_resamples
        self._steps = [(t, b) for t, b in self.STEPS if b > base_resamples]

    def next_resamples(self, p_value: float) -> int | None:
        """Resample count for the next round, or None to stop."""
        if not self._steps:
            return None
        threshold, n_resamples = self._steps[0]
        if not p_value < threshold:
            return None
        self._steps.pop(0)
        self.current = n_resamples
        return n_resamples


class BandedEscalation:
    """Single refinement round sized by the base-round p-value band."""

    BANDS = ((0.001, 10000), (0.01, 5000), (0.05, 2500), (0.1, 500))

    def __init__(self, base_resamples: int = BASE_RESAMPLES):
        self.current = base_resamples
        self._refined = False

    def next_resamples(self, p_value: float) -> int | None:
        if self._refined:
            return None
        self._refined = True
        for upper, n_resamples in self.BANDS:
            if p_value < upper and n_resamples > self.current:
                self.current = n_resamples
                return n_resamples
        return None


def make_controller(
    policy: EscalationPolicy | str = EscalationPolicy.SEQUENTIAL,
    base_resamples: int = BASE_RESAMPLES,
) -> SequentialEscalation | BandedEscalation:
    policy = EscalationPolicy(policy)
    if base_resamples < 1:
        raise ValueError(f"base_resamples must be positive, got {base_resamples}")
    if policy is EscalationPolicy.SEQUENTIAL:
        return SequentialEscalation(base_resamples)
    return BandedEscalation(base_resamples)


@dataclass
class AdaptiveBootstrapResult:
    """
    Outcome of the full adaptive schedule for one pair.

    Attributes:
        observed: Fit on the full data
        rounds: (n_resamples, p_value) per executed round, in order
        n_failed: Failed replicates summed over rounds
    """

    observed: FitResult
    rounds: list[tuple[int, float]] = field(default_factory=list)
    n_failed: int = 0

    @property
    def p_initial(self) -> float:
        return self.rounds[0][1]

    @property
    def p_value(self) -> float:
        return self.rounds[-1][1]

    @property
    def n_resamples(self) -> int:
        return self.rounds[-1][0]


def run_adaptive_bootstrap(
    y: NDArray[np.float64],
    X: NDArray[np.float64],
    fitter: RegressionFitter,
    policy: EscalationPolicy | str = EscalationPolicy.SEQUENTIAL,
    base_resamples: int = BASE_RESAMPLES,
    seed: int | np.random.SeedSequence | None = None,
    n_jobs: int = 1,
    term: int = 0,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> AdaptiveBootstrapResult:
    """
    Run the base bootstrap round and any escalation rounds the policy asks for.

    Raises:
        FitError: If the observed fit fails or a round loses every replicate
    """
    controller = make_controller(policy, base_resamples)
    seed_seq = as_seed_sequence(seed)

    result = None
    n_resamples = controller.current
    while n_resamples is not None:
        boot = bootstrap_statistic(
            y, X, fitter, n_resamples,
            seed=seed_seq.spawn(1)[0],
            n_jobs=n_jobs,
            term=term,
            chunk_size=chunk_size,
        )
        p_value = boot.empirical_p
        if result is None:
            result = AdaptiveBootstrapResult(observed=boot.observed)
        result.rounds.append((n_resamples, p_value))
        result.n_failed += boot.n_failed

        n_resamples = controller.next_resamples(p_value)
        if n_resamples is not None:
            logger.debug(f"p={p_value:.4g} at B={boot.n_resamples}; escalating to B={n_resamples}")

    return result
