"""
Pair orchestrator: run the association test over a candidate pair list.

For every (gene, peak) pair:

1. Assemble the working set for the configured cell type
2. Screen out pairs too sparse to fit
3. Fit the count GLM and run the adaptive bootstrap
4. Emit one ResultRow (computed, or not computed with a status)

A missing feature, a sparse pair or a failed fit is recorded in that pair's
row and the run moves on; no pair can abort its siblings. Structural input
problems are caught up front by one validation pass.

Parallelism Strategy:
    - Pair level: ``n_workers`` threads or spawned processes, each testing
      whole pairs.
    - Replicate level: each pair's bootstrap chunks run on joblib workers.
    - The two levels share one budget. With ``n_workers > 1`` every pair gets
      ``max(1, n_cores // n_workers)`` bootstrap jobs, so the process never
      runs more than ``max(n_workers, n_cores)`` fits at once.

Reproducibility:
    Each pair's random stream is spawned from ``SeedSequence(seed)`` by its
    position in the pair list, so results do not depend on worker count,
    scheduling or on which pairs were skipped on resume.

Example:
    >>> config = AssociationConfig(celltype="Tcell", covariates=["log_umi"])
    >>> dataset = config.build_dataset(rna, atac, metadata)
    >>> with ResultSink("scent_results.tsv") as sink:
    ...     table = run_association(dataset, pairs, config, sink=sink)
"""

from __future__ import annotations

import logging
import multiprocessing as mp
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Iterator

import numpy as np
import pandas as pd

from scentlink.core.dataset import MultiomeDataset, coerce_pairs
from scentlink.core.errors import FeatureNotFoundError, FitError, SparsityRejection, ValidationError
from scentlink.stats.association_types import (
    RESULT_COLUMNS,
    EscalationPolicy,
    FitterBackend,
    PairStatus,
    RegressionFamily,
    ResultRow,
)
from scentlink.stats.bootstrap import as_seed_sequence
from scentlink.stats.escalation import BASE_RESAMPLES, run_adaptive_bootstrap
from scentlink.stats.methods import RegressionFitter, get_fitter
from scentlink.stats.working_set import (
    MIN_NONZERO_FRACTION,
    assemble_working_set,
    require_sparsity_screen,
)

__all__ = [
    'AssociationConfig',
    'test_pair',
    'run_association',
    'iter_association',
    'results_to_frame',
]

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 100
PARALLEL_MODES = ("threads", "processes")


@dataclass
class AssociationConfig:
    """
    Settings for one association run.

    Attributes:
        celltype: Cell-type label to test within
        celltype_column: Metadata column holding cell-type labels
        covariates: Metadata columns added to every model
        family: "poisson" or "negbin"
        backend: "irls" (statsmodels) or "fast" (weighted normal equations)
        binarize: Map positive accessibility counts to 1
        n_cores: Bootstrap workers (total budget when n_workers > 1)
        n_workers: Pair-level workers
        parallel_mode: "threads" or "processes" for pair-level workers
        escalation: "sequential" or "banded"
        base_resamples: Replicates in the first bootstrap round
        min_nonzero_fraction: Sparsity screen threshold
        seed: Root seed; None draws fresh entropy
        cell_column: Metadata column with cell identifiers (if not the index)
        strict_pairs: Treat pairs with unknown genes/peaks as validation errors
    """

    celltype: str
    celltype_column: str = "celltype"
    covariates: list[str] = field(default_factory=list)
    family: RegressionFamily | str = RegressionFamily.POISSON
    backend: FitterBackend | str = FitterBackend.IRLS
    binarize: bool = True
    n_cores: int = 1
    n_workers: int = 1
    parallel_mode: str = "threads"
    escalation: EscalationPolicy | str = EscalationPolicy.SEQUENTIAL
    base_resamples: int = BASE_RESAMPLES
    min_nonzero_fraction: float = MIN_NONZERO_FRACTION
    seed: int | None = None
    cell_column: str = "cell"
    strict_pairs: bool = False

    def __post_init__(self):
        self.family = RegressionFamily(self.family)
        self.backend = FitterBackend(self.backend)
        self.escalation = EscalationPolicy(self.escalation)
        self.covariates = list(self.covariates)
        if self.n_cores < 1:
            raise ValueError(f"n_cores must be >= 1, got {self.n_cores}")
        if self.n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {self.n_workers}")
        if self.parallel_mode not in PARALLEL_MODES:
            raise ValueError(
                f"parallel_mode must be one of {PARALLEL_MODES}, got {self.parallel_mode!r}"
            )
        if self.base_resamples < 1:
            raise ValueError(f"base_resamples must be >= 1, got {self.base_resamples}")
        if not 0.0 <= self.min_nonzero_fraction < 1.0:
            raise ValueError(
                f"min_nonzero_fraction must be in [0, 1), got {self.min_nonzero_fraction}"
            )

    @property
    def bootstrap_jobs(self) -> int:
        """joblib workers each pair's bootstrap may use."""
        if self.n_workers > 1:
            return max(1, self.n_cores // self.n_workers)
        return self.n_cores

    def fitter(self) -> RegressionFitter:
        return get_fitter(self.family, self.backend)

    def build_dataset(self, rna, atac, metadata: pd.DataFrame) -> MultiomeDataset:
        """MultiomeDataset using this config's column settings."""
        return MultiomeDataset(
            rna,
            atac,
            metadata,
            celltype_column=self.celltype_column,
            covariates=self.covariates,
            cell_column=self.cell_column,
        )


def test_pair(
    dataset: MultiomeDataset,
    gene: str,
    peak: str,
    config: AssociationConfig,
    seed: int | np.random.SeedSequence | None = None,
    n_jobs: int | None = None,
    fitter: RegressionFitter | None = None,
) -> ResultRow:
    """
    Test one (gene, peak) pair.

    Args:
        dataset: Validated inputs
        gene: Gene identifier (response)
        peak: Peak identifier (predictor of interest)
        config: Run settings
        seed: Seed for this pair's bootstrap rounds
        n_jobs: Bootstrap workers; defaults to ``config.bootstrap_jobs``
        fitter: Fitter to use instead of the one ``config`` selects

    Returns:
        ResultRow; statistics are NaN unless ``status`` is TESTED.
    """
    if fitter is None:
        fitter = config.fitter()
    if n_jobs is None:
        n_jobs = config.bootstrap_jobs

    try:
        ws = assemble_working_set(
            dataset, gene, peak, config.celltype,
            binarize=config.binarize,
            add_intercept=fitter.requires_intercept,
        )
    except FeatureNotFoundError as e:
        logger.warning(f"{gene} - {peak}: {e}")
        return ResultRow.not_computed(gene, peak, PairStatus.MISSING_FEATURE)

    try:
        require_sparsity_screen(ws, config.min_nonzero_fraction)
    except SparsityRejection as e:
        logger.debug(f"{gene} - {peak}: skipped, {e}")
        return ResultRow.not_computed(gene, peak, PairStatus.SPARSE)

    try:
        boot = run_adaptive_bootstrap(
            ws.y, ws.X, fitter,
            policy=config.escalation,
            base_resamples=config.base_resamples,
            seed=seed,
            n_jobs=n_jobs,
            term=ws.term_index,
        )
    except FitError as e:
        logger.warning(f"{gene} - {peak}: {fitter.describe()} fit failed: {e}")
        return ResultRow.not_computed(gene, peak, PairStatus.FIT_FAILED)

    obs = boot.observed
    return ResultRow(
        gene=gene,
        peak=peak,
        beta=obs.coef,
        se=obs.se,
        z=obs.z,
        p=obs.p_value,
        p_initial=boot.p_initial,
        boot_basic_p=boot.p_value,
        resamples=boot.n_resamples,
    )


def _run_one(dataset, gene, peak, config, seed, n_jobs) -> ResultRow:
    """test_pair that turns unexpected errors into a fit_failed row."""
    try:
        return test_pair(dataset, gene, peak, config, seed=seed, n_jobs=n_jobs)
    except Exception as e:
        logger.error(f"{gene} - {peak}: unexpected {type(e).__name__}: {e}")
        return ResultRow.not_computed(gene, peak, PairStatus.FIT_FAILED)


# =============================================================================
# Pair workers
# =============================================================================

# Per-process dataset and settings, set once by _init_worker
_worker_dataset = None
_worker_config = None


def _init_worker(dataset: MultiomeDataset, config: AssociationConfig):
    """Receive the read-only inputs once per worker process."""
    global _worker_dataset, _worker_config
    _worker_dataset = dataset
    _worker_config = config


def _process_pair_worker(args):
    """Worker function for ProcessPoolExecutor - tests one pair."""
    idx, gene, peak, seed, n_jobs = args
    return idx, _run_one(_worker_dataset, gene, peak, _worker_config, seed, n_jobs)


# =============================================================================
# Run
# =============================================================================


def _prepare(dataset: MultiomeDataset, pairs, config: AssociationConfig) -> pd.DataFrame:
    pairs = coerce_pairs(pairs)
    errors = dataset.validate(pairs=pairs, strict_pairs=config.strict_pairs)
    if dataset.celltype_column in dataset.metadata.columns:
        if str(config.celltype) not in dataset.celltypes():
            errors.append(
                f"Cell type '{config.celltype}' not found in column "
                f"'{dataset.celltype_column}' (available: {dataset.celltypes()})."
            )
    if errors:
        raise ValidationError(errors)
    return pairs


def results_to_frame(rows: list[ResultRow]) -> pd.DataFrame:
    """Result table with RESULT_COLUMNS, nullable integer resample counts."""
    frame = pd.DataFrame([r.to_dict() for r in rows], columns=RESULT_COLUMNS)
    frame["resamples"] = frame["resamples"].astype("Int64")
    return frame


def iter_association(
    dataset: MultiomeDataset,
    pairs,
    config: AssociationConfig,
) -> Iterator[ResultRow]:
    """
    Lazily test pairs one at a time, in pair-list order.

    Validation runs before the first row is yielded.
    """
    pairs = _prepare(dataset, pairs, config)
    seeds = as_seed_sequence(config.seed).spawn(len(pairs))
    fitter = config.fitter()
    for (gene, peak), seed in zip(pairs.itertuples(index=False, name=None), seeds):
        yield test_pair(dataset, gene, peak, config, seed=seed, n_jobs=config.n_cores,
                        fitter=fitter)


def run_association(
    dataset: MultiomeDataset,
    pairs,
    config: AssociationConfig,
    sink=None,
    skip_completed: bool = False,
) -> pd.DataFrame:
    """
    Test every candidate pair and return the result table.

    Args:
        dataset: RNA/ATAC/metadata inputs
        pairs: DataFrame (gene, peak) or iterable of tuples
        config: Run settings
        sink: Optional ResultSink; each row is written as soon as it is
            produced (completion order when parallel)
        skip_completed: With a sink, skip pairs already present in its file

    Returns:
        DataFrame with RESULT_COLUMNS, one row per tested pair, in pair-list
        order.

    Raises:
        ValidationError: If the inputs fail validation (before any pair runs)
        OSError: If writing to the sink fails
    """
    pairs = _prepare(dataset, pairs, config)
    seeds = as_seed_sequence(config.seed).spawn(len(pairs))

    todo = list(range(len(pairs)))
    if skip_completed and sink is not None:
        from scentlink.io.writers import completed_pairs

        done = completed_pairs(sink.path)
        todo = [i for i in todo if (pairs.at[i, 'gene'], pairs.at[i, 'peak']) not in done]
        if len(todo) < len(pairs):
            logger.info(f"Resuming: {len(pairs) - len(todo)} pairs already in {sink.path}")

    total = len(todo)
    n_jobs = config.bootstrap_jobs
    use_pair_parallelism = config.n_workers > 1 and total > 1

    logger.info(
        f"Testing {total} pairs in cell type '{config.celltype}' "
        f"({config.family.value}/{config.backend.value}, escalation={config.escalation.value})"
    )
    logger.info(
        f"Parallelism: mode={config.parallel_mode}, workers={config.n_workers}, "
        f"pair_parallel={use_pair_parallelism}, bootstrap_jobs={n_jobs}"
    )

    results: dict[int, ResultRow] = {}
    completed = 0

    def emit(idx: int, row: ResultRow) -> None:
        nonlocal completed
        results[idx] = row
        if sink is not None:
            sink.write(row)
        completed += 1
        if completed % PROGRESS_EVERY == 0 or completed == total:
            pct = 100 * completed / total
            logger.info(f"Progress: {completed}/{total} pairs ({pct:.1f}%)")

    def job_args(idx: int):
        return idx, pairs.at[idx, 'gene'], pairs.at[idx, 'peak'], seeds[idx], n_jobs

    def run_local(idx: int) -> ResultRow:
        _, gene, peak, seed, jobs = job_args(idx)
        return _run_one(dataset, gene, peak, config, seed, jobs)

    if use_pair_parallelism and config.parallel_mode == "processes":
        # spawn: workers receive the dataset through the initializer only
        ctx = mp.get_context('spawn')
        with ProcessPoolExecutor(
            max_workers=config.n_workers,
            mp_context=ctx,
            initializer=_init_worker,
            initargs=(dataset, config),
        ) as executor:
            futures = [executor.submit(_process_pair_worker, job_args(i)) for i in todo]
            for future in as_completed(futures):
                emit(*future.result())

    elif use_pair_parallelism:
        with ThreadPoolExecutor(max_workers=config.n_workers) as executor:
            futures = {
                executor.submit(run_local, i): i
                for i in todo
            }
            for future in as_completed(futures):
                emit(futures[future], future.result())

    else:
        for i in todo:
            emit(i, run_local(i))

    rows = [results[i] for i in todo]
    counts = pd.Series([r.status.value for r in rows], dtype=object).value_counts()
    logger.info(f"Finished {total} pairs: {counts.to_dict()}")
    return results_to_frame(rows)
