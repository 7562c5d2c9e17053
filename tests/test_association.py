"""Tests for the per-pair test and the pair orchestrator."""

from unittest import mock

import numpy as np
import pandas as pd
import pytest

from scentlink.core.errors import FitError, ValidationError
from scentlink.io.writers import ResultSink, read_result_table
from scentlink.stats import association as assoc
from scentlink.stats.association import AssociationConfig, iter_association, results_to_frame, run_association
from scentlink.stats.association_types import RESULT_COLUMNS, PairStatus, ResultRow

from conftest import (
    LINKED_GENE,
    LINKED_PEAK,
    NULL_GENE,
    NULL_PEAK,
    OPEN_PEAK,
    WIDE_PEAK,
    ZERO_GENE,
    ZERO_PEAK,
)


def _config(**overrides):
    settings = dict(celltype="Tcell", backend="fast", escalation="banded", seed=0)
    settings.update(overrides)
    return AssociationConfig(**settings)


PAIRS = [
    (LINKED_GENE, LINKED_PEAK),
    (NULL_GENE, NULL_PEAK),
    (ZERO_GENE, OPEN_PEAK),
    ("NOT_A_GENE", LINKED_PEAK),
    (NULL_GENE, ZERO_PEAK),
    (NULL_GENE, WIDE_PEAK),
]


class TestAssociationConfig:

    def test_enum_coercion(self):
        config = _config(family="negbin")
        assert config.family.value == "negbin"
        assert config.backend.value == "fast"
        assert config.fitter().describe() == "negbin/fast"

    def test_bootstrap_jobs_budget(self):
        assert _config(n_cores=8).bootstrap_jobs == 8
        assert _config(n_cores=8, n_workers=4).bootstrap_jobs == 2
        assert _config(n_cores=2, n_workers=4).bootstrap_jobs == 1

    @pytest.mark.parametrize("overrides", [
        {"n_cores": 0},
        {"n_workers": 0},
        {"parallel_mode": "gpu"},
        {"base_resamples": 0},
        {"min_nonzero_fraction": 1.0},
        {"family": "gamma"},
        {"escalation": "sometimes"},
    ])
    def test_invalid_settings(self, overrides):
        with pytest.raises(ValueError):
            _config(**overrides)

    def test_build_dataset_uses_columns(self, multiome):
        rna, atac, metadata = multiome
        config = _config(covariates=["log_umi"])
        ds = config.build_dataset(rna, atac, metadata)
        assert ds.covariates == ("log_umi",)
        assert ds.celltype_column == "celltype"


class TestTestPair:

    def test_linked_pair(self, dataset):
        row = assoc.test_pair(dataset, LINKED_GENE, LINKED_PEAK, _config(), seed=0)
        assert row.status is PairStatus.TESTED
        assert row.beta == pytest.approx(1.0, abs=0.35)
        assert row.z == pytest.approx(row.beta / row.se)
        assert row.p < 1e-6
        # 100 replicates floor at 2/100, then one 2500 refinement
        assert row.p_initial == pytest.approx(0.02)
        assert row.resamples == 2500
        assert row.boot_basic_p == pytest.approx(2 / 2500)

    def test_null_pair(self, dataset):
        row = assoc.test_pair(dataset, NULL_GENE, NULL_PEAK, _config(), seed=0)
        assert row.status is PairStatus.TESTED
        assert row.p_initial >= 0.02
        assert row.resamples in (100, 500, 2500)
        assert 0.0 < row.boot_basic_p <= 1.0

    def test_with_covariates(self, dataset_with_covariates):
        config = _config(covariates=["log_umi", "batch"])
        row = assoc.test_pair(dataset_with_covariates, LINKED_GENE, LINKED_PEAK, config, seed=0)
        assert row.status is PairStatus.TESTED
        assert row.beta > 0.5

    def test_seeded_rows_reproducible(self, dataset):
        a = assoc.test_pair(dataset, NULL_GENE, WIDE_PEAK, _config(), seed=5)
        b = assoc.test_pair(dataset, NULL_GENE, WIDE_PEAK, _config(), seed=5)
        assert a == b

    def test_sparse_pair_never_fitted(self, dataset):
        fitter = mock.MagicMock()
        fitter.requires_intercept = False
        row = assoc.test_pair(dataset, ZERO_GENE, OPEN_PEAK, _config(), fitter=fitter)
        assert row.status is PairStatus.SPARSE
        assert np.isnan(row.beta) and row.resamples is None
        fitter.fit.assert_not_called()
        fitter.statistic.assert_not_called()

    def test_missing_feature(self, dataset):
        row = assoc.test_pair(dataset, "NOT_A_GENE", LINKED_PEAK, _config())
        assert row.status is PairStatus.MISSING_FEATURE
        assert not row.is_computed

    def test_fit_failure(self, dataset):
        fitter = mock.MagicMock()
        fitter.requires_intercept = False
        fitter.fit.side_effect = FitError("singular design")
        row = assoc.test_pair(dataset, LINKED_GENE, LINKED_PEAK, _config(), fitter=fitter)
        assert row.status is PairStatus.FIT_FAILED
        assert np.isnan(row.p) and np.isnan(row.boot_basic_p)


class TestRunAssociation:

    def test_statuses_in_pair_order(self, dataset):
        table = run_association(dataset, PAIRS, _config())
        assert list(table.columns) == RESULT_COLUMNS
        assert list(zip(table["gene"], table["peak"])) == PAIRS
        assert table["status"].tolist() == [
            "tested", "tested", "sparse", "missing_feature", "sparse", "tested"
        ]
        assert str(table["resamples"].dtype) == "Int64"
        assert table.loc[2, "resamples"] is pd.NA
        assert table.loc[0, "resamples"] == 2500

    def test_thread_workers_match_sequential(self, dataset):
        sequential = run_association(dataset, PAIRS, _config())
        threaded = run_association(dataset, PAIRS, _config(n_workers=3, n_cores=3))
        pd.testing.assert_frame_equal(sequential, threaded)

    def test_process_workers_match_sequential(self, dataset):
        sequential = run_association(dataset, PAIRS, _config())
        spawned = run_association(
            dataset, PAIRS, _config(n_workers=2, n_cores=2, parallel_mode="processes")
        )
        pd.testing.assert_frame_equal(sequential, spawned)

    @pytest.mark.parametrize("n_workers", [1, 3])
    def test_config_and_seed_reach_each_pair(self, dataset, monkeypatch, n_workers):
        config = _config(n_workers=n_workers, n_cores=3)
        seen = []

        def record(dataset, gene, peak, cfg, seed=None, n_jobs=1, **kwargs):
            seen.append((gene, cfg, seed, n_jobs))
            return ResultRow.not_computed(gene, peak, PairStatus.SPARSE)

        monkeypatch.setattr(assoc, "test_pair", record)
        table = run_association(dataset, PAIRS[:3], config)

        assert table["status"].tolist() == ["sparse"] * 3
        assert len(seen) == 3
        assert all(cfg is config for _, cfg, _, _ in seen)
        assert all(isinstance(seed, np.random.SeedSequence) for _, _, seed, _ in seen)
        assert {n_jobs for _, _, _, n_jobs in seen} == {config.bootstrap_jobs}

    def test_iter_association_matches_run(self, dataset):
        rows = list(iter_association(dataset, PAIRS, _config()))
        table = run_association(dataset, PAIRS, _config())
        pd.testing.assert_frame_equal(results_to_frame(rows), table)

    def test_unexpected_error_is_contained(self, dataset, monkeypatch):
        real = assoc.test_pair

        def flaky(dataset, gene, peak, config, **kwargs):
            if gene == NULL_GENE and peak == NULL_PEAK:
                raise RuntimeError("boom")
            return real(dataset, gene, peak, config, **kwargs)

        monkeypatch.setattr(assoc, "test_pair", flaky)
        table = run_association(dataset, PAIRS[:3], _config())
        assert table["status"].tolist() == ["tested", "fit_failed", "sparse"]

    def test_unknown_celltype_fails_before_any_pair(self, dataset, tmp_path):
        out = tmp_path / "results.tsv"
        with ResultSink(out) as sink:
            with pytest.raises(ValidationError, match="NKcell"):
                run_association(dataset, PAIRS, _config(celltype="NKcell"), sink=sink)
        assert not out.exists()

    def test_strict_pairs(self, dataset):
        with pytest.raises(ValidationError) as excinfo:
            run_association(dataset, PAIRS, _config(strict_pairs=True))
        assert len(excinfo.value.violations) == 1

    def test_streams_to_sink(self, dataset, tmp_path):
        out = tmp_path / "results.tsv"
        with ResultSink(out) as sink:
            table = run_association(dataset, PAIRS, _config(), sink=sink)
            assert sink.n_written == len(PAIRS)
        written = read_result_table(out)
        assert len(written) == len(PAIRS)
        pd.testing.assert_frame_equal(written, table)

    def test_resume_skips_completed_pairs(self, dataset, tmp_path):
        out = tmp_path / "results.tsv"
        config = _config()
        full = run_association(dataset, PAIRS, config)

        with ResultSink(out) as sink:
            run_association(dataset, PAIRS[:2], config, sink=sink)
        with ResultSink(out) as sink:
            rest = run_association(dataset, PAIRS, config, sink=sink, skip_completed=True)

        assert list(zip(rest["gene"], rest["peak"])) == PAIRS[2:]
        written = read_result_table(out)
        assert list(zip(written["gene"], written["peak"])) == PAIRS
        pd.testing.assert_frame_equal(written, full)

    def test_empty_pair_list(self, dataset):
        table = run_association(dataset, [], _config())
        assert table.empty
        assert list(table.columns) == RESULT_COLUMNS


def test_results_to_frame_not_computed_rows():
    rows = [ResultRow.not_computed("g", "p", PairStatus.SPARSE)]
    frame = results_to_frame(rows)
    assert frame.loc[0, "status"] == "sparse"
    assert frame["beta"].isna().all()
    with pytest.raises(ValueError):
        ResultRow.not_computed("g", "p", PairStatus.TESTED)
