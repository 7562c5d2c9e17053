"""Tests for the streaming result table."""

import threading

import numpy as np
import pandas as pd

from scentlink.io.writers import NA, ResultSink, completed_pairs, read_result_table, write_result_table
from scentlink.stats.association_types import RESULT_COLUMNS, PairStatus, ResultRow


def _tested(gene="g1", peak="chr1-1-2", beta=0.1 + 0.2):
    return ResultRow(
        gene=gene, peak=peak, beta=beta, se=1 / 3, z=beta * 3, p=np.float64(0.0123456789),
        p_initial=0.02, boot_basic_p=0.0008, resamples=2500,
    )


class TestResultSink:

    def test_header_and_na_markers(self, tmp_path):
        out = tmp_path / "out.tsv"
        with ResultSink(out) as sink:
            sink.write(_tested())
            sink.write(ResultRow.not_computed("g2", "chr1-5-9", PairStatus.SPARSE))

        lines = out.read_text().splitlines()
        assert lines[0].split("\t") == RESULT_COLUMNS
        sparse = lines[2].split("\t")
        assert sparse[:2] == ["g2", "chr1-5-9"]
        assert sparse[2:9] == [NA] * 7
        assert sparse[9] == "sparse"
        assert "np.float64" not in lines[1]

    def test_values_survive_round_trip(self, tmp_path):
        out = tmp_path / "out.tsv"
        row = _tested()
        with ResultSink(out) as sink:
            sink.write(row)
        table = read_result_table(out)
        assert table.loc[0, "beta"] == row.beta
        assert table.loc[0, "se"] == row.se
        assert table.loc[0, "p"] == row.p
        assert table.loc[0, "resamples"] == 2500
        assert table.loc[0, "status"] == "tested"

    def test_append_writes_header_once(self, tmp_path):
        out = tmp_path / "out.tsv"
        with ResultSink(out) as sink:
            sink.write(_tested("g1"))
        with ResultSink(out) as sink:
            sink.write(_tested("g2"))
            assert sink.n_written == 1

        lines = out.read_text().splitlines()
        assert len(lines) == 3
        assert sum(line.startswith("gene\t") for line in lines) == 1

    def test_empty_existing_file_gets_header(self, tmp_path):
        out = tmp_path / "out.tsv"
        out.touch()
        with ResultSink(out) as sink:
            sink.write(_tested())
        assert out.read_text().startswith("gene\tpeak")

    def test_nothing_written_creates_no_file(self, tmp_path):
        out = tmp_path / "sub" / "out.tsv"
        with ResultSink(out):
            pass
        assert not out.exists()

    def test_concurrent_writers_do_not_interleave(self, tmp_path):
        out = tmp_path / "out.tsv"
        sink = ResultSink(out)

        def produce(k):
            for i in range(50):
                sink.write(_tested(gene=f"g{k}_{i}"))

        threads = [threading.Thread(target=produce, args=(k,)) for k in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        sink.close()

        table = read_result_table(out)
        assert len(table) == 200
        assert table["gene"].nunique() == 200
        assert (table["resamples"] == 2500).all()

    def test_accepts_plain_dicts(self, tmp_path):
        out = tmp_path / "out.tsv"
        with ResultSink(out, columns=["gene", "peak", "p"]) as sink:
            sink.write({"gene": "g", "peak": "p", "p": None})
        assert out.read_text().splitlines()[1] == "g\tp\tNA"


class TestTableHelpers:

    def test_write_and_read_whole_table(self, tmp_path):
        out = tmp_path / "table.tsv"
        frame = pd.DataFrame([
            _tested().to_dict(),
            ResultRow.not_computed("g2", "p2", PairStatus.FIT_FAILED).to_dict(),
        ], columns=RESULT_COLUMNS)
        write_result_table(frame, out)
        table = read_result_table(out)
        assert table["status"].tolist() == ["tested", "fit_failed"]
        assert table["resamples"].isna().tolist() == [False, True]
        assert np.isnan(table.loc[1, "beta"])

    def test_na_gene_name_kept_as_string(self, tmp_path):
        out = tmp_path / "out.tsv"
        with ResultSink(out) as sink:
            sink.write(_tested(gene="nan"))
        assert read_result_table(out).loc[0, "gene"] == "nan"

    def test_completed_pairs(self, tmp_path):
        out = tmp_path / "out.tsv"
        assert completed_pairs(out) == set()
        with ResultSink(out) as sink:
            sink.write(_tested("g1", "p1"))
            sink.write(ResultRow.not_computed("g2", "p2", PairStatus.MISSING_FEATURE))
        assert completed_pairs(out) == {("g1", "p1"), ("g2", "p2")}
