"""
Loaders for count matrices, cell metadata and candidate pair lists.

Supported Formats:
    - Matrix Market (``.mtx`` / ``.mtx.gz``), as written by Cell Ranger ARC
      and ``Matrix::writeMM``. Row and column identifiers come from sibling
      files in the same directory (``features.tsv``/``genes.tsv``/``peaks.bed``
      and ``barcodes.tsv``, optionally gzipped) or from explicit paths.
    - Delimited dense tables (CSV/TSV): first column = feature ids, header =
      cell ids.

Peaks listed in a BED file are named ``chr:start-end``.

Examples:
    >>> from scentlink.io.loaders import load_count_matrix, load_metadata
    >>>
    >>> rna = load_count_matrix("filtered_feature_bc_matrix/matrix.mtx.gz")
    >>> atac = load_count_matrix("atac_counts.tsv")
    >>> meta = load_metadata("cells.tsv", cell_column="cell")
"""

from __future__ import annotations

import csv
import logging
import warnings
from pathlib import Path

import numpy as np
import pandas as pd
from scipy import io as spio
from scipy import sparse

from scentlink.core.countmatrix import CountMatrix
from scentlink.core.dataset import coerce_pairs

__all__ = ['load_count_matrix', 'load_metadata', 'load_pairs', 'sniff_delimiter']

logger = logging.getLogger(__name__)

_FEATURE_FILES = ("features.tsv", "genes.tsv", "peaks.bed")
_BARCODE_FILES = ("barcodes.tsv",)


def sniff_delimiter(path: Path, sample_size: int = 8192) -> str:
    """
    Delimiter of a text table: from the suffix when it is explicit, otherwise
    detected with ``csv.Sniffer``.
    """
    suffixes = [s.lower() for s in Path(path).suffixes]
    if ".csv" in suffixes:
        return ","
    if ".tsv" in suffixes or ".bed" in suffixes:
        return "\t"

    with open(path, 'r', encoding='utf-8', errors='ignore') as f:
        sample = f.read(sample_size)
    try:
        return csv.Sniffer().sniff(sample, delimiters='\t,;|').delimiter
    except csv.Error:
        first_line = sample.split('\n')[0]
        return '\t' if first_line.count('\t') >= first_line.count(',') else ','


def _is_matrix_market(path: Path) -> bool:
    name = path.name.lower()
    return name.endswith(".mtx") or name.endswith(".mtx.gz")


def _find_sibling(directory: Path, stems: tuple[str, ...]) -> Path | None:
    for stem in stems:
        for candidate in (directory / stem, directory / f"{stem}.gz"):
            if candidate.exists():
                return candidate
    return None


def _read_ids(path: Path) -> pd.Index:
    """Identifiers from the first column (or chr:start-end for BED files)."""
    table = pd.read_csv(path, sep="\t", header=None, dtype=str, comment="#")
    if ".bed" in [s.lower() for s in path.suffixes] and table.shape[1] >= 3:
        ids = table[0] + ":" + table[1] + "-" + table[2]
    else:
        ids = table[0]
    return pd.Index(ids.str.strip())


def _load_matrix_market(
    path: Path,
    features_path: Path | None,
    barcodes_path: Path | None,
) -> CountMatrix:
    counts = sparse.csr_matrix(spio.mmread(str(path)))

    features_path = features_path or _find_sibling(path.parent, _FEATURE_FILES)
    barcodes_path = barcodes_path or _find_sibling(path.parent, _BARCODE_FILES)
    if features_path is None or barcodes_path is None:
        raise FileNotFoundError(
            f"Matrix Market file {path} needs feature and barcode files; none found "
            f"next to it (looked for {_FEATURE_FILES} and {_BARCODE_FILES})"
        )

    feature_ids = _read_ids(Path(features_path))
    cell_ids = _read_ids(Path(barcodes_path))
    logger.info(
        f"Loaded {path.name}: {counts.shape[0]} features x {counts.shape[1]} cells, "
        f"{counts.nnz:,} nonzero"
    )
    return CountMatrix(counts, feature_ids=feature_ids, cell_ids=cell_ids)


def _load_dense_table(path: Path) -> CountMatrix:
    try:
        df = pd.read_csv(path, sep=sniff_delimiter(path), index_col=0)
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"Count table is empty: {path}") from e

    if df.shape[0] == 0 or df.shape[1] == 0:
        raise ValueError(f"Count table has no features or no cells: {path}")

    if df.index.duplicated().any():
        n_duplicates = df.index.duplicated().sum()
        warnings.warn(
            f"Found {n_duplicates} duplicate feature IDs in {path.name}. "
            "Using first occurrence of each.",
            UserWarning
        )
        df = df[~df.index.duplicated(keep='first')]

    try:
        data = df.to_numpy(dtype=float)
    except ValueError as e:
        raise ValueError(f"Count table {path} contains non-numeric values") from e
    if not np.all(np.isfinite(data)):
        raise ValueError(f"Count table {path} contains missing or infinite values")

    logger.info(f"Loaded {path.name}: {df.shape[0]} features x {df.shape[1]} cells")
    return CountMatrix(
        sparse.csr_matrix(data),
        feature_ids=pd.Index(df.index.astype(str)),
        cell_ids=pd.Index(df.columns.astype(str)),
    )


def load_count_matrix(
    path: str | Path,
    features_path: str | Path | None = None,
    barcodes_path: str | Path | None = None,
) -> CountMatrix:
    """
    Load a features × cells count matrix.

    Args:
        path: ``.mtx``/``.mtx.gz`` or a CSV/TSV dense table
        features_path: Row identifiers for Matrix Market input
        barcodes_path: Column identifiers for Matrix Market input

    Raises:
        FileNotFoundError: If the matrix (or a required id file) is missing
        ValueError: If the table is malformed
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Count matrix not found: {path}")
    if _is_matrix_market(path):
        return _load_matrix_market(
            path,
            Path(features_path) if features_path else None,
            Path(barcodes_path) if barcodes_path else None,
        )
    return _load_dense_table(path)


def load_metadata(path: str | Path, cell_column: str = "cell") -> pd.DataFrame:
    """
    Load a cell metadata table indexed by cell id.

    The cell id comes from ``cell_column`` when present, otherwise from the
    first column.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Metadata file not found: {path}")
    meta = pd.read_csv(path, sep=sniff_delimiter(path))
    if cell_column not in meta.columns:
        meta = meta.rename(columns={meta.columns[0]: cell_column})
    meta[cell_column] = meta[cell_column].astype(str)
    return meta.set_index(cell_column)


def load_pairs(path: str | Path) -> pd.DataFrame:
    """
    Load candidate (gene, peak) pairs.

    Uses columns named ``gene`` and ``peak`` when the file has that header,
    otherwise the first two columns of a header-less file.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Pair file not found: {path}")
    sep = sniff_delimiter(path)
    pairs = pd.read_csv(path, sep=sep, dtype=str)
    if not {'gene', 'peak'}.issubset(pairs.columns):
        pairs = pd.read_csv(path, sep=sep, dtype=str, header=None)
    pairs = coerce_pairs(pairs)
    logger.info(f"Loaded {len(pairs)} candidate pairs from {path.name}")
    return pairs
