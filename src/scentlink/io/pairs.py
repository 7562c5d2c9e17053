"""
Candidate pair helpers around an external interval intersection.

Pairs are built outside this package by intersecting gene windows (e.g. gene
body +/- 500 kb) with peak coordinates:

    bedtools intersect -a genes_500kb.bed -b peaks.bed -wa -wb -loj

These helpers produce the peak BED for that step, parse its output back into
(gene, peak) pairs and split the pair list into batches for distributed runs.

Input layout of the intersection output (header-less, tab separated):
    columns 1-4: gene window chr, start, end, gene
    columns 5-8: peak chr, start, end, peak  ("." when nothing overlaps)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import numpy as np
import pandas as pd

from scentlink.core.dataset import coerce_pairs

__all__ = [
    'peaks_to_bed',
    'read_intersected_pairs',
    'filter_pairs_to_genes',
    'batch_pairs',
    'write_batches',
]

logger = logging.getLogger(__name__)


def peaks_to_bed(peak_names: Iterable[str]) -> pd.DataFrame:
    """
    Parse peak names into BED columns.

    Accepts ``chr1-100-200``, ``chr1:100-200`` and ``chr1_100_200``; the
    original name is kept in the ``peak`` column.

    Raises:
        ValueError: If a name does not split into chr, start and end
    """
    names = pd.Series(list(peak_names), dtype=str)
    normalized = names.str.replace(":", "-", regex=False).str.replace("_", "-", regex=False)
    parts = normalized.str.split("-", n=2, expand=True)
    if parts.shape[1] < 3:
        raise ValueError(f"Peak names must look like chr-start-end, got e.g. {names.head(3).tolist()}")
    malformed = parts.isna().any(axis=1)
    if malformed.any():
        raise ValueError(
            f"Peak names must look like chr-start-end, got e.g. {names[malformed].head(3).tolist()}"
        )

    bed = pd.DataFrame({
        'chr': parts[0],
        'start': parts[1],
        'end': parts[2],
        'peak': names,
    })
    try:
        bed['start'] = bed['start'].astype(np.int64)
        bed['end'] = bed['end'].astype(np.int64)
    except ValueError as e:
        raise ValueError(f"Peak coordinates must be integers: {e}") from e
    return bed


def read_intersected_pairs(path: str | Path) -> pd.DataFrame:
    """
    (gene, peak) pairs from a ``-wa -wb -loj`` intersection output.

    Rows where the gene window overlapped no peak (peak chr ``.``) are
    dropped. Order of the file is preserved.
    """
    table = pd.read_csv(path, sep="\t", header=None, dtype=str)
    if table.shape[1] < 8:
        raise ValueError(
            f"Expected at least 8 columns (gene BED4 + peak BED4) in {path}, got {table.shape[1]}"
        )
    hits = table[table[4] != "."]
    pairs = coerce_pairs(hits[[3, 7]])
    logger.info(f"Read {len(pairs)} overlapping gene-peak pairs from {path}")
    return pairs


def filter_pairs_to_genes(pairs: pd.DataFrame, gene_ids: Iterable[str]) -> pd.DataFrame:
    """Keep pairs whose gene is in ``gene_ids`` (e.g. the RNA matrix rows)."""
    pairs = coerce_pairs(pairs)
    keep = pairs['gene'].isin(set(map(str, gene_ids)))
    n_dropped = int((~keep).sum())
    if n_dropped:
        logger.info(f"Dropped {n_dropped} pairs whose gene is not in the expression matrix")
    return pairs[keep].reset_index(drop=True)


def batch_pairs(pairs: pd.DataFrame, n_batches: int) -> list[pd.DataFrame]:
    """
    Split pairs into ``n_batches`` contiguous, roughly equal batches.

    Returns fewer batches when there are fewer pairs than batches; never
    returns an empty batch.
    """
    if n_batches < 1:
        raise ValueError(f"n_batches must be >= 1, got {n_batches}")
    pairs = coerce_pairs(pairs)
    n_batches = min(n_batches, max(len(pairs), 1))
    bounds = np.array_split(np.arange(len(pairs)), n_batches)
    return [pairs.iloc[idx].reset_index(drop=True) for idx in bounds if len(idx)]


def write_batches(
    batches: list[pd.DataFrame],
    out_dir: str | Path,
    prefix: str = "pairs_batch",
) -> list[Path]:
    """Write one TSV per batch as ``{prefix}_{i}.tsv`` (1-based); return paths."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    paths = []
    for i, batch in enumerate(batches, start=1):
        path = out_dir / f"{prefix}_{i}.tsv"
        batch.to_csv(path, sep="\t", index=False)
        paths.append(path)
    logger.info(f"Wrote {len(paths)} pair batches to {out_dir}")
    return paths
