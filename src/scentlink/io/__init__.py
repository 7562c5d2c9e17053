"""
I/O module for multiome inputs, candidate pairs and result tables.

Key Functions:
    - load_count_matrix: Matrix Market or dense CSV/TSV into CountMatrix
    - load_metadata / load_pairs: Cell metadata and candidate pair tables
    - peaks_to_bed / read_intersected_pairs / batch_pairs: Pair list preparation
    - ResultSink / read_result_table: Streaming TSV output and read-back

Examples:
    >>> from scentlink.io import load_count_matrix, load_metadata, load_pairs
    >>>
    >>> rna = load_count_matrix("rna/matrix.mtx.gz")
    >>> atac = load_count_matrix("atac/matrix.mtx.gz")
    >>> meta = load_metadata("cells.tsv")
    >>> pairs = load_pairs("pairs_batch_1.tsv")
"""

from scentlink.io.loaders import load_count_matrix, load_metadata, load_pairs
from scentlink.io.pairs import (
    batch_pairs,
    filter_pairs_to_genes,
    peaks_to_bed,
    read_intersected_pairs,
    write_batches,
)
from scentlink.io.writers import (
    ResultSink,
    completed_pairs,
    read_result_table,
    write_result_table,
)

__all__ = [
    'load_count_matrix',
    'load_metadata',
    'load_pairs',
    'batch_pairs',
    'filter_pairs_to_genes',
    'peaks_to_bed',
    'read_intersected_pairs',
    'write_batches',
    'ResultSink',
    'completed_pairs',
    'read_result_table',
    'write_result_table',
]
