"""
Core data structures for the peak-gene association engine.

1. CountMatrix: Sparse counts keyed by feature and cell identifiers
2. MultiomeDataset: RNA + ATAC + cell metadata with eager validation
3. Error types shared by every stage of the pipeline

Examples:
    >>> from scentlink.core import CountMatrix, MultiomeDataset
    >>>
    >>> dataset = MultiomeDataset(rna, atac, metadata, celltype_column="celltype")
    >>> dataset.require_valid()
"""

from scentlink.core.countmatrix import CountMatrix
from scentlink.core.dataset import MultiomeDataset, coerce_pairs, validate_inputs
from scentlink.core.errors import (
    FeatureNotFoundError,
    FitError,
    SparsityRejection,
    ValidationError,
)

__all__ = [
    'CountMatrix',
    'MultiomeDataset',
    'coerce_pairs',
    'validate_inputs',
    'FeatureNotFoundError',
    'FitError',
    'SparsityRejection',
    'ValidationError',
]
