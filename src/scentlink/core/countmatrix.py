"""
Sparse count matrix keyed by feature and cell identifiers.

CountMatrix holds one modality of a single-cell multiome experiment:
gene expression (genes × cells) or chromatin accessibility (peaks × cells).

Biological Context:
    Single-cell count matrices are overwhelmingly zero. A typical RNA matrix
    has 2-10% nonzero entries and an ATAC peak matrix often less than 5%.
    They must stay sparse in memory, but the association test needs a dense
    per-cell vector for one gene or one peak at a time.

Engineering Design:
    - Immutable: no mutating methods, rows are returned as copies
    - Sparse: CSR storage so a single row extraction is O(nnz in row)
    - Keyed: identifier -> position lookup through pd.Index (hash based)
    - Validated: constructor checks shape, id uniqueness and non-negativity

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from scipy import sparse
    >>> from scentlink.core.countmatrix import CountMatrix
    >>>
    >>> counts = sparse.csr_matrix(np.array([[0, 3], [1, 0]]))
    >>> rna = CountMatrix(
    ...     counts,
    ...     feature_ids=pd.Index(["GENE1", "GENE2"]),
    ...     cell_ids=pd.Index(["AAAC-1", "AAAG-1"]),
    ... )
    >>> rna.row("GENE1")
    array([0., 3.])
"""

from __future__ import annotations

import numpy as np
import pandas as pd
from scipy import sparse

from scentlink.core.errors import FeatureNotFoundError

__all__ = ['CountMatrix']


class CountMatrix:
    """
    Immutable sparse matrix of non-negative counts (features × cells).

    Attributes:
        counts: CSR matrix (n_features × n_cells)
        feature_ids: Row identifiers (gene symbols or peak names)
        cell_ids: Column identifiers (cell barcodes)

    Shape Invariants:
        - counts.shape[0] == len(feature_ids)
        - counts.shape[1] == len(cell_ids)
        - feature_ids and cell_ids are unique
        - all stored values are >= 0
    """

    def __init__(
        self,
        counts: sparse.spmatrix | np.ndarray,
        feature_ids: pd.Index,
        cell_ids: pd.Index,
    ):
        """
        Initialize CountMatrix with validation.

        Args:
            counts: Sparse (any scipy format) or dense 2D array, features × cells.
                Converted to CSR.
            feature_ids: Row identifiers
            cell_ids: Column identifiers

        Raises:
            TypeError: If ids are not pd.Index or counts is not array-like 2D
            ValueError: If shapes mismatch, ids repeat, or counts are negative
        """
        if isinstance(counts, np.ndarray):
            counts = sparse.csr_matrix(counts)
        if not sparse.issparse(counts):
            raise TypeError(f"counts must be a scipy sparse matrix or np.ndarray, got {type(counts)}")
        if not isinstance(feature_ids, pd.Index):
            raise TypeError(f"feature_ids must be pd.Index, got {type(feature_ids)}")
        if not isinstance(cell_ids, pd.Index):
            raise TypeError(f"cell_ids must be pd.Index, got {type(cell_ids)}")

        counts = sparse.csr_matrix(counts)
        n_features, n_cells = counts.shape

        if len(feature_ids) != n_features:
            raise ValueError(
                f"feature_ids length ({len(feature_ids)}) must match counts rows ({n_features})"
            )
        if len(cell_ids) != n_cells:
            raise ValueError(
                f"cell_ids length ({len(cell_ids)}) must match counts columns ({n_cells})"
            )
        if not feature_ids.is_unique:
            dupes = feature_ids[feature_ids.duplicated()].unique()[:5].tolist()
            raise ValueError(f"feature_ids must be unique, duplicates include {dupes}")
        if not cell_ids.is_unique:
            dupes = cell_ids[cell_ids.duplicated()].unique()[:5].tolist()
            raise ValueError(f"cell_ids must be unique, duplicates include {dupes}")
        if counts.nnz and counts.data.min() < 0:
            raise ValueError("counts must be non-negative")

        self._counts = counts
        self._feature_ids = feature_ids
        self._cell_ids = cell_ids

    @classmethod
    def from_dense(cls, data, feature_ids, cell_ids) -> CountMatrix:
        """Build from a dense array (or DataFrame) and plain id sequences."""
        if isinstance(data, pd.DataFrame):
            data = data.to_numpy()
        return cls(
            sparse.csr_matrix(np.asarray(data)),
            feature_ids=pd.Index(feature_ids),
            cell_ids=pd.Index(cell_ids),
        )

    @property
    def counts(self) -> sparse.csr_matrix:
        """Sparse count matrix (features × cells)."""
        return self._counts

    @property
    def feature_ids(self) -> pd.Index:
        return self._feature_ids

    @property
    def cell_ids(self) -> pd.Index:
        return self._cell_ids

    @property
    def shape(self) -> tuple[int, int]:
        return self._counts.shape

    @property
    def n_features(self) -> int:
        return self._counts.shape[0]

    @property
    def n_cells(self) -> int:
        return self._counts.shape[1]

    @property
    def nnz(self) -> int:
        return self._counts.nnz

    def has_feature(self, feature_id: str) -> bool:
        return feature_id in self._feature_ids

    def feature_index(self, feature_id: str) -> int:
        """Position of ``feature_id`` in the rows.

        Raises:
            FeatureNotFoundError: If the identifier is not a row of this matrix
        """
        try:
            return self._feature_ids.get_loc(feature_id)
        except KeyError:
            raise FeatureNotFoundError(feature_id) from None

    def row(self, feature_id: str) -> np.ndarray:
        """
        Dense float64 copy of one feature's counts across all cells.

        The returned array is owned by the caller; writing to it never
        touches the matrix buffers.

        Raises:
            FeatureNotFoundError: If the identifier is not a row of this matrix
        """
        idx = self.feature_index(feature_id)
        return self._counts[idx].toarray().ravel().astype(np.float64)

    def row_series(self, feature_id: str) -> pd.Series:
        """Like :meth:`row`, indexed by cell id and named after the feature."""
        return pd.Series(self.row(feature_id), index=self._cell_ids, name=feature_id)

    def is_integer_valued(self) -> bool:
        """True if every stored value is a whole number."""
        data = self._counts.data
        if data.size == 0:
            return True
        return bool(np.all(np.mod(data, 1) == 0))

    def copy(self) -> CountMatrix:
        return CountMatrix(
            self._counts.copy(),
            feature_ids=self._feature_ids.copy(),
            cell_ids=self._cell_ids.copy(),
        )

    def __repr__(self) -> str:
        density = self.nnz / max(self.n_features * self.n_cells, 1)
        return (
            f"CountMatrix({self.n_features} features × {self.n_cells} cells, "
            f"density={density:.3%})"
        )
